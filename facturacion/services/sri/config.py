# facturacion/services/sri/config.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

from facturacion.services.sri.clave_acceso import Ambiente


# =========================
# Endpoints oficiales SRI (Servicios Offline)
# =========================

SRI_TEST_RECEPCION_WSDL = (
    "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl"
)
SRI_TEST_AUTORIZACION_WSDL = (
    "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl"
)
SRI_PROD_RECEPCION_WSDL = (
    "https://cel.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl"
)
SRI_PROD_AUTORIZACION_WSDL = (
    "https://cel.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl"
)


@dataclass(frozen=True)
class EndpointsSRI:
    recepcion_wsdl: str
    autorizacion_wsdl: str


@dataclass(frozen=True)
class SRIConfig:
    """
    Parámetros de red, reintentos y firma del cliente SRI.

    Se construye desde settings (SRIConfig.from_settings) o directamente
    (tests, servidores simulados).
    """

    test_recepcion_wsdl: str = SRI_TEST_RECEPCION_WSDL
    test_autorizacion_wsdl: str = SRI_TEST_AUTORIZACION_WSDL
    prod_recepcion_wsdl: str = SRI_PROD_RECEPCION_WSDL
    prod_autorizacion_wsdl: str = SRI_PROD_AUTORIZACION_WSDL

    # Red / resiliencia
    ssl_verify: bool = True
    timeout: float = 15  # segundos, por llamada SOAP
    retry_max: int = 3  # reintentos HTTP para descargar el WSDL
    retry_backoff: float = 2

    # Consulta de autorización
    intervalo_consulta: float = 2.5
    max_intentos_consulta: int = 10

    # Recepción
    max_intentos_recepcion: int = 3
    espera_reintento_recepcion: float = 2.0

    # Firma
    algoritmo_digest: str = "sha1"

    # Clasificación de respuestas
    codigos_en_proceso: Tuple[str, ...] = ("70",)
    marcadores_en_proceso: Tuple[str, ...] = ("EN PROCESAMIENTO", "PROCESAMIENTO")
    codigos_clave_registrada: Tuple[str, ...] = ("43",)

    validar_estructura: bool = False

    def endpoints(self, ambiente: Union[Ambiente, str]) -> EndpointsSRI:
        if Ambiente.from_value(ambiente) == Ambiente.PRODUCCION:
            return EndpointsSRI(self.prod_recepcion_wsdl, self.prod_autorizacion_wsdl)
        return EndpointsSRI(self.test_recepcion_wsdl, self.test_autorizacion_wsdl)

    @classmethod
    def from_settings(cls) -> "SRIConfig":
        """
        Lee la configuración SRI_* desde django.conf.settings, con los
        valores por defecto de esta clase cuando el setting no existe.
        """
        from django.conf import settings

        return cls(
            test_recepcion_wsdl=getattr(settings, "SRI_TEST_RECEPCION_WSDL", SRI_TEST_RECEPCION_WSDL),
            test_autorizacion_wsdl=getattr(settings, "SRI_TEST_AUTORIZACION_WSDL", SRI_TEST_AUTORIZACION_WSDL),
            prod_recepcion_wsdl=getattr(settings, "SRI_PROD_RECEPCION_WSDL", SRI_PROD_RECEPCION_WSDL),
            prod_autorizacion_wsdl=getattr(settings, "SRI_PROD_AUTORIZACION_WSDL", SRI_PROD_AUTORIZACION_WSDL),
            ssl_verify=getattr(settings, "SRI_SSL_VERIFY", True),
            timeout=getattr(settings, "SRI_REQUEST_TIMEOUT", 15),
            retry_max=getattr(settings, "SRI_RETRY_MAX", 3),
            retry_backoff=getattr(settings, "SRI_RETRY_BACKOFF", 2),
            intervalo_consulta=getattr(settings, "SRI_POLL_INTERVAL", 2.5),
            max_intentos_consulta=getattr(settings, "SRI_POLL_MAX_ATTEMPTS", 10),
            max_intentos_recepcion=getattr(settings, "SRI_RECEPCION_MAX_ATTEMPTS", 3),
            espera_reintento_recepcion=getattr(settings, "SRI_RECEPCION_RETRY_DELAY", 2.0),
            algoritmo_digest=getattr(settings, "SRI_DIGEST_ALGORITHM", "sha1"),
            codigos_en_proceso=tuple(getattr(settings, "SRI_CODIGOS_EN_PROCESO", ("70",))),
            marcadores_en_proceso=tuple(
                getattr(settings, "SRI_MARCADORES_EN_PROCESO", ("EN PROCESAMIENTO", "PROCESAMIENTO"))
            ),
            codigos_clave_registrada=tuple(getattr(settings, "SRI_CODIGOS_CLAVE_REGISTRADA", ("43",))),
            validar_estructura=getattr(settings, "SRI_VALIDAR_ESTRUCTURA", False),
        )
