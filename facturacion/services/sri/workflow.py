# facturacion/services/sri/workflow.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from django.utils import timezone

from facturacion.services.sri.clave_acceso import (
    Ambiente,
    extraer_clave_acceso,
    validar_clave_acceso,
)
from facturacion.services.sri.client import (
    EstadoAutorizacion,
    MensajeSRI,
    ResultadoAutorizacion,
    SRIClient,
)
from facturacion.services.sri.config import SRIConfig
from facturacion.services.sri.exceptions import (
    CertificadoInvalidoError,
    CertificateError,
    ConfiguracionError,
    DocumentoMalformadoError,
    ErrorTransporteSRI,
)
from facturacion.services.sri.signer import CredencialFirma, firmar_xml
from facturacion.services.sri.validator import validar_estructura


logger = logging.getLogger("facturacion.sri")


class EstadoWorkflow(str, Enum):
    INICIAL = "INICIAL"
    CLAVE_VALIDADA = "CLAVE_VALIDADA"
    FIRMADO = "FIRMADO"
    ENVIADO = "ENVIADO"
    CONSULTANDO = "CONSULTANDO"
    AUTORIZADO = "AUTORIZADO"
    RECHAZADO = "RECHAZADO"
    TIEMPO_AGOTADO = "TIEMPO_AGOTADO"


class EstadoProceso(str, Enum):
    AUTORIZADO = "AUTORIZADO"
    RECHAZADO = "RECHAZADO"
    PENDIENTE = "PENDIENTE"


@dataclass
class PasoProceso:
    fecha: datetime
    estado: EstadoWorkflow
    mensaje: str

    def __str__(self) -> str:
        return f"[{self.fecha:%H:%M:%S}] {self.mensaje}"


@dataclass
class ResultadoProceso:
    """
    Resultado final de un envío al SRI.

    PENDIENTE no es éxito ni rechazo: el comprobante puede autorizarse más
    tarde y NO debe reenviarse, solo volver a consultarse.
    """

    estado: EstadoProceso
    clave_acceso: str
    estado_workflow: EstadoWorkflow
    numero_autorizacion: Optional[str] = None
    fecha_autorizacion: Optional[datetime] = None
    xml_firmado: Optional[str] = None
    xml_autorizado: Optional[str] = None
    motivo: Optional[str] = None
    mensajes: List[MensajeSRI] = field(default_factory=list)
    intentos: int = 0
    pasos: List[PasoProceso] = field(default_factory=list)
    cancelado: bool = False
    reintentable: bool = False

    @property
    def autorizado(self) -> bool:
        return self.estado == EstadoProceso.AUTORIZADO

    def as_dict(self) -> Dict[str, Any]:
        return {
            "estado": self.estado.value,
            "estado_workflow": self.estado_workflow.value,
            "clave_acceso": self.clave_acceso,
            "numero_autorizacion": self.numero_autorizacion,
            "fecha_autorizacion": (
                self.fecha_autorizacion.isoformat() if self.fecha_autorizacion else None
            ),
            "motivo": self.motivo,
            "mensajes": [m.as_dict() for m in self.mensajes],
            "intentos": self.intentos,
            "pasos": [str(p) for p in self.pasos],
            "cancelado": self.cancelado,
            "reintentable": self.reintentable,
        }


class _Ejecucion:
    """Estado mutable de un único envío (no se comparte entre envíos)."""

    def __init__(
        self,
        reloj: Callable[[], datetime],
        on_progress: Optional[Callable[[PasoProceso], Any]],
    ):
        self.reloj = reloj
        self.on_progress = on_progress
        self.estado = EstadoWorkflow.INICIAL
        self.clave_acceso = ""
        self.xml_firmado: Optional[str] = None
        self.mensajes: List[MensajeSRI] = []
        self.intentos = 0
        self.pasos: List[PasoProceso] = []

    def paso(self, estado: EstadoWorkflow, mensaje: str) -> None:
        self.estado = estado
        paso = PasoProceso(fecha=self.reloj(), estado=estado, mensaje=mensaje)
        self.pasos.append(paso)
        logger.info("SRI [%s] %s: %s", self.clave_acceso or "-", estado.value, mensaje)

        if self.on_progress is None:
            return
        try:
            self.on_progress(paso)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error en callback de progreso SRI (se ignora): %s", exc)

    def resultado(self, estado: EstadoProceso, **extra: Any) -> ResultadoProceso:
        return ResultadoProceso(
            estado=estado,
            clave_acceso=self.clave_acceso,
            estado_workflow=self.estado,
            xml_firmado=self.xml_firmado,
            mensajes=list(self.mensajes),
            intentos=self.intentos,
            pasos=list(self.pasos),
            **extra,
        )

    def rechazado(self, motivo: str, **extra: Any) -> ResultadoProceso:
        self.paso(EstadoWorkflow.RECHAZADO, motivo)
        return self.resultado(EstadoProceso.RECHAZADO, motivo=motivo, **extra)

    def cancelado(self) -> ResultadoProceso:
        motivo = (
            "Proceso cancelado. El comprobante puede haber llegado al SRI: "
            "consulte la autorización antes de reenviarlo."
        )
        logger.info("SRI [%s] proceso cancelado en estado %s", self.clave_acceso, self.estado.value)
        return self.resultado(EstadoProceso.PENDIENTE, motivo=motivo, cancelado=True)


class SRIWorkflow:
    """
    Orquesta el envío de un comprobante al SRI:

        INICIAL -> CLAVE_VALIDADA -> FIRMADO -> ENVIADO -> CONSULTANDO
                -> AUTORIZADO | RECHAZADO | TIEMPO_AGOTADO

    - Errores de construcción (configuración, XML sin clave válida,
      certificado inválido) se lanzan antes de cualquier llamada de red.
    - Los resultados del protocolo (autorizado, rechazado, pendiente) se
      devuelven en ResultadoProceso; nunca se lanzan.

    `client_factory(ambiente)` y `esperar(segundos)` son inyectables para
    pruebas; por defecto se usa SRIClient y una espera interrumpible sobre
    el evento de cancelación.
    """

    def __init__(
        self,
        config: Optional[SRIConfig] = None,
        client_factory: Optional[Callable[[Ambiente], SRIClient]] = None,
        esperar: Optional[Callable[[float], Any]] = None,
        reloj: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or SRIConfig.from_settings()
        self.client_factory = client_factory or self._crear_cliente
        self.esperar = esperar
        self.reloj = reloj or timezone.localtime

    def _crear_cliente(self, ambiente: Ambiente) -> SRIClient:
        return SRIClient(ambiente, config=self.config)

    def _pausa(self, segundos: float, cancelacion: threading.Event) -> bool:
        """Espera `segundos`; devuelve True si el proceso fue cancelado."""
        if cancelacion.is_set():
            return True
        if self.esperar is not None:
            self.esperar(segundos)
        else:
            cancelacion.wait(segundos)
        return cancelacion.is_set()

    # -------------------------
    # API pública
    # -------------------------

    def procesar(
        self,
        xml: str,
        ambiente: Union[Ambiente, str],
        credencial: Optional[CredencialFirma] = None,
        on_progress: Optional[Callable[[PasoProceso], Any]] = None,
        cancelacion: Optional[threading.Event] = None,
    ) -> ResultadoProceso:
        ambiente = Ambiente.from_value(ambiente)
        if ambiente == Ambiente.PRODUCCION and credencial is None:
            raise ConfiguracionError(
                "El ambiente de producción requiere certificado de firma electrónica."
            )

        cancelacion = cancelacion or threading.Event()
        ejecucion = _Ejecucion(self.reloj, on_progress)
        ejecucion.paso(
            EstadoWorkflow.INICIAL,
            f"Iniciando envío al SRI (ambiente {ambiente.name.lower()})",
        )

        ejecucion.clave_acceso = self._validar_documento(xml, ambiente)
        ejecucion.paso(
            EstadoWorkflow.CLAVE_VALIDADA,
            f"Clave de acceso validada: {ejecucion.clave_acceso}",
        )

        if credencial is not None:
            try:
                ejecucion.xml_firmado = firmar_xml(
                    xml,
                    credencial,
                    algoritmo=self.config.algoritmo_digest,
                )
            except CertificadoInvalidoError:
                raise
            except CertificateError as exc:
                return ejecucion.rechazado(f"Error en firma electrónica: {exc}")
            finally:
                credencial = None
            ejecucion.paso(EstadoWorkflow.FIRMADO, "XML firmado correctamente (XAdES-BES)")
        else:
            ejecucion.xml_firmado = xml
            ejecucion.paso(
                EstadoWorkflow.FIRMADO,
                "Modo pruebas sin certificado: se envía el XML sin firma digital",
            )

        client = self.client_factory(ambiente)

        final = self._enviar(client, ejecucion, cancelacion)
        if final is not None:
            return final

        return self._consultar(client, ejecucion, cancelacion)

    # -------------------------
    # Etapas
    # -------------------------

    def _validar_documento(self, xml: str, ambiente: Ambiente) -> str:
        if not xml or not xml.strip():
            raise DocumentoMalformadoError("El XML del comprobante está vacío.")

        clave = extraer_clave_acceso(xml)
        validacion = validar_clave_acceso(clave)
        if not validacion.valida:
            raise DocumentoMalformadoError(
                f"Clave de acceso inválida ({clave}): " + "; ".join(validacion.errores)
            )
        if validacion.componentes.ambiente != ambiente.value:
            raise DocumentoMalformadoError(
                f"La clave de acceso corresponde al ambiente {validacion.componentes.ambiente} "
                f"pero se solicitó el ambiente {ambiente.value}."
            )

        if self.config.validar_estructura:
            errores = validar_estructura(xml)
            if errores:
                raise DocumentoMalformadoError(
                    "El XML no pasó la validación estructural: " + "; ".join(errores)
                )

        return clave

    def _enviar(
        self,
        client: SRIClient,
        ejecucion: _Ejecucion,
        cancelacion: threading.Event,
    ) -> Optional[ResultadoProceso]:
        """
        Envía a Recepción. Devuelve None si corresponde consultar autorización,
        o el ResultadoProceso final (rechazo / cancelación).
        """
        max_intentos = max(1, self.config.max_intentos_recepcion)
        ultimo_error: Optional[ErrorTransporteSRI] = None

        for intento in range(1, max_intentos + 1):
            if cancelacion.is_set():
                return ejecucion.cancelado()

            try:
                recepcion = client.enviar_comprobante(ejecucion.xml_firmado)
            except ErrorTransporteSRI as exc:
                if exc.origen == "RECEPCION_DESCONOCIDA":
                    # El SRI respondió: no se reenvía, se consulta autorización
                    ejecucion.paso(
                        EstadoWorkflow.ENVIADO,
                        f"Respuesta de Recepción no reconocida ({exc.mensaje}); se consulta autorización",
                    )
                    return None
                ultimo_error = exc
                logger.warning(
                    "Error de transporte en Recepción SRI clave=%s intento=%s/%s: %s",
                    ejecucion.clave_acceso,
                    intento,
                    max_intentos,
                    exc,
                )
                if intento >= max_intentos:
                    break
                espera = self.config.espera_reintento_recepcion * (2 ** (intento - 1))
                ejecucion.paso(
                    EstadoWorkflow.FIRMADO,
                    f"Error de comunicación con Recepción ({exc.origen}). "
                    f"Reintento {intento + 1}/{max_intentos} en {espera:g} s",
                )
                if self._pausa(espera, cancelacion):
                    return ejecucion.cancelado()
                continue

            ejecucion.mensajes.extend(recepcion.mensajes)

            if recepcion.recibida:
                ejecucion.paso(EstadoWorkflow.ENVIADO, "Comprobante RECIBIDO por el SRI")
                return None

            if recepcion.en_proceso:
                ejecucion.paso(
                    EstadoWorkflow.ENVIADO,
                    "El SRI indica que el comprobante ya está en procesamiento",
                )
                return None

            codigos = {m.identificador for m in recepcion.mensajes}
            if intento > 1 and codigos & set(self.config.codigos_clave_registrada):
                # El intento anterior sí llegó al SRI
                ejecucion.paso(
                    EstadoWorkflow.ENVIADO,
                    "La clave de acceso ya estaba registrada por un envío anterior",
                )
                return None

            detalle = "; ".join(str(m) for m in recepcion.mensajes) or "sin mensajes"
            return ejecucion.rechazado(f"Comprobante DEVUELTO por el SRI: {detalle}")

        return ejecucion.rechazado(
            f"No fue posible enviar el comprobante al SRI tras {max_intentos} intentos: {ultimo_error}. "
            "El comprobante puede haber llegado al SRI: consulte la autorización antes de reenviarlo.",
            reintentable=True,
        )

    def _consultar(
        self,
        client: SRIClient,
        ejecucion: _Ejecucion,
        cancelacion: threading.Event,
    ) -> ResultadoProceso:
        max_intentos = max(1, self.config.max_intentos_consulta)
        ejecucion.paso(EstadoWorkflow.CONSULTANDO, "Consultando autorización...")

        ultimo: Optional[ResultadoAutorizacion] = None
        for intento in range(1, max_intentos + 1):
            if cancelacion.is_set():
                return ejecucion.cancelado()

            ejecucion.intentos = intento
            try:
                ultimo = client.autorizar_comprobante(ejecucion.clave_acceso)
            except ErrorTransporteSRI as exc:
                logger.warning(
                    "Error de transporte en Autorización SRI clave=%s intento=%s/%s: %s",
                    ejecucion.clave_acceso,
                    intento,
                    max_intentos,
                    exc,
                )
                descripcion = f"error de comunicación ({exc.origen})"
            else:
                if ultimo.estado == EstadoAutorizacion.AUTORIZADO:
                    return self._autorizado(ejecucion, ultimo)
                if ultimo.estado == EstadoAutorizacion.NO_AUTORIZADO:
                    ejecucion.mensajes.extend(ultimo.mensajes)
                    return ejecucion.rechazado(f"Comprobante NO AUTORIZADO: {ultimo.motivo}")
                descripcion = ultimo.estado.value

            if intento < max_intentos:
                ejecucion.paso(
                    EstadoWorkflow.CONSULTANDO,
                    f"SRI procesando ({descripcion})... insistiendo ({intento}/{max_intentos})",
                )
                if self._pausa(self.config.intervalo_consulta, cancelacion):
                    return ejecucion.cancelado()

        if ultimo is not None:
            ejecucion.mensajes.extend(ultimo.mensajes)

        motivo = (
            f"El SRI no respondió con una autorización tras {max_intentos} consultas. "
            "El comprobante quedó PENDIENTE: consulte más tarde, no lo reenvíe."
        )
        ejecucion.paso(EstadoWorkflow.TIEMPO_AGOTADO, motivo)
        return ejecucion.resultado(EstadoProceso.PENDIENTE, motivo=motivo)

    def _autorizado(
        self,
        ejecucion: _Ejecucion,
        autorizacion: ResultadoAutorizacion,
    ) -> ResultadoProceso:
        ejecucion.mensajes.extend(autorizacion.mensajes)
        ejecucion.paso(
            EstadoWorkflow.AUTORIZADO,
            f"Comprobante AUTORIZADO. Número de autorización: {autorizacion.numero_autorizacion}",
        )
        return ejecucion.resultado(
            EstadoProceso.AUTORIZADO,
            numero_autorizacion=autorizacion.numero_autorizacion,
            fecha_autorizacion=autorizacion.fecha_autorizacion,
            xml_autorizado=autorizacion.comprobante or ejecucion.xml_firmado,
        )


def procesar_comprobante(
    xml: str,
    ambiente: Union[Ambiente, str],
    credencial: Optional[CredencialFirma] = None,
    on_progress: Optional[Callable[[PasoProceso], Any]] = None,
    cancelacion: Optional[threading.Event] = None,
) -> ResultadoProceso:
    """Atajo: SRIWorkflow con la configuración de settings."""
    return SRIWorkflow().procesar(
        xml,
        ambiente,
        credencial=credencial,
        on_progress=on_progress,
        cancelacion=cancelacion,
    )
