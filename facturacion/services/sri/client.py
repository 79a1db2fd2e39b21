# facturacion/services/sri/client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from django.utils.dateparse import parse_datetime

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from lxml import etree
from zeep import Client
from zeep.exceptions import Error as ZeepError
from zeep.exceptions import Fault
from zeep.helpers import serialize_object
from zeep.transports import Transport

from facturacion.services.sri.clave_acceso import Ambiente
from facturacion.services.sri.config import SRIConfig
from facturacion.services.sri.exceptions import ErrorTransporteSRI

logger = logging.getLogger("facturacion.sri")


@dataclass
class MensajeSRI:
    """Mensaje devuelto por Recepción/Autorización (código + texto + detalle)."""

    identificador: Optional[str]
    mensaje: Optional[str]
    informacion_adicional: Optional[str] = None
    tipo: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def __str__(self) -> str:
        texto = f"[{self.identificador}] {self.mensaje or ''}".strip()
        if self.informacion_adicional:
            texto = f"{texto} ({self.informacion_adicional})"
        return texto


class EstadoRecepcion(str, Enum):
    RECIBIDA = "RECIBIDA"
    DEVUELTA = "DEVUELTA"
    EN_PROCESO = "EN PROCESO"


class EstadoAutorizacion(str, Enum):
    AUTORIZADO = "AUTORIZADO"
    NO_AUTORIZADO = "NO AUTORIZADO"
    EN_PROCESO = "EN PROCESO"
    NO_ENCONTRADO = "NO ENCONTRADO"


@dataclass
class ResultadoRecepcion:
    estado: EstadoRecepcion
    clave_acceso: Optional[str] = None
    mensajes: List[MensajeSRI] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def recibida(self) -> bool:
        return self.estado == EstadoRecepcion.RECIBIDA

    @property
    def devuelta(self) -> bool:
        return self.estado == EstadoRecepcion.DEVUELTA

    @property
    def en_proceso(self) -> bool:
        return self.estado == EstadoRecepcion.EN_PROCESO


@dataclass
class ResultadoAutorizacion:
    estado: EstadoAutorizacion
    clave_acceso: str
    numero_autorizacion: Optional[str] = None
    fecha_autorizacion: Optional[datetime] = None
    ambiente: Optional[str] = None
    comprobante: Optional[str] = None
    mensajes: List[MensajeSRI] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def autorizado(self) -> bool:
        return self.estado == EstadoAutorizacion.AUTORIZADO

    @property
    def terminal(self) -> bool:
        return self.estado in (EstadoAutorizacion.AUTORIZADO, EstadoAutorizacion.NO_AUTORIZADO)

    @property
    def motivo(self) -> str:
        if self.mensajes:
            return "; ".join(str(m) for m in self.mensajes)
        return f"Estado de autorización: {self.estado.value}"


def _como_lista(valor: Any) -> List[Any]:
    if not valor:
        return []
    if isinstance(valor, dict):
        return [valor]
    return list(valor)


def _extraer_mensajes(contenedor: Dict[str, Any]) -> List[MensajeSRI]:
    lista_mensajes = _como_lista((contenedor.get("mensajes") or {}).get("mensaje"))
    return [
        MensajeSRI(
            identificador=str(m.get("identificador")) if m.get("identificador") is not None else None,
            mensaje=m.get("mensaje"),
            informacion_adicional=m.get("informacionAdicional"),
            tipo=m.get("tipo"),
        )
        for m in lista_mensajes
    ]


def _texto_error(causa: Optional[BaseException]) -> str:
    """Mensaje de la excepción más el cuerpo HTTP de un TransportError de zeep."""
    if causa is None:
        return ""
    texto = str(causa)
    contenido = getattr(causa, "content", None)
    if isinstance(contenido, bytes):
        contenido = contenido.decode("utf-8", errors="replace")
    if contenido and contenido not in texto:
        texto = f"{texto} {contenido}"
    return texto


def _normalizar_estado_autorizacion(estado: Optional[str]) -> Optional[EstadoAutorizacion]:
    valor = (estado or "").upper().replace("_", " ").strip()
    if valor == "AUTORIZADO":
        return EstadoAutorizacion.AUTORIZADO
    if valor == "NO AUTORIZADO":
        return EstadoAutorizacion.NO_AUTORIZADO
    if valor in ("EN PROCESO", "EN PROCESAMIENTO", "PROCESO", "PROCESAMIENTO"):
        return EstadoAutorizacion.EN_PROCESO
    return None


class SRIClient:
    """
    Cliente SOAP para los Web Services Offline del SRI:

    - RecepcionComprobantesOffline: validarComprobante(xml)
    - AutorizacionComprobantesOffline: autorizacionComprobante(claveAccesoComprobante)

    Los clientes zeep se crean al primer uso; una falla al descargar el WSDL
    se reporta como ErrorTransporteSRI igual que cualquier falla de red.
    """

    def __init__(
        self,
        ambiente: Union[Ambiente, str],
        config: Optional[SRIConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.ambiente = Ambiente.from_value(ambiente)
        self.config = config or SRIConfig.from_settings()

        endpoints = self.config.endpoints(self.ambiente)
        self.recepcion_wsdl = endpoints.recepcion_wsdl
        self.autorizacion_wsdl = endpoints.autorizacion_wsdl

        self.session = session or self._crear_session()

        # El timeout real lo maneja zeep.Transport
        self.transport = Transport(
            session=self.session,
            timeout=self.config.timeout,
            operation_timeout=self.config.timeout,
        )

        self._recepcion_client: Optional[Client] = None
        self._autorizacion_client: Optional[Client] = None

        logger.info(
            "Inicializando SRIClient ambiente=%s [RecepcionWSDL=%s, AutorizacionWSDL=%s, "
            "verify_ssl=%s, timeout=%s]",
            self.ambiente.value,
            self.recepcion_wsdl,
            self.autorizacion_wsdl,
            self.config.ssl_verify,
            self.config.timeout,
        )

    def _crear_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = self.config.ssl_verify
        session.headers.update({"User-Agent": "FacturacionSRI/1.0 (Python/Zeep)"})

        # Solo GET (descarga de WSDL/XSD). Los POST no se reintentan aquí:
        # reenviar un comprobante puede duplicarlo en el SRI.
        retry = Retry(
            total=self.config.retry_max,
            backoff_factor=self.config.retry_backoff,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @property
    def recepcion_client(self) -> Client:
        if self._recepcion_client is None:
            self._recepcion_client = Client(wsdl=self.recepcion_wsdl, transport=self.transport)
        return self._recepcion_client

    @property
    def autorizacion_client(self) -> Client:
        if self._autorizacion_client is None:
            self._autorizacion_client = Client(wsdl=self.autorizacion_wsdl, transport=self.transport)
        return self._autorizacion_client

    def _llamar(self, servicio: str, operacion: Callable[[], Any]) -> Dict[str, Any]:
        """
        Ejecuta la operación SOAP y normaliza la respuesta a dict.
        Traduce errores SOAP/red a ErrorTransporteSRI con el origen adecuado.
        """
        try:
            data = serialize_object(operacion())
        except Fault as exc:
            logger.warning("SOAP Fault en %s: %s", servicio, exc)
            raise ErrorTransporteSRI(
                f"El Web Service de {servicio.capitalize()} del SRI devolvió un error.",
                origen=f"{servicio.upper()}_FAULT",
                causa=exc,
            ) from exc
        except (requests.RequestException, ZeepError, etree.XMLSyntaxError) as exc:
            # Problemas de red / timeout / WSDL inaccesible
            logger.warning("Error de red/timeout en %s: %s", servicio, exc)
            raise ErrorTransporteSRI(
                f"No fue posible conectarse al Web Service de {servicio.capitalize()} del SRI.",
                origen=f"{servicio.upper()}_NETWORK",
                causa=exc,
            ) from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error inesperado al llamar a %s: %s", servicio, exc)
            raise ErrorTransporteSRI(
                f"Ocurrió un error inesperado al comunicarse con {servicio.capitalize()} del SRI.",
                origen=f"{servicio.upper()}_UNEXPECTED",
                causa=exc,
            ) from exc

        if not isinstance(data, dict):
            data = {"value": data}
        return data

    def _es_en_proceso(self, texto: str) -> bool:
        texto = (texto or "").upper()
        return any(marcador.upper() in texto for marcador in self.config.marcadores_en_proceso)

    # -------------------------
    # Recepción: validarComprobante
    # -------------------------

    def enviar_comprobante(self, xml_firmado: Union[bytes, str]) -> ResultadoRecepcion:
        """
        Envía el comprobante firmado al WS de recepción del SRI.

        - RECIBIDA: aceptado para autorización.
        - DEVUELTA: rechazo definitivo (no reenviar), con mensajes.
        - EN_PROCESO: el SRI ya está validando esa clave (código 70, o Fault / error HTTP
          cuyo texto indica procesamiento); se debe consultar autorización.

        Lanza ErrorTransporteSRI ante fallas de red/SOAP.
        """
        if isinstance(xml_firmado, str):
            xml_firmado_bytes = xml_firmado.encode("utf-8")
        else:
            xml_firmado_bytes = xml_firmado

        try:
            data = self._llamar(
                "recepcion",
                lambda: self.recepcion_client.service.validarComprobante(xml_firmado_bytes),
            )
        except ErrorTransporteSRI as exc:
            texto = _texto_error(exc.causa)
            if exc.origen in ("RECEPCION_FAULT", "RECEPCION_NETWORK") and self._es_en_proceso(texto):
                logger.info("Recepción SRI indica comprobante en procesamiento: %s", texto)
                return ResultadoRecepcion(
                    estado=EstadoRecepcion.EN_PROCESO,
                    mensajes=[MensajeSRI(identificador=None, mensaje=texto)],
                    raw={"error": texto},
                )
            raise

        estado_sri = (data.get("estado") or "").upper().strip()
        comprobantes = _como_lista((data.get("comprobantes") or {}).get("comprobante"))

        clave_acceso = None
        mensajes: List[MensajeSRI] = []
        for comp in comprobantes:
            clave_acceso = clave_acceso or comp.get("claveAcceso")
            mensajes.extend(_extraer_mensajes(comp))

        logger.info(
            "Respuesta RecepcionComprobantesOffline estado=%s, clave=%s, mensajes=%s",
            estado_sri,
            clave_acceso,
            [str(m) for m in mensajes],
        )

        if estado_sri == "RECIBIDA":
            estado = EstadoRecepcion.RECIBIDA
        elif estado_sri == "DEVUELTA":
            en_proceso = any(m.identificador in self.config.codigos_en_proceso for m in mensajes)
            estado = EstadoRecepcion.EN_PROCESO if en_proceso else EstadoRecepcion.DEVUELTA
        else:
            logger.warning("Estado de recepción SRI no reconocido: %s", estado_sri)
            raise ErrorTransporteSRI(
                f"Estado de recepción SRI no reconocido: {estado_sri or '(vacío)'}",
                origen="RECEPCION_DESCONOCIDA",
            )

        return ResultadoRecepcion(
            estado=estado,
            clave_acceso=clave_acceso,
            mensajes=mensajes,
            raw=data,
        )

    # -------------------------
    # Autorización: autorizacionComprobante
    # -------------------------

    def autorizar_comprobante(self, clave_acceso: str) -> ResultadoAutorizacion:
        """
        Consulta una vez el estado de autorización de un comprobante.

        Si el SRI devuelve varias autorizaciones para la clave, prevalece la
        AUTORIZADO; si no hay ninguna, el resultado es NO_ENCONTRADO.

        Lanza ErrorTransporteSRI ante fallas de red/SOAP.
        """
        data = self._llamar(
            "autorizacion",
            lambda: self.autorizacion_client.service.autorizacionComprobante(
                claveAccesoComprobante=clave_acceso
            ),
        )

        autorizaciones = _como_lista((data.get("autorizaciones") or {}).get("autorizacion"))

        if not autorizaciones:
            logger.info("Autorización SRI sin registros para clave=%s", clave_acceso)
            return ResultadoAutorizacion(
                estado=EstadoAutorizacion.NO_ENCONTRADO,
                clave_acceso=clave_acceso,
                raw=data,
            )

        elegida = next(
            (
                a
                for a in autorizaciones
                if _normalizar_estado_autorizacion(a.get("estado")) == EstadoAutorizacion.AUTORIZADO
            ),
            autorizaciones[0],
        )

        estado = _normalizar_estado_autorizacion(elegida.get("estado"))
        if estado is None:
            logger.warning(
                "Estado de autorización SRI no reconocido para clave=%s: %s",
                clave_acceso,
                elegida.get("estado"),
            )
            estado = EstadoAutorizacion.EN_PROCESO

        fecha_aut = elegida.get("fechaAutorizacion")
        if fecha_aut and not isinstance(fecha_aut, datetime):
            fecha_aut = parse_datetime(str(fecha_aut))

        mensajes = _extraer_mensajes(elegida)

        logger.info(
            "Respuesta AutorizacionComprobantesOffline clave=%s estado=%s, mensajes=%s",
            clave_acceso,
            estado.value,
            [str(m) for m in mensajes],
        )

        return ResultadoAutorizacion(
            estado=estado,
            clave_acceso=clave_acceso,
            numero_autorizacion=elegida.get("numeroAutorizacion"),
            fecha_autorizacion=fecha_aut,
            ambiente=elegida.get("ambiente"),
            comprobante=elegida.get("comprobante"),
            mensajes=mensajes,
            raw=data,
        )
