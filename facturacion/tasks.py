# facturacion/tasks.py
from __future__ import annotations

import logging
from typing import Any, Dict

from celery import shared_task

from facturacion.services.sri.client import EstadoAutorizacion, SRIClient
from facturacion.services.sri.exceptions import ErrorTransporteSRI

logger = logging.getLogger(__name__)


# =====================================================
# Tarea: re-consulta de Autorización SRI (con backoff)
# =====================================================


@shared_task(
    bind=True,
    max_retries=6,
    default_retry_delay=60,  # no se usa directamente; hacemos nuestro propio backoff
)
def consultar_autorizacion_task(self, clave_acceso: str, ambiente: str) -> Dict[str, Any]:
    """
    Tarea Celery para comprobantes que quedaron PENDIENTE tras el envío.

    - Solo consulta autorización; NUNCA reenvía el comprobante ni recibe
      el certificado (solo la clave de acceso y el ambiente).
    - Si el SRI sigue "EN PROCESO" (o aún no encuentra la clave, o hay
      error de red), reprograma esta misma tarea con backoff exponencial:
        1, 2, 4, 8, 16, 32 minutos (hasta max_retries).
    """
    logger.info(
        "consultar_autorizacion_task iniciado clave=%s ambiente=%s intento=%s",
        clave_acceso,
        ambiente,
        self.request.retries,
    )

    countdown = 60 * (2**self.request.retries)  # 1m, 2m, 4m, 8m, ...

    try:
        resultado = SRIClient(ambiente).autorizar_comprobante(clave_acceso)
    except ErrorTransporteSRI as exc:
        logger.warning(
            "consultar_autorizacion_task: error de comunicación clave=%s: %s",
            clave_acceso,
            exc,
        )
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=countdown)
        return {
            "ok": False,
            "estado": "PENDIENTE",
            "clave_acceso": clave_acceso,
            "error": str(exc),
        }

    if not resultado.terminal and self.request.retries < self.max_retries:
        logger.info(
            "Clave %s en estado %s, reintento consultar_autorizacion_task en %s segundos.",
            clave_acceso,
            resultado.estado.value,
            countdown,
        )
        raise self.retry(countdown=countdown)

    logger.info(
        "consultar_autorizacion_task finalizado clave=%s estado=%s",
        clave_acceso,
        resultado.estado.value,
    )

    if resultado.estado == EstadoAutorizacion.AUTORIZADO:
        estado = "AUTORIZADO"
    elif resultado.estado == EstadoAutorizacion.NO_AUTORIZADO:
        estado = "RECHAZADO"
    else:
        estado = "PENDIENTE"

    return {
        "ok": resultado.autorizado,
        "estado": estado,
        "estado_sri": resultado.estado.value,
        "clave_acceso": clave_acceso,
        "numero_autorizacion": resultado.numero_autorizacion,
        "fecha_autorizacion": (
            resultado.fecha_autorizacion.isoformat() if resultado.fecha_autorizacion else None
        ),
        "mensajes": [m.as_dict() for m in resultado.mensajes],
    }
