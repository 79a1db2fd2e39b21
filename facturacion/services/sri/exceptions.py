# facturacion/services/sri/exceptions.py
# -*- coding: utf-8 -*-
"""
Excepciones del cliente SRI.

Los rechazos del SRI (DEVUELTA / NO AUTORIZADO) y el tiempo agotado de la
consulta de autorización NO son excepciones: el workflow los devuelve como
estados de ResultadoProceso (RECHAZADO / PENDIENTE).
"""
from __future__ import annotations

from typing import Optional


class SRIError(Exception):
    """Excepción base para errores del cliente SRI."""


class DocumentoMalformadoError(SRIError):
    """El XML no tiene una clave de acceso utilizable (ausente, repetida o con DV inválido)."""


class CertificateError(SRIError):
    """Errores relacionados con certificado/carga de PKCS12."""


class CertificadoInvalidoError(CertificateError):
    """El PKCS12 no se pudo abrir (contraseña incorrecta, archivo corrupto o sin clave RSA)."""


class CertificadoExpiradoError(CertificateError):
    """La fecha actual está fuera de la vigencia del certificado."""


class FirmaError(CertificateError):
    """Error al construir la firma XAdES-BES con un certificado válido."""


class ErrorTransporteSRI(SRIError):
    """
    Falla de red, timeout o SOAP Fault al hablar con un Web Service del SRI.

    - origen: RECEPCION_NETWORK, RECEPCION_FAULT, AUTORIZACION_NETWORK, ...
    - causa: excepción original (requests / zeep).
    """

    def __init__(self, mensaje: str, origen: str, causa: Optional[BaseException] = None):
        self.mensaje = mensaje
        self.origen = origen
        self.causa = causa
        super().__init__(mensaje)

    def __str__(self) -> str:
        if self.causa is not None:
            return f"{self.mensaje} [{self.origen}]: {self.causa}"
        return f"{self.mensaje} [{self.origen}]"


class WorkflowError(SRIError):
    """Errores de orquestación SRI (validación previa al envío)."""


class ConfiguracionError(WorkflowError):
    """Combinación de parámetros no permitida (p. ej. producción sin certificado)."""
