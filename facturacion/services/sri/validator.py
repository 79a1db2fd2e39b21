# facturacion/services/sri/validator.py
from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from lxml import etree

logger = logging.getLogger("facturacion.sri")

# Raíces de comprobante aceptadas por Recepción
ELEMENTOS_RAIZ = (
    "factura",
    "liquidacionCompra",
    "notaCredito",
    "notaDebito",
    "guiaRemision",
    "comprobanteRetencion",
)

# Campos obligatorios de <infoTributaria>
CAMPOS_INFO_TRIBUTARIA = (
    "ambiente",
    "tipoEmision",
    "razonSocial",
    "nombreComercial",
    "ruc",
    "claveAcceso",
    "codDoc",
    "estab",
    "ptoEmi",
    "secuencial",
    "dirMatriz",
)

# Solo estos comprobantes llevan <detalles> e <importeTotal>
RAICES_CON_DETALLES = ("factura", "liquidacionCompra", "notaCredito")
RAICES_CON_IMPORTE_TOTAL = ("factura", "liquidacionCompra")


def _texto(root: etree._Element, nombre: str) -> Optional[str]:
    nodos = root.xpath(f"//*[local-name()='{nombre}']")
    if not nodos:
        return None
    return (nodos[0].text or "").strip()


def validar_estructura(xml: Union[bytes, str]) -> List[str]:
    """
    Revisión estructural mínima del comprobante antes de firmarlo.

    No reemplaza la validación XSD del SRI: detecta a tiempo los errores
    más comunes (campos de infoTributaria vacíos, RUC o clave con longitud
    incorrecta, comprobante sin detalles o con total en cero).

    Retorna la lista de errores; vacía si el XML pasa la revisión.
    """
    if isinstance(xml, str):
        xml_bytes = xml.encode("utf-8")
    else:
        xml_bytes = xml

    try:
        root = etree.fromstring(xml_bytes)
    except etree.XMLSyntaxError as exc:
        return [f"XML mal formado: {exc}"]

    errores: List[str] = []

    raiz = etree.QName(root).localname
    if raiz not in ELEMENTOS_RAIZ:
        errores.append(
            f"Elemento raíz no reconocido: {raiz}. Se esperaba uno de: {', '.join(ELEMENTOS_RAIZ)}"
        )

    for campo in CAMPOS_INFO_TRIBUTARIA:
        if not _texto(root, campo):
            errores.append(f"Campo obligatorio faltante o vacío: {campo}")

    ruc = _texto(root, "ruc")
    if ruc and not re.fullmatch(r"\d{13}", ruc):
        errores.append("RUC debe tener exactamente 13 dígitos")

    clave = _texto(root, "claveAcceso")
    if clave and not re.fullmatch(r"\d{49}", clave):
        errores.append("Clave de acceso debe tener exactamente 49 dígitos")

    if raiz in RAICES_CON_DETALLES:
        detalles = root.xpath("//*[local-name()='detalles']/*[local-name()='detalle']")
        if not detalles:
            errores.append("El comprobante debe contener al menos un detalle")

    if raiz in RAICES_CON_IMPORTE_TOTAL:
        total = _texto(root, "importeTotal")
        try:
            if total is None or Decimal(total) <= 0:
                errores.append("importeTotal debe ser mayor a 0")
        except InvalidOperation:
            errores.append(f"importeTotal no es un número válido: {total}")

    if errores:
        logger.info("Validación estructural con %s errores: %s", len(errores), errores)

    return errores
