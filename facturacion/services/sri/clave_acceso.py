# facturacion/services/sri/clave_acceso.py
# -*- coding: utf-8 -*-
"""
Clave de acceso SRI (49 dígitos):

- modulo11: dígito verificador usando algoritmo SRI.
- generar_codigo_numerico: código numérico aleatorio de 8 dígitos.
- generar_clave_acceso: arma la clave a partir de sus campos.
- validar_clave_acceso / descomponer_clave_acceso: verificación y lectura.
- extraer_clave_acceso: localiza <claveAcceso> dentro del XML del comprobante.

Estas funciones NO dependen de Django.
"""
from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union

from lxml import etree

from facturacion.services.sri.exceptions import DocumentoMalformadoError


FechaTipo = Union[date, datetime, str]

LONGITUD_CLAVE_ACCESO = 49


class TipoComprobante(str, Enum):
    FACTURA = "01"
    LIQUIDACION_COMPRA = "03"
    NOTA_CREDITO = "04"
    NOTA_DEBITO = "05"
    GUIA_REMISION = "06"
    COMPROBANTE_RETENCION = "07"


class Ambiente(str, Enum):
    PRUEBAS = "1"
    PRODUCCION = "2"

    @classmethod
    def from_value(cls, value: Union["Ambiente", str]) -> "Ambiente":
        """
        Acepta '1'/'2', 'pruebas'/'produccion' (también 'test'/'production').
        """
        if isinstance(value, Ambiente):
            return value
        v = str(value or "").strip().lower()
        if v in ("1", "pruebas", "test"):
            return cls.PRUEBAS
        if v in ("2", "produccion", "producción", "production"):
            return cls.PRODUCCION
        raise ValueError(f"Ambiente no reconocido: {value!r}")


@dataclass(frozen=True)
class ComponentesClaveAcceso:
    fecha: date
    tipo_comprobante: str
    ruc: str
    ambiente: str
    establecimiento: str
    punto_emision: str
    secuencial: str
    codigo_numerico: str
    tipo_emision: str
    digito_verificador: str

    @property
    def serie(self) -> str:
        return f"{self.establecimiento}{self.punto_emision}"


@dataclass
class ValidacionClaveAcceso:
    valida: bool
    errores: List[str] = field(default_factory=list)
    componentes: Optional[ComponentesClaveAcceso] = None


def generar_codigo_numerico(longitud: int = 8) -> str:
    """
    Genera un código numérico aleatorio de `longitud` dígitos.
    El SRI usa 8 dígitos para la clave de acceso.
    """
    if longitud <= 0:
        raise ValueError("La longitud del código numérico debe ser mayor a 0.")
    return "".join(str(random.randint(0, 9)) for _ in range(longitud))


def modulo11(numero: str) -> int:
    """
    Calcula el dígito verificador usando el algoritmo Módulo 11 del SRI.

    - Se toman los dígitos de derecha a izquierda.
    - Se multiplican por la secuencia de factores: 2, 3, 4, 5, 6, 7 (y se repite).
    - DV = 11 - (suma % 11).
      - Si DV == 11 -> DV = 0
      - Si DV == 10 -> DV = 1
    """
    if not numero or not numero.isdigit():
        raise ValueError("El número para módulo 11 debe contener solo dígitos.")

    factores = [2, 3, 4, 5, 6, 7]

    suma = 0
    for i, digito_char in enumerate(reversed(numero)):
        suma += int(digito_char) * factores[i % len(factores)]

    dv = 11 - (suma % 11)
    if dv == 11:
        dv = 0
    elif dv == 10:
        dv = 1
    return dv


def _formatear_fecha_ddMMyyyy(fecha: FechaTipo) -> str:
    """
    Devuelve la fecha en formato ddMMyyyy. Acepta date, datetime,
    'ddmmaaaa' o 'dd/mm/aaaa' (se valida que sea una fecha real).
    """
    if isinstance(fecha, datetime):
        return fecha.date().strftime("%d%m%Y")
    if isinstance(fecha, date):
        return fecha.strftime("%d%m%Y")

    fecha_str = str(fecha or "").strip().replace("/", "").replace("-", "")
    if not re.fullmatch(r"\d{8}", fecha_str):
        raise ValueError("fecha debe tener formato ddmmaaaa.")
    try:
        datetime.strptime(fecha_str, "%d%m%Y")
    except ValueError as exc:
        raise ValueError(f"fecha no es una fecha de calendario válida: {fecha!r}") from exc
    return fecha_str


def _rellenar(valor: Union[str, int], longitud: int, campo: str) -> str:
    s = str(valor).strip()
    if not s.isdigit():
        raise ValueError(f"{campo} debe contener solo dígitos.")
    if len(s.lstrip("0")) > longitud:
        raise ValueError(f"{campo} no puede tener más de {longitud} dígitos.")
    return s.zfill(longitud)[-longitud:]


def generar_clave_acceso(
    fecha: FechaTipo,
    tipo_comprobante: Union[TipoComprobante, str],
    ruc: str,
    ambiente: Union[Ambiente, str],
    establecimiento: Union[str, int],
    punto_emision: Union[str, int],
    secuencial: Union[str, int],
    codigo_numerico: Optional[str] = None,
    tipo_emision: str = "1",
) -> str:
    """
    Genera la clave de acceso SRI de 49 dígitos.

    Estructura:
    - Fecha de emisión (ddmmaaaa)                     -> 8 dígitos
    - Tipo de comprobante (01, 03, 04, 05, 06, 07)    -> 2 dígitos
    - RUC                                             -> 13 dígitos
    - Tipo de ambiente (1=pruebas, 2=producción)      -> 1 dígito
    - Serie (establecimiento + punto de emisión)      -> 6 dígitos
    - Secuencial                                      -> 9 dígitos
    - Código numérico                                 -> 8 dígitos
    - Tipo de emisión (1=normal)                      -> 1 dígito
    - Dígito verificador (Módulo 11)                  -> 1 dígito
    """
    fecha_str = _formatear_fecha_ddMMyyyy(fecha)

    tipo = tipo_comprobante.value if isinstance(tipo_comprobante, TipoComprobante) else str(tipo_comprobante).strip()
    try:
        tipo = TipoComprobante(tipo).value
    except ValueError as exc:
        raise ValueError(f"tipo_comprobante no soportado: {tipo_comprobante!r}") from exc

    ruc = str(ruc).strip()
    if not re.fullmatch(r"\d{13}", ruc):
        raise ValueError("ruc debe tener exactamente 13 dígitos.")

    ambiente_str = Ambiente.from_value(ambiente).value

    estab = _rellenar(establecimiento, 3, "establecimiento")
    pto = _rellenar(punto_emision, 3, "punto_emision")
    secuencial_str = _rellenar(secuencial, 9, "secuencial")

    if codigo_numerico is None:
        codigo_numerico = generar_codigo_numerico(8)
    codigo_numerico_str = _rellenar(codigo_numerico, 8, "codigo_numerico")

    tipo_emision = str(tipo_emision).strip()
    if not re.fullmatch(r"\d", tipo_emision):
        raise ValueError("tipo_emision debe ser un dígito (ej. '1').")

    cuerpo = (
        fecha_str
        + tipo
        + ruc
        + ambiente_str
        + estab
        + pto
        + secuencial_str
        + codigo_numerico_str
        + tipo_emision
    )

    clave_acceso = cuerpo + str(modulo11(cuerpo))

    if len(clave_acceso) != LONGITUD_CLAVE_ACCESO:
        raise ValueError(
            f"La clave de acceso debe tener 49 dígitos, pero se generó con {len(clave_acceso)}."
        )

    return clave_acceso


def descomponer_clave_acceso(clave: str) -> ComponentesClaveAcceso:
    """
    Separa una clave de 49 dígitos en sus campos. No verifica el dígito
    verificador (ver validar_clave_acceso).
    """
    clave = str(clave or "").strip()
    if not re.fullmatch(r"\d{49}", clave):
        raise ValueError("La clave de acceso debe tener exactamente 49 dígitos.")

    return ComponentesClaveAcceso(
        fecha=datetime.strptime(clave[0:8], "%d%m%Y").date(),
        tipo_comprobante=clave[8:10],
        ruc=clave[10:23],
        ambiente=clave[23],
        establecimiento=clave[24:27],
        punto_emision=clave[27:30],
        secuencial=clave[30:39],
        codigo_numerico=clave[39:47],
        tipo_emision=clave[47],
        digito_verificador=clave[48],
    )


def validar_clave_acceso(clave: Optional[str]) -> ValidacionClaveAcceso:
    """
    Verifica longitud, dígito verificador, tipo de comprobante, ambiente y fecha.
    Nunca lanza excepción: los problemas se devuelven en `errores`.
    """
    clave = str(clave or "").strip()
    errores: List[str] = []

    if not re.fullmatch(r"\d{49}", clave):
        errores.append(
            f"La clave de acceso debe tener exactamente 49 dígitos (recibidos {len(clave)})."
        )
        return ValidacionClaveAcceso(valida=False, errores=errores)

    dv_esperado = str(modulo11(clave[:48]))
    if clave[48] != dv_esperado:
        errores.append(
            f"Dígito verificador inválido: se esperaba {dv_esperado} y la clave trae {clave[48]}."
        )

    if clave[8:10] not in {t.value for t in TipoComprobante}:
        errores.append(f"Tipo de comprobante desconocido: {clave[8:10]}.")

    if clave[23] not in (Ambiente.PRUEBAS.value, Ambiente.PRODUCCION.value):
        errores.append(f"Ambiente inválido en la clave de acceso: {clave[23]}.")

    componentes = None
    try:
        componentes = descomponer_clave_acceso(clave)
    except ValueError:
        errores.append(f"Fecha de emisión inválida en la clave de acceso: {clave[:8]}.")

    return ValidacionClaveAcceso(
        valida=not errores,
        errores=errores,
        componentes=componentes,
    )


def extraer_clave_acceso(xml: Union[str, bytes]) -> str:
    """
    Localiza el único elemento <claveAcceso> del comprobante (sin importar
    namespace) y devuelve su texto.
    """
    xml_bytes = xml.encode("utf-8") if isinstance(xml, str) else xml
    if not xml_bytes or not xml_bytes.strip():
        raise DocumentoMalformadoError("El XML del comprobante está vacío.")

    try:
        root = etree.fromstring(xml_bytes)
    except etree.XMLSyntaxError as exc:
        raise DocumentoMalformadoError(f"XML mal formado: {exc}") from exc

    nodos = root.xpath("//*[local-name()='claveAcceso']")
    if not nodos:
        raise DocumentoMalformadoError("No se encontró la clave de acceso en el XML.")
    if len(nodos) > 1:
        raise DocumentoMalformadoError(
            f"El XML contiene {len(nodos)} elementos claveAcceso; se esperaba uno."
        )

    clave = (nodos[0].text or "").strip()
    if not clave:
        raise DocumentoMalformadoError("El elemento claveAcceso está vacío.")
    return clave
