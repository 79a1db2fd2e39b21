# facturacion/tests/factories.py
# -*- coding: utf-8 -*-
"""
Datos de prueba: certificados .p12 autofirmados (generados en memoria con
cryptography) y XML de factura con clave de acceso válida.
"""
from __future__ import annotations

import datetime
from functools import lru_cache
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID

from facturacion.services.sri.clave_acceso import generar_clave_acceso
from facturacion.services.sri.signer import CredencialFirma

PASSWORD = "Clave-Firma-2024"
RUC = "1790011223001"


@lru_cache(maxsize=None)
def _clave_rsa() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def crear_p12(
    password: str = PASSWORD,
    dias_validez: int = 365,
    desde: Optional[datetime.datetime] = None,
    usar_ec: bool = False,
) -> bytes:
    """Certificado autofirmado empaquetado como PKCS12."""
    if usar_ec:
        key = ec.generate_private_key(ec.SECP256R1())
    else:
        key = _clave_rsa()

    nombre = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "EC"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "EMPRESA TEST SA"),
            x509.NameAttribute(NameOID.COMMON_NAME, "FIRMA PRUEBAS SRI"),
        ]
    )
    desde = desde or datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(days=1)

    cert = (
        x509.CertificateBuilder()
        .subject_name(nombre)
        .issuer_name(nombre)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(desde)
        .not_valid_after(desde + datetime.timedelta(days=dias_validez))
        .sign(key, hashes.SHA256())
    )

    return pkcs12.serialize_key_and_certificates(
        b"firma",
        key,
        cert,
        None,
        BestAvailableEncryption(password.encode("utf-8")),
    )


@lru_cache(maxsize=None)
def p12_vigente() -> bytes:
    return crear_p12()


def credencial(password: str = PASSWORD) -> CredencialFirma:
    return CredencialFirma(p12=p12_vigente(), password=password)


def clave_factura(ambiente: str = "1", secuencial: str = "000000001") -> str:
    return generar_clave_acceso(
        "05072024",
        "01",
        RUC,
        ambiente,
        "001",
        "001",
        secuencial,
        codigo_numerico="12345678",
    )


def factura_xml(
    clave: Optional[str] = None,
    ambiente: str = "1",
    con_id: bool = True,
    importe_total: str = "11.50",
) -> str:
    clave = clave or clave_factura(ambiente)
    atributos = ' id="comprobante" version="1.1.0"' if con_id else ' version="1.1.0"'
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<factura{atributos}>
  <infoTributaria>
    <ambiente>{ambiente}</ambiente>
    <tipoEmision>1</tipoEmision>
    <razonSocial>EMPRESA TEST SA</razonSocial>
    <nombreComercial>EMPRESA TEST</nombreComercial>
    <ruc>{RUC}</ruc>
    <claveAcceso>{clave}</claveAcceso>
    <codDoc>01</codDoc>
    <estab>001</estab>
    <ptoEmi>001</ptoEmi>
    <secuencial>000000001</secuencial>
    <dirMatriz>Av. Amazonas N24-03, Quito</dirMatriz>
  </infoTributaria>
  <infoFactura>
    <fechaEmision>05/07/2024</fechaEmision>
    <tipoIdentificacionComprador>05</tipoIdentificacionComprador>
    <razonSocialComprador>CLIENTE PRUEBA</razonSocialComprador>
    <identificacionComprador>1710034065</identificacionComprador>
    <totalSinImpuestos>10.00</totalSinImpuestos>
    <totalDescuento>0.00</totalDescuento>
    <importeTotal>{importe_total}</importeTotal>
    <moneda>DOLAR</moneda>
  </infoFactura>
  <detalles>
    <detalle>
      <codigoPrincipal>P001</codigoPrincipal>
      <descripcion>Servicio técnico</descripcion>
      <cantidad>1.00</cantidad>
      <precioUnitario>10.00</precioUnitario>
      <descuento>0.00</descuento>
      <precioTotalSinImpuesto>10.00</precioTotalSinImpuesto>
    </detalle>
  </detalles>
</factura>
"""
