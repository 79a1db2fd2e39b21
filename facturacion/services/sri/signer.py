# facturacion/services/sri/signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from django.utils import timezone

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12

from lxml import etree

from facturacion.services.sri.clave_acceso import extraer_clave_acceso
from facturacion.services.sri.exceptions import (
    CertificadoExpiradoError,
    CertificadoInvalidoError,
    CertificateError,
    DocumentoMalformadoError,
    FirmaError,
)

logger = logging.getLogger("facturacion.sri")

DS_NS = "http://www.w3.org/2000/09/xmldsig#"
XADES_NS = "http://uri.etsi.org/01903/v1.3.2#"

NAMESPACES = {
    "ds": DS_NS,
    "etsi": XADES_NS,
}

C14N_URI = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ENVELOPED_URI = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
SIGNED_PROPERTIES_TYPE = "http://uri.etsi.org/01903#SignedProperties"

# Alerta de expiración del certificado (días)
DIAS_ALERTA_EXPIRACION = 30


@dataclass(frozen=True)
class AlgoritmoFirma:
    """Par digest / firma RSA usado en toda la firma XAdES."""

    nombre: str
    digest_uri: str
    firma_uri: str
    hash_factory: Callable[[], hashes.HashAlgorithm]

    def digest(self, data: bytes) -> str:
        return base64.b64encode(hashlib.new(self.nombre, data).digest()).decode("ascii")


ALGORITMOS: Dict[str, AlgoritmoFirma] = {
    # Ficha técnica SRI vigente: RSA-SHA1
    "sha1": AlgoritmoFirma(
        nombre="sha1",
        digest_uri="http://www.w3.org/2000/09/xmldsig#sha1",
        firma_uri="http://www.w3.org/2000/09/xmldsig#rsa-sha1",
        hash_factory=hashes.SHA1,
    ),
    "sha256": AlgoritmoFirma(
        nombre="sha256",
        digest_uri="http://www.w3.org/2001/04/xmlenc#sha256",
        firma_uri="http://www.w3.org/2001/04/xmldsig-more#rsa-sha256",
        hash_factory=hashes.SHA256,
    ),
}


def get_algoritmo(algoritmo: Union[str, AlgoritmoFirma]) -> AlgoritmoFirma:
    if isinstance(algoritmo, AlgoritmoFirma):
        return algoritmo
    try:
        return ALGORITMOS[str(algoritmo).strip().lower()]
    except KeyError:
        raise ValueError(
            f"Algoritmo de firma no soportado: {algoritmo!r}. Opciones: {', '.join(ALGORITMOS)}"
        ) from None


@dataclass(frozen=True)
class CredencialFirma:
    """
    Certificado .p12 + contraseña, entregados por el llamador en cada envío.
    No se guarda en disco ni en caché.
    """

    p12: bytes = field(repr=False)
    password: str = field(repr=False)

    @classmethod
    def from_file(cls, path: Union[str, Path], password: str) -> "CredencialFirma":
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise CertificadoInvalidoError(
                f"Error leyendo archivo de certificado: {exc}"
            ) from exc
        return cls(p12=data, password=password)


@dataclass
class InfoCertificado:
    valido: bool
    no_antes: Optional[datetime] = None
    no_despues: Optional[datetime] = None
    sujeto: Optional[str] = None
    emisor: Optional[str] = None
    numero_serie: Optional[int] = None
    dias_para_expirar: Optional[int] = None
    alerta_expiracion: bool = False
    error: Optional[str] = None


def _load_pkcs12(
    p12: bytes,
    password: str,
) -> Tuple[rsa.RSAPrivateKey, x509.Certificate, List[x509.Certificate]]:
    """
    Abre el contenedor PKCS12 (.p12) y devuelve:
    - private_key (RSA)
    - certificate (x509.Certificate)
    - additional_certs (lista)
    """
    if not p12:
        raise CertificadoInvalidoError("No se recibió el archivo de certificado .p12.")

    try:
        private_key, cert, additional_certs = pkcs12.load_key_and_certificates(
            p12,
            (password or "").encode("utf-8"),
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        logger.warning("No se pudo abrir el PKCS12: %s", exc)
        raise CertificadoInvalidoError(
            "No se pudo abrir el certificado .p12: contraseña incorrecta o archivo inválido."
        ) from exc

    if private_key is None or cert is None:
        raise CertificadoInvalidoError(
            "No se pudo extraer clave privada/certificado desde el archivo PKCS12."
        )

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise CertificadoInvalidoError(
            "El certificado debe contener una clave RSA (requerida por el SRI)."
        )

    return private_key, cert, list(additional_certs or [])


def validar_certificado(
    p12: bytes,
    password: str,
    ahora: Optional[datetime] = None,
) -> InfoCertificado:
    """
    Revisa el .p12 antes de firmar: contraseña, vigencia y días restantes.

    No lanza excepción; los problemas quedan en InfoCertificado.error.
    """
    try:
        _private_key, cert, _additional = _load_pkcs12(p12, password)
    except CertificadoInvalidoError as exc:
        return InfoCertificado(valido=False, error=str(exc))

    ahora = ahora or timezone.now()
    no_antes = cert.not_valid_before_utc
    no_despues = cert.not_valid_after_utc
    dias = (no_despues - ahora).days

    info = InfoCertificado(
        valido=no_antes <= ahora <= no_despues,
        no_antes=no_antes,
        no_despues=no_despues,
        sujeto=cert.subject.rfc4514_string(),
        emisor=cert.issuer.rfc4514_string(),
        numero_serie=cert.serial_number,
        dias_para_expirar=dias,
    )

    if ahora < no_antes:
        info.error = f"Certificado aún no vigente. Válido desde {no_antes} hasta {no_despues}"
    elif ahora > no_despues:
        info.error = f"Certificado vencido. Válido desde {no_antes} hasta {no_despues}"
    elif dias <= DIAS_ALERTA_EXPIRACION:
        info.alerta_expiracion = True
        logger.warning("El certificado %s expira en %s días", info.sujeto, dias)

    return info


def exigir_certificado_vigente(info: InfoCertificado) -> InfoCertificado:
    if info.valido:
        return info
    if info.no_despues is None:
        raise CertificadoInvalidoError(info.error or "Certificado inválido.")
    raise CertificadoExpiradoError(info.error or "Certificado fuera de vigencia.")


def ids_firma(clave_acceso: str) -> Dict[str, str]:
    """Ids de los nodos de la firma, todos derivados de la clave de acceso."""
    return {
        "signature": f"Signature{clave_acceso}",
        "signed_info": f"Signature-SignedInfo{clave_acceso}",
        "signed_properties_ref": f"SignedPropertiesID{clave_acceso}",
        "signed_properties": f"Signature{clave_acceso}-SignedProperties",
        "signature_value": f"SignatureValue{clave_acceso}",
        "certificate": f"Certificate{clave_acceso}",
        "reference": f"Reference-ID-{clave_acceso}",
        "object": f"Signature{clave_acceso}-Object",
    }


def _canonicalize(element: etree._Element) -> bytes:
    """
    Canonicalización C14N INCLUSIVA (no exclusiva).
    """
    return etree.tostring(
        element,
        method="c14n",
        exclusive=False,
        with_comments=False,
    )


def _b64_entero(valor: int) -> str:
    return base64.b64encode(valor.to_bytes((valor.bit_length() + 7) // 8, "big")).decode("ascii")


def _b64_certificado(cert: x509.Certificate) -> str:
    return base64.b64encode(cert.public_bytes(Encoding.DER)).decode("ascii")


def _reparsear(root: etree._Element) -> etree._Element:
    # Digest sobre el nodo tal como lo verá el SRI (serializar + reparsear)
    return etree.fromstring(etree.tostring(root, encoding="UTF-8"))


def _buscar_por_id(root: etree._Element, node_id: str) -> etree._Element:
    encontrados = root.xpath(".//*[@Id=$node_id]", node_id=node_id)
    if not encontrados:
        raise FirmaError(f"No se encontró el nodo Id={node_id} en el XML firmado.")
    return encontrados[0]


def _sub(parent: etree._Element, ns: str, tag: str, text: Optional[str] = None, **attrs: str) -> etree._Element:
    elem = etree.SubElement(parent, f"{{{ns}}}{tag}", **attrs)
    if text is not None:
        elem.text = text
    return elem


def _reference(
    parent: etree._Element,
    alg: AlgoritmoFirma,
    digest: str = "",
    enveloped: bool = False,
    **attrs: str,
) -> etree._Element:
    reference = _sub(parent, DS_NS, "Reference", **attrs)
    if enveloped:
        transforms = _sub(reference, DS_NS, "Transforms")
        _sub(transforms, DS_NS, "Transform", Algorithm=ENVELOPED_URI)
    _sub(reference, DS_NS, "DigestMethod", Algorithm=alg.digest_uri)
    _sub(reference, DS_NS, "DigestValue", digest)
    return reference


def _signed_properties(
    parent: etree._Element,
    cert: x509.Certificate,
    ids: Dict[str, str],
    alg: AlgoritmoFirma,
    fecha_firma: datetime,
) -> etree._Element:
    """
    Crea el nodo <etsi:SignedProperties> requerido por XAdES-BES.
    """
    signed_props = _sub(parent, XADES_NS, "SignedProperties", Id=ids["signed_properties"])
    sig_props = _sub(signed_props, XADES_NS, "SignedSignatureProperties")
    _sub(sig_props, XADES_NS, "SigningTime", fecha_firma.isoformat(timespec="seconds"))

    cert_elem = _sub(_sub(sig_props, XADES_NS, "SigningCertificate"), XADES_NS, "Cert")
    cert_digest = _sub(cert_elem, XADES_NS, "CertDigest")
    _sub(cert_digest, DS_NS, "DigestMethod", Algorithm=alg.digest_uri)
    _sub(cert_digest, DS_NS, "DigestValue", alg.digest(cert.public_bytes(Encoding.DER)))

    issuer_serial = _sub(cert_elem, XADES_NS, "IssuerSerial")
    _sub(issuer_serial, DS_NS, "X509IssuerName", cert.issuer.rfc4514_string())
    _sub(issuer_serial, DS_NS, "X509SerialNumber", str(cert.serial_number))

    data_props = _sub(signed_props, XADES_NS, "SignedDataObjectProperties")
    data_format = _sub(
        data_props,
        XADES_NS,
        "DataObjectFormat",
        ObjectReference=f"#{ids['reference']}",
    )
    _sub(data_format, XADES_NS, "Description", "contenido comprobante")
    _sub(data_format, XADES_NS, "MimeType", "text/xml")
    return signed_props


def _construir_firma(
    root: etree._Element,
    private_key: rsa.RSAPrivateKey,
    cert: x509.Certificate,
    additional_certs: List[x509.Certificate],
    clave_acceso: str,
    alg: AlgoritmoFirma,
    fecha_firma: datetime,
) -> etree._Element:
    """
    Agrega <ds:Signature> al final de `root` y devuelve el nodo.

    Orden de hijos en <ds:Signature>:
        1. <ds:SignedInfo>
        2. <ds:SignatureValue>
        3. <ds:KeyInfo>
        4. <ds:Object> (QualifyingProperties / SignedProperties)
    """
    ids = ids_firma(clave_acceso)

    # Digest del comprobante SIN firma (equivale a la transformada enveloped)
    node_id = root.get("id")
    documento_uri = f"#{node_id}" if node_id else ""
    documento_digest = alg.digest(_canonicalize(root))

    signature = etree.SubElement(
        root,
        f"{{{DS_NS}}}Signature",
        nsmap=NAMESPACES,
        Id=ids["signature"],
    )

    signed_info = _sub(signature, DS_NS, "SignedInfo", Id=ids["signed_info"])
    _sub(signed_info, DS_NS, "CanonicalizationMethod", Algorithm=C14N_URI)
    _sub(signed_info, DS_NS, "SignatureMethod", Algorithm=alg.firma_uri)
    ref_props = _reference(
        signed_info,
        alg,
        Id=ids["signed_properties_ref"],
        Type=SIGNED_PROPERTIES_TYPE,
        URI=f"#{ids['signed_properties']}",
    )
    ref_cert = _reference(signed_info, alg, URI=f"#{ids['certificate']}")
    _reference(
        signed_info,
        alg,
        documento_digest,
        enveloped=True,
        Id=ids["reference"],
        URI=documento_uri,
    )

    signature_value = _sub(signature, DS_NS, "SignatureValue", Id=ids["signature_value"])

    key_info = _sub(signature, DS_NS, "KeyInfo", Id=ids["certificate"])
    x509_data = _sub(key_info, DS_NS, "X509Data")
    _sub(x509_data, DS_NS, "X509Certificate", _b64_certificado(cert))
    for additional_cert in additional_certs:
        _sub(x509_data, DS_NS, "X509Certificate", _b64_certificado(additional_cert))

    public_numbers = cert.public_key().public_numbers()
    rsa_key_value = _sub(_sub(key_info, DS_NS, "KeyValue"), DS_NS, "RSAKeyValue")
    _sub(rsa_key_value, DS_NS, "Modulus", _b64_entero(public_numbers.n))
    _sub(rsa_key_value, DS_NS, "Exponent", _b64_entero(public_numbers.e))

    ds_object = _sub(signature, DS_NS, "Object", Id=ids["object"])
    qualifying_props = _sub(
        ds_object,
        XADES_NS,
        "QualifyingProperties",
        Target=f"#{ids['signature']}",
    )
    _signed_properties(qualifying_props, cert, ids, alg, fecha_firma)

    # Digests de SignedProperties y KeyInfo, canonicalizados en su contexto real
    reparsed = _reparsear(root)
    ref_props.find(f"{{{DS_NS}}}DigestValue").text = alg.digest(
        _canonicalize(_buscar_por_id(reparsed, ids["signed_properties"]))
    )
    ref_cert.find(f"{{{DS_NS}}}DigestValue").text = alg.digest(
        _canonicalize(_buscar_por_id(reparsed, ids["certificate"]))
    )

    # SignatureValue: firma RSA sobre SignedInfo canonicalizado
    reparsed = _reparsear(root)
    signed_info_canonical = _canonicalize(_buscar_por_id(reparsed, ids["signed_info"]))
    signature_bytes = private_key.sign(
        signed_info_canonical,
        padding.PKCS1v15(),
        alg.hash_factory(),
    )
    signature_value.text = base64.b64encode(signature_bytes).decode("ascii")

    return signature


def _insertar_antes_del_cierre(xml: str, root: etree._Element, bloque: str) -> str:
    """
    Inserta `bloque` inmediatamente antes de la etiqueta de cierre del nodo
    raíz. El resto del texto no cambia.
    """
    local_name = etree.QName(root).localname
    nombre = f"{root.prefix}:{local_name}" if root.prefix else local_name
    cierres = list(re.finditer(rf"</{re.escape(nombre)}\s*>", xml))
    if not cierres:
        raise DocumentoMalformadoError(
            f"No se encontró la etiqueta de cierre </{nombre}> en el XML."
        )
    pos = cierres[-1].start()
    return xml[:pos] + bloque + xml[pos:]


def firmar_xml(
    xml: str,
    credencial: CredencialFirma,
    algoritmo: Union[str, AlgoritmoFirma] = "sha1",
    fecha_firma: Optional[datetime] = None,
) -> str:
    """
    Firma un XML de comprobante electrónico usando XAdES-BES compatible SRI.

    - CanonicalizationMethod: C14N inclusivo
    - SignatureMethod / DigestMethod: según `algoritmo` (sha1 por defecto)
    - Referencias: SignedProperties, KeyInfo (certificado) y el comprobante
    - Ids derivados de la clave de acceso del comprobante

    Devuelve el mismo texto recibido con <ds:Signature> insertado antes del
    cierre del nodo raíz.
    """
    if not xml or not xml.strip():
        raise ValueError("xml no puede ser vacío al firmar.")

    alg = get_algoritmo(algoritmo)
    clave_acceso = extraer_clave_acceso(xml)
    root = etree.fromstring(xml.encode("utf-8"))

    private_key, cert, additional_certs = _load_pkcs12(credencial.p12, credencial.password)

    try:
        signature = _construir_firma(
            root,
            private_key,
            cert,
            additional_certs,
            clave_acceso,
            alg,
            fecha_firma or timezone.localtime(),
        )
        bloque = etree.tostring(signature, encoding="unicode", with_tail=False)
    except CertificateError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Error al firmar XML con XAdES-BES (clave=%s): %s", clave_acceso, exc)
        raise FirmaError(f"Error al firmar el XML: {exc}") from exc
    finally:
        del private_key

    xml_firmado = _insertar_antes_del_cierre(xml, root, bloque)

    logger.info(
        "XML firmado con XAdES-BES (RSA-%s) clave=%s",
        alg.nombre.upper(),
        clave_acceso,
    )
    return xml_firmado
