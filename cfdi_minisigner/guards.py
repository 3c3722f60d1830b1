from __future__ import annotations

import base64
import binascii
from typing import List

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from lxml import etree

from .canonical import Canonicalizer
from .certificate import serial_to_no_certificado
from .serializer import CFDI_NS, CFDI_SCHEMA_LOCATION, CFDI_VERSION, ROOT_CHILDREN_ORDER, XSI_NS


def _local(tag: str) -> str:
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def _load_comprobante(xml_bytes: bytes, *, context: str = "") -> etree._Element:
    try:
        root = etree.fromstring(xml_bytes)
    except etree.XMLSyntaxError as e:
        raise RuntimeError(f"[cfdi_guard] XML inválido (parse). {context} err={e}")
    if _local(root.tag) != "Comprobante":
        raise RuntimeError(f"[cfdi_guard] La raíz no es <Comprobante>: {_local(root.tag)!r}. {context}")
    return root


def _load_embedded_certificate(root: etree._Element, *, context: str = "") -> x509.Certificate:
    certificado = (root.get("Certificado") or "").strip()
    if not certificado:
        raise RuntimeError(f"[cfdi_guard] Comprobante sin atributo Certificado. {context}")
    try:
        der = base64.b64decode(certificado, validate=True)
        return x509.load_der_x509_certificate(der)
    except (binascii.Error, ValueError) as e:
        raise RuntimeError(f"[cfdi_guard] Certificado embebido inválido. {context} err={e}")


def assert_comprobante_children_order(xml_bytes: bytes, *, context: str = "") -> None:
    """
    Guardrail (no muta el XML):
      - hijos de Comprobante solo de ROOT_CHILDREN_ORDER, sin repetir, en ese orden
      - Emisor, Receptor y Conceptos presentes
    """
    root = _load_comprobante(xml_bytes, context=context)

    children: List[str] = [_local(c.tag) for c in root if isinstance(c.tag, str)]
    unknown = [c for c in children if c not in ROOT_CHILDREN_ORDER]
    if unknown:
        raise RuntimeError(f"[cfdi_guard] Hijos desconocidos en Comprobante: {unknown}. {context}")

    expected = [name for name in ROOT_CHILDREN_ORDER if name in children]
    if children != expected:
        raise RuntimeError(
            "[cfdi_guard] Orden de Comprobante incorrecto.\n"
            f"  {context}\n"
            f"  actual:   {children}\n"
            f"  esperado: {expected}"
        )

    missing = [name for name in ("Emisor", "Receptor", "Conceptos") if name not in children]
    if missing:
        raise RuntimeError(f"[cfdi_guard] Faltan nodos obligatorios: {missing}. {context}")


def assert_schema_location_and_namespace(xml_bytes: bytes, *, context: str = "") -> None:
    root = _load_comprobante(xml_bytes, context=context)

    ns = etree.QName(root).namespace or ""
    if ns != CFDI_NS:
        raise RuntimeError(f"[cfdi_guard] Namespace de Comprobante inválido: {ns!r}. {context}")

    version = root.get("Version")
    if version != CFDI_VERSION:
        raise RuntimeError(f"[cfdi_guard] Version inválida: {version!r} (esperado {CFDI_VERSION}). {context}")

    schema_location = root.get(f"{{{XSI_NS}}}schemaLocation")
    if schema_location is None:
        raise RuntimeError(f"[cfdi_guard] Comprobante no tiene xsi:schemaLocation. {context}")

    tokens = schema_location.split()
    if len(tokens) < 2 or len(tokens) % 2 != 0:
        raise RuntimeError(f"[cfdi_guard] xsi:schemaLocation inválido: tokens={tokens}. {context}")
    expected_pair = CFDI_SCHEMA_LOCATION.split()
    pairs = [tokens[i:i + 2] for i in range(0, len(tokens), 2)]
    if expected_pair not in pairs:
        raise RuntimeError(
            f"[cfdi_guard] xsi:schemaLocation no contiene {CFDI_SCHEMA_LOCATION!r}: {tokens}. {context}"
        )


def assert_no_certificado_matches_certificado(xml_bytes: bytes, *, context: str = "") -> None:
    root = _load_comprobante(xml_bytes, context=context)
    certificate = _load_embedded_certificate(root, context=context)

    no_certificado = root.get("NoCertificado")
    expected = serial_to_no_certificado(certificate.serial_number)
    if no_certificado != expected:
        raise RuntimeError(
            f"[cfdi_guard] NoCertificado {no_certificado!r} no corresponde al certificado ({expected!r}). {context}"
        )


def verify_sello(xml_bytes: bytes, canonicalizer: Canonicalizer, *, context: str = "") -> bool:
    """
    Recalcula la cadena original sin el atributo Sello y verifica la firma
    RSA-SHA256 con la llave pública del certificado embebido.
    """
    root = _load_comprobante(xml_bytes, context=context)
    sello = (root.get("Sello") or "").strip()
    if not sello:
        raise RuntimeError(f"[cfdi_guard] Comprobante sin Sello. {context}")

    certificate = _load_embedded_certificate(root, context=context)
    public_key = certificate.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise RuntimeError(f"[cfdi_guard] El certificado no tiene llave RSA. {context}")

    try:
        signature = base64.b64decode(sello, validate=True)
    except binascii.Error:
        return False

    del root.attrib["Sello"]
    unsigned = etree.tostring(root.getroottree(), xml_declaration=True, encoding="UTF-8")
    cadena = canonicalizer.canonicalize(unsigned)

    try:
        public_key.verify(signature, cadena.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


def run_sealed_guardrails(xml_bytes: bytes, canonicalizer: Canonicalizer, *, context: str = "") -> None:
    """Ejecuta todos los guardrails sobre un CFDI sellado."""
    assert_comprobante_children_order(xml_bytes, context=context)
    assert_schema_location_and_namespace(xml_bytes, context=context)
    assert_no_certificado_matches_certificado(xml_bytes, context=context)
    if not verify_sello(xml_bytes, canonicalizer, context=context):
        raise RuntimeError(f"[cfdi_guard] El Sello no corresponde a la cadena original. {context}")
