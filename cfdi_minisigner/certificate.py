"""
Carga del certificado de sello digital (CSD)

El certificado llega en DER (archivo .cer del SAT). Se embebe en base64 en el
atributo Certificado y su número de serie se convierte en NoCertificado.

NoCertificado NO es el serial en decimal ni en hexadecimal: son los bytes del
INTEGER del serial (codificación DER, complemento a dos mínimo) leídos como
caracteres, uno por byte. Los CSD del SAT guardan dígitos ASCII en el serial,
por eso el resultado se ve como "30001000000300023708".
"""
import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .exceptions import InvalidCertificate
from .models import Comprobante

logger = logging.getLogger(__name__)

CertificateSource = Union[bytes, bytearray, str, Path]


@dataclass(frozen=True)
class CertificadoCfdi:
    no_certificado: str
    certificado: str
    pem: str
    serial_bytes: bytes
    certificate: x509.Certificate


def serial_number_bytes(serial_number: int) -> bytes:
    """Bytes del contenido DER del INTEGER del serial (con 0x00 inicial si el bit alto está prendido)."""
    length = serial_number.bit_length() // 8 + 1
    return serial_number.to_bytes(length, "big", signed=True)


def serial_to_no_certificado(serial_number: int) -> str:
    return "".join(chr(b) for b in serial_number_bytes(serial_number))


def _read_source(source: CertificateSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    path = Path(source).expanduser()
    try:
        return path.read_bytes()
    except OSError as e:
        raise InvalidCertificate(f"No se pudo leer el certificado {path}: {e}") from e


def load_certificate(source: CertificateSource) -> CertificadoCfdi:
    """
    Carga un certificado X.509 DER.

    Args:
        source: Bytes DER o ruta al archivo .cer

    Raises:
        InvalidCertificate: Si no es un X.509 DER bien formado
    """
    der = _read_source(source)
    if not der:
        raise InvalidCertificate("Certificado vacío")

    try:
        certificate = x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise InvalidCertificate(f"Certificado X.509 DER inválido: {e}") from e

    serial = serial_number_bytes(certificate.serial_number)
    info = CertificadoCfdi(
        no_certificado="".join(chr(b) for b in serial),
        certificado=base64.b64encode(der).decode("ascii"),
        pem=certificate.public_bytes(serialization.Encoding.PEM).decode("ascii"),
        serial_bytes=serial,
        certificate=certificate,
    )
    logger.debug(f"Certificado cargado. Emisor: {certificate.issuer.rfc4514_string()}, serial={serial.hex()}")
    return info


def certify(comprobante: Comprobante, source: CertificateSource) -> CertificadoCfdi:
    """Carga el certificado y fija NoCertificado/Certificado en el comprobante."""
    info = load_certificate(source)
    bad = [ch for ch in info.no_certificado if ord(ch) < 0x20 and ch not in "\t\n\r"]
    if bad:
        raise InvalidCertificate(
            f"NoCertificado no representable en XML (serial={info.serial_bytes.hex()})",
            code="serial_not_xml",
        )
    comprobante.set_certificado(info.no_certificado, info.certificado)
    logger.info(f"Comprobante certificado: NoCertificado={info.no_certificado!r}")
    return info
