"""
Sello digital del CFDI

Requisitos del SAT:
- RSA con padding PKCS#1 v1.5
- Digest SHA-256 ("RSA-SHA256")
- Sello = base64 de los bytes crudos de la firma sobre la cadena original (UTF-8)
"""
import base64
import logging
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .exceptions import InvalidState, SigningFailed
from .keys import CryptographyKeyDecryptor, KeyDecryptor, KeySource
from .models import Comprobante, EstadoDocumento

logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHM = "RSA-SHA256"


def load_signing_key(pem: str) -> rsa.RSAPrivateKey:
    try:
        private_key = serialization.load_pem_private_key(pem.strip().encode("ascii"), password=None)
    except (ValueError, TypeError, UnicodeEncodeError, UnsupportedAlgorithm) as e:
        raise SigningFailed(f"Llave privada descifrada inválida: {type(e).__name__}: {e}") from e
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise SigningFailed(f"La llave privada debe ser RSA (recibida {type(private_key).__name__})")
    return private_key


def sign_with_pem(cadena: str, pem: str) -> str:
    """Firma la cadena original con una llave PEM sin cifrar y devuelve el sello en base64."""
    private_key = load_signing_key(pem)
    try:
        signature = private_key.sign(cadena.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningFailed(f"Error al firmar con {SIGNATURE_ALGORITHM}: {e}") from e
    return base64.b64encode(signature).decode("ascii")


class Signer:
    """Descifra la llave, firma la cadena original y fija el Sello."""

    def __init__(self, key_decryptor: Optional[KeyDecryptor] = None):
        self.key_decryptor = key_decryptor or CryptographyKeyDecryptor()

    def sign(self, cadena: str, encrypted_key: KeySource, password: str) -> str:
        """
        Args:
            cadena: Cadena original
            encrypted_key: Llave PKCS#8 cifrada (bytes o ruta al .key)
            password: Contraseña de la llave

        Raises:
            KeyDecryptionFailed: Contraseña incorrecta o llave corrupta (no se intenta firmar)
            SigningFailed: Error de la primitiva criptográfica
        """
        if not cadena:
            raise SigningFailed("Cadena original vacía")
        pem = self.key_decryptor.decrypt(encrypted_key, password)
        return sign_with_pem(cadena, pem)

    def seal(self, comprobante: Comprobante, cadena: str, encrypted_key: KeySource, password: str) -> str:
        if comprobante.estado is not EstadoDocumento.CERTIFIED:
            raise InvalidState(
                "El comprobante debe estar certificado y sin sello para sellarse",
                state=comprobante.estado.value,
            )
        sello = self.sign(cadena, encrypted_key, password)
        comprobante.set_sello(sello)
        logger.info("Sello asignado al comprobante")
        return sello
