"""
Descifrado de la llave privada del CSD

La llave del SAT (.key) es un PKCS#8 cifrado en DER. Se descifra con la
contraseña a una llave PEM sin cifrar que consume el firmador. Dos opciones:

- OpenSSLKeyDecryptor: binario `openssl pkcs8`. La contraseña viaja por
  variable de entorno y la llave por stdin, nunca por argumentos.
- CryptographyKeyDecryptor: en proceso con cryptography.
"""
import asyncio
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .config import CfdiConfig
from .exceptions import KeyDecryptionFailed

logger = logging.getLogger(__name__)

KeySource = Union[bytes, bytearray, str, Path]

_PASS_ENV_VAR = "CFDI_KEY_PASS_TMP"


def read_key_source(source: KeySource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    path = Path(source).expanduser()
    try:
        return path.read_bytes()
    except OSError as e:
        raise KeyDecryptionFailed(f"No se pudo leer la llave privada {path}: {e}") from e


def _is_pem(blob: bytes) -> bool:
    return blob.lstrip().startswith(b"-----BEGIN")


class KeyDecryptor:
    """Interfaz: decrypt(llave_cifrada, password) -> PEM sin cifrar"""

    def decrypt(self, encrypted_key: KeySource, password: str) -> str:
        raise NotImplementedError


class CryptographyKeyDecryptor(KeyDecryptor):

    def decrypt(self, encrypted_key: KeySource, password: str) -> str:
        blob = read_key_source(encrypted_key)
        if not blob:
            raise KeyDecryptionFailed("Llave privada vacía")
        password_bytes = password.encode("utf-8") if password else None
        loader = serialization.load_pem_private_key if _is_pem(blob) else serialization.load_der_private_key
        try:
            private_key = loader(blob, password=password_bytes)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            # NO incluir la contraseña en el error
            raise KeyDecryptionFailed(
                f"Contraseña de la llave privada incorrecta o llave corrupta ({type(e).__name__})"
            ) from e

        pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return pem.decode("ascii")


class OpenSSLKeyDecryptor(KeyDecryptor):

    def __init__(self, openssl_path: Optional[Union[str, Path]] = None, *, timeout: float = 30):
        self.binary = str(openssl_path) if openssl_path else "openssl"
        self.timeout = timeout

    def _resolve_binary(self) -> str:
        resolved = shutil.which(self.binary)
        if not resolved:
            raise KeyDecryptionFailed(f"OpenSSL no encontrado en el sistema: {self.binary}", code="tool_missing")
        return resolved

    def decrypt(self, encrypted_key: KeySource, password: str) -> str:
        blob = read_key_source(encrypted_key)
        if not blob:
            raise KeyDecryptionFailed("Llave privada vacía")
        binary = self._resolve_binary()

        env = os.environ.copy()
        env[_PASS_ENV_VAR] = password or ""
        cmd = [
            binary,
            "pkcs8",
            "-inform", "PEM" if _is_pem(blob) else "DER",
            "-outform", "PEM",
            "-passin", f"env:{_PASS_ENV_VAR}",
        ]
        logger.debug(f"Ejecutando: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, input=blob, env=env, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise KeyDecryptionFailed(f"openssl excedió el timeout de {self.timeout}s", code="timeout") from e
        except OSError as e:
            raise KeyDecryptionFailed(f"No se pudo ejecutar openssl: {e}", code="tool_error") from e

        pem = result.stdout.decode("ascii", errors="replace")
        if result.returncode != 0 or "BEGIN PRIVATE KEY" not in pem:
            error_output = (result.stderr or b"Sin salida").decode("utf-8", errors="replace")
            raise KeyDecryptionFailed(
                f"Contraseña de la llave privada incorrecta o llave corrupta: {error_output[:300]}"
            )
        return pem


def get_key_decryptor(config: CfdiConfig) -> KeyDecryptor:
    if config.key_tool_path is not None:
        return OpenSSLKeyDecryptor(config.key_tool_path, timeout=config.tool_timeout)
    return CryptographyKeyDecryptor()


async def decrypt_async(decryptor: KeyDecryptor, encrypted_key: KeySource, password: str) -> str:
    return await asyncio.to_thread(decryptor.decrypt, encrypted_key, password)
