"""
Generación de la cadena original

La cadena original es el resultado de aplicar la hoja XSLT del SAT
(cadenaoriginal_3_3.xslt) al XML del comprobante. La transformación es externa:
se corre con el binario xsltproc (documento en archivo temporal) o en proceso
con lxml.etree.XSLT. En ambos casos cualquier falla es CanonicalizationFailed.
"""
import asyncio
import logging
import os
import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from lxml import etree

from .config import CfdiConfig
from .exceptions import CanonicalizationFailed

logger = logging.getLogger(__name__)


@contextmanager
def temp_document(xml_bytes: bytes, *, tmp_dir: Optional[Path] = None) -> Iterator[Path]:
    """
    Escribe el XML en un archivo temporal y lo borra al salir, también si hubo error.
    """
    if tmp_dir is not None:
        Path(tmp_dir).mkdir(parents=True, exist_ok=True)
    fd, path = tempfile.mkstemp(suffix=".xml", prefix="cfdi_", dir=str(tmp_dir) if tmp_dir else None)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(xml_bytes)
        logger.debug(f"Documento temporal creado: {Path(path).name}")
        yield Path(path)
    finally:
        try:
            os.unlink(path)
            logger.debug(f"Documento temporal eliminado: {Path(path).name}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"No se pudo eliminar documento temporal {Path(path).name}: {e}")


def _require_stylesheet(config: CfdiConfig) -> Path:
    stylesheet = config.stylesheet_path
    if stylesheet is None:
        raise ValueError("Falta la hoja XSLT de la cadena original. Configure CFDI_CADENA_XSLT")
    return stylesheet


class Canonicalizer:
    """Interfaz: canonicalize(xml_bytes) -> cadena original"""

    def canonicalize(self, xml_bytes: bytes) -> str:
        raise NotImplementedError


class XsltprocCanonicalizer(Canonicalizer):
    """Corre `xsltproc <xslt> <documento>` sobre un archivo temporal."""

    def __init__(self, config: CfdiConfig):
        self.stylesheet = _require_stylesheet(config)
        self.binary = str(config.canonicalizer_path) if config.canonicalizer_path else "xsltproc"
        self.timeout = config.tool_timeout
        self.tmp_dir = config.tmp_dir

    def _resolve_binary(self) -> str:
        resolved = shutil.which(self.binary)
        if not resolved:
            raise CanonicalizationFailed(f"xsltproc no encontrado: {self.binary}", code="tool_missing")
        return resolved

    def canonicalize(self, xml_bytes: bytes) -> str:
        binary = self._resolve_binary()
        with temp_document(xml_bytes, tmp_dir=self.tmp_dir) as doc_path:
            cmd = [binary, str(self.stylesheet), str(doc_path)]
            logger.debug(f"Ejecutando: {' '.join(cmd)}")
            try:
                result = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
            except subprocess.TimeoutExpired as e:
                raise CanonicalizationFailed(
                    f"xsltproc excedió el timeout de {self.timeout}s", code="timeout"
                ) from e
            except OSError as e:
                raise CanonicalizationFailed(f"No se pudo ejecutar xsltproc: {e}", code="tool_error") from e

        if result.returncode != 0:
            error_output = (result.stderr or result.stdout or b"Sin salida").decode("utf-8", errors="replace")
            raise CanonicalizationFailed(
                f"xsltproc falló (rc={result.returncode}): {error_output[:500]}",
                code="transform_error",
                returncode=result.returncode,
            )

        try:
            cadena = result.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CanonicalizationFailed(
                f"xsltproc devolvió una cadena original que no es UTF-8: {e}", code="encoding"
            ) from e
        if not cadena.strip():
            raise CanonicalizationFailed("xsltproc devolvió una cadena original vacía", code="empty")
        return cadena


class LxmlCanonicalizer(Canonicalizer):
    """Aplica la hoja XSLT en proceso con lxml."""

    def __init__(self, config: CfdiConfig):
        self.stylesheet = _require_stylesheet(config)
        self._transform: Optional[etree.XSLT] = None
        self._transform_lock = threading.Lock()

    def _get_transform(self) -> etree.XSLT:
        with self._transform_lock:
            if self._transform is None:
                try:
                    self._transform = etree.XSLT(etree.parse(str(self.stylesheet)))
                except (OSError, etree.XMLSyntaxError, etree.XSLTParseError) as e:
                    raise CanonicalizationFailed(
                        f"No se pudo cargar la hoja XSLT {self.stylesheet}: {e}", code="stylesheet_error"
                    ) from e
            return self._transform

    def canonicalize(self, xml_bytes: bytes) -> str:
        transform = self._get_transform()
        try:
            doc = etree.fromstring(xml_bytes)
        except etree.XMLSyntaxError as e:
            raise CanonicalizationFailed(f"XML inválido para la cadena original: {e}", code="malformed") from e
        try:
            result = transform(doc)
        except etree.XSLTApplyError as e:
            raise CanonicalizationFailed(f"Error al aplicar la hoja XSLT: {e}", code="transform_error") from e

        cadena = str(result)
        if not cadena.strip():
            raise CanonicalizationFailed("La hoja XSLT devolvió una cadena original vacía", code="empty")
        return cadena


def get_canonicalizer(config: CfdiConfig) -> Canonicalizer:
    if config.canonicalizer == CfdiConfig.CANONICALIZER_XSLTPROC:
        return XsltprocCanonicalizer(config)
    return LxmlCanonicalizer(config)


async def canonicalize_async(canonicalizer: Canonicalizer, xml_bytes: bytes) -> str:
    return await asyncio.to_thread(canonicalizer.canonicalize, xml_bytes)
