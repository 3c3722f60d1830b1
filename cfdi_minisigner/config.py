"""
Configuración del sellador CFDI

Las rutas a herramientas externas (xsltproc, openssl) y la hoja XSLT de la
cadena original se pasan explícitamente al gateway de canonicalización y al
firmador. get_cfdi_config() las arma desde variables de entorno (.env incluido).
"""
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

load_dotenv()

PathLike = Union[str, Path]


def _optional_path(value: Optional[PathLike]) -> Optional[Path]:
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    return Path(raw).expanduser()


class CfdiConfig:
    """Configuración de herramientas externas para canonicalizar y firmar"""

    CANONICALIZER_LXML = "lxml"
    CANONICALIZER_XSLTPROC = "xsltproc"
    CANONICALIZERS = (CANONICALIZER_LXML, CANONICALIZER_XSLTPROC)

    DEFAULT_TOOL_TIMEOUT = 30

    def __init__(
        self,
        *,
        canonicalizer: Optional[str] = None,
        canonicalizer_path: Optional[PathLike] = None,
        stylesheet_path: Optional[PathLike] = None,
        key_tool_path: Optional[PathLike] = None,
        tmp_dir: Optional[PathLike] = None,
        tool_timeout: Optional[float] = None,
        artifacts_dir: Optional[PathLike] = None,
    ):
        """
        Args:
            canonicalizer: 'lxml' o 'xsltproc'. Si es None, se usa xsltproc
                cuando hay canonicalizer_path y lxml en otro caso.
            canonicalizer_path: Ruta al binario xsltproc
            stylesheet_path: Hoja XSLT de la cadena original (cadenaoriginal_3_3.xslt)
            key_tool_path: Ruta al binario openssl. Si es None, la llave se
                descifra en proceso con cryptography.
            tmp_dir: Directorio para archivos temporales del canonicalizador
            tool_timeout: Timeout en segundos para herramientas externas
            artifacts_dir: Directorio base de artifacts del CLI
        """
        self.canonicalizer_path = _optional_path(canonicalizer_path)
        self.stylesheet_path = _optional_path(stylesheet_path)
        self.key_tool_path = _optional_path(key_tool_path)
        self.tmp_dir = _optional_path(tmp_dir)
        self.artifacts_dir = _optional_path(artifacts_dir)

        backend = (canonicalizer or "").strip().lower()
        if not backend:
            backend = self.CANONICALIZER_XSLTPROC if self.canonicalizer_path else self.CANONICALIZER_LXML
        if backend not in self.CANONICALIZERS:
            raise ValueError(
                f"Canonicalizador inválido: {canonicalizer!r}. Debe ser uno de {list(self.CANONICALIZERS)}"
            )
        self.canonicalizer = backend

        timeout = self.DEFAULT_TOOL_TIMEOUT if tool_timeout is None else float(tool_timeout)
        if timeout <= 0:
            raise ValueError(f"tool_timeout debe ser positivo: {tool_timeout!r}")
        self.tool_timeout = timeout

    def __repr__(self) -> str:
        return (
            f"CfdiConfig(canonicalizer={self.canonicalizer!r}, "
            f"canonicalizer_path={self.canonicalizer_path}, "
            f"stylesheet_path={self.stylesheet_path}, "
            f"key_tool_path={self.key_tool_path}, tmp_dir={self.tmp_dir})"
        )


def get_cfdi_config(**overrides) -> CfdiConfig:
    """
    Obtiene la configuración desde variables de entorno

    Variables:
        CFDI_CANONICALIZER, CFDI_XSLTPROC_PATH, CFDI_CADENA_XSLT,
        CFDI_OPENSSL_PATH, CFDI_TMP_DIR, CFDI_TOOL_TIMEOUT, CFDI_ARTIFACTS_DIR

    Los argumentos explícitos tienen prioridad sobre el entorno.
    """
    timeout_raw = (os.getenv("CFDI_TOOL_TIMEOUT") or "").strip()
    values = {
        "canonicalizer": os.getenv("CFDI_CANONICALIZER"),
        "canonicalizer_path": os.getenv("CFDI_XSLTPROC_PATH"),
        "stylesheet_path": os.getenv("CFDI_CADENA_XSLT"),
        "key_tool_path": os.getenv("CFDI_OPENSSL_PATH"),
        "tmp_dir": os.getenv("CFDI_TMP_DIR"),
        "tool_timeout": float(timeout_raw) if timeout_raw else None,
        "artifacts_dir": os.getenv("CFDI_ARTIFACTS_DIR"),
    }
    for key, value in overrides.items():
        if key not in values:
            raise ValueError(f"Opción de configuración desconocida: {key}")
        if value is not None:
            values[key] = value
    return CfdiConfig(**values)
