"""
Directorios de artifacts por corrida del CLI

Cada sellado deja su propio directorio `run_<fecha>_<prefijo>[_serie_X][_folio_Y]`
bajo el directorio base, para poder revisar el XML, la cadena y meta.json
de cada comprobante por separado.
"""
from __future__ import annotations

import os
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Union

DEFAULT_ARTIFACTS_DIR = "artifacts"

# Serie y Folio del Anexo 20 admiten caracteres que no sirven en un nombre de archivo
_UNSAFE_CHARS = re.compile(r"[^0-9A-Za-z._-]+")
_MAX_TOKEN = 40


def _path_token(value: Any) -> str:
    return _UNSAFE_CHARS.sub("-", str(value)).strip("-.")[:_MAX_TOKEN]


def resolve_artifacts_dir(artifacts_dir: Optional[Union[str, Path]] = None) -> Path:
    """
    Directorio base de artifacts (se crea si no existe).

    Prioridad: argumento explícito, CFDI_ARTIFACTS_DIR, ./artifacts
    """
    candidates = (artifacts_dir, os.getenv("CFDI_ARTIFACTS_DIR"), DEFAULT_ARTIFACTS_DIR)
    raw = next(str(c).strip() for c in candidates if c is not None and str(c).strip())
    base = Path(raw).expanduser().resolve()
    base.mkdir(parents=True, exist_ok=True)
    return base


def run_dir_name(prefix: str, atributos: Optional[Mapping[str, Any]] = None, *, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S_%f")
    name = f"run_{stamp}_{_path_token(prefix) or 'sello'}"
    for key in ("Serie", "Folio"):
        value = (atributos or {}).get(key)
        token = _path_token(value) if value is not None else ""
        if token:
            name += f"_{key.lower()}_{token}"
    return name


def make_run_dir(
    prefix: str,
    atributos: Optional[Mapping[str, Any]] = None,
    *,
    artifacts_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """Crea el directorio de la corrida para el comprobante con esos atributos raíz."""
    run_dir = resolve_artifacts_dir(artifacts_dir) / run_dir_name(prefix, atributos)
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir
