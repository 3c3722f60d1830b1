from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
import traceback
from pathlib import Path
from typing import Any, Dict, Optional

from .artifacts import make_run_dir
from .builder import comprobante_from_dict
from .canonical import get_canonicalizer
from .config import get_cfdi_config
from .exceptions import CfdiException
from .guards import run_sealed_guardrails
from .pipeline import CfdiPipeline
from .serializer import to_xml_bytes

logger = logging.getLogger(__name__)

DEFAULT_PASSWORD_ENV = "CFDI_KEY_PASSWORD"


def _load_payload(path: Path) -> Dict[str, Any]:
    p = Path(path).expanduser()
    if not p.exists() or not p.is_file():
        raise FileNotFoundError(f"Payload no existe o no es archivo: {p}")
    return json.loads(p.read_text(encoding="utf-8"))


def _read_password(env_var: str) -> str:
    password = os.environ.get(env_var)
    if password is None:
        raise RuntimeError(f"Falta la contraseña de la llave en la variable de entorno {env_var}")
    return password


def build(*, payload_path: Path, out: Optional[Path] = None) -> bytes:
    comprobante = comprobante_from_dict(_load_payload(payload_path))
    xml_bytes = to_xml_bytes(comprobante, pretty_print=True)
    if out is not None:
        Path(out).write_bytes(xml_bytes)
    return xml_bytes


def seal(
    *,
    payload_path: Path,
    cer_path: Path,
    key_path: Path,
    password: str,
    artifacts_dir: Optional[Path] = None,
) -> Path:
    """
    Sella el payload y guarda los artifacts del run:
    cfdi_sellado.xml, cadena_original.txt y meta.json (este último siempre).
    """
    config = get_cfdi_config(artifacts_dir=artifacts_dir)
    payload = _load_payload(payload_path)
    attrs = payload.get("Comprobante") or {}
    run_dir = make_run_dir("sello", attrs, artifacts_dir=config.artifacts_dir)

    meta: Dict[str, Any] = {
        "payload": str(Path(payload_path).resolve()),
        "cer": str(Path(cer_path).resolve()),
        "key": str(Path(key_path).resolve()),
        "canonicalizer": config.canonicalizer,
        "ok": False,
    }
    start = time.time()
    try:
        comprobante = comprobante_from_dict(payload)
        pipeline = CfdiPipeline(config)
        xml_bytes = pipeline.seal(comprobante, cer_path, key_path, password)
        (run_dir / "cadena_original.txt").write_text(pipeline.last_cadena or "", encoding="utf-8")
        (run_dir / "cfdi_sellado.xml").write_bytes(xml_bytes)
        meta["ok"] = True
        meta["NoCertificado"] = comprobante.no_certificado
    except Exception as exc:
        meta["error"] = str(exc)
        meta["error_type"] = type(exc).__name__
        meta["traceback"] = traceback.format_exc()
        raise
    finally:
        meta["duration_s"] = round(time.time() - start, 6)
        (run_dir / "meta.json").write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")

    return run_dir


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="cfdi_minisigner")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_build = sub.add_parser("build")
    p_build.add_argument("payload", type=Path)
    p_build.add_argument("--out", type=Path, default=None)

    p_seal = sub.add_parser("seal")
    p_seal.add_argument("payload", type=Path)
    p_seal.add_argument("--cer", required=True, type=Path)
    p_seal.add_argument("--key", required=True, type=Path)
    p_seal.add_argument("--password-env", default=DEFAULT_PASSWORD_ENV)
    p_seal.add_argument("--artifacts-dir", type=Path, default=None)

    p_cadena = sub.add_parser("cadena")
    p_cadena.add_argument("xml", type=Path)

    p_verify = sub.add_parser("verify")
    p_verify.add_argument("xml", type=Path)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "build":
        try:
            xml_bytes = build(payload_path=args.payload, out=args.out)
        except (CfdiException, ValueError, OSError) as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        if args.out is None:
            sys.stdout.write(xml_bytes.decode("utf-8"))
        return 0

    if args.cmd == "seal":
        try:
            run_dir = seal(
                payload_path=args.payload,
                cer_path=args.cer,
                key_path=args.key,
                password=_read_password(args.password_env),
                artifacts_dir=args.artifacts_dir,
            )
        except Exception as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        print(f"artifacts_dir: {run_dir}")
        return 0

    if args.cmd == "cadena":
        try:
            canonicalizer = get_canonicalizer(get_cfdi_config())
            cadena = canonicalizer.canonicalize(Path(args.xml).read_bytes())
        except (CfdiException, ValueError, OSError) as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        print(cadena)
        return 0

    if args.cmd == "verify":
        try:
            canonicalizer = get_canonicalizer(get_cfdi_config())
            run_sealed_guardrails(Path(args.xml).read_bytes(), canonicalizer, context=f"xml={args.xml}")
        except (CfdiException, RuntimeError, ValueError, OSError) as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1
        print("OK: sello válido")
        return 0

    return 2
