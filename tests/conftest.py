from __future__ import annotations

import datetime
from pathlib import Path
from types import SimpleNamespace
import sys

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from cfdi_minisigner.builder import CfdiBuilder
from cfdi_minisigner.canonical import LxmlCanonicalizer
from cfdi_minisigner.config import CfdiConfig


FIXTURES = Path(__file__).resolve().parent / "fixtures"
SAT_SERIAL = b"30001000000300023708"
KEY_PASSWORD = "12345678a"


def _make_certificate(private_key, serial_number: int) -> bytes:
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, "EMPRESA DE PRUEBA SA DE CV"),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "MX"),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(serial_number)
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


@pytest.fixture(scope="session")
def csd(tmp_path_factory):
    """CSD de prueba: certificado DER con serial estilo SAT + llave PKCS#8 DER cifrada."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    cer = _make_certificate(private_key, int.from_bytes(SAT_SERIAL, "big"))
    key = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(KEY_PASSWORD.encode("utf-8")),
    )

    out = tmp_path_factory.mktemp("csd")
    cer_path = out / "csd.cer"
    key_path = out / "csd.key"
    cer_path.write_bytes(cer)
    key_path.write_bytes(key)

    return SimpleNamespace(
        private_key=private_key,
        cer=cer,
        key=key,
        password=KEY_PASSWORD,
        cer_path=cer_path,
        key_path=key_path,
        no_certificado=SAT_SERIAL.decode("ascii"),
    )


@pytest.fixture
def make_cert(csd):
    def _factory(serial_number: int) -> bytes:
        return _make_certificate(csd.private_key, serial_number)
    return _factory


@pytest.fixture
def stylesheet_path() -> Path:
    return FIXTURES / "cadena_test.xslt"


@pytest.fixture
def config(stylesheet_path, tmp_path) -> CfdiConfig:
    return CfdiConfig(stylesheet_path=stylesheet_path, tmp_dir=tmp_path / "tmp")


@pytest.fixture
def canonicalizer(config) -> LxmlCanonicalizer:
    return LxmlCanonicalizer(config)


@pytest.fixture
def factura():
    """Factura mínima: un concepto de 100.00 con IVA 16%."""
    def _build() -> CfdiBuilder:
        cfdi = CfdiBuilder({
            "Serie": "A",
            "Folio": "167",
            "Fecha": "2018-05-18T11:36:50",
            "SubTotal": "100.00",
            "Moneda": "MXN",
            "Total": "116.00",
            "TipoDeComprobante": "I",
            "MetodoPago": "PUE",
            "LugarExpedicion": "45079",
        })
        cfdi.attach_emisor({"Rfc": "AAA010101AAA", "Nombre": "Empresa de Prueba", "RegimenFiscal": "601"})
        cfdi.attach_receptor({"Rfc": "XAXX010101000", "UsoCFDI": "G03"})
        (
            cfdi.new_concepto({
                "ClaveProdServ": "01010101",
                "ClaveUnidad": "E48",
                "Cantidad": "1",
                "Descripcion": "Servicio de prueba",
                "ValorUnitario": "100.00",
                "Importe": "100.00",
            })
            .add_traslado({
                "Base": "100.00",
                "Impuesto": "002",
                "TipoFactor": "Tasa",
                "TasaOCuota": "0.160000",
                "Importe": "16.00",
            })
            .commit(cfdi)
        )
        return cfdi
    return _build
