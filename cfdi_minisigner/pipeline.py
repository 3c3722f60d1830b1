"""
Flujo completo de sellado: certificar -> cadena original -> firmar -> sellar -> serializar

Cada paso depende del resultado del anterior; ninguno se reintenta. Si falla
la firma, el comprobante queda certificado y sin Sello, de modo que el
llamador puede repetir solo el sellado (por ejemplo con otra contraseña).
"""
from __future__ import annotations

import logging
import time
from typing import Optional

from .canonical import Canonicalizer, canonicalize_async, get_canonicalizer
from .certificate import CertificateSource, CertificadoCfdi, certify
from .config import CfdiConfig, get_cfdi_config
from .exceptions import InvalidState
from .keys import KeyDecryptor, KeySource, decrypt_async, get_key_decryptor
from .models import Comprobante, EstadoDocumento
from .serializer import to_xml_bytes
from .signer import Signer, sign_with_pem

logger = logging.getLogger(__name__)

_SEALABLE = (EstadoDocumento.STRUCTURED, EstadoDocumento.CERTIFIED)


class CfdiPipeline:
    """
    Orquesta el sellado de comprobantes.

    Una instancia no comparte estado mutable entre comprobantes salvo
    last_cadena / last_certificado; para leerlos desde varios hilos use una
    instancia por hilo.
    """

    def __init__(
        self,
        config: Optional[CfdiConfig] = None,
        *,
        canonicalizer: Optional[Canonicalizer] = None,
        key_decryptor: Optional[KeyDecryptor] = None,
    ):
        self.config = config or get_cfdi_config()
        self.canonicalizer = canonicalizer or get_canonicalizer(self.config)
        self.key_decryptor = key_decryptor or get_key_decryptor(self.config)
        self.signer = Signer(self.key_decryptor)
        self.last_cadena: Optional[str] = None
        self.last_certificado: Optional[CertificadoCfdi] = None

    @staticmethod
    def _require_sealable(comprobante: Comprobante) -> None:
        if comprobante.estado not in _SEALABLE:
            raise InvalidState(
                "Sellar requiere Emisor, Receptor y al menos un Concepto, y un comprobante sin sello",
                state=comprobante.estado.value,
            )

    @staticmethod
    def _unsigned_xml(comprobante: Comprobante) -> bytes:
        if comprobante.sello is not None:
            raise InvalidState(
                "La cadena original no se calcula sobre un comprobante ya sellado",
                state=comprobante.estado.value,
            )
        return to_xml_bytes(comprobante)

    def cadena_original(self, comprobante: Comprobante) -> str:
        """Cadena original del estado actual (debe incluir NoCertificado para sellar)."""
        return self.canonicalizer.canonicalize(self._unsigned_xml(comprobante))

    def _certify(self, comprobante: Comprobante, certificate: CertificateSource) -> None:
        self._require_sealable(comprobante)
        self.last_certificado = certify(comprobante, certificate)

    def seal(
        self,
        comprobante: Comprobante,
        certificate: CertificateSource,
        encrypted_key: KeySource,
        password: str,
    ) -> bytes:
        """
        Certifica, firma y sella el comprobante.

        Returns:
            XML final (UTF-8) con NoCertificado, Certificado y Sello
        """
        start = time.time()
        self._certify(comprobante, certificate)
        cadena = self.cadena_original(comprobante)
        logger.info(f"Cadena original generada ({len(cadena)} caracteres)")
        self.last_cadena = cadena
        self.signer.seal(comprobante, cadena, encrypted_key, password)
        xml_bytes = to_xml_bytes(comprobante)
        logger.info(f"Comprobante sellado en {round(time.time() - start, 3)}s: {comprobante!r}")
        return xml_bytes

    async def seal_async(
        self,
        comprobante: Comprobante,
        certificate: CertificateSource,
        encrypted_key: KeySource,
        password: str,
    ) -> bytes:
        """
        Igual que seal(); la cadena original y el descifrado de la llave corren
        en hilos de trabajo para no bloquear el event loop.
        """
        self._certify(comprobante, certificate)
        cadena = await canonicalize_async(self.canonicalizer, self._unsigned_xml(comprobante))
        logger.info(f"Cadena original generada ({len(cadena)} caracteres)")
        self.last_cadena = cadena
        pem = await decrypt_async(self.key_decryptor, encrypted_key, password)
        sello = sign_with_pem(cadena, pem)
        comprobante.set_sello(sello)
        logger.info(f"Comprobante sellado: {comprobante!r}")
        return to_xml_bytes(comprobante)


def seal_comprobante(
    comprobante: Comprobante,
    certificate: CertificateSource,
    encrypted_key: KeySource,
    password: str,
    *,
    config: Optional[CfdiConfig] = None,
) -> bytes:
    """Atajo: sella con un CfdiPipeline nuevo."""
    return CfdiPipeline(config).seal(comprobante, certificate, encrypted_key, password)
