"""
Armado y sellado de comprobantes fiscales digitales (CFDI 3.3)
"""
from .builder import CfdiBuilder, ConceptoBuilder, build_impuestos_totales, comprobante_from_dict
from .certificate import CertificadoCfdi, certify, load_certificate
from .canonical import Canonicalizer, LxmlCanonicalizer, XsltprocCanonicalizer, get_canonicalizer
from .config import CfdiConfig, get_cfdi_config
from .exceptions import (
    CfdiException,
    InvalidCertificate,
    KeyDecryptionFailed,
    CanonicalizationFailed,
    SigningFailed,
    InvalidState,
)
from .keys import CryptographyKeyDecryptor, OpenSSLKeyDecryptor, get_key_decryptor
from .models import Comprobante, Concepto, EstadoDocumento
from .pipeline import CfdiPipeline, seal_comprobante
from .serializer import to_xml_bytes
from .signer import Signer

__all__ = [
    'CfdiBuilder',
    'ConceptoBuilder',
    'build_impuestos_totales',
    'comprobante_from_dict',
    'CertificadoCfdi',
    'certify',
    'load_certificate',
    'Canonicalizer',
    'LxmlCanonicalizer',
    'XsltprocCanonicalizer',
    'get_canonicalizer',
    'CfdiConfig',
    'get_cfdi_config',
    'CfdiException',
    'InvalidCertificate',
    'KeyDecryptionFailed',
    'CanonicalizationFailed',
    'SigningFailed',
    'InvalidState',
    'CryptographyKeyDecryptor',
    'OpenSSLKeyDecryptor',
    'get_key_decryptor',
    'Comprobante',
    'Concepto',
    'EstadoDocumento',
    'CfdiPipeline',
    'seal_comprobante',
    'to_xml_bytes',
    'Signer',
]
