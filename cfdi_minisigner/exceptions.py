"""
Excepciones del sellador CFDI
"""
from typing import Optional


class CfdiException(Exception):
    """Excepción base para errores del sellador CFDI"""
    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class InvalidCertificate(CfdiException):
    """El certificado no es un X.509 DER válido"""
    pass


class KeyDecryptionFailed(CfdiException):
    """Contraseña incorrecta o llave privada corrupta"""
    pass


class CanonicalizationFailed(CfdiException):
    """Error al generar la cadena original"""
    def __init__(self, message: str, code: Optional[str] = None, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message, code)


class SigningFailed(CfdiException):
    """Error de la primitiva criptográfica al firmar"""
    pass


class InvalidState(CfdiException):
    """Operación fuera del orden Draft -> Structured -> Certified -> Signed"""
    def __init__(self, message: str, state: Optional[str] = None):
        self.state = state
        super().__init__(message, code=state)
