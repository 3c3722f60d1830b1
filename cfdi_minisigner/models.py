"""
Modelos de datos del Comprobante CFDI 3.3

El árbol es estrictamente jerárquico: cada hijo pertenece a un solo padre y
todos los mapas de atributos se copian al insertarse.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import InvalidState

Atributos = Dict[str, str]
AtributosRO = Mapping[str, str]

# Nombres de atributo sin prefijo (NCName ASCII, como los del Anexo 20)
_ATTR_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9._-]*$")
# Caracteres fuera del rango Char de XML 1.0
_XML_ILLEGAL_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")

# Atributos de la raíz que pone el sellador, no el llamador
RESERVED_ROOT_ATTRS = frozenset({
    "Version",
    "NoCertificado",
    "Certificado",
    "Sello",
    "xmlns",
    "xmlns:cfdi",
    "xmlns:xsi",
    "xsi:schemaLocation",
    "schemaLocation",
})


def normalize_attrs(attrs: Optional[Mapping[str, Any]], *, context: str = "") -> Atributos:
    """
    Copia un mapa de atributos dejando solo escalares como texto.

    - str se conserva tal cual (no se toca el formato decimal)
    - int y Decimal se convierten con str()
    - None se omite
    - bool, float y contenedores se rechazan con ValueError
    - nombres con prefijo o espacios y caracteres ilegales en XML también
    """
    if attrs is None:
        return {}
    if not isinstance(attrs, Mapping):
        raise ValueError(f"{context}: se esperaba un mapa de atributos, recibido {type(attrs).__name__}")

    out: Atributos = {}
    for key, value in attrs.items():
        if not isinstance(key, str) or not _ATTR_NAME_RE.match(key):
            raise ValueError(f"{context}: nombre de atributo inválido: {key!r}")
        if value is None:
            continue
        if isinstance(value, bool):
            raise ValueError(f"{context}: atributo {key} no puede ser booleano")
        if isinstance(value, str):
            text = value
        elif isinstance(value, (int, Decimal)):
            text = str(value)
        else:
            # float pierde el formato del importe; contenedores rompen el árbol
            raise ValueError(
                f"{context}: atributo {key} debe ser texto, int o Decimal (recibido {type(value).__name__})"
            )
        bad = _XML_ILLEGAL_RE.search(text)
        if bad:
            raise ValueError(
                f"{context}: atributo {key} contiene un carácter no válido en XML "
                f"(U+{ord(bad.group()):04X})"
            )
        out[key] = text
    return out


def _frozen_entries(entries) -> Tuple[AtributosRO, ...]:
    return tuple(MappingProxyType(dict(e)) for e in entries)


class EstadoDocumento(str, Enum):
    DRAFT = "draft"
    STRUCTURED = "structured"
    CERTIFIED = "certified"
    SIGNED = "signed"


@dataclass(frozen=True)
class ImpuestosConcepto:
    """Impuestos de un concepto (cada entrada lleva Base)"""
    traslados: Tuple[AtributosRO, ...] = ()
    retenciones: Tuple[AtributosRO, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "traslados", _frozen_entries(self.traslados))
        object.__setattr__(self, "retenciones", _frozen_entries(self.retenciones))

    @property
    def vacio(self) -> bool:
        return not self.traslados and not self.retenciones


@dataclass(frozen=True)
class Concepto:
    atributos: AtributosRO
    impuestos: ImpuestosConcepto = field(default_factory=ImpuestosConcepto)

    def __post_init__(self):
        object.__setattr__(self, "atributos", MappingProxyType(dict(self.atributos)))


@dataclass(frozen=True)
class ImpuestosTotales:
    """Bloque de impuestos globales del comprobante"""
    total_trasladados: Optional[str] = None
    total_retenidos: Optional[str] = None
    traslados: Tuple[AtributosRO, ...] = ()
    retenciones: Tuple[AtributosRO, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "traslados", _frozen_entries(self.traslados))
        object.__setattr__(self, "retenciones", _frozen_entries(self.retenciones))


@dataclass(frozen=True)
class CfdiRelacionados:
    tipo_relacion: str
    uuids: Tuple[str, ...] = ()


class Comprobante:
    """
    Raíz del CFDI.

    Los hijos viven en slots con nombre; el serializador los emite siempre en
    orden CfdiRelacionados, Emisor, Receptor, Impuestos, Conceptos. El estado
    se deriva del contenido del árbol.

    Los slots solo se escriben con los métodos set_*/add_concepto; las
    propiedades devuelven vistas de solo lectura.
    """

    def __init__(self, atributos: Mapping[str, Any]):
        attrs = normalize_attrs(atributos, context="Comprobante")
        reserved = sorted(k for k in attrs if k in RESERVED_ROOT_ATTRS)
        if reserved:
            raise ValueError(f"Comprobante: atributos reservados no permitidos: {reserved}")
        self._atributos: Atributos = attrs
        self._relacionados: Optional[CfdiRelacionados] = None
        self._emisor: Optional[AtributosRO] = None
        self._receptor: Optional[AtributosRO] = None
        self._impuestos: Optional[ImpuestosTotales] = None
        self._conceptos: List[Concepto] = []
        self._no_certificado: Optional[str] = None
        self._certificado: Optional[str] = None
        self._sello: Optional[str] = None

    @property
    def atributos(self) -> Atributos:
        return dict(self._atributos)

    @property
    def relacionados(self) -> Optional[CfdiRelacionados]:
        return self._relacionados

    @property
    def emisor(self) -> Optional[AtributosRO]:
        return self._emisor

    @property
    def receptor(self) -> Optional[AtributosRO]:
        return self._receptor

    @property
    def impuestos(self) -> Optional[ImpuestosTotales]:
        return self._impuestos

    @property
    def conceptos(self) -> Tuple[Concepto, ...]:
        return tuple(self._conceptos)

    @property
    def no_certificado(self) -> Optional[str]:
        return self._no_certificado

    @property
    def certificado(self) -> Optional[str]:
        return self._certificado

    @property
    def sello(self) -> Optional[str]:
        return self._sello

    @property
    def estado(self) -> EstadoDocumento:
        if self._sello is not None:
            return EstadoDocumento.SIGNED
        if self._no_certificado is not None and self._certificado is not None:
            return EstadoDocumento.CERTIFIED
        if self._emisor is not None and self._receptor is not None and self._conceptos:
            return EstadoDocumento.STRUCTURED
        return EstadoDocumento.DRAFT

    def _require_unsigned(self, operation: str) -> None:
        if self._sello is not None:
            raise InvalidState(
                f"{operation}: el comprobante ya está sellado", state=self.estado.value
            )

    def _require_empty_slot(self, name: str, current: Any) -> None:
        if current is not None:
            raise InvalidState(f"{name} ya fue agregado al comprobante", state=self.estado.value)

    def set_relacionados(self, relacionados: CfdiRelacionados) -> None:
        self._require_unsigned("CfdiRelacionados")
        self._require_empty_slot("CfdiRelacionados", self._relacionados)
        self._relacionados = relacionados

    def set_emisor(self, atributos: Mapping[str, Any]) -> None:
        self._require_unsigned("Emisor")
        self._require_empty_slot("Emisor", self._emisor)
        self._emisor = MappingProxyType(normalize_attrs(atributos, context="Emisor"))

    def set_receptor(self, atributos: Mapping[str, Any]) -> None:
        self._require_unsigned("Receptor")
        self._require_empty_slot("Receptor", self._receptor)
        self._receptor = MappingProxyType(normalize_attrs(atributos, context="Receptor"))

    def set_impuestos(self, impuestos: ImpuestosTotales) -> None:
        self._require_unsigned("Impuestos")
        self._require_empty_slot("Impuestos", self._impuestos)
        self._impuestos = impuestos

    def add_concepto(self, concepto: Concepto) -> None:
        self._require_unsigned("Concepto")
        self._conceptos.append(concepto)

    def set_certificado(self, no_certificado: str, certificado: str) -> None:
        self._require_unsigned("Certificar")
        if self.estado not in (EstadoDocumento.STRUCTURED, EstadoDocumento.CERTIFIED):
            raise InvalidState(
                "Certificar requiere Emisor, Receptor y al menos un Concepto",
                state=self.estado.value,
            )
        self._no_certificado = no_certificado
        self._certificado = certificado

    def set_sello(self, sello: str) -> None:
        self._require_unsigned("Sellar")
        if self.estado is not EstadoDocumento.CERTIFIED:
            raise InvalidState(
                "Sellar requiere un comprobante certificado (NoCertificado/Certificado)",
                state=self.estado.value,
            )
        if not sello:
            raise ValueError("Sello vacío")
        self._sello = sello

    def __repr__(self) -> str:
        return (
            f"Comprobante(serie={self._atributos.get('Serie')!r}, "
            f"folio={self._atributos.get('Folio')!r}, conceptos={len(self._conceptos)}, "
            f"estado={self.estado.value})"
        )
