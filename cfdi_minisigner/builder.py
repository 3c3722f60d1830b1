"""
Construcción del Comprobante

CfdiBuilder arma el árbol con una API encadenable. Los conceptos se arman con
ConceptoBuilder y se transfieren al comprobante con un único commit().
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .exceptions import InvalidState
from .models import (
    Atributos,
    CfdiRelacionados,
    Comprobante,
    Concepto,
    ImpuestosConcepto,
    ImpuestosTotales,
    normalize_attrs,
)
from .serializer import to_xml_bytes

logger = logging.getLogger(__name__)


def _entries(items: Optional[Iterable[Mapping[str, Any]]], *, context: str) -> List[Atributos]:
    if items is None:
        return []
    if isinstance(items, Mapping) or isinstance(items, (str, bytes)):
        raise ValueError(f"{context}: se esperaba una lista de entradas")
    return [normalize_attrs(item, context=f"{context}[{idx}]") for idx, item in enumerate(items)]


def build_impuestos_totales(i: Mapping[str, Any]) -> ImpuestosTotales:
    """
    Arma el bloque de impuestos globales.

    TotalImpuestosTrasladados y TotalImpuestosRetenidos son independientes:
    cada total presente agrega su lista (Traslados / Retenciones) en el orden
    recibido. Los importes se copian como texto, sin validar ni redondear.
    """
    if not isinstance(i, Mapping):
        raise ValueError("Impuestos: se esperaba un mapa")

    totals = normalize_attrs(
        {
            k: i.get(k)
            for k in ("TotalImpuestosTrasladados", "TotalImpuestosRetenidos")
        },
        context="Impuestos",
    )

    total_trasladados = totals.get("TotalImpuestosTrasladados")
    total_retenidos = totals.get("TotalImpuestosRetenidos")

    traslados: List[Atributos] = []
    if total_trasladados is not None:
        traslados = _entries(i.get("Traslados"), context="Impuestos.Traslados")
    elif i.get("Traslados"):
        logger.warning("Impuestos.Traslados ignorados: falta TotalImpuestosTrasladados")

    retenciones: List[Atributos] = []
    if total_retenidos is not None:
        retenciones = _entries(i.get("Retenciones"), context="Impuestos.Retenciones")
    elif i.get("Retenciones"):
        logger.warning("Impuestos.Retenciones ignoradas: falta TotalImpuestosRetenidos")

    return ImpuestosTotales(
        total_trasladados=total_trasladados,
        total_retenidos=total_retenidos,
        traslados=tuple(traslados),
        retenciones=tuple(retenciones),
    )


class ConceptoBuilder:
    """
    Acumula traslados y retenciones de un concepto.

    Es de un solo uso: después de commit() cualquier llamada lanza InvalidState.
    """

    def __init__(self, atributos: Mapping[str, Any]):
        attrs = dict(atributos or {})
        # El mapa "Impuestos" del payload se arma con add_traslado/add_retencion
        attrs.pop("Impuestos", None)
        self._atributos = normalize_attrs(attrs, context="Concepto")
        self._traslados: List[Atributos] = []
        self._retenciones: List[Atributos] = []
        self._committed = False

    def _require_open(self) -> None:
        if self._committed:
            raise InvalidState("ConceptoBuilder ya fue agregado al comprobante")

    def add_traslado(self, traslado: Mapping[str, Any]) -> "ConceptoBuilder":
        self._require_open()
        self._traslados.append(normalize_attrs(traslado, context="Concepto.Traslado"))
        return self

    def add_retencion(self, retencion: Mapping[str, Any]) -> "ConceptoBuilder":
        self._require_open()
        self._retenciones.append(normalize_attrs(retencion, context="Concepto.Retencion"))
        return self

    def build(self) -> Concepto:
        """Produce el Concepto inmutable sin agregarlo a ningún comprobante."""
        self._require_open()
        return Concepto(
            atributos=dict(self._atributos),
            impuestos=ImpuestosConcepto(
                traslados=tuple(dict(t) for t in self._traslados),
                retenciones=tuple(dict(r) for r in self._retenciones),
            ),
        )

    def commit(self, into: Union[Comprobante, "CfdiBuilder"]) -> Concepto:
        concepto = self.build()
        comprobante = into.comprobante if isinstance(into, CfdiBuilder) else into
        if not isinstance(comprobante, Comprobante):
            raise TypeError(f"commit() requiere un Comprobante, recibido {type(into).__name__}")
        comprobante.add_concepto(concepto)
        self._committed = True
        self._traslados = []
        self._retenciones = []
        return concepto


class CfdiBuilder:
    """
    API encadenable para armar un Comprobante:

        cfdi = (CfdiBuilder({"Serie": "A", "Folio": "1", ...})
                .attach_emisor({"Rfc": "AAA010101AAA", ...})
                .attach_receptor({"Rfc": "XAXX010101000", ...}))
        cfdi.new_concepto({...}).add_traslado({...}).commit(cfdi)
    """

    def __init__(self, atributos: Union[Mapping[str, Any], Comprobante]):
        if isinstance(atributos, Comprobante):
            self.comprobante = atributos
        else:
            self.comprobante = Comprobante(atributos)

    def attach_relacionados(self, tipo_relacion: str, uuids: Iterable[str]) -> "CfdiBuilder":
        tipo = normalize_attrs({"TipoRelacion": tipo_relacion}, context="CfdiRelacionados").get("TipoRelacion")
        if not tipo:
            raise ValueError("CfdiRelacionados: falta TipoRelacion")
        if isinstance(uuids, (str, bytes)):
            raise ValueError("CfdiRelacionados: se esperaba una lista de UUID")
        items = tuple(
            normalize_attrs({"UUID": str(u).strip()}, context=f"CfdiRelacionado[{idx}]")["UUID"]
            for idx, u in enumerate(uuids)
        )
        if any(not u for u in items):
            raise ValueError("CfdiRelacionados: UUID vacío")
        self.comprobante.set_relacionados(CfdiRelacionados(tipo_relacion=tipo, uuids=items))
        return self

    def attach_emisor(self, emisor: Mapping[str, Any]) -> "CfdiBuilder":
        self.comprobante.set_emisor(emisor)
        return self

    def attach_receptor(self, receptor: Mapping[str, Any]) -> "CfdiBuilder":
        self.comprobante.set_receptor(receptor)
        return self

    def attach_totals(self, impuestos: Mapping[str, Any]) -> "CfdiBuilder":
        self.comprobante.set_impuestos(build_impuestos_totales(impuestos))
        return self

    def new_concepto(self, concepto: Mapping[str, Any]) -> ConceptoBuilder:
        return ConceptoBuilder(concepto)

    def xml(self, *, pretty_print: bool = False) -> bytes:
        return to_xml_bytes(self.comprobante, pretty_print=pretty_print)


def comprobante_from_dict(data: Mapping[str, Any]) -> Comprobante:
    """
    Arma un Comprobante desde un payload tipo JSON:

        {
          "Comprobante": {...},
          "CfdiRelacionados": {"TipoRelacion": "04", "CfdiRelacionados": ["UUID", ...]},
          "Emisor": {...},
          "Receptor": {...},
          "Impuestos": {"TotalImpuestosTrasladados": "16.00", "Traslados": [...]},
          "Conceptos": [{..., "Impuestos": {"Traslados": [...], "Retenciones": [...]}}]
        }
    """
    if not isinstance(data, Mapping):
        raise ValueError("Payload inválido: se esperaba un objeto")
    if "Comprobante" not in data:
        raise ValueError("Payload inválido: falta 'Comprobante'")

    cfdi = CfdiBuilder(data["Comprobante"])

    relacionados: Optional[Dict[str, Any]] = data.get("CfdiRelacionados")
    if relacionados:
        cfdi.attach_relacionados(
            relacionados.get("TipoRelacion"),
            relacionados.get("CfdiRelacionados") or [],
        )
    if data.get("Emisor") is not None:
        cfdi.attach_emisor(data["Emisor"])
    if data.get("Receptor") is not None:
        cfdi.attach_receptor(data["Receptor"])
    if data.get("Impuestos") is not None:
        cfdi.attach_totals(data["Impuestos"])

    for idx, item in enumerate(data.get("Conceptos") or []):
        if not isinstance(item, Mapping):
            raise ValueError(f"Conceptos[{idx}]: se esperaba un objeto")
        builder = cfdi.new_concepto(item)
        impuestos = item.get("Impuestos") or {}
        for traslado in impuestos.get("Traslados") or []:
            builder.add_traslado(traslado)
        for retencion in impuestos.get("Retenciones") or []:
            builder.add_retencion(retencion)
        builder.commit(cfdi)

    return cfdi.comprobante
