"""
Serialización del Comprobante a XML CFDI 3.3 (lxml)
"""
from __future__ import annotations

from typing import Mapping, Optional, Sequence

from lxml import etree

from .models import Comprobante, Concepto, ImpuestosTotales

CFDI_NS = "http://www.sat.gob.mx/cfd/3"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
CFDI_VERSION = "3.3"
CFDI_SCHEMA_LOCATION = f"{CFDI_NS} http://www.sat.gob.mx/sitio_internet/cfd/3/cfdv33.xsd"

NSMAP = {"cfdi": CFDI_NS, "xsi": XSI_NS}

# Orden fijo de los hijos directos de cfdi:Comprobante
ROOT_CHILDREN_ORDER = ("CfdiRelacionados", "Emisor", "Receptor", "Impuestos", "Conceptos")


def _q(name: str) -> etree.QName:
    return etree.QName(CFDI_NS, name)


def _sub(parent: etree._Element, name: str, attrs: Optional[Mapping[str, str]] = None) -> etree._Element:
    el = etree.SubElement(parent, _q(name))
    for key, value in (attrs or {}).items():
        el.set(key, value)
    return el


def _append_entries(parent: etree._Element, group: str, item: str, entries: Sequence[Mapping[str, str]]) -> None:
    container = _sub(parent, group)
    for entry in entries:
        _sub(container, item, entry)


def _append_impuestos_totales(root: etree._Element, impuestos: ImpuestosTotales) -> None:
    attrs = {}
    if impuestos.total_trasladados is not None:
        attrs["TotalImpuestosTrasladados"] = impuestos.total_trasladados
    if impuestos.total_retenidos is not None:
        attrs["TotalImpuestosRetenidos"] = impuestos.total_retenidos
    el = _sub(root, "Impuestos", attrs)
    if impuestos.total_trasladados is not None:
        _append_entries(el, "Traslados", "Traslado", impuestos.traslados)
    if impuestos.total_retenidos is not None:
        _append_entries(el, "Retenciones", "Retencion", impuestos.retenciones)


def _append_concepto(conceptos: etree._Element, concepto: Concepto) -> None:
    el = _sub(conceptos, "Concepto", concepto.atributos)
    impuestos = concepto.impuestos
    if impuestos.vacio:
        return
    imp = _sub(el, "Impuestos")
    if impuestos.traslados:
        _append_entries(imp, "Traslados", "Traslado", impuestos.traslados)
    if impuestos.retenciones:
        _append_entries(imp, "Retenciones", "Retencion", impuestos.retenciones)


def to_element(comprobante: Comprobante) -> etree._Element:
    """Construye el árbol lxml del estado actual del comprobante."""
    root = etree.Element(_q("Comprobante"), nsmap=NSMAP)
    for key, value in comprobante.atributos.items():
        root.set(key, value)
    root.set(etree.QName(XSI_NS, "schemaLocation"), CFDI_SCHEMA_LOCATION)
    root.set("Version", CFDI_VERSION)
    if comprobante.no_certificado is not None:
        root.set("NoCertificado", comprobante.no_certificado)
    if comprobante.certificado is not None:
        root.set("Certificado", comprobante.certificado)
    if comprobante.sello is not None:
        root.set("Sello", comprobante.sello)

    if comprobante.relacionados is not None:
        rel = _sub(root, "CfdiRelacionados", {"TipoRelacion": comprobante.relacionados.tipo_relacion})
        for uuid in comprobante.relacionados.uuids:
            _sub(rel, "CfdiRelacionado", {"UUID": uuid})
    if comprobante.emisor is not None:
        _sub(root, "Emisor", comprobante.emisor)
    if comprobante.receptor is not None:
        _sub(root, "Receptor", comprobante.receptor)
    if comprobante.impuestos is not None:
        _append_impuestos_totales(root, comprobante.impuestos)
    if comprobante.conceptos:
        conceptos = _sub(root, "Conceptos")
        for concepto in comprobante.conceptos:
            _append_concepto(conceptos, concepto)
    return root


def to_xml_bytes(comprobante: Comprobante, *, pretty_print: bool = False) -> bytes:
    return etree.tostring(
        to_element(comprobante),
        xml_declaration=True,
        encoding="UTF-8",
        pretty_print=pretty_print,
    )
