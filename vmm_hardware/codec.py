"""
XML codec for libvirt domain documents.

Decode dispatches each element under ``<devices>`` on its name to a device
variant and reads it through the kind's mapping table; unknown elements and
comments become ``UnknownDevice`` values holding the element verbatim.
Element and attribute names are kept exactly as written, prefixes included,
so encode depends on nothing but the document: the same document always
produces the same bytes, from any thread.

Output follows one canonical form: two-space indentation, no XML
declaration, a trailing newline, the root element's namespace declarations
ahead of its other attributes (declarations on inner elements stay where
they were written) and ``<emulator>`` first inside ``<devices>``.
"""

import xml.etree.ElementTree as ET
from typing import Dict, Union
from xml.parsers import expat

from .devices import DEVICE_CLASSES, Device, DeviceKind, DomainDocument, UnknownDevice
from .exceptions import MalformedXmlError
from .fields import RawExtra
from .logging import get_logger, log_performance
from .xmlmap import (
    DEVICE_TABLES,
    DOMAIN_TABLE,
    TAG_TO_KIND,
    attribute_getter,
    nest,
    node_name,
    parse_fragment,
    parse_xml,
    serialize_fragment,
)

logger = get_logger(__name__)

INDENT = "  "

XmlInput = Union[str, bytes]


def _parse(data: XmlInput) -> ET.Element:
    """Parse ``data`` keeping comments and the prefixes as written."""
    try:
        return parse_xml(data)
    except expat.ExpatError as e:
        raise MalformedXmlError(
            f"Malformed XML: {e}",
            line=e.lineno,
            column=e.offset,
        ) from e


def pop_declarations(elem: ET.Element) -> Dict[str, str]:
    """Remove the ``xmlns`` attributes of ``elem``; return prefix -> URI ('' is the default namespace)."""
    namespaces: Dict[str, str] = {}
    for name in list(elem.attrib):
        if name == "xmlns" or name.startswith("xmlns:"):
            namespaces[name[6:]] = elem.attrib.pop(name)
    return namespaces


def declare_namespaces(elem: ET.Element, namespaces: Dict[str, str]) -> None:
    """Put ``namespaces`` on ``elem`` ahead of its other attributes."""
    if not namespaces:
        return
    attrib = {f"xmlns:{prefix}" if prefix else "xmlns": uri for prefix, uri in namespaces.items()}
    attrib.update(elem.attrib)
    elem.attrib.clear()
    elem.attrib.update(attrib)


def _serialize(root: ET.Element) -> str:
    ET.indent(root, space=INDENT)
    return ET.tostring(root, encoding="unicode") + "\n"


def device_from_element(elem: ET.Element) -> Device:
    """Decode one parsed device element."""
    tag = node_name(elem)
    kind = TAG_TO_KIND.get(tag)
    if kind is None:
        return UnknownDevice(
            tag=tag,
            raw_extra=[RawExtra(kind="element", value=serialize_fragment(elem))],
        )

    values, raw, _ = DEVICE_TABLES[kind].decode(elem)
    if kind is DeviceKind.CHAR:
        values["device_type"] = tag
    return DEVICE_CLASSES[kind](**nest(values), raw_extra=raw)


def element_from_device(device: Device) -> ET.Element:
    """Build the element for one device."""
    if isinstance(device, UnknownDevice):
        for item in device.raw_extra:
            if item.kind == "element":
                return parse_fragment(item.value)
        return ET.Element(device.tag)

    table = DEVICE_TABLES[device.kind]
    return table.encode(device.element_name, attribute_getter(device), device.raw_extra)


def decode_device(data: XmlInput) -> Device:
    """Decode a single device element, as found in a per-device edit buffer."""
    return device_from_element(_parse(data))


def encode_device(device: Device) -> str:
    """Encode a single device as a standalone XML fragment."""
    return _serialize(element_from_device(device))


@log_performance(threshold_ms=500.0)
def decode_domain(data: XmlInput) -> DomainDocument:
    """
    Decode a whole domain document.

    Raises:
        MalformedXmlError: on unparseable input or a root other than ``<domain>``
    """
    root = _parse(data)
    if root.tag != "domain":
        raise MalformedXmlError(
            f"Expected <domain> root element, found <{node_name(root)}>",
            details={"root": node_name(root)},
        )
    namespaces = pop_declarations(root)

    values, raw, members = DOMAIN_TABLE.decode(root)
    devices = [device_from_element(member) for member in members]
    document = DomainDocument(
        **nest(values),
        devices=devices,
        raw_extra=raw,
        namespaces=namespaces,
    )
    logger.debug(
        "Decoded domain {} with {} devices ({} raw extras)",
        document.name,
        len(devices),
        len(raw),
    )
    return document


@log_performance(threshold_ms=500.0)
def encode_domain(document: DomainDocument) -> str:
    """Encode a whole domain document in canonical form."""
    members = [element_from_device(device) for device in document.devices]
    root = DOMAIN_TABLE.encode("domain", attribute_getter(document), document.raw_extra, members)
    declare_namespaces(root, document.namespaces)
    return _serialize(root)


def canonicalize(data: XmlInput) -> str:
    """C14N 2.0 form of ``data`` with surrounding text whitespace stripped."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        return ET.canonicalize(data, strip_text=True)
    except ET.ParseError as e:
        line, column = getattr(e, "position", (None, None))
        raise MalformedXmlError(f"Malformed XML: {e}", line=line, column=column) from e


def canonical_equal(a: XmlInput, b: XmlInput) -> bool:
    """Whether two documents are equal after canonicalization."""
    return canonicalize(a) == canonicalize(b)
