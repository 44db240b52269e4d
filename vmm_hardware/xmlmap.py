"""
Per-kind mapping tables between device fields and libvirt XML.

A table is an ordered list of slots. Each slot binds one model field to a
location written in a small XPath-like form:

    "@type"                 attribute of the element itself
    "model/@type"           attribute of a child element
    "backend/text()"        text of a child element
    "readonly/exists()"     presence of a child element (boolean field)
    "os/boot[*]/@dev"       attribute of every repeated child (list field)
    "address/@*"            every attribute of a child, as an ordered dict

Slot order is the canonical emission order. Anything a table does not
consume is kept as ``RawExtra`` items tagged with the path and position it
was found at, and put back there on encode.
"""

import xml.etree.ElementTree as ET
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union
from xml.parsers import expat

from .devices import DEVICE_CLASSES, DeviceKind
from .fields import RawExtra

ATTR = "attr"
TEXT = "text"
FLAG = "flag"
LIST = "list"
ATTRS = "attrs"

Path = Tuple[str, ...]


class Slot(NamedTuple):
    """One recognized value inside an element."""

    field: str
    path: Path
    mode: str
    name: Optional[str] = None


def slot(field: str, spec: str) -> Slot:
    """Build a slot from its XPath-like spec."""
    steps = spec.split("/")
    last, parents = steps[-1], steps[:-1]
    if last == "text()":
        return Slot(field, tuple(parents), TEXT)
    if last == "exists()":
        return Slot(field, tuple(parents), FLAG)
    if last == "@*":
        return Slot(field, tuple(parents), ATTRS)
    if last.startswith("@"):
        if parents and parents[-1].endswith("[*]"):
            parents[-1] = parents[-1][:-3]
            return Slot(field, tuple(parents), LIST, last[1:])
        return Slot(field, tuple(parents), ATTR, last[1:])
    raise ValueError(f"Unsupported slot spec: {spec!r}")


def parse_xml(data: Union[str, bytes]) -> ET.Element:
    """
    Parse ``data`` with names kept exactly as written.

    Namespace processing is off: ``qemu:commandline`` stays the tag and
    ``xmlns:qemu`` stays an ordinary attribute where it was declared, so
    writing the tree back needs no prefix registry. Comments and processing
    instructions inside the root element are kept.

    Raises:
        expat.ExpatError: on malformed input
    """
    builder = ET.TreeBuilder(insert_comments=True, insert_pis=True)
    parser = expat.ParserCreate()
    parser.buffer_text = True
    parser.StartElementHandler = builder.start
    parser.EndElementHandler = builder.end
    parser.CharacterDataHandler = builder.data
    parser.CommentHandler = builder.comment
    parser.ProcessingInstructionHandler = builder.pi
    parser.Parse(data, True)
    return builder.close()


def node_name(elem: ET.Element) -> str:
    if elem.tag is ET.Comment:
        return "#comment"
    if elem.tag is ET.ProcessingInstruction:
        return "#pi"
    return elem.tag


def _strip_layout(elem: ET.Element) -> None:
    """Drop indentation whitespace below ``elem`` (leaf text is kept)."""
    for child in elem.iter():
        if len(child) and child.text is not None and not child.text.strip():
            child.text = None
        if child is not elem and child.tail is not None and not child.tail.strip():
            child.tail = None


def serialize_fragment(elem: ET.Element) -> str:
    """Serialize one element (without its tail) for storage as raw extra."""
    tail = elem.tail
    elem.tail = None
    try:
        _strip_layout(elem)
        return ET.tostring(elem, encoding="unicode")
    finally:
        elem.tail = tail


def parse_fragment(text: str) -> ET.Element:
    """Inverse of ``serialize_fragment``."""
    wrapper = parse_xml(f"<fragment>{text}</fragment>")
    return wrapper[0]


def to_text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def attribute_getter(obj: Any) -> Callable[[str], Any]:
    """Field reader for dotted names such as ``os.arch``."""
    def get(field: str) -> Any:
        value = obj
        for part in field.split("."):
            if value is None:
                return None
            value = getattr(value, part, None)
        return value
    return get


def nest(values: Dict[str, Any]) -> Dict[str, Any]:
    """Turn ``{'os.arch': 'x86_64'}`` into ``{'os': {'arch': 'x86_64'}}``."""
    nested: Dict[str, Any] = {}
    for dotted, value in values.items():
        target = nested
        *parents, leaf = dotted.split(".")
        for part in parents:
            target = target.setdefault(part, {})
        target[leaf] = value
    return nested


def _is_plain(elem: ET.Element, attribute: str) -> bool:
    return (
        list(elem.attrib) == [attribute]
        and len(elem) == 0
        and not (elem.text or "").strip()
    )


class _Node:
    __slots__ = ("attrs", "text", "flag", "attr_map", "children", "lists")

    def __init__(self):
        self.attrs: Dict[str, str] = {}
        self.text: Optional[str] = None
        self.flag: Optional[str] = None
        self.attr_map: Optional[str] = None
        self.children: List[str] = []
        self.lists: Dict[str, Tuple[str, str]] = {}


class ElementTable:
    """
    Compiled mapping table for one element kind.

    ``container`` names a child element whose unrecognized children are
    handed back to the caller as members (the ``<devices>`` section of a
    domain) instead of being kept as raw extra.
    """

    def __init__(self, slots: Sequence[Slot], container: Optional[str] = None):
        self.slots = tuple(slots)
        self.container = container
        self._nodes: Dict[Path, _Node] = {(): _Node()}
        for s in self.slots:
            if s.mode == LIST:
                parent = self._node(s.path[:-1])
                parent.lists[s.path[-1]] = (s.field, s.name)
                if s.path[-1] not in parent.children:
                    parent.children.append(s.path[-1])
                continue
            node = self._node(s.path)
            if s.mode == ATTR:
                node.attrs[s.name] = s.field
            elif s.mode == TEXT:
                node.text = s.field
            elif s.mode == FLAG:
                node.flag = s.field
            elif s.mode == ATTRS:
                node.attr_map = s.field
        if container:
            self._node((container,))

    @property
    def fields(self) -> List[str]:
        return [s.field for s in self.slots]

    def _node(self, path: Path) -> _Node:
        if path not in self._nodes:
            parent = self._node(path[:-1])
            parent.children.append(path[-1])
            self._nodes[path] = _Node()
        return self._nodes[path]

    def _is_container(self, path: Path) -> bool:
        return self.container is not None and path == (self.container,)

    # Decoding

    def decode(self, elem: ET.Element) -> Tuple[Dict[str, Any], List[RawExtra], List[ET.Element]]:
        """
        Read ``elem`` through the table.

        Returns the consumed values keyed by dotted field name, the raw
        extras in encounter order, and the container members.
        """
        values: Dict[str, Any] = {}
        raw: List[RawExtra] = []
        members: List[ET.Element] = []
        self._walk(elem, (), values, raw, members)
        return values, raw, members

    def _walk(self, elem, path, values, raw, members) -> bool:
        node = self._nodes[path]
        consumed = self._is_container(path)

        if node.flag:
            values[node.flag] = True
            consumed = True

        if node.attr_map:
            values[node.attr_map] = dict(elem.attrib)
            consumed = True
        else:
            for position, (name, value) in enumerate(elem.attrib.items()):
                field = node.attrs.get(name)
                if field is None:
                    raw.append(RawExtra(kind="attribute", path=path, position=position,
                                        name=name, value=value))
                else:
                    values[field] = value
                    consumed = True

        if node.text is not None:
            values[node.text] = elem.text or ""
            consumed = True
        elif elem.text and elem.text.strip():
            raw.append(RawExtra(kind="text", path=path, value=elem.text))

        seen = set()
        for position, child in enumerate(elem):
            tag = child.tag if isinstance(child.tag, str) else None
            if tag in node.lists:
                field, name = node.lists[tag]
                if _is_plain(child, name):
                    values.setdefault(field, []).append(child.get(name))
                    consumed = True
                    continue
            elif tag in node.children and tag not in seen:
                seen.add(tag)
                mark = len(raw)
                if self._walk(child, path + (tag,), values, raw, members):
                    consumed = True
                    continue
                # Nothing recognized inside: keep the child whole
                del raw[mark:]
            elif self._is_container(path):
                members.append(child)
                continue
            raw.append(RawExtra(kind="element", path=path, position=position,
                                value=serialize_fragment(child)))
        return consumed

    # Encoding

    def encode(
        self,
        tag: str,
        get: Callable[[str], Any],
        raw: Sequence[RawExtra],
        members: Sequence[ET.Element] = (),
    ) -> ET.Element:
        """Build the element for ``tag`` from field values and raw extras."""
        elem = ET.Element(tag)
        self._build(elem, (), get, raw, members)
        return elem

    def _needed(self, path, get, raw, members) -> bool:
        if self._is_container(path) and members:
            return True
        for s in self.slots:
            if s.path[:len(path)] != path:
                continue
            value = get(s.field)
            if s.mode in (FLAG, LIST):
                if value:
                    return True
            elif value is not None:
                return True
        return any(item.path[:len(path)] == path for item in raw)

    def _build(self, elem, path, get, raw, members) -> None:
        node = self._nodes[path]
        here = [item for item in raw if item.path == path]

        attrs: List[Tuple[str, str]] = []
        if node.attr_map:
            attrs.extend((k, to_text(v)) for k, v in (get(node.attr_map) or {}).items())
        for name, field in node.attrs.items():
            value = get(field)
            if value is not None:
                attrs.append((name, to_text(value)))
        for item in sorted((i for i in here if i.kind == "attribute"), key=lambda i: i.position):
            attrs.insert(min(item.position, len(attrs)), (item.name, item.value))
        for name, value in attrs:
            elem.set(name, value)

        if node.text is not None:
            value = get(node.text)
            if value is not None:
                elem.text = to_text(value)
        if elem.text is None:
            for item in here:
                if item.kind == "text":
                    elem.text = item.value

        for child_tag in node.children:
            if child_tag in node.lists:
                field, name = node.lists[child_tag]
                for value in get(field) or ():
                    ET.SubElement(elem, child_tag, {name: to_text(value)})
                continue
            child_path = path + (child_tag,)
            if self._needed(child_path, get, raw, members):
                self._build(ET.SubElement(elem, child_tag), child_path, get, raw, members)

        if self._is_container(path):
            elem.extend(members)

        for item in sorted((i for i in here if i.kind == "element"), key=lambda i: i.position):
            elem.insert(min(item.position, len(elem)), parse_fragment(item.value))


COMMON_SLOTS = (
    slot("alias", "alias/@name"),
    slot("address.attributes", "address/@*"),
)


def _device_table(*slots: Slot) -> ElementTable:
    return ElementTable(slots + COMMON_SLOTS)


DEVICE_TABLES: Dict[DeviceKind, ElementTable] = {
    DeviceKind.DISK: _device_table(
        slot("disk_type", "@type"),
        slot("device", "@device"),
        slot("model", "@model"),
        slot("driver_name", "driver/@name"),
        slot("driver_type", "driver/@type"),
        slot("driver_cache", "driver/@cache"),
        slot("driver_discard", "driver/@discard"),
        slot("source_file", "source/@file"),
        slot("source_dev", "source/@dev"),
        slot("source_dir", "source/@dir"),
        slot("source_pool", "source/@pool"),
        slot("source_volume", "source/@volume"),
        slot("source_protocol", "source/@protocol"),
        slot("source_name", "source/@name"),
        slot("target_dev", "target/@dev"),
        slot("target_bus", "target/@bus"),
        slot("boot_order", "boot/@order"),
        slot("readonly", "readonly/exists()"),
        slot("shareable", "shareable/exists()"),
        slot("serial", "serial/text()"),
    ),
    DeviceKind.NETWORK: _device_table(
        slot("interface_type", "@type"),
        slot("mac_address", "mac/@address"),
        slot("source_network", "source/@network"),
        slot("source_bridge", "source/@bridge"),
        slot("source_dev", "source/@dev"),
        slot("source_mode", "source/@mode"),
        slot("target_dev", "target/@dev"),
        slot("model", "model/@type"),
        slot("link_state", "link/@state"),
        slot("boot_order", "boot/@order"),
    ),
    DeviceKind.CONTROLLER: _device_table(
        slot("controller_type", "@type"),
        slot("index", "@index"),
        slot("model", "@model"),
        slot("ports", "@ports"),
        slot("vectors", "@vectors"),
        slot("driver_queues", "driver/@queues"),
        slot("target_chassis", "target/@chassis"),
        slot("target_port", "target/@port"),
    ),
    DeviceKind.INPUT: _device_table(
        slot("input_type", "@type"),
        slot("bus", "@bus"),
        slot("model", "@model"),
        slot("source_evdev", "source/@evdev"),
    ),
    DeviceKind.SOUND: _device_table(
        slot("model", "@model"),
        slot("codec_type", "codec/@type"),
        slot("audio_id", "audio/@id"),
    ),
    DeviceKind.HOSTDEV: _device_table(
        slot("mode", "@mode"),
        slot("hostdev_type", "@type"),
        slot("managed", "@managed"),
        slot("vendor_id", "source/vendor/@id"),
        slot("product_id", "source/product/@id"),
        slot("host_domain", "source/address/@domain"),
        slot("host_bus", "source/address/@bus"),
        slot("host_slot", "source/address/@slot"),
        slot("host_function", "source/address/@function"),
        slot("host_device", "source/address/@device"),
        slot("boot_order", "boot/@order"),
    ),
    DeviceKind.CHAR: _device_table(
        slot("source_type", "@type"),
        slot("source_mode", "source/@mode"),
        slot("source_host", "source/@host"),
        slot("source_service", "source/@service"),
        slot("source_path", "source/@path"),
        slot("protocol_type", "protocol/@type"),
        slot("target_type", "target/@type"),
        slot("target_name", "target/@name"),
        slot("target_port", "target/@port"),
        slot("target_model", "target/model/@name"),
    ),
    DeviceKind.VIDEO: _device_table(
        slot("model", "model/@type"),
        slot("vram", "model/@vram"),
        slot("heads", "model/@heads"),
        slot("primary", "model/@primary"),
        slot("accel3d", "model/acceleration/@accel3d"),
    ),
    DeviceKind.WATCHDOG: _device_table(
        slot("model", "@model"),
        slot("action", "@action"),
    ),
    DeviceKind.FILESYSTEM: _device_table(
        slot("fs_type", "@type"),
        slot("accessmode", "@accessmode"),
        slot("driver_type", "driver/@type"),
        slot("source_dir", "source/@dir"),
        slot("target_dir", "target/@dir"),
        slot("readonly", "readonly/exists()"),
    ),
    DeviceKind.SMARTCARD: _device_table(
        slot("mode", "@mode"),
        slot("smartcard_type", "@type"),
    ),
    DeviceKind.USBREDIR: _device_table(
        slot("bus", "@bus"),
        slot("redir_type", "@type"),
        slot("source_host", "source/@host"),
        slot("source_service", "source/@service"),
    ),
    DeviceKind.TPM: _device_table(
        slot("model", "@model"),
        slot("backend_type", "backend/@type"),
        slot("backend_version", "backend/@version"),
        slot("device_path", "backend/device/@path"),
    ),
    DeviceKind.RNG: _device_table(
        slot("model", "@model"),
        slot("rate_bytes", "rate/@bytes"),
        slot("rate_period", "rate/@period"),
        slot("backend_model", "backend/@model"),
        slot("backend_type", "backend/@type"),
        slot("backend_path", "backend/text()"),
    ),
    DeviceKind.PANIC: _device_table(
        slot("model", "@model"),
    ),
    DeviceKind.VSOCK: _device_table(
        slot("model", "@model"),
        slot("cid_auto", "cid/@auto"),
        slot("cid_address", "cid/@address"),
    ),
}

DOMAIN_TABLE = ElementTable(
    (
        slot("domain_type", "@type"),
        slot("name", "name/text()"),
        slot("uuid", "uuid/text()"),
        slot("title", "title/text()"),
        slot("description", "description/text()"),
        slot("memory.unit", "memory/@unit"),
        slot("memory.value", "memory/text()"),
        slot("current_memory.unit", "currentMemory/@unit"),
        slot("current_memory.value", "currentMemory/text()"),
        slot("vcpu_placement", "vcpu/@placement"),
        slot("vcpus", "vcpu/text()"),
        slot("os.arch", "os/type/@arch"),
        slot("os.machine", "os/type/@machine"),
        slot("os.os_type", "os/type/text()"),
        slot("os.boot_devices", "os/boot[*]/@dev"),
        slot("devices_present", "devices/exists()"),
        slot("emulator", "devices/emulator/text()"),
    ),
    container="devices",
)

TAG_TO_KIND: Dict[str, DeviceKind] = {
    tag: kind
    for kind, cls in DEVICE_CLASSES.items()
    for tag in cls.element_names
}
