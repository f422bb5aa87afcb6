"""
XlsxUnlock Document Properties Module

Reads and writes the document metadata stored in docProps/core.xml
(title, author, dates, ...) and docProps/app.xml (company, application, ...).

Elements are always located by local name so documents that use unusual
namespace prefixes are handled the same as ones written by Excel.
"""

import sys
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Optional

from lxml import etree

from detection import PackageKind, check_extension, classify_header, ensure_not_encrypted
from errors import ProcessingError, WorkbookError
from package import (
    DEFAULT_COMPRESSLEVEL,
    Package,
    PartLayout,
    XmlPart,
    load_package,
    remove_element,
    serialize_package,
)

# Namespaces
CP_NS = "http://schemas.openxmlformats.org/package/2006/metadata/core-properties"
DC_NS = "http://purl.org/dc/elements/1.1/"
DCTERMS_NS = "http://purl.org/dc/terms/"
DCMITYPE_NS = "http://purl.org/dc/dcmitype/"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
EXT_NS = "http://schemas.openxmlformats.org/officeDocument/2006/extended-properties"
VT_NS = "http://schemas.openxmlformats.org/officeDocument/2006/docPropsVTypes"

PREFERRED_PREFIXES = {
    CP_NS: "cp",
    DC_NS: "dc",
    DCTERMS_NS: "dcterms",
    DCMITYPE_NS: "dcmitype",
    XSI_NS: "xsi",
    VT_NS: "vt",
}

XSI_TYPE = f"{{{XSI_NS}}}type"

CORE_TEMPLATE = (
    f'<cp:coreProperties xmlns:cp="{CP_NS}" xmlns:dc="{DC_NS}" '
    f'xmlns:dcterms="{DCTERMS_NS}" xmlns:dcmitype="{DCMITYPE_NS}" '
    f'xmlns:xsi="{XSI_NS}"></cp:coreProperties>'
).encode("utf-8")

APP_TEMPLATE = (
    f'<Properties xmlns="{EXT_NS}" xmlns:vt="{VT_NS}"></Properties>'
).encode("utf-8")

TEXT = "text"
TIMESTAMP = "timestamp"
BOOLEAN = "boolean"

CORE = "core"
APP = "app"


@dataclass(frozen=True)
class PropertyField:
    """How one PropertySet attribute maps onto an XML element."""
    attr: str           # PropertySet attribute
    key: str            # key in the shared dict shape
    element: str        # local name of the XML element
    namespace: str
    part: str           # CORE or APP
    kind: str = TEXT
    label: str = ""
    typed: bool = False     # carries xsi:type="dcterms:W3CDTF"
    inverted: bool = False  # boolean stored as its negation


PROPERTY_FIELDS = (
    PropertyField("title", "title", "title", DC_NS, CORE, label="Title"),
    PropertyField("subject", "subject", "subject", DC_NS, CORE, label="Subject"),
    PropertyField("creator", "creator", "creator", DC_NS, CORE, label="Authors"),
    PropertyField("keywords", "keywords", "keywords", CP_NS, CORE, label="Tags"),
    PropertyField("description", "description", "description", DC_NS, CORE, label="Comments"),
    PropertyField("last_modified_by", "lastModifiedBy", "lastModifiedBy", CP_NS, CORE,
                  label="Last saved by"),
    PropertyField("category", "category", "category", CP_NS, CORE, label="Categories"),
    PropertyField("content_status", "contentStatus", "contentStatus", CP_NS, CORE,
                  label="Content status"),
    PropertyField("revision", "revision", "revision", CP_NS, CORE, label="Revision number"),
    PropertyField("language", "language", "language", DC_NS, CORE, label="Language"),
    PropertyField("created", "created", "created", DCTERMS_NS, CORE, TIMESTAMP,
                  label="Created", typed=True),
    PropertyField("modified", "modified", "modified", DCTERMS_NS, CORE, TIMESTAMP,
                  label="Modified", typed=True),
    PropertyField("last_printed", "lastPrinted", "lastPrinted", CP_NS, CORE, TIMESTAMP,
                  label="Last printed"),
    PropertyField("company", "company", "Company", EXT_NS, APP, label="Company"),
    PropertyField("manager", "manager", "Manager", EXT_NS, APP, label="Manager"),
    PropertyField("program_name", "programName", "Application", EXT_NS, APP,
                  label="Program name"),
    PropertyField("version", "version", "AppVersion", EXT_NS, APP, label="Version number"),
    PropertyField("scale", "scale", "ScaleCrop", EXT_NS, APP, BOOLEAN, label="Scale"),
    PropertyField("links_dirty", "linksDirty", "LinksUpToDate", EXT_NS, APP, BOOLEAN,
                  label="Links dirty", inverted=True),
)

FIELDS_BY_NAME = {f.attr: f for f in PROPERTY_FIELDS}
FIELDS_BY_NAME.update({f.key: f for f in PROPERTY_FIELDS})

_TRUE_WORDS = {"true", "yes", "y", "on", "1"}
_FALSE_WORDS = {"false", "no", "n", "off", "0"}


@dataclass
class PropertySet:
    """
    Document metadata. None means "not set": the writer leaves that
    element alone. An empty string clears the element's text.
    """
    title: Optional[str] = None
    subject: Optional[str] = None
    creator: Optional[str] = None
    keywords: Optional[str] = None
    description: Optional[str] = None
    last_modified_by: Optional[str] = None
    category: Optional[str] = None
    content_status: Optional[str] = None
    revision: Optional[str] = None
    version: Optional[str] = None
    program_name: Optional[str] = None
    company: Optional[str] = None
    manager: Optional[str] = None
    language: Optional[str] = None
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    last_printed: Optional[datetime] = None
    scale: Optional[bool] = None
    links_dirty: Optional[bool] = None

    def __post_init__(self):
        # Timestamps are held as aware UTC so they compare equal after a write/read
        for field_def in PROPERTY_FIELDS:
            if field_def.kind == TIMESTAMP:
                value = getattr(self, field_def.attr)
                setattr(self, field_def.attr, coerce_value(field_def, value))

    def defined(self) -> dict[str, Any]:
        """Attributes that carry a value, by attribute name."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def is_empty(self) -> bool:
        return not self.defined()

    def to_dict(self) -> dict[str, Any]:
        """Shared camelCase shape, defined keys only."""
        return {FIELDS_BY_NAME[name].key: value for name, value in self.defined().items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PropertySet":
        """Build from the shared shape. Keys may be camelCase or snake_case."""
        props = cls()
        for key, value in data.items():
            props.set(key, value)
        return props

    def set(self, name: str, value: Any) -> None:
        """Set a property by attribute name or shared key, coercing strings."""
        field_def = lookup_field(name)
        setattr(self, field_def.attr, coerce_value(field_def, value))

    def update(self, other: "PropertySet") -> None:
        """Copy every defined value of other onto self."""
        for name, value in other.defined().items():
            setattr(self, name, value)


def lookup_field(name: str) -> PropertyField:
    try:
        return FIELDS_BY_NAME[name]
    except KeyError:
        known = ", ".join(f.key for f in PROPERTY_FIELDS)
        raise ValueError(f"Unknown property '{name}'. Known properties: {known}") from None


def to_utc(value: datetime) -> datetime:
    """Aware UTC copy of value. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parse a W3CDTF/ISO 8601 timestamp into an aware UTC datetime."""
    text = (text or "").strip()
    if not text:
        return None
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_utc(value)


def format_timestamp(value: datetime) -> str:
    """UTC text form, e.g. 2023-10-26T12:00:00Z. Naive values are taken as UTC."""
    return to_utc(value).replace(tzinfo=None).isoformat() + "Z"


def parse_bool(text: str) -> bool:
    word = str(text).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"Not a boolean: '{text}'")


def coerce_value(field_def: PropertyField, value: Any) -> Any:
    """Convert user input (usually a string) to the field's value type."""
    if value is None:
        return None

    if field_def.kind == TIMESTAMP:
        if isinstance(value, datetime):
            return to_utc(value)
        parsed = parse_timestamp(str(value))
        if parsed is None:
            raise ValueError(f"Invalid timestamp for {field_def.key}: '{value}'")
        return parsed

    if field_def.kind == BOOLEAN:
        if isinstance(value, bool):
            return value
        return parse_bool(value)

    return str(value)


def _element_text(elem: etree._Element) -> str:
    return "".join(elem.itertext())


class PropertyReader:
    """Extracts a PropertySet from the two property parts of a package."""

    def __init__(self, layout: Optional[PartLayout] = None, verbose: bool = False):
        self.layout = layout or PartLayout()
        self.verbose = verbose

    def read(self, package: Package) -> PropertySet:
        """
        Read metadata from package.

        Best effort: a malformed property part gives an empty PropertySet
        rather than an error.
        """
        props = PropertySet()
        try:
            for part_name, path in self._parts():
                if path not in package:
                    if self.verbose:
                        print(f"  No {path} in package")
                    continue
                self._read_part(package.read_xml(path), part_name, props)
        except Exception as e:
            print(f"Warning: Failed to read properties: {e}", file=sys.stderr)
            return PropertySet()
        return props

    def _parts(self):
        return ((CORE, self.layout.core_properties), (APP, self.layout.app_properties))

    def _read_part(self, part: XmlPart, part_name: str, props: PropertySet) -> None:
        for field_def in PROPERTY_FIELDS:
            if field_def.part != part_name:
                continue
            elem = part.find_local(field_def.element)
            if elem is None:
                continue

            text = _element_text(elem)
            if field_def.kind == TIMESTAMP:
                value = parse_timestamp(text)
            elif field_def.kind == BOOLEAN:
                literal = "false" if field_def.inverted else "true"
                value = text.strip() == literal
            else:
                value = text or None
            setattr(props, field_def.attr, value)


class PropertyWriter:
    """
    Merges a PropertySet into the property parts of a package.

    Missing parts are created from a minimal template. Elements that
    already exist are edited in place; new ones are appended to the root.
    """

    def __init__(self, layout: Optional[PartLayout] = None, verbose: bool = False):
        self.layout = layout or PartLayout()
        self.verbose = verbose

    def write(self, package: Package, edits: PropertySet) -> None:
        for part_name, path, template in (
            (CORE, self.layout.core_properties, CORE_TEMPLATE),
            (APP, self.layout.app_properties, APP_TEMPLATE),
        ):
            part = self._open(package, path, template)
            for field_def in PROPERTY_FIELDS:
                if field_def.part != part_name:
                    continue
                value = getattr(edits, field_def.attr)
                if value is None:
                    continue
                self._apply(part, field_def, value)
            package.replace_xml(part)

    def _open(self, package: Package, path: str, template: bytes) -> XmlPart:
        if path in package:
            return package.read_xml(path)
        if self.verbose:
            print(f"  Creating {path}")
        return XmlPart.parse(path, template)

    def _apply(self, part: XmlPart, field_def: PropertyField, value: Any) -> None:
        elem = part.find_local(field_def.element)
        if elem is not None and field_def.typed and _bound_prefix(elem, DCTERMS_NS) is None:
            # xsi:type needs a prefix for dcterms; a declaration added to an
            # element already in the tree would be dropped, so rebuild it
            attrib = dict(elem.attrib)
            remove_element(elem)
            elem = self._create(part, field_def)
            elem.attrib.update(attrib)
        elif elem is None:
            elem = self._create(part, field_def)

        if field_def.kind == TIMESTAMP:
            text = format_timestamp(value)
            if field_def.typed:
                elem.set(XSI_TYPE, f"{_bound_prefix(elem, DCTERMS_NS)}:W3CDTF")
        elif field_def.kind == BOOLEAN:
            flag = (not value) if field_def.inverted else bool(value)
            text = "true" if flag else "false"
        else:
            text = str(value)

        # Replaces any child markup, like DOM textContent
        for child in list(elem):
            elem.remove(child)
        elem.text = text

        if self.verbose:
            print(f"  Set {field_def.element} = {text!r}")

    def _create(self, part: XmlPart, field_def: PropertyField) -> etree._Element:
        root = part.root
        tag = f"{{{field_def.namespace}}}{field_def.element}"
        if field_def.typed:
            bound = _bound_prefix(root, field_def.namespace) is not None
        else:
            bound = field_def.namespace in root.nsmap.values()
        if bound:
            return etree.SubElement(root, tag)
        prefix = PREFERRED_PREFIXES.get(field_def.namespace)
        return etree.SubElement(root, tag, nsmap={prefix: field_def.namespace})


def _bound_prefix(elem: etree._Element, namespace: str) -> Optional[str]:
    """A non-default prefix bound to namespace in scope of elem, if any."""
    for prefix, uri in elem.nsmap.items():
        if uri == namespace and prefix:
            return prefix
    return None


def get_properties(data: bytes, layout: Optional[PartLayout] = None, verbose: bool = False) -> PropertySet:
    """Read document properties from .xlsx bytes. Never raises."""
    if classify_header(data[:8]) is PackageKind.ENCRYPTED:
        if verbose:
            print("  Package is encrypted; no properties available")
        return PropertySet()
    try:
        package = load_package(data)
    except WorkbookError as e:
        print(f"Warning: Failed to read properties: {e}", file=sys.stderr)
        return PropertySet()
    return PropertyReader(layout, verbose=verbose).read(package)


def update_properties(
    data: bytes,
    edits: PropertySet,
    filename: Optional[str] = None,
    layout: Optional[PartLayout] = None,
    compresslevel: int = DEFAULT_COMPRESSLEVEL,
    verbose: bool = False,
) -> bytes:
    """
    Apply property edits to .xlsx bytes and return the rebuilt package.

    Args:
        data: Raw bytes of the file
        edits: Only the defined fields are written
        filename: When given, the .xlsx extension is checked first
        layout: Part locations
        compresslevel: DEFLATE level for the rebuilt package
        verbose: Print each property written
    """
    if filename is not None:
        check_extension(filename)
    ensure_not_encrypted(data)

    try:
        package = load_package(data)
        PropertyWriter(layout, verbose=verbose).write(package, edits)
        return serialize_package(package, compresslevel=compresslevel)
    except WorkbookError:
        raise
    except Exception as e:
        raise ProcessingError() from e


def changed_fields(before: PropertySet, after: PropertySet) -> list[str]:
    """Shared keys whose value differs between two property sets."""
    return [
        f.key for f in PROPERTY_FIELDS
        if getattr(before, f.attr) != getattr(after, f.attr)
    ]
