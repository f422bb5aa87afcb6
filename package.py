"""
XlsxUnlock Package Module

Loads an .xlsx (zip) package into memory, hands out parsed XML parts, and
writes the package back out. Uses lxml for XML so that namespace
declarations and untouched markup survive a parse/serialize cycle.

Every part that is not explicitly replaced is written back byte-for-byte;
only the zip compression changes.
"""

import io
import time
import zipfile
import zlib
from dataclasses import dataclass
from typing import Iterator, Optional

from lxml import etree

from errors import CorruptPackageError

# Fastest DEFLATE level; unlocking is interactive, not archival
DEFAULT_COMPRESSLEVEL = 1


@dataclass
class PartLayout:
    """Fixed part locations inside a spreadsheet package."""
    workbook: str = "xl/workbook.xml"
    worksheets_dir: str = "xl/worksheets/"
    worksheet_suffix: str = ".xml"
    core_properties: str = "docProps/core.xml"
    app_properties: str = "docProps/app.xml"

    @classmethod
    def from_config(cls, section: Optional[dict]) -> "PartLayout":
        """Create a layout from the 'parts' section of the config file."""
        section = section or {}
        defaults = cls()
        worksheets_dir = section.get("worksheets_dir", defaults.worksheets_dir)
        if not worksheets_dir.endswith("/"):
            worksheets_dir += "/"
        return cls(
            workbook=section.get("workbook", defaults.workbook),
            worksheets_dir=worksheets_dir,
            worksheet_suffix=section.get("worksheet_suffix", defaults.worksheet_suffix),
            core_properties=section.get("core_properties", defaults.core_properties),
            app_properties=section.get("app_properties", defaults.app_properties),
        )


class XmlPart:
    """
    A parsed XML part.

    The tree belongs to whichever operation asked for it. Once that
    operation is done it hands the part back with Package.replace_xml, which
    turns it into bytes again; the tree should not be used afterwards.
    """

    def __init__(self, path: str, tree: etree._ElementTree):
        self.path = path
        self.tree = tree

    @classmethod
    def parse(cls, path: str, data: bytes) -> "XmlPart":
        # Parse XML preserving whitespace
        parser = etree.XMLParser(remove_blank_text=False, resolve_entities=False)
        try:
            root = etree.fromstring(data, parser)
        except etree.XMLSyntaxError as e:
            raise CorruptPackageError(
                f"Could not parse {path}. The file might be corrupted or encrypted. ({e})"
            ) from e
        return cls(path, root.getroottree())

    @property
    def root(self) -> etree._Element:
        return self.tree.getroot()

    @property
    def namespaces(self) -> dict[Optional[str], str]:
        """Namespace declarations in scope on the root element."""
        return dict(self.root.nsmap)

    def iter_local(self, local_name: str) -> Iterator[etree._Element]:
        """Yield every element whose local name matches, whatever its prefix."""
        for elem in self.root.iter(tag=etree.Element):
            if etree.QName(elem).localname == local_name:
                yield elem

    def find_local(self, local_name: str) -> Optional[etree._Element]:
        """First element (document order) with the given local name."""
        return next(self.iter_local(local_name), None)

    def remove_local(self, local_name: str) -> int:
        """Remove every element with the given local name. Returns the count."""
        # Collect first; can't modify during iteration
        targets = list(self.iter_local(local_name))
        for elem in targets:
            remove_element(elem)
        return len(targets)

    def to_bytes(self) -> bytes:
        return etree.tostring(
            self.tree,
            xml_declaration=True,
            encoding="UTF-8",
            standalone=self.tree.docinfo.standalone,
        )


def remove_element(elem: etree._Element) -> None:
    """Detach an element, keeping its tail text attached to the document."""
    parent = elem.getparent()
    if parent is None:
        return

    if elem.tail:
        prev = elem.getprevious()
        if prev is not None:
            prev.tail = (prev.tail or "") + elem.tail
        else:
            parent.text = (parent.text or "") + elem.tail

    parent.remove(elem)


class Package:
    """In-memory view of a zip package: part path -> raw bytes."""

    def __init__(self):
        self._parts: dict[str, bytes] = {}
        self._infos: dict[str, zipfile.ZipInfo] = {}
        self.replaced: list[str] = []

    def __contains__(self, path: str) -> bool:
        return path in self._parts

    def __len__(self) -> int:
        return len(self._parts)

    @property
    def names(self) -> list[str]:
        return list(self._parts)

    def read(self, path: str) -> bytes:
        return self._parts[path]

    def write(self, path: str, data: bytes) -> None:
        """Store new content for a part, adding it if it doesn't exist."""
        if path not in self._infos:
            self._infos[path] = zipfile.ZipInfo(path, date_time=time.localtime()[:6])
        self._parts[path] = data
        if path not in self.replaced:
            self.replaced.append(path)

    def read_xml(self, path: str) -> XmlPart:
        return XmlPart.parse(path, self._parts[path])

    def replace_xml(self, part: XmlPart) -> None:
        self.write(part.path, part.to_bytes())

    def iter_parts(self, prefix: str, suffix: str = "") -> Iterator[str]:
        """Part paths under prefix ending in suffix, in archive order."""
        for name in self.names:
            if name.startswith(prefix) and name.endswith(suffix) and not name.endswith("/"):
                yield name

    def info(self, path: str) -> zipfile.ZipInfo:
        return self._infos[path]


def load_package(data: bytes) -> Package:
    """Read zip bytes into a Package. Raises CorruptPackageError on failure."""
    package = Package()
    try:
        with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
            for info in zf.infolist():
                package._infos[info.filename] = info
                package._parts[info.filename] = zf.read(info)
    except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError,
            ValueError, OSError) as e:
        raise CorruptPackageError() from e
    return package


def serialize_package(package: Package, compresslevel: int = DEFAULT_COMPRESSLEVEL) -> bytes:
    """Write every part back into a new zip, DEFLATE at the given level."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name in package.names:
            original = package.info(name)
            info = zipfile.ZipInfo(name, date_time=original.date_time)
            info.external_attr = original.external_attr
            info.comment = original.comment
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, package.read(name), compresslevel=compresslevel)
    return buffer.getvalue()
