"""
XlsxUnlock Protection Processor Module

Removes workbook- and sheet-level protection from XLSX packages.
Protection lives in plain XML elements, so it is stripped directly with lxml
and every other part of the package is left exactly as it was.

Strategy:
1. Reject anything that is not an .xlsx or that is password-encrypted
2. Load the zip into memory
3. Remove <workbookProtection> from the workbook part
4. Remove <sheetProtection> from every worksheet part
5. Repack into a new XLSX
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

from detection import check_extension, ensure_not_encrypted
from errors import ProcessingError, WorkbookError
from package import (
    DEFAULT_COMPRESSLEVEL,
    Package,
    PartLayout,
    load_package,
    serialize_package,
)

DEFAULT_WORKBOOK_MARKERS = ("workbookProtection",)
DEFAULT_SHEET_MARKERS = ("sheetProtection",)


class Checkpoint(Enum):
    """Progress checkpoints of the unprotect flow, in emission order."""
    READING_STRUCTURE = "Reading file structure..."
    ANALYZING_WORKBOOK = "Analyzing workbook..."
    REMOVING_WORKBOOK_PROTECTION = "Removing workbook protection..."
    SCANNING_WORKSHEETS = "Scanning worksheets..."
    PROTECTION_FOUND_IN_SHEETS = "Found protection in sheets..."
    REPACKAGING = "Repackaging Excel file..."
    COMPLETED = "Completed"


ProgressSink = Callable[[Checkpoint], None]


def _ignore_progress(step: Checkpoint) -> None:
    pass


@dataclass
class ProtectionConfig:
    """Element local names treated as protection markers."""
    workbook_markers: list[str] = field(default_factory=lambda: list(DEFAULT_WORKBOOK_MARKERS))
    sheet_markers: list[str] = field(default_factory=lambda: list(DEFAULT_SHEET_MARKERS))

    @classmethod
    def from_config(cls, section: Optional[dict]) -> "ProtectionConfig":
        section = section or {}
        return cls(
            workbook_markers=list(section.get("workbook_markers", DEFAULT_WORKBOOK_MARKERS)),
            sheet_markers=list(section.get("sheet_markers", DEFAULT_SHEET_MARKERS)),
        )


@dataclass
class StripResult:
    """What the stripper found and removed."""
    workbook_markers_removed: int = 0
    sheet_markers_removed: int = 0
    sheets_unprotected: list[str] = field(default_factory=list)
    sheets_scanned: int = 0

    @property
    def was_protected(self) -> bool:
        return self.workbook_markers_removed > 0 or self.sheet_markers_removed > 0


@dataclass
class UnprotectResult:
    """Output of the unprotect flow."""
    data: bytes
    strip: StripResult

    @property
    def was_protected(self) -> bool:
        return self.strip.was_protected


class ProtectionStripper:
    """
    Strips protection markers from a loaded package.

    Markers are matched by local name so any namespace prefix
    (x:, main:, none at all) is handled the same way.
    """

    def __init__(self, layout: Optional[PartLayout] = None,
                 protection: Optional[ProtectionConfig] = None, verbose: bool = False):
        self.layout = layout or PartLayout()
        self.protection = protection or ProtectionConfig()
        self.verbose = verbose

    def strip(self, package: Package, on_progress: ProgressSink = _ignore_progress) -> StripResult:
        """
        Remove all protection markers from package in place.

        Parts without markers are not reserialized, so they keep their
        original bytes.
        """
        result = StripResult()

        on_progress(Checkpoint.ANALYZING_WORKBOOK)
        if self.layout.workbook in package:
            removed = self._strip_part(package, self.layout.workbook,
                                       self.protection.workbook_markers,
                                       on_found=lambda: on_progress(Checkpoint.REMOVING_WORKBOOK_PROTECTION))
            result.workbook_markers_removed = removed

        # Only announced once, and only if the workbook had no protection
        def announce_sheets():
            if not result.was_protected:
                on_progress(Checkpoint.PROTECTION_FOUND_IN_SHEETS)

        on_progress(Checkpoint.SCANNING_WORKSHEETS)
        worksheets = list(package.iter_parts(self.layout.worksheets_dir, self.layout.worksheet_suffix))
        for path in worksheets:
            result.sheets_scanned += 1
            removed = self._strip_part(package, path, self.protection.sheet_markers,
                                       on_found=announce_sheets)
            if removed:
                result.sheet_markers_removed += removed
                result.sheets_unprotected.append(path)

        return result

    def _strip_part(self, package: Package, path: str, markers: Iterable[str],
                    on_found: Callable[[], None]) -> int:
        part = package.read_xml(path)

        removed = 0
        for name in markers:
            count = part.remove_local(name)
            if count and self.verbose:
                print(f"  Removed {count} {name} from {path}")
            removed += count

        if removed:
            on_found()
            package.replace_xml(part)
        return removed


def unprotect_file(
    data: bytes,
    filename: str,
    on_progress: ProgressSink = _ignore_progress,
    layout: Optional[PartLayout] = None,
    protection: Optional[ProtectionConfig] = None,
    compresslevel: int = DEFAULT_COMPRESSLEVEL,
    verbose: bool = False,
) -> UnprotectResult:
    """
    Remove sheet and workbook protection from an .xlsx file.

    Args:
        data: Raw bytes of the file
        filename: Name of the file, used for the extension check
        on_progress: Called synchronously with each Checkpoint reached
        layout: Part locations (defaults to the standard XLSX layout)
        protection: Marker names to remove
        compresslevel: DEFLATE level for the rebuilt package
        verbose: Print each removal

    Returns:
        UnprotectResult holding the rebuilt package bytes

    Raises:
        UnsupportedFormatError: filename is not an .xlsx
        EncryptedPackageError: file is protected with a password to open
        CorruptPackageError: zip or XML could not be parsed
        ProcessingError: anything else went wrong
    """
    check_extension(filename)
    ensure_not_encrypted(data)

    try:
        on_progress(Checkpoint.READING_STRUCTURE)
        package = load_package(data)

        stripper = ProtectionStripper(layout, protection, verbose=verbose)
        strip_result = stripper.strip(package, on_progress)

        on_progress(Checkpoint.REPACKAGING)
        output = serialize_package(package, compresslevel=compresslevel)
    except WorkbookError:
        raise
    except Exception as e:
        raise ProcessingError() from e

    on_progress(Checkpoint.COMPLETED)
    return UnprotectResult(data=output, strip=strip_result)
