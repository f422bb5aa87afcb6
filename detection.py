"""
XlsxUnlock Detection Module

Cheap checks that run before a package is opened:
- File extension (only .xlsx packages are handled)
- Opening-password encryption (compound file signature instead of a zip)
"""

import struct
from enum import Enum
from pathlib import PurePath

from errors import EncryptedPackageError, UnsupportedFormatError

# Compound File Binary signature: D0 CF 11 E0 A1 B1 1A E1
OLE_MAGIC_HIGH = 0xD0CF11E0
OLE_MAGIC_LOW = 0xA1B11AE1
HEADER_SIZE = 8

SUPPORTED_EXTENSION = ".xlsx"
LEGACY_EXTENSION = ".xls"


class PackageKind(Enum):
    """Classification of the first bytes of an input."""
    NOT_ENCRYPTED = "not-encrypted"
    ENCRYPTED = "encrypted"


def classify_header(header: bytes) -> PackageKind:
    """
    Classify the leading bytes of an input.

    Only the first 8 bytes are inspected. Shorter inputs are reported as
    not encrypted so that the package loader can fail with a corruption
    error instead.
    """
    if len(header) < HEADER_SIZE:
        return PackageKind.NOT_ENCRYPTED

    high, low = struct.unpack(">II", bytes(header[:HEADER_SIZE]))
    if high == OLE_MAGIC_HIGH and low == OLE_MAGIC_LOW:
        return PackageKind.ENCRYPTED
    return PackageKind.NOT_ENCRYPTED


def ensure_not_encrypted(data: bytes) -> None:
    """Raise EncryptedPackageError if data starts with the compound file signature."""
    if classify_header(data[:HEADER_SIZE]) is PackageKind.ENCRYPTED:
        raise EncryptedPackageError()


def check_extension(filename) -> None:
    """Reject anything that is not named like an .xlsx package."""
    suffix = PurePath(str(filename)).suffix.lower()
    if suffix == SUPPORTED_EXTENSION:
        return

    if suffix == LEGACY_EXTENSION:
        raise UnsupportedFormatError(
            "Legacy .xls files are not supported. Please open the file in Excel "
            "and save it as .xlsx first."
        )
    raise UnsupportedFormatError(
        "Only .xlsx files are supported. Please convert .xls files to .xlsx in Excel first."
    )
