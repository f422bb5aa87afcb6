"""
XlsxUnlock Errors Module

Exception hierarchy shared by the unprotect and properties flows.
"""

from typing import Optional


class WorkbookError(Exception):
    """Base class for every failure surfaced to the user."""


class EncryptedPackageError(WorkbookError):
    """The input is an opening-password (compound file) container."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "This file is encrypted with a 'Password to Open'. This tool cannot "
            "bypass opening passwords, only sheet/workbook protection."
        )


class UnsupportedFormatError(WorkbookError):
    """The input does not carry the .xlsx extension."""


class CorruptPackageError(WorkbookError):
    """The zip container or one of its XML parts could not be parsed."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "Could not read .xlsx file structure. The file might be corrupted or encrypted."
        )


class ProcessingError(WorkbookError):
    """Generic wrapper for any other failure while processing a package."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "Failed to process the Excel file. It might be corrupted or in an unsupported format."
        )
