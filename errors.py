"""
PPTX Optimizer Errors

Every failure raised by the reader, transcoder, pruning engine and writer
derives from PackageError so the run can stop on the first one and report
which entry caused it.
"""

from typing import Optional


class PackageError(Exception):
    """Base class for all package processing failures."""

    def __init__(self, message: str, entry: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.entry = entry

    def __str__(self):
        if self.entry:
            return f"{self.entry}: {self.message}"
        return self.message


class ContainerError(PackageError):
    """The archive cannot be opened or one of its entries cannot be read."""


class StructureError(PackageError):
    """An XML part does not have the expected shape."""


class PartNameError(PackageError):
    """A part name does not carry a sequence number. Recoverable."""


class InvariantError(PackageError):
    """A cross-reference that must exist is missing at removal time."""


class MediaCodecError(PackageError):
    """A media file could not be decoded or re-encoded."""


class PackageWriteError(PackageError):
    """The output archive could not be written."""
