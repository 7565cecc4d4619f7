# stripzip/errors.py
from __future__ import annotations
from typing import Optional


class StripZipError(Exception):
    """
    Base class for every failure that aborts a walk.

    Carries the location of the offending record so the command line can
    print a diagnostic that points at one specific entry:
      - offset:      absolute byte offset of the record/field in the archive
      - entry_index: 1-based central directory index (None for the trailer)
      - field:       name of the field or record that failed validation
    """
    def __init__(
        self,
        reason: str,
        *,
        offset: Optional[int] = None,
        entry_index: Optional[int] = None,
        field: Optional[str] = None,
    ):
        self.reason = reason
        self.offset = offset
        self.entry_index = entry_index
        self.field = field
        super().__init__(self.__str__())

    def __str__(self):
        parts = []
        if self.entry_index is not None:
            parts.append(f"entry {self.entry_index}")
        if self.offset is not None:
            parts.append(f"offset 0x{self.offset:08x}")
        if self.field:
            parts.append(f"field {self.field}")
        where = ", ".join(parts)
        return f"{self.reason} ({where})" if where else self.reason


class StructuralError(StripZipError):
    """Bad signature, truncated record, split archive, Zip64, extra-field overrun."""


class UnsupportedFeatureError(StripZipError):
    """Encryption, unknown general purpose bits, unknown extra-field ids."""


class ArchiveIOError(StripZipError, OSError):
    """Short writes and failed seeks; keeps the errno of the underlying OSError."""
    def __init__(self, reason: str, *, cause: Optional[OSError] = None, **kw):
        self.cause = cause
        if cause is not None and cause.strerror:
            reason = f"{reason}: {cause.strerror}"
        StripZipError.__init__(self, reason, **kw)
        if cause is not None:
            self.errno = cause.errno
            self.strerror = cause.strerror
            self.filename = cause.filename


def with_entry(err: StripZipError, entry_index: int) -> StripZipError:
    """Stamp the entry index on an error raised below the walker (decoder/writer)."""
    if err.entry_index is None:
        err.entry_index = entry_index
        err.args = (str(err),)
    return err
