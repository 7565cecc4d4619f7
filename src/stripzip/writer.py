# stripzip/writer.py
import os
from typing import BinaryIO

from .errors import ArchiveIOError


def overwrite_field(fh: BinaryIO, data: bytes) -> None:
    """
    Overwrite the len(data) bytes that end at the current position.

    The position is the same before and after the call (right after the
    rewritten region), so a read -> modify -> overwrite sequence never has to
    track offsets by hand.
    """
    n = len(data)
    end = fh.tell()
    start = end - n
    try:
        fh.seek(-n, os.SEEK_CUR)
    except OSError as e:
        raise ArchiveIOError("seek failed", cause=e, offset=start) from e
    try:
        written = fh.write(data)
    except OSError as e:
        raise ArchiveIOError("write failed", cause=e, offset=start) from e
    if written is not None and written != n:
        raise ArchiveIOError(f"short write: {written} of {n} bytes", offset=start)
    if fh.tell() != end:
        raise ArchiveIOError(f"position drifted after rewrite (0x{fh.tell():08x})", offset=start)


def seek_to(fh: BinaryIO, pos: int, *, field: str = None) -> None:
    """Absolute seek; a failure becomes ArchiveIOError pointing at the target offset."""
    try:
        fh.seek(pos, os.SEEK_SET)
    except OSError as e:
        raise ArchiveIOError("seek failed", cause=e, offset=pos, field=field) from e
