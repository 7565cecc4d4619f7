# stripzip/records.py
"""
Fixed-size ZIP records as explicit little-endian struct layouts.

Every format string starts with "<" so there is no implicit padding: each
record is exactly the bytes it occupies in the archive and pack() returns the
same number of bytes that read_from() consumed.

Offsets below are relative to the start of each record.

Local file header (30 bytes)
  0:4 sig, 4:2 ver_need, 6:2 flags, 8:2 method, 10:2 time, 12:2 date,
  14:4 crc32, 18:4 csize, 22:4 usize, 26:2 nlen, 28:2 xlen

Central directory file header (46 bytes)
  0:4 sig, 4:2 ver_made, 6:2 ver_need, 8:2 flags, 10:2 method, 12:2 time,
  14:2 date, 16:4 crc32, 20:4 csize, 24:4 usize, 28:2 nlen, 30:2 xlen,
  32:2 clen, 34:2 disk_no, 36:2 int_attr, 38:4 ext_attr, 42:4 lho

End of central directory (22 bytes + comment)
  0:4 sig, 4:2 disk, 6:2 cd_disk, 8:2 n_this, 10:2 n_total, 12:4 cd_size,
  16:4 cd_off, 20:2 comment_len
"""
from __future__ import annotations

import struct
from dataclasses import dataclass, astuple, fields
from typing import BinaryIO, ClassVar, List, Optional, Tuple

from .errors import StructuralError, UnsupportedFeatureError

# ---- ZIP constants ----
SIG_LOC  = 0x04034B50  # "PK\x03\x04" Local file header
SIG_CEN  = 0x02014B50  # "PK\x01\x02" Central directory file header
SIG_EOCD = 0x06054B50  # "PK\x05\x06" End of central directory
SIG_DD   = 0x08074B50  # "PK\x07\x08" Data descriptor optional signature

ZIP64_SENTINEL_32 = 0xFFFFFFFF

# General purpose bit flag masks
GPB_ENCRYPTION           = 0x1 << 0
GPB_METHOD_6_DETAIL      = 0x3 << 1
GPB_NOT_SEEKABLE         = 0x1 << 3   # sizes/crc in a trailing data descriptor
GPB_METHOD_8_ENH_DEFLATE = 0x1 << 4
GPB_PATCH_DATA           = 0x1 << 5
GPB_STRONG_ENCRYPTION    = 0x1 << 6
GPB_UTF8_ENCODING        = 0x1 << 11
GPB_CD_ENCRYPTED         = 0x1 << 13

GPB_ENC_MARKERS = GPB_ENCRYPTION | GPB_STRONG_ENCRYPTION | GPB_CD_ENCRYPTED
GPB_KNOWN = (
    GPB_ENCRYPTION | GPB_METHOD_6_DETAIL | GPB_NOT_SEEKABLE | GPB_METHOD_8_ENH_DEFLATE
    | GPB_PATCH_DATA | GPB_STRONG_ENCRYPTION | GPB_UTF8_ENCODING | GPB_CD_ENCRYPTED
)
GPB_UNKNOWN_MASK = 0xFFFF & ~GPB_KNOWN


def check_gp_bits(flags: int, *, offset: Optional[int] = None, field: str = "gp_bits") -> None:
    """
    Reject archives this tool does not understand.
    Encryption markers are checked first so an encrypted entry is reported as such
    even when it also carries unknown bits.
    """
    if flags & GPB_ENC_MARKERS:
        raise UnsupportedFeatureError(
            f"entry encrypted (gp bits 0x{flags:04x})", offset=offset, field=field
        )
    if flags & GPB_UNKNOWN_MASK:
        raise UnsupportedFeatureError(
            f"entry has strange general purpose bits: 0x{flags:04x}", offset=offset, field=field
        )


def read_exact(fh: BinaryIO, n: int, *, what: str, offset: Optional[int] = None) -> bytes:
    """Read exactly n bytes or raise StructuralError (truncated archive)."""
    if offset is None:
        offset = fh.tell()
    data = fh.read(n)
    if len(data) != n:
        raise StructuralError(
            f"truncated archive: wanted {n} bytes, got {len(data)}", offset=offset, field=what
        )
    return data


class _Record:
    """Shared decode/encode plumbing; subclasses are dataclasses with FORMAT/SIGNATURE."""
    FORMAT: ClassVar[str]
    SIGNATURE: ClassVar[int]
    NAME: ClassVar[str]

    @classmethod
    def size(cls) -> int:
        return struct.calcsize(cls.FORMAT)

    @classmethod
    def unpack(cls, buf: bytes, *, offset: Optional[int] = None):
        rec = cls(*struct.unpack(cls.FORMAT, buf))
        if rec.signature != cls.SIGNATURE:
            raise StructuralError(
                f"{cls.NAME} signature bad (0x{rec.signature:08x}, expected 0x{cls.SIGNATURE:08x})",
                offset=offset,
                field="signature",
            )
        return rec

    @classmethod
    def read_from(cls, fh: BinaryIO):
        """Decode one record at the current position; the cursor ends right after it."""
        offset = fh.tell()
        buf = read_exact(fh, cls.size(), what=cls.NAME, offset=offset)
        return cls.unpack(buf, offset=offset)

    def pack(self) -> bytes:
        return struct.pack(self.FORMAT, *astuple(self))


@dataclass
class EndOfCentralDirectory(_Record):
    FORMAT: ClassVar[str] = "<IHHHHIIH"
    SIGNATURE: ClassVar[int] = SIG_EOCD
    NAME: ClassVar[str] = "end of central directory"

    signature: int
    disk_number: int
    disk_num_start_of_cd: int
    num_dir_entries_this_disk: int
    total_num_entries_cd: int
    size_of_cd: int
    cd_offset_in_first_disk: int
    zip_file_comment_length: int


@dataclass
class CentralDirectoryHeader(_Record):
    FORMAT: ClassVar[str] = "<IHHHHHHIIIHHHHHII"
    SIGNATURE: ClassVar[int] = SIG_CEN
    NAME: ClassVar[str] = "central directory"

    signature: int
    version_made_by: int
    version_needed: int
    gp_bits: int
    compression_method: int
    last_mod_time: int
    last_mod_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    file_name_length: int
    extra_field_length: int
    file_comment_length: int
    disk_number_start: int
    internal_attr: int
    external_attr: int
    rel_offset_local_header: int


@dataclass
class LocalFileHeader(_Record):
    FORMAT: ClassVar[str] = "<IHHHHHIIIHH"
    SIGNATURE: ClassVar[int] = SIG_LOC
    NAME: ClassVar[str] = "local file header"

    signature: int
    version_needed: int
    gp_bits: int
    compression_method: int
    last_mod_time: int
    last_mod_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    name_length: int
    extra_field_length: int


@dataclass
class ExtraHeader:
    """[2B header id][2B data size]; no signature, it prefixes each extra sub-record."""
    FORMAT: ClassVar[str] = "<HH"
    SIZE: ClassVar[int] = 4

    id: int
    length: int

    @classmethod
    def unpack_from(cls, buf, pos: int) -> "ExtraHeader":
        return cls(*struct.unpack_from(cls.FORMAT, buf, pos))

    def pack_into(self, buf: bytearray, pos: int) -> None:
        struct.pack_into(self.FORMAT, buf, pos, self.id, self.length)


def field_spans(cls) -> List[Tuple[str, int, int]]:
    """[(field_name, start, size)] for a record class, relative to the record start."""
    spans = []
    pos = 0
    for f, code in zip(fields(cls), cls.FORMAT.lstrip("<")):
        n = struct.calcsize("<" + code)
        spans.append((f.name, pos, n))
        pos += n
    return spans


EOCD_SIZE = EndOfCentralDirectory.size()
CEN_SIZE = CentralDirectoryHeader.size()
LOC_SIZE = LocalFileHeader.size()
