# stripzip/layout.py
"""
layout.py: read-only map of where every ZIP record lives, indexed by an interval tree.

Used to explain a byte difference between two builds ("offset 0x1a2 is the
local header last_mod_time of entry 3, foo/bar.txt"). The scan decodes the same
records as the walker and checks signatures, but applies no flag or extra-id
policy: it describes archives, it does not judge them.
"""
from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Tuple

from intervaltree import Interval, IntervalTree

from .errors import StripZipError, with_entry
from .records import (
    CentralDirectoryHeader,
    LocalFileHeader,
    EndOfCentralDirectory,
    GPB_NOT_SEEKABLE,
    SIG_DD,
    field_spans,
    read_exact,
)
from .walker import decode_name, read_trailer

# record kinds, in on-disk order for one entry
KIND_LOCAL_HEADER = "local_header"
KIND_LOCAL_NAME   = "local_name"
KIND_LOCAL_EXTRA  = "local_extra"
KIND_DATA         = "data"
KIND_DESCRIPTOR   = "data_descriptor"
KIND_CD_HEADER    = "cd_header"
KIND_CD_NAME      = "cd_name"
KIND_CD_EXTRA     = "cd_extra"
KIND_CD_COMMENT   = "cd_comment"
KIND_EOCD         = "eocd"

_HEADER_FIELDS = {
    KIND_LOCAL_HEADER: field_spans(LocalFileHeader),
    KIND_CD_HEADER: field_spans(CentralDirectoryHeader),
    KIND_EOCD: field_spans(EndOfCentralDirectory),
}


@dataclass(frozen=True)
class Region:
    start: int          # absolute offset
    end: int            # exclusive
    kind: str
    entry_index: Optional[int] = None   # 1-based; None for the EOCD
    name: str = ""

    @property
    def length(self) -> int:
        return self.end - self.start

    def label(self) -> str:
        if self.entry_index is None:
            return self.kind
        return f"entry {self.entry_index} {self.kind} ({self.name})"

    def fields_between(self, start: int, end: int) -> List[str]:
        """Names of the fixed-header fields overlapped by [start, end); [] for variable regions."""
        spans = _HEADER_FIELDS.get(self.kind)
        if not spans:
            return []
        out = []
        for fname, rel, size in spans:
            f0 = self.start + rel
            f1 = f0 + size
            if f0 < end and start < f1:
                out.append(fname)
        return out


def _data_descriptor_len(fh: BinaryIO, at: int) -> int:
    """
    Length of the data descriptor at `at`: crc32/csize/usize (12 bytes),
    plus 4 when it starts with the optional PK\\x07\\x08 signature.
    """
    fh.seek(at, os.SEEK_SET)
    head = fh.read(4)
    if len(head) == 4 and struct.unpack("<I", head)[0] == SIG_DD:
        return 16
    return 12


def _entry_regions(fh: BinaryIO, index: int, size: int) -> List[Region]:
    regions: List[Region] = []
    cd_off = fh.tell()
    cd = CentralDirectoryHeader.read_from(fh)
    name = decode_name(read_exact(fh, cd.file_name_length, what="cd.file_name"), cd.gp_bits)

    pos = cd_off
    for kind, n in (
        (KIND_CD_HEADER, CentralDirectoryHeader.size()),
        (KIND_CD_NAME, cd.file_name_length),
        (KIND_CD_EXTRA, cd.extra_field_length),
        (KIND_CD_COMMENT, cd.file_comment_length),
    ):
        regions.append(Region(pos, pos + n, kind, index, name))
        pos += n
    resume = pos

    lho = cd.rel_offset_local_header
    fh.seek(lho, os.SEEK_SET)
    lf = LocalFileHeader.read_from(fh)
    pos = lho
    for kind, n in (
        (KIND_LOCAL_HEADER, LocalFileHeader.size()),
        (KIND_LOCAL_NAME, lf.name_length),
        (KIND_LOCAL_EXTRA, lf.extra_field_length),
        # CD sizes are the source of truth (local ones are 0 when streamed)
        (KIND_DATA, cd.compressed_size),
    ):
        regions.append(Region(pos, pos + n, kind, index, name))
        pos += n
    if lf.gp_bits & GPB_NOT_SEEKABLE and pos < size:
        n = _data_descriptor_len(fh, pos)
        regions.append(Region(pos, min(pos + n, size), KIND_DESCRIPTOR, index, name))

    fh.seek(resume, os.SEEK_SET)
    return regions


def scan_layout_fh(fh: BinaryIO) -> List[Region]:
    eocd = read_trailer(fh)
    size = fh.tell()
    regions: List[Region] = []
    fh.seek(eocd.cd_offset_in_first_disk, os.SEEK_SET)
    for index in range(1, eocd.total_num_entries_cd + 1):
        try:
            regions.extend(_entry_regions(fh, index, size))
        except StripZipError as e:
            with_entry(e, index)
            raise
    regions.append(Region(size - EndOfCentralDirectory.size(), size, KIND_EOCD))
    return [r for r in regions if r.length > 0]


def scan_layout(path) -> List[Region]:
    """Return every non-empty record region of the archive at `path`, sorted by offset."""
    with open(os.fspath(path), "rb") as fh:
        regions = scan_layout_fh(fh)
    return sorted(regions, key=lambda r: (r.start, r.end))


def build_region_tree(regions: List[Region]) -> IntervalTree:
    """
    Interval tree indexed by [start, end); payload is the Region.
    Zero-length regions are skipped (IntervalTree rejects null intervals).
    """
    tree = IntervalTree()
    for r in regions:
        if r.length > 0:
            tree.add(Interval(r.start, r.end, r))
    return tree


def regions_overlapping(tree: IntervalTree, start: int, end: int) -> List[Region]:
    """Regions overlapping [start, end), ordered by offset."""
    hits = [iv.data for iv in tree.overlap(start, end)]
    return sorted(hits, key=lambda r: (r.start, r.end))


def unmapped_spans(regions: List[Region], size: int) -> List[Tuple[int, int]]:
    """Byte ranges [start, end) of the archive that no record covers (gaps, prepended stubs)."""
    out = []
    pos = 0
    for r in sorted(regions, key=lambda r: r.start):
        if r.start > pos:
            out.append((pos, r.start))
        pos = max(pos, r.end)
    if pos < size:
        out.append((pos, size))
    return out
