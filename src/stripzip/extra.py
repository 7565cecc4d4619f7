# stripzip/extra.py
"""
Extra-field purifier.

Extra fields (after both central directory entries and local headers) are a
sequence of [2B id][2B length][payload] sub-records. The ones known to carry
build-machine noise are neutralized in place: the id becomes STRIPPED_ID and the
payload is filled with 0xFF. Lengths never change, so every offset inside the
blob and in the rest of the archive stays valid.

Ids, see Info-ZIP proginfo/extrafld.txt:
  0x5455  extended timestamp (mtime/atime/ctime)
  0x7875  Unix UID/GID ("ux")
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from .records import ExtraHeader

EXTRA_EXT_TIMESTAMP = 0x5455
EXTRA_UNIX_UID_GID  = 0x7875
VOLATILE_EXTRA_IDS  = (EXTRA_EXT_TIMESTAMP, EXTRA_UNIX_UID_GID)

# Not a registered header id; marks a sub-record this tool already neutralized.
STRIPPED_ID = 0xFFFF
FILL_BYTE = 0xFF


@dataclass
class ExtraPurifyResult:
    ok: bool = True
    stripped: int = 0
    # set when ok is False
    unknown_id: Optional[int] = None
    unknown_length: Optional[int] = None
    bad_pos: Optional[int] = None
    overrun: bool = False
    actions: List[Tuple[int, int, str]] = field(default_factory=list)  # (pos, id, action)

    @property
    def reason(self) -> str:
        if self.ok:
            return ""
        if self.overrun:
            return f"extra field overrun at +{self.bad_pos}"
        return f"unknown extra header: 0x{self.unknown_id:04x} {self.unknown_length}"


def iter_extra_headers(buf) -> Iterator[Tuple[int, ExtraHeader]]:
    """
    Yield (pos, header) for every sub-record; pos is the header position in buf.
    Stops silently at the first sub-record that does not fit; callers that care
    compare the last end position against len(buf).
    """
    pos = 0
    n = len(buf)
    while pos + ExtraHeader.SIZE <= n:
        hdr = ExtraHeader.unpack_from(buf, pos)
        if pos + ExtraHeader.SIZE + hdr.length > n:
            return
        yield pos, hdr
        pos += ExtraHeader.SIZE + hdr.length


def purify_extra_data(buf: bytearray, *, debug: bool = False) -> ExtraPurifyResult:
    """
    Neutralize volatile sub-records of one extra-field blob in place.

    Stops at the first unknown id or at a sub-record that runs past len(buf);
    sub-records before that point have already been rewritten in buf, so the
    caller must not write the blob back when the result is not ok.
    """
    res = ExtraPurifyResult()
    n = len(buf)
    pos = 0
    while pos < n:
        if pos + ExtraHeader.SIZE > n:
            res.ok, res.overrun, res.bad_pos = False, True, pos
            return res
        hdr = ExtraHeader.unpack_from(buf, pos)
        start = pos + ExtraHeader.SIZE
        end = start + hdr.length
        if end > n:
            res.ok, res.overrun, res.bad_pos = False, True, pos
            res.unknown_id, res.unknown_length = hdr.id, hdr.length
            return res

        if hdr.id in VOLATILE_EXTRA_IDS:
            if debug:
                print(f"[StripZip][DEBUG]   extra +{pos}: 0x{hdr.id:04x} len={hdr.length} -> stripped", flush=True)
            res.actions.append((pos, hdr.id, "stripped"))
            ExtraHeader(STRIPPED_ID, hdr.length).pack_into(buf, pos)
            buf[start:end] = bytes([FILL_BYTE]) * hdr.length
            res.stripped += 1
        elif hdr.id == STRIPPED_ID:
            if debug:
                print(f"[StripZip][DEBUG]   extra +{pos}: already stripped len={hdr.length}", flush=True)
            res.actions.append((pos, hdr.id, "kept"))
        else:
            res.ok = False
            res.unknown_id, res.unknown_length, res.bad_pos = hdr.id, hdr.length, pos
            return res
        pos = end
    return res
