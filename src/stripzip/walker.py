# stripzip/walker.py
"""
Archive walker: one forward pass over the central directory, with a detour to
each entry's local file header.

  1) trailer      seek to size-22, decode EOCD, reject comment/split/Zip64
  2) CD entry     decode, check gp bits, zero time/date, rewrite header,
                  read name, purify + rewrite extra, read comment
  3) local header remember position, seek to lho, same checks and rewrites,
                  seek back
  4) repeat for total_num_entries_cd entries; no second pass

Every rewrite goes through overwrite_field(), which leaves the cursor where the
read left it, so the pass never tracks offsets by hand. Any failure aborts the
whole walk; fields rewritten before the failure stay rewritten (use
StripZipConfig(staged=True) for all-or-nothing).
"""
from __future__ import annotations

import os
import shutil
import tempfile
import time
from typing import BinaryIO, List, Optional

from .config import StripZipConfig, DEFAULT_CONFIG
from .errors import StripZipError, StructuralError, UnsupportedFeatureError, with_entry
from .extra import purify_extra_data
from .records import (
    EndOfCentralDirectory,
    CentralDirectoryHeader,
    LocalFileHeader,
    EOCD_SIZE,
    GPB_UTF8_ENCODING,
    ZIP64_SENTINEL_32,
    check_gp_bits,
    read_exact,
)
from .types import EntryReport, PurifyReport
from .writer import overwrite_field, seek_to


def _ms(s: float) -> str:
    """Format seconds -> milliseconds string with 3 decimals."""
    return f"{s * 1000:.3f} ms"

def _info(msg: str):
    print(msg, flush=True)

def decode_name(raw: bytes, gp_bits: int) -> str:
    # Same rule as zipfile: UTF-8 when bit 11 is set, cp437 otherwise.
    if gp_bits & GPB_UTF8_ENCODING:
        return raw.decode("utf-8", "replace")
    return raw.decode("cp437", "replace")


def read_trailer(fh: BinaryIO) -> EndOfCentralDirectory:
    """
    Decode the EOCD from the last 22 bytes of the archive and reject the
    dialects this tool does not handle. Leaves the cursor at end of file.
    """
    fh.seek(0, os.SEEK_END)
    size = fh.tell()
    if size < EOCD_SIZE:
        raise StructuralError(
            f"file too small for an end of central directory record ({size} bytes)",
            offset=0, field="end of central directory",
        )
    eocd_off = size - EOCD_SIZE
    seek_to(fh, eocd_off, field="end of central directory")
    try:
        eocd = EndOfCentralDirectory.read_from(fh)
    except StructuralError as e:
        raise StructuralError(
            "did not get a good end of central directory header; there might be a ZIP file comment",
            offset=e.offset, field=e.field,
        ) from e

    if eocd.disk_number != 0:
        raise StructuralError(
            f"split archive (disk number {eocd.disk_number}); multi-disk archives are not supported",
            offset=eocd_off + 4, field="disk_number",
        )
    if eocd.size_of_cd == ZIP64_SENTINEL_32:
        raise StructuralError(
            "Zip64 archive; Zip64 is not supported",
            offset=eocd_off + 12, field="size_of_cd",
        )
    return eocd


class ArchiveWalker:
    """
    Purifies one open archive. fh must be opened "r+b" (or "rb" with
    config.dry_run, in which case nothing is written).
    Only one walker may operate on a given archive at a time.
    """
    def __init__(self, fh: BinaryIO, config: StripZipConfig = DEFAULT_CONFIG, path: str = ""):
        self.fh = fh
        self.config = config
        self.path = path or getattr(fh, "name", "")
        self.report: Optional[PurifyReport] = None

    # ---------- logging ----------

    def _debug(self, msg: str):
        if self.config.debug:
            _info(f"[StripZip][DEBUG] {msg}")

    def _prof(self, msg: str, t1: float, t0: float):
        if self.config.profile:
            _info(f"[Profile][StripZip] {msg}: {_ms(t1 - t0)}")

    # ---------- primitives ----------

    def _rewrite(self, data: bytes):
        if self.config.dry_run:
            return
        overwrite_field(self.fh, data)

    def _zero_timestamps(self, hdr, prefix: str, rep: EntryReport):
        """Zero last_mod_time/date on a decoded CD or local header and note what changed."""
        if hdr.last_mod_time:
            rep.changed.append(f"{prefix}.last_mod_time")
        if hdr.last_mod_date:
            rep.changed.append(f"{prefix}.last_mod_date")
        if hdr.last_mod_time or hdr.last_mod_date:
            self.report.timestamps_zeroed += 1
        self._debug(f"  {prefix} time=0x{hdr.last_mod_time:04x} date=0x{hdr.last_mod_date:04x} -> 0")
        hdr.last_mod_time = 0
        hdr.last_mod_date = 0

    def _purify_extra(self, length: int, prefix: str, rep: EntryReport):
        """Read `length` extra bytes at the cursor, purify them and write them back."""
        pos = self.fh.tell()
        buf = bytearray(read_exact(self.fh, length, what=f"{prefix}.extra", offset=pos))
        res = purify_extra_data(buf, debug=self.config.debug)
        if not res.ok:
            bad_off = pos + (res.bad_pos or 0)
            if res.overrun:
                raise StructuralError(res.reason, offset=bad_off, field=f"{prefix}.extra")
            raise UnsupportedFeatureError(res.reason, offset=bad_off, field=f"{prefix}.extra")
        for _, hid, action in res.actions:
            if action == "stripped":
                rep.changed.append(f"{prefix}.extra[0x{hid:04x}]")
        self.report.extras_stripped += res.stripped
        self._rewrite(bytes(buf))

    # ---------- steps ----------

    def _process_cd_entry(self, index: int, total: int) -> CentralDirectoryHeader:
        fh = self.fh
        cd_off = fh.tell()
        cd = CentralDirectoryHeader.read_from(fh)
        check_gp_bits(cd.gp_bits, offset=cd_off + 8, field="cd.gp_bits")

        rep = EntryReport(
            index=index,
            name="",
            cd_offset=cd_off,
            local_header_offset=cd.rel_offset_local_header,
        )
        self.report.entries.append(rep)
        self._zero_timestamps(cd, "cd", rep)
        self._rewrite(cd.pack())

        rep.name = decode_name(read_exact(fh, cd.file_name_length, what="cd.file_name"), cd.gp_bits)
        if not self.config.quiet:
            _info(f"[StripZip] Now purifying entry {index} / {total} (offset 0x{cd_off:08x}) {rep.name}")

        # name, extra, comment: that is the on-disk order
        if cd.extra_field_length:
            self._purify_extra(cd.extra_field_length, "cd", rep)
        if cd.file_comment_length:
            read_exact(fh, cd.file_comment_length, what="cd.file_comment")
        return cd

    def _process_local_header(self, cd: CentralDirectoryHeader, rep: EntryReport):
        fh = self.fh
        lho = cd.rel_offset_local_header
        self._debug(f"  seek local header @0x{lho:08x}")
        seek_to(fh, lho, field="local_header")
        lf = LocalFileHeader.read_from(fh)
        check_gp_bits(lf.gp_bits, offset=lho + 6, field="local.gp_bits")

        self._zero_timestamps(lf, "local", rep)
        self._rewrite(lf.pack())

        # file name is left untouched
        local_name = read_exact(fh, lf.name_length, what="local.file_name")
        if self.config.debug and decode_name(local_name, lf.gp_bits) != rep.name:
            self._debug(f"  local name {local_name!r} differs from central directory name {rep.name!r}")

        if lf.extra_field_length:
            self._purify_extra(lf.extra_field_length, "local", rep)

    def walk(self) -> PurifyReport:
        fh = self.fh
        t0 = time.perf_counter()
        eocd = read_trailer(fh)
        size = fh.tell()
        t1 = time.perf_counter()
        self._prof("trailer", t1, t0)

        self.report = PurifyReport(
            path=str(self.path),
            size_before=size,
            dry_run=self.config.dry_run,
            staged=self.config.staged,
        )
        self._debug(
            f"EOCD entries={eocd.total_num_entries_cd} cd_off=0x{eocd.cd_offset_in_first_disk:08x} "
            f"cd_size={eocd.size_of_cd} comment_len={eocd.zip_file_comment_length}"
        )

        total = eocd.total_num_entries_cd
        seek_to(fh, eocd.cd_offset_in_first_disk, field="central_directory")
        for index in range(1, total + 1):
            te0 = time.perf_counter()
            try:
                cd = self._process_cd_entry(index, total)
                # local header detour, then resume the central directory
                resume = fh.tell()
                self._process_local_header(cd, self.report.entries[-1])
                seek_to(fh, resume, field="central_directory")
            except StripZipError as e:
                with_entry(e, index)
                raise
            self._prof(f"entry {index}", time.perf_counter(), te0)

        fh.seek(0, os.SEEK_END)
        self.report.size_after = fh.tell()
        if self.report.size_after != size:
            raise StructuralError(
                f"archive length changed during walk ({size} -> {self.report.size_after})",
                offset=size, field="length",
            )
        t2 = time.perf_counter()
        self._prof("central directory walk", t2, t1)
        self.report.elapsed_ms = (t2 - t0) * 1000
        return self.report


# ---------- file-level entry points ----------

def _walk_path(path: str, config: StripZipConfig) -> PurifyReport:
    mode = "rb" if config.dry_run else "r+b"
    with open(path, mode) as fh:
        return ArchiveWalker(fh, config, path=path).walk()

def _walk_staged(path: str, config: StripZipConfig) -> PurifyReport:
    """
    Purify a sibling copy and os.replace() the original only when the whole
    walk succeeded. On failure the copy is removed and the original is untouched.
    A symlinked path is resolved first so the link target is what gets replaced.
    """
    target = os.path.realpath(path)
    directory = os.path.dirname(target)
    fd, tmp = tempfile.mkstemp(prefix=".stripzip-", suffix=".tmp", dir=directory)
    os.close(fd)
    done = False
    try:
        shutil.copyfile(target, tmp)
        shutil.copymode(target, tmp)
        with open(tmp, "r+b") as fh:
            report = ArchiveWalker(fh, config, path=path).walk()
        os.replace(tmp, target)
        done = True
    finally:
        if not done and os.path.exists(tmp):
            os.unlink(tmp)
    if config.debug:
        _info(f"[StripZip][DEBUG] staged copy replaced {target}")
    return report

def purify_archive(path, config: StripZipConfig = DEFAULT_CONFIG) -> PurifyReport:
    """
    Normalize timestamps and UID/GID extras of the ZIP archive at `path` in place.
    Raises StripZipError (or OSError when the file cannot be opened) on failure.
    """
    path = os.fspath(path)
    if config.staged and not config.dry_run:
        return _walk_staged(path, config)
    return _walk_path(path, config)

def check_archive(path, config: StripZipConfig = DEFAULT_CONFIG) -> PurifyReport:
    """Read-only walk; report.modified tells whether purify_archive() would change anything."""
    cfg = StripZipConfig(
        debug=config.debug,
        profile=config.profile,
        quiet=config.quiet,
        dry_run=True,
        staged=False,
    )
    return purify_archive(path, cfg)


def modified_entries(report: PurifyReport) -> List[EntryReport]:
    return [e for e in report.entries if e.modified]
