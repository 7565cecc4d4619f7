# tests/unit/test_walker_unit.py

import errno
import io
import os
import struct

import pytest

from stripzip.config import StripZipConfig
from stripzip.errors import ArchiveIOError, StructuralError, UnsupportedFeatureError
from stripzip.walker import ArchiveWalker, check_archive, purify_archive

from zip_fixtures import (
    Entry,
    build_zip,
    cd_fields,
    cd_offsets,
    extra_field,
    local_fields,
    read_file,
    write_temp_zip,
)

QUIET = StripZipConfig(quiet=True)


@pytest.fixture
def zip_path():
    paths = []

    def make(content):
        p = write_temp_zip(content)
        paths.append(p)
        return p

    yield make
    for p in paths:
        if os.path.exists(p):
            os.unlink(p)


def walk_bytes(content, config=QUIET):
    fh = io.BytesIO(content)
    report = ArchiveWalker(fh, config).walk()
    return fh.getvalue(), report


# --- scenario ---

def test_single_entry_scenario(zip_path):
    ext = extra_field(0x5455, b"\x03\xaa\xbb\xcc\xdd")
    path = zip_path(build_zip([Entry(cd_extra=ext, local_extra=ext)]))

    report = purify_archive(path, QUIET)
    buf = read_file(path)

    t, d, name, extra, _comment, lho = cd_fields(buf, cd_offsets(buf)[0])
    assert (t, d) == (0, 0)
    assert name == b"hello.txt"
    assert extra == b"\xff\xff\x05\x00" + b"\xff" * 5

    lt, ld, lname, lextra = local_fields(buf, lho)
    assert (lt, ld) == (0, 0)
    assert lname == b"hello.txt"
    assert lextra == b"\xff\xff\x05\x00" + b"\xff" * 5

    assert report.num_entries == 1
    assert report.timestamps_zeroed == 2
    assert report.extras_stripped == 2
    assert report.entries[0].name == "hello.txt"
    assert "cd.last_mod_time" in report.entries[0].changed
    assert "local.extra[0x5455]" in report.entries[0].changed


def test_payload_and_length_untouched(zip_path):
    entries = [
        Entry(name=b"a.txt", data=b"alpha", cd_extra=extra_field(0x7875, b"\x01\x04\xe8\x03\x00\x00")),
        Entry(name=b"dir/b.bin", data=bytes(range(200)), local_extra=extra_field(0x5455, b"\x01\x00\x00\x00\x01")),
        Entry(name=b"c", data=b"", time=0, date=0),
    ]
    before = build_zip(entries)
    path = zip_path(before)
    purify_archive(path, QUIET)
    after = read_file(path)

    assert len(after) == len(before)
    assert b"alpha" in after and bytes(range(200)) in after
    for off in cd_offsets(after):
        t, d, _n, _x, _c, lho = cd_fields(after, off)
        assert (t, d) == (0, 0)
        assert local_fields(after, lho)[:2] == (0, 0)


def test_idempotent(zip_path):
    ext = extra_field(0x5455, b"\x01\x02\x03\x04\x05") + extra_field(0x7875, b"\x01\x02")
    path = zip_path(build_zip([Entry(cd_extra=ext, local_extra=ext), Entry(name=b"two")]))
    purify_archive(path, QUIET)
    once = read_file(path)
    report = purify_archive(path, QUIET)
    assert read_file(path) == once
    assert not report.modified
    assert report.extras_stripped == 0


def test_comment_is_read_after_extra(zip_path):
    # on-disk order is name, extra, comment
    e = Entry(cd_extra=extra_field(0x5455, b"\x01\x02\x03\x04\x05"), comment=b"keep me")
    path = zip_path(build_zip([e, Entry(name=b"second")]))
    purify_archive(path, QUIET)
    buf = read_file(path)
    offs = cd_offsets(buf)
    _t, _d, _n, extra, comment, _lho = cd_fields(buf, offs[0])
    assert extra == b"\xff\xff\x05\x00" + b"\xff" * 5
    assert comment == b"keep me"
    assert cd_fields(buf, offs[1])[2] == b"second"


def test_prepended_stub_offsets(zip_path):
    path = zip_path(build_zip([Entry()], prefix=b"#!/bin/sh\nexit 0\n"))
    purify_archive(path, QUIET)
    buf = read_file(path)
    _t, _d, _n, _x, _c, lho = cd_fields(buf, cd_offsets(buf)[0])
    assert buf[:17] == b"#!/bin/sh\nexit 0\n"
    assert local_fields(buf, lho)[:2] == (0, 0)


def test_empty_archive():
    out, report = walk_bytes(build_zip([]))
    assert out == build_zip([])
    assert report.num_entries == 0


# --- trailer rejections ---

def test_trailing_comment_rejected():
    with pytest.raises(StructuralError, match="ZIP file comment"):
        walk_bytes(build_zip([Entry()], comment=b"built by ci"))


def test_split_archive_rejected():
    with pytest.raises(StructuralError, match="split archive") as exc:
        walk_bytes(build_zip([Entry()], disk=1))
    assert exc.value.field == "disk_number"
    assert exc.value.entry_index is None


def test_zip64_rejected():
    with pytest.raises(StructuralError, match="Zip64") as exc:
        walk_bytes(build_zip([Entry()], cd_size=0xFFFFFFFF))
    assert exc.value.field == "size_of_cd"


def test_too_small_rejected():
    with pytest.raises(StructuralError, match="too small"):
        walk_bytes(b"PK\x05\x06")


def test_not_a_zip_rejected():
    with pytest.raises(StructuralError):
        walk_bytes(b"\x00" * 64)


# --- per-entry rejections ---

def test_unknown_extra_aborts_without_touching_later_entries(zip_path):
    entries = [
        Entry(name=b"one"),
        Entry(name=b"two", cd_extra=extra_field(0x000A, b"\x00" * 4)),
        Entry(name=b"three"),
    ]
    path = zip_path(build_zip(entries))
    with pytest.raises(UnsupportedFeatureError) as exc:
        purify_archive(path, QUIET)
    assert exc.value.entry_index == 2
    assert exc.value.field == "cd.extra"
    assert "0x000a" in str(exc.value)

    buf = read_file(path)
    offs = cd_offsets(buf)
    # entry 1 done, entry 3 never reached (no rollback of entry 1)
    assert cd_fields(buf, offs[0])[:2] == (0, 0)
    t, d, _n, _x, _c, lho = cd_fields(buf, offs[2])
    assert (t, d) == (0x1234, 0x5678)
    assert local_fields(buf, lho)[:2] == (0x1234, 0x5678)


def test_unknown_local_extra_aborts_without_touching_later_entries(zip_path):
    entries = [
        Entry(name=b"one"),
        Entry(name=b"two", local_extra=extra_field(0xCAFE, b"")),
        Entry(name=b"three"),
    ]
    path = zip_path(build_zip(entries))
    with pytest.raises(UnsupportedFeatureError) as exc:
        purify_archive(path, QUIET)
    assert exc.value.entry_index == 2
    assert exc.value.field == "local.extra"
    assert "0xcafe" in str(exc.value)

    buf = read_file(path)
    offs = cd_offsets(buf)
    t, d, _n, _x, _c, lho = cd_fields(buf, offs[2])
    assert (t, d) == (0x1234, 0x5678)
    assert local_fields(buf, lho)[:2] == (0x1234, 0x5678)
    # the unknown record itself is left as it was
    assert local_fields(buf, cd_fields(buf, offs[1])[5])[3] == extra_field(0xCAFE, b"")


@pytest.mark.parametrize("flags,match", [
    (0x0001, "encrypted"),
    (0x0040, "encrypted"),
    (0x2000, "encrypted"),
    (0x0100, "strange general purpose bits"),
])
def test_bad_flags_rejected_before_rewrite(zip_path, flags, match):
    path = zip_path(build_zip([Entry(name=b"ok"), Entry(name=b"bad", flags=flags)]))
    with pytest.raises(UnsupportedFeatureError, match=match) as exc:
        purify_archive(path, QUIET)
    assert exc.value.entry_index == 2
    assert exc.value.field == "cd.gp_bits"
    buf = read_file(path)
    assert cd_fields(buf, cd_offsets(buf)[1])[:2] == (0x1234, 0x5678)


def test_local_header_flags_checked(zip_path):
    path = zip_path(build_zip([Entry(local_flags=0x0001)]))
    with pytest.raises(UnsupportedFeatureError) as exc:
        purify_archive(path, QUIET)
    assert exc.value.field == "local.gp_bits"
    buf = read_file(path)
    lho = cd_fields(buf, cd_offsets(buf)[0])[5]
    assert local_fields(buf, lho)[:2] == (0x1234, 0x5678)


def test_bad_central_directory_signature():
    buf = bytearray(build_zip([Entry(), Entry(name=b"b")]))
    second = cd_offsets(bytes(buf))[1]
    buf[second:second + 4] = b"XXXX"
    with pytest.raises(StructuralError, match="central directory signature bad") as exc:
        walk_bytes(bytes(buf))
    assert exc.value.entry_index == 2
    assert exc.value.offset == second


def test_bad_local_header_offset():
    buf = bytearray(build_zip([Entry()]))
    off = cd_offsets(bytes(buf))[0]
    struct.pack_into("<I", buf, off + 42, 3)
    with pytest.raises(StructuralError, match="local file header signature bad") as exc:
        walk_bytes(bytes(buf))
    assert exc.value.offset == 3


def test_local_header_past_end_is_truncation():
    buf = bytearray(build_zip([Entry()]))
    off = cd_offsets(bytes(buf))[0]
    struct.pack_into("<I", buf, off + 42, len(buf) - 10)
    with pytest.raises(StructuralError, match="truncated"):
        walk_bytes(bytes(buf))


def test_extra_overrun_is_structural(zip_path):
    path = zip_path(build_zip([Entry(local_extra=struct.pack("<HH", 0x5455, 40))]))
    with pytest.raises(StructuralError, match="overrun") as exc:
        purify_archive(path, QUIET)
    assert exc.value.field == "local.extra"


def test_error_message_names_entry_offset_and_field(zip_path):
    path = zip_path(build_zip([Entry(cd_extra=extra_field(0x9901, b"\x00" * 7))]))
    with pytest.raises(UnsupportedFeatureError) as exc:
        purify_archive(path, QUIET)
    msg = str(exc.value)
    assert "entry 1" in msg
    assert "offset 0x" in msg
    assert "field cd.extra" in msg


# --- modes ---

def test_dry_run_does_not_write(zip_path):
    content = build_zip([Entry(cd_extra=extra_field(0x5455, b"\x01\x02\x03\x04\x05"))])
    path = zip_path(content)
    report = check_archive(path, QUIET)
    assert read_file(path) == content
    assert report.dry_run
    assert report.modified
    assert report.extras_stripped == 1


def test_check_on_normalized_archive(zip_path):
    path = zip_path(build_zip([Entry(time=0, date=0, cd_extra=extra_field(0xFFFF, b"\xff"))]))
    assert not check_archive(path, QUIET).modified


def test_staged_success_replaces_original(zip_path):
    path = zip_path(build_zip([Entry()]))
    report = purify_archive(path, StripZipConfig(quiet=True, staged=True))
    assert report.staged
    buf = read_file(path)
    assert cd_fields(buf, cd_offsets(buf)[0])[:2] == (0, 0)
    leftovers = [n for n in os.listdir(os.path.dirname(path)) if n.startswith(".stripzip-")]
    assert leftovers == []


def test_staged_failure_leaves_original_untouched(zip_path):
    content = build_zip([Entry(name=b"one"), Entry(name=b"two", cd_extra=extra_field(0x000A, b"\x00"))])
    path = zip_path(content)
    with pytest.raises(UnsupportedFeatureError):
        purify_archive(path, StripZipConfig(quiet=True, staged=True))
    assert read_file(path) == content
    leftovers = [n for n in os.listdir(os.path.dirname(path)) if n.startswith(".stripzip-")]
    assert leftovers == []


def test_missing_file_raises_oserror(tmp_path):
    with pytest.raises(OSError):
        purify_archive(tmp_path / "nope.zip", QUIET)


def test_progress_and_debug_output(capsys):
    walk_bytes(build_zip([Entry(name=b"x.txt")]), StripZipConfig(debug=True, profile=True))
    out = capsys.readouterr().out
    assert "[StripZip] Now purifying entry 1 / 1 (offset 0x" in out
    assert "x.txt" in out
    assert "[StripZip][DEBUG]" in out
    assert "[Profile][StripZip]" in out


class _FailingSeek(io.BytesIO):
    """BytesIO whose absolute seek to one offset fails like a broken device."""
    def __init__(self, data, fail_at):
        super().__init__(data)
        self.fail_at = fail_at

    def seek(self, pos, whence=os.SEEK_SET):
        if whence == os.SEEK_SET and pos == self.fail_at:
            raise OSError(errno.EIO, "Input/output error")
        return super().seek(pos, whence)


def test_failed_seek_is_archive_io_error():
    content = build_zip([Entry()], prefix=b"STUB")
    lho = cd_fields(content, cd_offsets(content)[0])[5]
    assert lho == 4
    with pytest.raises(ArchiveIOError, match="seek failed") as exc:
        ArchiveWalker(_FailingSeek(content, lho), QUIET).walk()
    assert isinstance(exc.value, OSError)
    assert exc.value.errno == errno.EIO
    assert exc.value.entry_index == 1
    assert exc.value.offset == lho
    assert exc.value.field == "local_header"


def test_staged_through_symlink_purifies_target(tmp_path):
    target = tmp_path / "real.zip"
    target.write_bytes(build_zip([Entry()]))
    link = tmp_path / "link.zip"
    os.symlink(target, link)

    report = purify_archive(link, StripZipConfig(quiet=True, staged=True))
    assert report.staged
    assert os.path.islink(link)
    buf = target.read_bytes()
    _t, _d, _n, _x, _c, lho = cd_fields(buf, cd_offsets(buf)[0])
    assert cd_fields(buf, cd_offsets(buf)[0])[:2] == (0, 0)
    assert local_fields(buf, lho)[:2] == (0, 0)
    assert [n for n in os.listdir(tmp_path) if n.startswith(".stripzip-")] == []
