#!/usr/bin/env python3
"""
StripZIP command line.

Sanitize a ZIP file from timestamps, UID and GID noise so that two builds that
differ only in filesystem metadata produce byte-identical archives.

# ------------------------------------------------------------
# How to run (examples)
# ------------------------------------------------------------
#
# 1) Purify an archive in place:
#   stripzip build/out.zip
#
# 2) All-or-nothing: purify a copy, replace the original only on success:
#   stripzip build/out.zip --staged
#
# 3) CI gate, read-only (exit 1 if the archive is not normalized yet):
#   stripzip build/out.zip --check --quiet
#
# 4) Why do two builds differ?
#   stripzip-diff build1/out.zip build2/out.zip --csv diff.csv
#
# Exit status:
#   0    success (or: already normalized / identical)
#   1    --check: archive would be modified; stripzip-diff: archives differ
#   2    usage error
#   255  structural, unsupported-feature or I/O failure
# ------------------------------------------------------------
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from .config import StripZipConfig
from .errors import StripZipError
from .walker import purify_archive, modified_entries

EXIT_OK = 0
EXIT_CHANGED = 1
EXIT_FAILURE = 255


def _error(tag: str, msg: str):
    print(f"[{tag}][ERROR] {msg}", file=sys.stderr, flush=True)


def write_report_json(path: str, report, cfg: StripZipConfig) -> None:
    obj = {"config": cfg.to_dict(), "report": report.to_dict()}
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2)


# ----------------------------
# stripzip
# ----------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="stripzip",
        description="Zero ZIP timestamps and neutralize UID/GID extra fields in place.",
    )
    p.add_argument("archive", help="ZIP archive to purify (modified in place).")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true",
                      help="Read-only: exit 1 if the archive would be modified.")
    mode.add_argument("--staged", action="store_true",
                      help="Purify a copy and replace the original only if every entry succeeded.")
    p.add_argument("--report", metavar="PATH", help="Write a JSON run report to PATH.")
    p.add_argument("--quiet", action="store_true", help="No per-entry progress lines.")
    p.add_argument("--debug", action="store_true", help="Print decoded field values and extra-field actions.")
    p.add_argument("--profile", action="store_true", help="Print per-step timing.")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = StripZipConfig(
        debug=bool(args.debug),
        profile=bool(args.profile),
        quiet=bool(args.quiet),
        dry_run=bool(args.check),
        staged=bool(args.staged),
    )

    try:
        report = purify_archive(args.archive, cfg)
    except StripZipError as e:
        _error("StripZip", str(e))
        return EXIT_FAILURE
    except OSError as e:
        _error("StripZip", f"{args.archive}: {e}")
        return EXIT_FAILURE

    if args.report:
        try:
            write_report_json(args.report, report, cfg)
        except OSError as e:
            _error("StripZip", f"cannot write report {args.report}: {e}")
            return EXIT_FAILURE

    if cfg.dry_run:
        changed = modified_entries(report)
        if changed:
            print(f"[StripZip] {args.archive}: {len(changed)} of {report.num_entries} entries not normalized", flush=True)
            if not cfg.quiet:
                for e in changed:
                    print(f"[StripZip]   entry {e.index} {e.name}: {', '.join(e.changed)}", flush=True)
            return EXIT_CHANGED
        print(f"[StripZip] {args.archive}: normalized ({report.num_entries} entries)", flush=True)
        return EXIT_OK

    if not cfg.quiet:
        print(
            f"[StripZip] Done. {report.num_entries} entries, {report.timestamps_zeroed} timestamps zeroed, "
            f"{report.extras_stripped} extra fields stripped.",
            flush=True,
        )
    return EXIT_OK


# ----------------------------
# stripzip-diff
# ----------------------------

def parse_diff_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="stripzip-diff",
        description="Byte-compare two ZIP archives and map every difference to the record it falls in.",
    )
    p.add_argument("archive_a", help="Reference archive (its layout is used for mapping).")
    p.add_argument("archive_b", help="Archive to compare against.")
    p.add_argument("--csv", metavar="PATH", help="Write one row per (run, region) to PATH.")
    p.add_argument("--no-map", dest="map_regions", action="store_false",
                   help="Do not parse archive A; report raw offsets only.")
    p.add_argument("--max-runs", type=int, default=50, help="Runs to print (default 50).")
    p.add_argument("--debug", action="store_true")
    return p.parse_args(argv)


def diff_main(argv: Optional[List[str]] = None) -> int:
    # numpy/pandas are only needed here
    from .diff import diff_archives, diff_to_frame, summarize_by_region

    args = parse_diff_args(argv)
    try:
        d = diff_archives(args.archive_a, args.archive_b, map_regions=args.map_regions, debug=args.debug)
    except StripZipError as e:
        _error("ZipDiff", f"{args.archive_a}: {e}")
        return EXIT_FAILURE
    except OSError as e:
        _error("ZipDiff", str(e))
        return EXIT_FAILURE

    if d.identical:
        print(f"[ZipDiff] identical ({d.size_a} bytes)", flush=True)
        return EXIT_OK

    print(f"[ZipDiff] {len(d.runs)} differing runs, {d.differing_bytes} bytes "
          f"(size A={d.size_a}, size B={d.size_b})", flush=True)
    for run in d.runs[: max(0, args.max_runs)]:
        print(f"[ZipDiff]   {run.describe()}", flush=True)
    if len(d.runs) > args.max_runs:
        print(f"[ZipDiff]   ... and {len(d.runs) - args.max_runs} more.", flush=True)

    df = diff_to_frame(d)
    for row in summarize_by_region(df).itertuples():
        print(f"[ZipDiff] region {row.region}: {row.runs} runs, {row.bytes} bytes", flush=True)
    if args.csv:
        df.to_csv(args.csv, index=False)
        print(f"[ZipDiff] Results written to: {args.csv}", flush=True)
    return EXIT_CHANGED


def run() -> None:
    sys.exit(main())


def run_diff() -> None:
    sys.exit(diff_main())


if __name__ == "__main__":
    run()
