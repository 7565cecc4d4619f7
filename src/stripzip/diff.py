# stripzip/diff.py
"""
diff.py: explain why two builds of the same archive are not byte-identical.

  1) load both archives as uint8 arrays
  2) forward difference: offsets where a[i] != b[i] over the common prefix
  3) group offsets into contiguous runs [start, end)
  4) map each run to the record regions of archive A (interval tree)

A length mismatch is reported as one extra run covering the tail of the longer file.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .layout import Region, build_region_tree, regions_overlapping, scan_layout


@dataclass
class DiffRun:
    start: int                   # absolute offset (in A)
    end: int                     # exclusive
    regions: List[Region] = field(default_factory=list)
    tail: bool = False           # run exists only because the files differ in length

    @property
    def length(self) -> int:
        return self.end - self.start

    def describe(self) -> str:
        where = "; ".join(
            r.label() + (f" [{', '.join(r.fields_between(self.start, self.end))}]"
                         if r.fields_between(self.start, self.end) else "")
            for r in self.regions
        ) or "unmapped"
        kind = " (length mismatch)" if self.tail else ""
        return f"0x{self.start:08x}..0x{self.end - 1:08x} ({self.length} bytes){kind}: {where}"


@dataclass
class ArchiveDiff:
    path_a: str
    path_b: str
    size_a: int
    size_b: int
    runs: List[DiffRun] = field(default_factory=list)

    @property
    def identical(self) -> bool:
        return not self.runs

    @property
    def differing_bytes(self) -> int:
        return sum(r.length for r in self.runs)


def load_bytes(path) -> np.ndarray:
    return np.fromfile(os.fspath(path), dtype=np.uint8)


def diff_offsets(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Offsets (int64) where the common prefix of a and b differs."""
    n = min(a.size, b.size)
    return np.flatnonzero(a[:n] != b[:n]).astype(np.int64)


def group_runs(offsets: np.ndarray) -> List[Tuple[int, int]]:
    """Group sorted offsets into contiguous [start, end) runs."""
    if offsets.size == 0:
        return []
    breaks = np.flatnonzero(np.diff(offsets) != 1)
    starts = offsets[np.concatenate(([0], breaks + 1))]
    ends = offsets[np.concatenate((breaks, [offsets.size - 1]))] + 1
    return [(int(s), int(e)) for s, e in zip(starts, ends)]


def diff_archives(path_a, path_b, map_regions: bool = True, debug: bool = False) -> ArchiveDiff:
    """
    Compare two archives byte by byte. With map_regions, each run is
    annotated with the records of A it falls into (A must be a ZIP this tool
    can walk; layout errors propagate).
    """
    a = load_bytes(path_a)
    b = load_bytes(path_b)
    result = ArchiveDiff(os.fspath(path_a), os.fspath(path_b), int(a.size), int(b.size))

    spans = group_runs(diff_offsets(a, b))
    tail: Optional[Tuple[int, int]] = None
    if a.size != b.size:
        tail = (int(min(a.size, b.size)), int(max(a.size, b.size)))
    if debug:
        print(f"[ZipDiff][DEBUG] size_a={a.size} size_b={b.size} runs={len(spans)} tail={tail}", flush=True)

    tree = build_region_tree(scan_layout(path_a)) if map_regions and (spans or tail) else None
    for s, e in spans:
        regions = regions_overlapping(tree, s, e) if tree is not None else []
        result.runs.append(DiffRun(s, e, regions))
    if tail is not None:
        regions = regions_overlapping(tree, *tail) if tree is not None else []
        result.runs.append(DiffRun(tail[0], tail[1], regions, tail=True))
    return result


def diff_to_frame(diff: ArchiveDiff) -> pd.DataFrame:
    """
    One row per (run, region) pair; runs outside any record get region "unmapped".
    "bytes" counts only the part of the run inside that region.
    """
    rows = []
    for run in diff.runs:
        for r in (run.regions or [None]):
            rows.append({
                "start": run.start,
                "end": run.end,
                "length": run.length,
                "tail": run.tail,
                "bytes": (min(run.end, r.end) - max(run.start, r.start)) if r is not None else run.length,
                "region": r.kind if r is not None else "unmapped",
                "entry_index": r.entry_index if r is not None else None,
                "entry_name": r.name if r is not None else "",
                "fields": ",".join(r.fields_between(run.start, run.end)) if r is not None else "",
            })
    cols = ["start", "end", "length", "tail", "bytes", "region", "entry_index", "entry_name", "fields"]
    df = pd.DataFrame(rows, columns=cols)
    df["entry_index"] = df["entry_index"].astype("Int64")
    return df


def summarize_by_region(df: pd.DataFrame) -> pd.DataFrame:
    """Differing runs per region kind, e.g. to spot "all diffs are in cd_header"."""
    if df.empty:
        return pd.DataFrame(columns=["region", "runs", "bytes"])
    g = df.groupby("region").agg(runs=("start", "count"), bytes=("bytes", "sum"))
    return g.reset_index().sort_values("region").reset_index(drop=True)
