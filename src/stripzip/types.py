# stripzip/types.py
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import List, Optional


@dataclass
class EntryReport:
    index: int                 # 1-based, central directory order
    name: str
    cd_offset: int
    local_header_offset: int
    # field names that were (or, in dry-run, would be) rewritten, e.g.
    # "cd.last_mod_time", "local.extra[0x5455]"
    changed: List[str] = field(default_factory=list)

    @property
    def modified(self) -> bool:
        return bool(self.changed)


@dataclass
class PurifyReport:
    path: str
    size_before: int
    size_after: Optional[int] = None
    entries: List[EntryReport] = field(default_factory=list)
    timestamps_zeroed: int = 0     # header count, CD and local counted separately
    extras_stripped: int = 0       # sub-records re-tagged to the stripped id
    dry_run: bool = False
    staged: bool = False
    elapsed_ms: Optional[float] = None

    @property
    def num_entries(self) -> int:
        return len(self.entries)

    @property
    def modified(self) -> bool:
        return any(e.modified for e in self.entries)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["num_entries"] = self.num_entries
        d["modified"] = self.modified
        return d
