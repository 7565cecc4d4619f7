# stripzip/config.py
from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class StripZipConfig:
    debug: bool = False      # field values, extra-field actions, seeks
    profile: bool = False    # per-step timing
    quiet: bool = False      # no per-entry progress lines
    dry_run: bool = False    # validate + report only; archive opened read-only
    staged: bool = False     # purify a sibling copy, replace the original on success

    def to_dict(self) -> dict:
        return {
            "debug": self.debug,
            "profile": self.profile,
            "quiet": self.quiet,
            "dry_run": self.dry_run,
            "staged": self.staged,
        }


DEFAULT_CONFIG = StripZipConfig()
