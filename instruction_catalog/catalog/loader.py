"""Instruction directory scanning and entry parsing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..models import ID_PATTERN, InstructionEntry
from .atomic_fs import AtomicFileStore

logger = logging.getLogger(__name__)

BOOTSTRAP_MARKER = "bootstrap.confirmed.json"


@dataclass
class LoadIssue:
    file: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "reason": self.reason}


@dataclass
class LoadReport:
    """Result of one directory scan."""

    entries: dict[str, InstructionEntry] = field(default_factory=dict)
    issues: list[LoadIssue] = field(default_factory=list)
    scanned: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "loaded": len(self.entries),
            "issues": [i.to_dict() for i in self.issues],
        }


def iter_entry_files(directory: Path) -> list[Path]:
    """Candidate entry files: visible `*.json`, excluding the bootstrap marker."""
    if not directory.is_dir():
        return []
    return sorted(
        p
        for p in directory.glob("*.json")
        if p.is_file() and not p.name.startswith(".") and p.name != BOOTSTRAP_MARKER
    )


def load_entry_file(path: Path, store: AtomicFileStore) -> InstructionEntry:
    """Parse one entry file. Raises ValueError for anything that is not a valid entry."""
    try:
        data = store.read_json(path)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON: {exc.msg} (line {exc.lineno})") from None
    if not isinstance(data, dict):
        raise ValueError("top-level JSON value is not an object")

    entry = InstructionEntry.from_dict(data)
    if not ID_PATTERN.match(entry.id):
        raise ValueError(f"invalid id: {entry.id!r}")
    if entry.id != path.stem:
        raise ValueError(f"id {entry.id!r} does not match file name {path.name!r}")
    return entry


def load_entries(directory: Path, store: AtomicFileStore) -> LoadReport:
    """
    Scan `directory` and parse every entry file.

    Malformed files are skipped and reported; they never abort the scan.
    """
    report = LoadReport()
    for path in iter_entry_files(directory):
        report.scanned += 1
        try:
            entry = load_entry_file(path, store)
        except ValueError as exc:
            report.issues.append(LoadIssue(file=path.name, reason=str(exc)))
            logger.warning("skipping %s: %s", path.name, exc)
            continue
        except OSError as exc:
            report.issues.append(LoadIssue(file=path.name, reason=f"unreadable: {exc}"))
            logger.warning("skipping unreadable %s: %s", path.name, exc)
            continue
        report.entries[entry.id] = entry
    return report
