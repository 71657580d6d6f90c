"""
Append-only audit trail of catalog mutations.

One JSON object per line in `logs/instruction-transactions.log.jsonl`. The
catalog only writes here; reading back is for operators (CLI `audit`).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import utc_now

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """A single audit log entry."""

    ts: str
    action: str
    ids: list[str] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization (empty ids/meta omitted)."""
        d: dict[str, Any] = {"ts": self.ts, "action": self.action}
        if self.ids:
            d["ids"] = self.ids
        if self.meta:
            d["meta"] = self.meta
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        """Create from dictionary."""
        return cls(
            ts=data["ts"],
            action=data["action"],
            ids=list(data.get("ids") or []),
            meta=dict(data.get("meta") or {}),
        )


class AuditLog:
    """JSONL audit sink. A disabled log accepts entries and writes nothing."""

    def __init__(self, path: Path, *, enabled: bool = True):
        self.path = path
        self.enabled = enabled

    def log(self, action: str, ids: list[str] | None = None, meta: dict[str, Any] | None = None) -> AuditEntry:
        """
        Append one entry.

        Audit is a side channel: an I/O failure here is logged and does not
        fail the mutation that triggered it.
        """
        entry = AuditEntry(ts=utc_now(), action=action, ids=list(ids or []), meta=dict(meta or {}))
        if not self.enabled:
            return entry
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.warning("audit append failed for %s: %s", action, exc)
        return entry

    def read(self, last_n: int | None = None) -> list[AuditEntry]:
        """Read entries oldest first; malformed lines are skipped."""
        if not self.path.exists():
            return []

        entries = []
        with self.path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(AuditEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError):
                    continue

        if last_n is not None:
            return entries[-last_n:] if last_n > 0 else []
        return entries


def format_audit_entry(entry: AuditEntry) -> str:
    """Format an audit entry for human-readable display."""
    lines = [f"[{entry.ts}] {entry.action}"]
    if entry.ids:
        shown = ", ".join(entry.ids[:10])
        more = f" (+{len(entry.ids) - 10} more)" if len(entry.ids) > 10 else ""
        lines.append(f"  ids: {shown}{more}")
    for key, value in entry.meta.items():
        lines.append(f"  {key}: {value}")
    return "\n".join(lines)
