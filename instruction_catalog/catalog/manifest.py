"""
Manifest snapshot of catalog state and drift detection against it.

The snapshot records each entry's stored sourceHash and actual body hash.
It is rebuilt from the catalog after every mutation; files edited on disk
behind the catalog's back make it stale, which `status` reports as drift.
The catalog stays the source of truth: the tracker only reads it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..config import ManifestConfig
from ..models import utc_now
from .atomic_fs import AtomicFileStore

if TYPE_CHECKING:
    from .catalog import Catalog

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1
MAX_DETAILS = 25


@dataclass(frozen=True)
class ManifestEntry:
    id: str
    source_hash: str
    body_hash: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "sourceHash": self.source_hash, "bodyHash": self.body_hash}


@dataclass
class ManifestSnapshot:
    generated_at: str
    count: int
    hash: str
    signature: str
    entries: list[ManifestEntry] = field(default_factory=list)
    version: int = MANIFEST_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "generatedAt": self.generated_at,
            "count": self.count,
            "hash": self.hash,
            "signature": self.signature,
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestSnapshot":
        entries = [
            ManifestEntry(id=str(e["id"]), source_hash=str(e.get("sourceHash", "")), body_hash=str(e.get("bodyHash", "")))
            for e in data.get("entries", [])
            if isinstance(e, dict) and "id" in e
        ]
        return cls(
            version=int(data.get("version", MANIFEST_VERSION)),
            generated_at=str(data.get("generatedAt", "")),
            count=int(data.get("count", len(entries))),
            hash=str(data.get("hash", "")),
            signature=str(data.get("signature", "")),
            entries=entries,
        )

    def by_id(self) -> dict[str, ManifestEntry]:
        return {e.id: e for e in self.entries}


class ManifestTracker:
    """Persist, compare and repair the catalog manifest."""

    def __init__(self, path: Path, store: AtomicFileStore, config: ManifestConfig | None = None):
        self.path = path
        self.store = store
        self.config = config or ManifestConfig()

    def load(self) -> ManifestSnapshot | None:
        """Read the snapshot. An unreadable or malformed file counts as absent."""
        if not self.path.exists():
            return None
        try:
            data = self.store.read_json(self.path)
            if not isinstance(data, dict):
                raise ValueError("manifest is not a JSON object")
            return ManifestSnapshot.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("ignoring unreadable manifest %s: %s", self.path, exc)
            return None

    @staticmethod
    def build(catalog: "Catalog", generated_at: str | None = None) -> ManifestSnapshot:
        hasher = catalog.hasher
        entries = [
            ManifestEntry(id=e.id, source_hash=e.source_hash, body_hash=hasher.body_hash(e.body))
            for e in sorted(catalog.entries(), key=lambda e: e.id)
        ]
        return ManifestSnapshot(
            generated_at=generated_at or utc_now(),
            count=len(entries),
            hash=catalog.hash,
            signature=catalog.signature,
            entries=entries,
        )

    @staticmethod
    def compare(snapshot: ManifestSnapshot | None, live: ManifestSnapshot) -> list[dict[str, str]]:
        """Full per-entry comparison. Returns one detail per drifting id, sorted by id."""
        recorded = snapshot.by_id() if snapshot else {}
        current = live.by_id()
        details: list[dict[str, str]] = []
        for entry_id in sorted(set(recorded) | set(current)):
            before = recorded.get(entry_id)
            now = current.get(entry_id)
            if before is None:
                details.append({"id": entry_id, "change": "added"})
            elif now is None:
                details.append({"id": entry_id, "change": "removed"})
            elif before.source_hash != now.source_hash or before.body_hash != now.body_hash:
                details.append({"id": entry_id, "change": "hash-mismatch"})
        return details

    def status(self, catalog: "Catalog") -> dict[str, Any]:
        """
        Report drift between the persisted snapshot and the live catalog.

        The fastload shortcut answers zero only when both the entry count and
        the snapshot signature match; any mismatch runs the full comparison.
        """
        snapshot = self.load()
        live_count = catalog.count
        result: dict[str, Any] = {
            "hash": catalog.hash,
            "manifestPresent": snapshot is not None,
            "count": live_count,
            "manifestCount": snapshot.count if snapshot else 0,
            "fastload": False,
        }

        if (
            snapshot is not None
            and self.config.fastload
            and snapshot.count == live_count
            and snapshot.signature
            and snapshot.signature == catalog.signature
        ):
            result.update(drift=0, fastload=True, details=[])
            return result

        details = self.compare(snapshot, self.build(catalog))
        if details:
            logger.info("manifest drift detected: %d entr%s", len(details), "y" if len(details) == 1 else "ies")
        result.update(drift=len(details), details=details[:MAX_DETAILS])
        return result

    def refresh(self, catalog: "Catalog") -> dict[str, Any]:
        """
        Rewrite the snapshot from current catalog state.

        `generatedAt` is carried over when nothing else changed, which keeps
        the file byte-identical and skips the write.
        """
        if not self.config.enabled:
            return {"written": False, "disabled": True, "count": catalog.count}

        previous = self.load()
        snapshot = self.build(catalog)
        if previous is not None:
            prev = previous.to_dict()
            prev.pop("generatedAt")
            cur = snapshot.to_dict()
            cur.pop("generatedAt")
            if prev == cur:
                snapshot.generated_at = previous.generated_at

        written = self.store.write_json_if_changed(self.path, snapshot.to_dict())
        return {"written": written, "count": snapshot.count, "hash": snapshot.hash}

    def repair(self, catalog: "Catalog") -> dict[str, Any]:
        """Full recompute (no fastload), rewrite the snapshot, and confirm drift is gone."""
        before = self.compare(self.load(), self.build(catalog))
        if before or not self.path.exists():
            self.store.write_json(self.path, self.build(catalog).to_dict())
        after = self.compare(self.load(), self.build(catalog))
        return {
            "repaired": not after,
            "driftBefore": len(before),
            "driftAfter": len(after),
            "hash": catalog.hash,
        }

