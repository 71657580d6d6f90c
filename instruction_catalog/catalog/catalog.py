"""
The authoritative in-memory instruction index, backed by one JSON file per entry.

Every mutation follows the same path: validate, write the entry file
atomically, update the index, recompute the aggregate hash, refresh the
manifest, append to the audit log. Validation happens before any write, so a
rejected entry never leaves a partial trace.
"""

from __future__ import annotations

import copy
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable

from ..audit_log import AuditLog
from ..config import CatalogConfig
from ..errors import IntegrityMismatch, ValidationError, WriteFailure
from ..models import (
    ID_PATTERN,
    SCHEMA_VERSION,
    InstructionEntry,
    Requirement,
    bump_patch,
    bump_version,
    compute_risk_score,
    normalize_categories,
    parse_semver,
    utc_now,
)
from .atomic_fs import AtomicFileStore
from .hashing import HashEngine, canonicalize_body
from .loader import LoadIssue, LoadReport, load_entries
from .manifest import ManifestTracker

logger = logging.getLogger(__name__)

IMPORT_MODES = ("skip", "overwrite")
MAX_SEARCH_LIMIT = 500
VERSION_BUMPS = ("none", "patch", "minor", "major")
GOVERNANCE_STATUSES = ("draft", "review", "approved", "deprecated")
STATUS_ALIASES = {"active": "approved"}

# Fields the catalog computes itself; caller-supplied values are ignored.
_SYSTEM_KEYS = frozenset({"sourceHash", "schemaVersion", "riskScore", "usageCount", "lastUsedAt", "updatedAt"})

_LAX_DEFAULTS: dict[str, Any] = {
    "priority": 50,
    "audience": "all",
    "requirement": "optional",
    "categories": [],
}


def _validate_id(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("entry id must be a non-empty string")
    entry_id = value.strip()
    if not ID_PATTERN.match(entry_id):
        raise ValidationError(f"invalid id {entry_id!r} (letters, digits, '.', '_', '-'; max 120 chars)")
    return entry_id


class Catalog:
    """Instruction entries keyed by id, with an order-independent aggregate hash."""

    def __init__(
        self,
        config: CatalogConfig,
        *,
        store: AtomicFileStore | None = None,
        hasher: HashEngine | None = None,
        audit: AuditLog | None = None,
        manifest: ManifestTracker | None = None,
        clock: Callable[[], str] = utc_now,
    ):
        self.config = config
        self.directory = config.instructions_path
        self.store = store or AtomicFileStore(config.atomic)
        self.hasher = hasher or HashEngine(config.hashing)
        self.audit = audit
        self.manifest = manifest
        self._clock = clock

        self._entries: dict[str, InstructionEntry] = {}
        self._issues: list[LoadIssue] = []
        self._hash = self.hasher.catalog_hash([])
        self._signature = self.hasher.signature([])
        self._lock = threading.RLock()
        self._stale = threading.Event()
        self._loaded = False
        self.generation = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def hash(self) -> str:
        return self._hash

    @property
    def signature(self) -> str:
        return self._signature

    @property
    def count(self) -> int:
        return len(self._entries)

    @property
    def issues(self) -> list[LoadIssue]:
        return list(self._issues)

    def entries(self) -> list[InstructionEntry]:
        return [self._entries[k] for k in sorted(self._entries)]

    def ids(self) -> set[str]:
        self.ensure_fresh()
        return set(self._entries)

    def path_for(self, entry_id: str) -> Path:
        return self.directory / f"{entry_id}.json"

    def mark_stale(self) -> None:
        """Ask for a reload before the next operation. Safe to call from any thread."""
        self._stale.set()

    def ensure_fresh(self) -> None:
        """Reload from disk if nothing is loaded yet or a change was signalled."""
        if not self._loaded or self._stale.is_set():
            self.load()

    def _recompute(self) -> None:
        values = self._entries.values()
        self._hash = self.hasher.catalog_hash(values)
        self._signature = self.hasher.signature(values)
        self.generation += 1

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> LoadReport:
        """
        Scan the instructions directory and replace the whole index.

        Stored sourceHash values and categories are kept exactly as found on
        disk so that `verify` and `groom` can report and fix them.
        """
        with self._lock:
            self._stale.clear()
            report = load_entries(self.directory, self.store)
            self._merge_usage(report.entries)
            self._entries = report.entries
            self._issues = report.issues
            self._loaded = True
            self._recompute()
            logger.info(
                "loaded %d instruction(s) from %s (%d issue(s))",
                len(self._entries),
                self.directory,
                len(report.issues),
            )
            return report

    reload = load

    def _merge_usage(self, entries: dict[str, InstructionEntry]) -> None:
        path = self.config.usage_path
        if not path.exists():
            return
        try:
            data = self.store.read_json(path)
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable usage snapshot %s: %s", path, exc)
            return
        if not isinstance(data, dict):
            return
        for entry_id, usage in data.items():
            entry = entries.get(entry_id)
            if entry is None or not isinstance(usage, dict):
                continue
            count = usage.get("usageCount")
            if isinstance(count, int):
                entry.usage_count = count
            last = usage.get("lastUsedAt")
            if isinstance(last, str):
                entry.last_used_at = last

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, entry_id: str) -> InstructionEntry | None:
        """Entry by id, or None when absent."""
        self.ensure_fresh()
        if not isinstance(entry_id, str):
            return None
        return self._entries.get(entry_id.strip())

    def list(self, category: str | None = None) -> dict[str, Any]:
        self.ensure_fresh()
        items = self.entries()
        if category:
            wanted = category.strip().lower()
            items = [e for e in items if wanted in (c.lower() for c in e.categories)]
        return {"hash": self.hash, "count": len(items), "items": [e.to_dict() for e in items]}

    def search(
        self,
        query: str,
        *,
        limit: int | None = None,
        categories: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Keyword search over title, body and categories.

        Scoring per keyword: 10 for a title hit, 2 per body occurrence (capped
        at 20), 3 for a category hit; each distinct keyword matched beyond the
        first adds 5.
        """
        self.ensure_fresh()
        if not isinstance(query, str):
            raise ValidationError("query must be a string")
        keywords = list(dict.fromkeys(k for k in query.lower().split() if k))
        if not keywords:
            raise ValidationError("query must contain at least one keyword")
        max_items = max(1, min(MAX_SEARCH_LIMIT, int(limit or 50)))
        wanted = set(normalize_categories(categories)) if categories else set()

        scored: list[tuple[int, str, InstructionEntry]] = []
        for entry in self._entries.values():
            cats = [c.lower() for c in entry.categories]
            if wanted and not wanted.intersection(cats):
                continue
            title = entry.title.lower()
            body = entry.body.lower()
            score = 0
            matched = 0
            for kw in keywords:
                hit = False
                if kw in title:
                    score += 10
                    hit = True
                occurrences = body.count(kw)
                if occurrences:
                    score += min(occurrences * 2, 20)
                    hit = True
                if any(kw in c for c in cats):
                    score += 3
                    hit = True
                matched += hit
            if matched:
                score += 5 * (matched - 1)
                scored.append((score, entry.id, entry))

        scored.sort(key=lambda t: (-t[0], t[1]))
        items = []
        for score, _, entry in scored[:max_items]:
            item = entry.to_dict()
            item["relevance"] = score
            items.append(item)
        return {"hash": self.hash, "count": len(items), "total": len(scored), "items": items}

    def export(self, ids: Iterable[str] | None = None) -> list[dict[str, Any]]:
        self.ensure_fresh()
        if ids is None:
            return [e.to_dict() for e in self.entries()]
        wanted = sorted(set(ids))
        return [self._entries[i].to_dict() for i in wanted if i in self._entries]

    def diff(self, client_hash: str | None, known: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        """
        Tell a client what changed relative to the state it already holds.

        `known` lists the client's `{id, sourceHash}` pairs. Without it every
        entry is reported as added.
        """
        self.ensure_fresh()
        if client_hash and client_hash == self.hash:
            return {"upToDate": True, "hash": self.hash}

        if not known:
            return {"hash": self.hash, "added": [e.to_dict() for e in self.entries()], "updated": [], "removed": []}

        known_map: dict[str, Any] = {}
        for item in known:
            if isinstance(item, dict) and isinstance(item.get("id"), str):
                known_map[item["id"]] = item.get("sourceHash")

        added: list[dict[str, Any]] = []
        updated: list[dict[str, Any]] = []
        for entry in self.entries():
            if entry.id not in known_map:
                added.append(entry.to_dict())
            elif known_map[entry.id] != entry.source_hash:
                updated.append(entry.to_dict())
        removed = sorted(i for i in known_map if i not in self._entries)
        return {"hash": self.hash, "added": added, "updated": updated, "removed": removed}

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify(self) -> dict[str, Any]:
        """Compare every stored sourceHash against a fresh hash of its body."""
        self.ensure_fresh()
        issues = []
        for entry in self.entries():
            actual = self.hasher.body_hash(entry.body)
            if entry.source_hash != actual:
                issues.append({"id": entry.id, "expected": entry.source_hash, "actual": actual})
        return {"hash": self.hash, "count": self.count, "issues": issues, "issueCount": len(issues)}

    def require_integrity(self) -> None:
        """Raise IntegrityMismatch when any entry fails verification."""
        result = self.verify()
        if result["issues"]:
            raise IntegrityMismatch(result["issues"])

    def repair_hashes(self) -> dict[str, Any]:
        """Rewrite only the entries whose stored sourceHash disagrees with their body."""
        with self._lock:
            self.ensure_fresh()
            repaired: list[str] = []
            errors: list[dict[str, str]] = []
            for entry in self.entries():
                actual = self.hasher.body_hash(entry.body)
                if entry.source_hash == actual:
                    continue
                fixed = copy.deepcopy(entry)
                fixed.source_hash = actual
                try:
                    self._persist(fixed)
                except WriteFailure as exc:
                    errors.append({"id": entry.id, "error": str(exc)})
                    continue
                self._entries[entry.id] = fixed
                repaired.append(entry.id)
            if repaired:
                self._after_mutation("repair", repaired, {"repaired": len(repaired)})
            return {"repaired": len(repaired), "ids": repaired, "errors": errors, "hash": self.hash}

    def governance_hash(self) -> dict[str, Any]:
        self.ensure_fresh()
        return {
            "count": self.count,
            "governanceHash": self.hasher.governance_hash(self._entries.values()),
            "items": [self.hasher.governance_projection(e) for e in self.entries()],
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, data: dict[str, Any], *, overwrite: bool = False, lax: bool = False) -> dict[str, Any]:
        """
        Create or (with `overwrite`) replace one entry.

        An existing id without `overwrite` is a no-op reported as skipped. An
        overwrite that would persist identical content does not touch disk.
        """
        with self._lock:
            self.ensure_fresh()
            if not isinstance(data, dict):
                raise ValidationError("entry must be an object")
            entry_id = _validate_id(data.get("id"))
            if entry_id in self._entries and not overwrite:
                return {"id": entry_id, "created": False, "overwritten": False, "skipped": True, "hash": self.hash}

            entry, existing = self._prepare(data, overwrite=overwrite, lax=lax)

            if existing is not None and entry.persisted_equal(existing):
                return {"id": entry.id, "created": False, "overwritten": True, "skipped": False, "hash": self.hash}

            self._persist(entry)
            self._entries[entry.id] = entry
            self._after_mutation("add", [entry.id], {"overwrite": overwrite, "created": existing is None})
            return {
                "id": entry.id,
                "created": existing is None,
                "overwritten": existing is not None,
                "skipped": False,
                "hash": self.hash,
            }

    def update(self, data: dict[str, Any]) -> dict[str, Any]:
        """Overwrite an existing entry. Unspecified fields keep their current values."""
        if not isinstance(data, dict):
            raise ValidationError("entry must be an object")
        entry_id = _validate_id(data.get("id"))
        if self.get(entry_id) is None:
            raise ValidationError(f"cannot update unknown id: {entry_id}")
        return self.add(data, overwrite=True, lax=True)

    def remove(self, ids: list[str], *, missing_ok: bool = False) -> dict[str, Any]:
        """
        Delete entries by id.

        Every present id is removed even when others are missing; each id gets
        its own outcome in `results`.
        """
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ValidationError("ids must be a list of strings")

        with self._lock:
            self.ensure_fresh()
            unique = list(dict.fromkeys(i.strip() for i in ids if i.strip()))
            removed_ids: list[str] = []
            missing: list[str] = []
            errors: list[dict[str, str]] = []
            results: list[dict[str, Any]] = []

            for entry_id in unique:
                if entry_id not in self._entries:
                    missing.append(entry_id)
                    outcome: dict[str, Any] = {"id": entry_id, "removed": False, "missing": True}
                    if not missing_ok:
                        outcome["error"] = "not_found"
                        errors.append({"id": entry_id, "error": "not_found"})
                    results.append(outcome)
                    continue
                try:
                    self.store.remove(self.path_for(entry_id), missing_ok=True)
                except WriteFailure as exc:
                    errors.append({"id": entry_id, "error": str(exc)})
                    results.append({"id": entry_id, "removed": False, "error": "write_failure"})
                    continue
                del self._entries[entry_id]
                removed_ids.append(entry_id)
                results.append({"id": entry_id, "removed": True})

            if removed_ids:
                self._after_mutation("remove", removed_ids, {"missing": missing})
            return {
                "removed": len(removed_ids),
                "removedIds": removed_ids,
                "missing": missing,
                "errorCount": len(errors),
                "errors": errors,
                "results": results,
                "hash": self.hash,
            }

    def import_entries(self, entries: list[dict[str, Any]], mode: str = "skip") -> dict[str, Any]:
        """
        Batch add. Each entry is validated and written on its own, so one bad
        entry never affects another. The resulting hash depends only on the
        set of entries, not their order.
        """
        if mode not in IMPORT_MODES:
            raise ValidationError(f"mode must be one of: {', '.join(IMPORT_MODES)}")
        if not isinstance(entries, list):
            raise ValidationError("entries must be a list")

        with self._lock:
            self.ensure_fresh()
            overwrite = mode == "overwrite"
            imported = skipped = overwritten = 0
            written: list[str] = []
            errors: list[dict[str, str]] = []
            results: list[dict[str, Any]] = []

            try:
                for raw in entries:
                    raw_id = raw.get("id") if isinstance(raw, dict) else None
                    label = raw_id if isinstance(raw_id, str) else "(unknown)"
                    try:
                        if not isinstance(raw, dict):
                            raise ValidationError("entry must be an object")
                        missing = [k for k in ("id", "title", "body") if not raw.get(k)]
                        if missing:
                            raise ValidationError(f"missing required field(s): {', '.join(missing)}")
                        entry_id = _validate_id(raw["id"])
                        if entry_id in self._entries and not overwrite:
                            skipped += 1
                            results.append({"id": entry_id, "action": "skipped"})
                            continue
                        entry, existing = self._prepare(raw, overwrite=overwrite, lax=True)
                        if existing is not None and entry.persisted_equal(existing):
                            overwritten += 1
                            results.append({"id": entry.id, "action": "unchanged"})
                            continue
                        self._persist(entry)
                    except (ValidationError, WriteFailure) as exc:
                        errors.append({"id": label, "error": str(exc)})
                        results.append({"id": label, "action": "error", "error": str(exc)})
                        continue

                    self._entries[entry.id] = entry
                    written.append(entry.id)
                    if existing is None:
                        imported += 1
                        results.append({"id": entry.id, "action": "imported"})
                    else:
                        overwritten += 1
                        results.append({"id": entry.id, "action": "overwritten"})
            finally:
                # Files already written are recorded even when a later entry raises.
                if written:
                    self._after_mutation("import", written, {"mode": mode, "errors": len(errors)})
            return {
                "hash": self.hash,
                "imported": imported,
                "skipped": skipped,
                "overwritten": overwritten,
                "total": len(entries),
                "errors": errors,
                "results": results,
            }

    def groom(
        self,
        *,
        dry_run: bool = False,
        remove_deprecated: bool = False,
        merge_duplicates: bool = False,
    ) -> dict[str, Any]:
        """
        Maintenance pass over every entry.

        Normalizes categories, repairs stale sourceHash values, optionally
        folds duplicate bodies into one primary entry and optionally drops
        deprecated entries. With `dry_run` nothing is written and `hash` is
        the hash the catalog would have afterwards.
        """
        with self._lock:
            self.ensure_fresh()
            previous_hash = self.hash
            working = {e.id: copy.deepcopy(e) for e in self.entries()}
            changed: set[str] = set()
            removed: set[str] = set()
            notes: list[str] = []

            normalized = 0
            for entry in working.values():
                cats = normalize_categories(entry.categories) or ["uncategorized"]
                if cats != entry.categories:
                    entry.categories = cats
                    normalized += 1
                    changed.add(entry.id)

            repaired = 0
            for entry in working.values():
                actual = self.hasher.body_hash(entry.body)
                if entry.source_hash != actual:
                    entry.source_hash = actual
                    repaired += 1
                    changed.add(entry.id)

            merged = 0
            if merge_duplicates:
                groups: dict[str, list[InstructionEntry]] = {}
                for entry in working.values():
                    groups.setdefault(self.hasher.body_hash(entry.body), []).append(entry)
                for group in groups.values():
                    if len(group) < 2:
                        continue
                    group.sort(key=lambda e: (e.created_at or "~", e.id))
                    primary, duplicates = group[0], group[1:]
                    primary.priority = min(e.priority for e in group)
                    primary.categories = normalize_categories([c for e in group for c in e.categories])
                    changed.add(primary.id)
                    for dup in duplicates:
                        merged += 1
                        if remove_deprecated:
                            removed.add(dup.id)
                        else:
                            dup.requirement = Requirement.DEPRECATED
                            dup.deprecated_by = primary.id
                            changed.add(dup.id)
                    notes.append(f"merged {', '.join(d.id for d in duplicates)} into {primary.id}")

            deprecated_removed = 0
            if remove_deprecated:
                for entry in working.values():
                    if entry.requirement == Requirement.DEPRECATED:
                        removed.add(entry.id)
                deprecated_removed = len(removed)

            changed -= removed
            now = self._clock()
            for entry_id in changed:
                entry = working[entry_id]
                entry.risk_score = compute_risk_score(entry.priority, entry.requirement)
                entry.updated_at = now

            survivors = [e for i, e in working.items() if i not in removed]
            files_rewritten = 0
            if dry_run:
                result_hash = self.hasher.catalog_hash(survivors)
            else:
                for entry_id in sorted(changed):
                    try:
                        self._persist(working[entry_id])
                    except WriteFailure as exc:
                        notes.append(f"write failed for {entry_id}: {exc}")
                        continue
                    self._entries[entry_id] = working[entry_id]
                    files_rewritten += 1
                for entry_id in sorted(removed):
                    try:
                        self.store.remove(self.path_for(entry_id), missing_ok=True)
                    except WriteFailure as exc:
                        notes.append(f"remove failed for {entry_id}: {exc}")
                        continue
                    del self._entries[entry_id]
                if changed or removed:
                    self._after_mutation(
                        "groom",
                        sorted(changed | removed),
                        {"rewritten": files_rewritten, "removed": len(removed)},
                    )
                result_hash = self.hash

            return {
                "previousHash": previous_hash,
                "hash": result_hash,
                "scanned": len(working),
                "repairedHashes": repaired,
                "normalizedCategories": normalized,
                "deprecatedRemoved": deprecated_removed,
                "duplicatesMerged": merged,
                "filesRewritten": files_rewritten,
                "dryRun": dry_run,
                "notes": notes,
            }

    def governance_update(
        self,
        entry_id: str,
        *,
        owner: str | None = None,
        status: str | None = None,
        last_reviewed_at: str | None = None,
        next_review_due: str | None = None,
        bump: str = "none",
    ) -> dict[str, Any]:
        """
        Change ownership, lifecycle status or review dates without touching the body.

        `bump` (patch, minor or major) raises the version and records a
        changeLog line. The catalog hash is unaffected.
        """
        if bump not in VERSION_BUMPS:
            raise ValidationError(f"bump must be one of: {', '.join(VERSION_BUMPS)}")
        fields = {
            "owner": owner,
            "status": status,
            "lastReviewedAt": last_reviewed_at,
            "nextReviewDue": next_review_due,
        }
        for name, value in fields.items():
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string")
        if status is not None:
            status = STATUS_ALIASES.get(status, status)
            if status not in GOVERNANCE_STATUSES:
                raise ValidationError(f"invalid status {status!r} (one of: {', '.join(GOVERNANCE_STATUSES)})")

        with self._lock:
            current = self.get(entry_id)
            if current is None:
                return {"id": entry_id, "notFound": True}
            entry = copy.deepcopy(current)

            changed = False
            if owner is not None and owner != entry.owner:
                entry.owner = owner
                changed = True
            if status is not None and status != entry.status:
                entry.status = status
                changed = True
            if last_reviewed_at is not None and last_reviewed_at != entry.extra.get("lastReviewedAt"):
                entry.extra["lastReviewedAt"] = last_reviewed_at
                changed = True
            if next_review_due is not None and next_review_due != entry.next_review_due:
                entry.next_review_due = next_review_due
                changed = True
            now = self._clock()
            if bump != "none":
                bumped = bump_version(entry.version or "1.0.0", bump)
                if bumped is None:
                    raise ValidationError(f"invalid_semver: cannot bump version {entry.version!r}")
                entry.version = bumped
                entry.change_log = list(entry.change_log or []) + [
                    {"version": entry.version, "changedAt": now, "summary": f"manual {bump} bump via governanceUpdate"}
                ]
                changed = True

            if not changed:
                return {"id": entry.id, "changed": False}

            entry.updated_at = now
            self._persist(entry)
            self._entries[entry.id] = entry
            self._after_mutation("governanceUpdate", [entry.id], {"bump": bump})
            return {
                "id": entry.id,
                "changed": True,
                "version": entry.version,
                "owner": entry.owner,
                "status": entry.status,
                "lastReviewedAt": entry.extra.get("lastReviewedAt"),
                "nextReviewDue": entry.next_review_due,
            }

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def track_usage(self, entry_id: str) -> dict[str, Any]:
        """Count one use of an entry. Persisted to the usage snapshot, never to the entry file."""
        with self._lock:
            entry = self.get(entry_id)
            if entry is None:
                return {"id": entry_id, "notFound": True}
            entry.usage_count = (entry.usage_count or 0) + 1
            entry.last_used_at = self._clock()
            snapshot = {
                e.id: {"usageCount": e.usage_count, "lastUsedAt": e.last_used_at}
                for e in self.entries()
                if e.usage_count
            }
            self.store.write_json(self.config.usage_path, snapshot)
            return {"id": entry.id, "usageCount": entry.usage_count, "lastUsedAt": entry.last_used_at}

    def hotset(self, limit: int = 10) -> dict[str, Any]:
        self.ensure_fresh()
        limit = max(1, min(MAX_SEARCH_LIMIT, int(limit)))
        used = [e for e in self._entries.values() if e.usage_count]
        used.sort(key=lambda e: (-(e.usage_count or 0), e.last_used_at or "", e.id))
        items = [{"id": e.id, "usageCount": e.usage_count, "lastUsedAt": e.last_used_at} for e in used[:limit]]
        return {"hash": self.hash, "count": len(items), "limit": limit, "items": items}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _prepare(
        self,
        data: Any,
        *,
        overwrite: bool,
        lax: bool,
    ) -> tuple[InstructionEntry, InstructionEntry | None]:
        """Validate and normalize caller input into the entry that would be written."""
        if not isinstance(data, dict):
            raise ValidationError("entry must be an object")
        entry_id = _validate_id(data.get("id"))
        existing = self._entries.get(entry_id)

        raw = {k: v for k, v in data.items() if k not in _SYSTEM_KEYS}
        raw["id"] = entry_id

        if existing is not None and overwrite:
            # Metadata-only updates: fields the caller leaves out keep their stored values.
            merged = existing.to_persisted_dict()
            for key in ("body", "title"):
                if not raw.get(key):
                    raw.pop(key, None)
            merged.update(raw)
        else:
            merged = dict(raw)

        if lax:
            merged.setdefault("title", entry_id)
            for key, default in _LAX_DEFAULTS.items():
                merged.setdefault(key, copy.copy(default))
        else:
            absent = [k for k in ("title", "body", "priority", "audience", "requirement") if merged.get(k) is None]
            if absent:
                raise ValidationError(f"missing required field(s): {', '.join(absent)} (pass lax to fill defaults)")

        body = merged.get("body")
        if not isinstance(body, str) or not canonicalize_body(body):
            raise ValidationError("body must be a non-empty string")
        merged["body"] = canonicalize_body(body)
        if isinstance(merged.get("title"), str):
            merged["title"] = merged["title"].strip()

        try:
            entry = InstructionEntry.from_dict(merged)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None

        if not 1 <= entry.priority <= 100:
            raise ValidationError(f"priority must be between 1 and 100: {entry.priority}")
        if entry.requirement == Requirement.DEPRECATED and not entry.deprecated_by:
            raise ValidationError("requirement 'deprecated' requires deprecatedBy")
        if entry.version is not None and parse_semver(entry.version) is None:
            raise ValidationError(f"invalid_semver: version must be MAJOR.MINOR.PATCH: {entry.version!r}")
        if entry.requirement in (Requirement.MANDATORY, Requirement.CRITICAL) and not entry.owner:
            raise ValidationError("mandatory/critical require owner")

        cats = normalize_categories(entry.categories)
        if entry.priority_tier == "P1" and (not cats or not entry.owner):
            raise ValidationError("P1 requires category & owner")
        if not cats:
            if self.config.require_category:
                raise ValidationError("category_required: at least one category is required")
            cats = ["uncategorized"]
        entry.categories = cats

        now = self._clock()
        entry.source_hash = self.hasher.body_hash(entry.body)
        entry.schema_version = SCHEMA_VERSION
        entry.updated_at = now
        entry.risk_score = compute_risk_score(entry.priority, entry.requirement)

        if existing is not None:
            entry.created_at = existing.created_at or now
            entry.usage_count = existing.usage_count
            entry.last_used_at = existing.last_used_at
            body_changed = canonicalize_body(existing.body) != entry.body
            supplied = parse_semver(data.get("version"))
            previous = parse_semver(existing.version)
            if supplied is not None and previous is not None:
                if supplied < previous or (supplied == previous and body_changed):
                    raise ValidationError(
                        f"version_not_bumped: {entry.version} must be greater than {existing.version}"
                    )
            if body_changed and supplied is None and previous is not None:
                entry.version = bump_patch(existing.version)
                entry.change_log = list(existing.change_log or []) + [
                    {"version": entry.version, "changedAt": now, "summary": "body updated"}
                ]
            elif supplied is not None and entry.version != existing.version and "changeLog" not in data:
                summary = "body updated" if body_changed else "metadata updated"
                entry.change_log = list(existing.change_log or []) + [
                    {"version": entry.version, "changedAt": now, "summary": summary}
                ]
            elif existing.updated_at and existing.persisted_equal(entry):
                entry.updated_at = existing.updated_at
        else:
            created = data.get("createdAt")
            entry.created_at = created if isinstance(created, str) and created else now

        return entry, existing

    def _persist(self, entry: InstructionEntry) -> None:
        self.store.write_json(self.path_for(entry.id), entry.to_persisted_dict())

    def _after_mutation(self, action: str, ids: list[str], meta: dict[str, Any]) -> None:
        self._recompute()
        if self.manifest is not None:
            try:
                self.manifest.refresh(self)
            except WriteFailure as exc:
                logger.warning("manifest refresh failed after %s: %s", action, exc)
        if self.audit is not None:
            self.audit.log(action, ids, {**meta, "hash": self.hash})
