"""
Content hashing for instruction entries and the catalog as a whole.

The aggregate catalog hash is computed over entries sorted by id, so it does
not depend on load or import order. Bodies are canonicalized before hashing
so that line-ending and trailing-whitespace noise never changes a hash.
"""

from __future__ import annotations

import hashlib
import itertools
import json
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..config import HashPolicy
from ..models import InstructionEntry


def sha256_hex(content: bytes | str) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def canonicalize_body(body: str) -> str:
    """Normalize newlines to LF, strip trailing whitespace per line, trim blank edge lines."""
    text = body.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def canonical_variants(body: str) -> list[str]:
    """Bodies that must canonicalize to the same text as `body`."""
    lines = body.split("\n")
    return [
        body + "\n",
        body.replace("\n", "\r\n"),
        "\n" + body,
        body + "  ",
        "\n".join(line + " " for line in lines),
        body + "\n\n",
        body.replace("\n", "\r"),
        "  \n" + body + "\t",
    ]


@dataclass
class HardeningReport:
    ok: bool
    variants_checked: int = 0
    permutations_checked: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "variantsChecked": self.variants_checked,
            "permutationsChecked": self.permutations_checked,
            "failures": self.failures,
        }


class HashEngine:
    """Per-entry, aggregate and governance hashes under one `HashPolicy`."""

    def __init__(self, policy: HashPolicy | None = None):
        self.policy = policy or HashPolicy()

    def field_affects_hash(self, name: str) -> bool:
        return name in self.policy.content_fields

    def body_hash(self, body: str) -> str:
        return sha256_hex(canonicalize_body(body))

    def entry_hash(self, entry: InstructionEntry) -> str:
        """Hash of the hash-bearing fields. Equals `body_hash` under the default policy."""
        if self.policy.content_fields == ("body",):
            return self.body_hash(entry.body)
        wire = entry.to_persisted_dict()
        payload: dict[str, Any] = {}
        for name in sorted(self.policy.content_fields):
            value = wire.get(name)
            if name == "body" and isinstance(value, str):
                value = canonicalize_body(value)
            payload[name] = value
        return sha256_hex(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))

    def catalog_hash(self, entries: Iterable[InstructionEntry]) -> str:
        pairs = sorted((e.id, self.entry_hash(e)) for e in entries)
        return sha256_hex("|".join(f"{i}:{h}" for i, h in pairs))

    def signature(self, entries: Iterable[InstructionEntry]) -> str:
        """Digest of every (id, stored sourceHash, actual body hash) triple."""
        triples = sorted((e.id, e.source_hash, self.body_hash(e.body)) for e in entries)
        return sha256_hex("|".join(f"{i}:{s}:{b}" for i, s, b in triples))

    @staticmethod
    def governance_projection(entry: InstructionEntry) -> dict[str, Any]:
        summary = entry.extra.get("semanticSummary")
        return {
            "id": entry.id,
            "title": entry.title,
            "version": entry.version or "1.0.0",
            "owner": entry.owner or "unowned",
            "priorityTier": entry.priority_tier or "P4",
            "nextReviewDue": entry.next_review_due or "",
            "semanticSummarySha256": sha256_hex(summary if isinstance(summary, str) else ""),
            "changeLogLength": len(entry.change_log or []),
        }

    def governance_hash(self, entries: Iterable[InstructionEntry]) -> str:
        projections = sorted((self.governance_projection(e) for e in entries), key=lambda p: p["id"])
        lines = [json.dumps(p, sort_keys=True, separators=(",", ":"), ensure_ascii=False) for p in projections]
        return sha256_hex("\n".join(lines))

    def hardening_probe(self, entries: list[InstructionEntry]) -> HardeningReport:
        """
        Self-check the invariance guarantees against live entries.

        Every sampled body must hash identically across `canon_variants`
        canonicalization-equivalent rewrites, and every ordering of the first
        `import_set_size` entries must produce one aggregate hash.
        """
        if not self.policy.hardening_enabled:
            return HardeningReport(ok=True)

        report = HardeningReport(ok=True)
        ordered = sorted(entries, key=lambda e: e.id)

        for entry in ordered:
            expected = self.body_hash(entry.body)
            for variant in canonical_variants(entry.body)[: self.policy.canon_variants]:
                report.variants_checked += 1
                actual = self.body_hash(variant)
                if actual != expected:
                    report.ok = False
                    report.failures.append({"id": entry.id, "check": "canonical-variant", "actual": actual})

        sample = ordered[: self.policy.import_set_size]
        if len(sample) >= 2:
            baseline = self.catalog_hash(sample)
            for perm in itertools.permutations(sample):
                report.permutations_checked += 1
                if self.catalog_hash(perm) != baseline:
                    report.ok = False
                    report.failures.append({"ids": [e.id for e in perm], "check": "import-order"})

        return report
