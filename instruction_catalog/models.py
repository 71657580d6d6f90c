"""Data models for instruction entries."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

SCHEMA_VERSION = "3"

ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,119}$")
SEMVER_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


class Audience(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"
    ALL = "all"


class Requirement(str, Enum):
    MANDATORY = "mandatory"
    CRITICAL = "critical"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"
    DEPRECATED = "deprecated"


REQUIREMENT_WEIGHTS: dict[Requirement, int] = {
    Requirement.MANDATORY: 50,
    Requirement.CRITICAL: 60,
    Requirement.RECOMMENDED: 20,
    Requirement.OPTIONAL: 5,
    Requirement.DEPRECATED: -30,
}

# camelCase wire name -> dataclass attribute
_WIRE_FIELDS: dict[str, str] = {
    "id": "id",
    "title": "title",
    "body": "body",
    "rationale": "rationale",
    "priority": "priority",
    "audience": "audience",
    "requirement": "requirement",
    "categories": "categories",
    "sourceHash": "source_hash",
    "schemaVersion": "schema_version",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "usageCount": "usage_count",
    "lastUsedAt": "last_used_at",
    "riskScore": "risk_score",
    "deprecatedBy": "deprecated_by",
    "version": "version",
    "status": "status",
    "owner": "owner",
    "priorityTier": "priority_tier",
    "nextReviewDue": "next_review_due",
    "changeLog": "change_log",
}

_STRING_FIELDS = (
    "rationale",
    "source_hash",
    "schema_version",
    "created_at",
    "updated_at",
    "last_used_at",
    "deprecated_by",
    "version",
    "status",
    "owner",
    "priority_tier",
    "next_review_due",
)
_COUNTER_FIELDS = ("usage_count", "risk_score")


def _wire_name(attr: str) -> str:
    return next(wire for wire, a in _WIRE_FIELDS.items() if a == attr)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_categories(raw: Any) -> list[str]:
    """Trim, lowercase, dedupe and sort a category list. Non-strings are dropped."""
    if not isinstance(raw, list):
        return []
    seen = {c.strip().lower() for c in raw if isinstance(c, str) and c.strip()}
    return sorted(seen)


def compute_risk_score(priority: int, requirement: Requirement) -> int:
    return (100 - max(1, min(100, priority))) + REQUIREMENT_WEIGHTS[requirement]


def parse_semver(version: Any) -> tuple[int, int, int] | None:
    if not isinstance(version, str):
        return None
    m = SEMVER_PATTERN.match(version)
    if not m:
        return None
    major, minor, patch = (int(g) for g in m.groups())
    return major, minor, patch


def bump_version(version: Any, part: str = "patch") -> str | None:
    """Increment `part` (major, minor or patch) and reset the parts below it."""
    parsed = parse_semver(version)
    if parsed is None:
        return None
    major, minor, patch = parsed
    if part == "major":
        return f"{major + 1}.0.0"
    if part == "minor":
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


def bump_patch(version: Any) -> str | None:
    return bump_version(version, "patch")


@dataclass
class InstructionEntry:
    """One catalog record, stored as `<id>.json`."""

    id: str
    title: str
    body: str
    priority: int = 50
    audience: Audience = Audience.ALL
    requirement: Requirement = Requirement.OPTIONAL
    categories: list[str] = field(default_factory=list)
    source_hash: str = ""
    schema_version: str = SCHEMA_VERSION
    created_at: str = ""
    updated_at: str = ""
    rationale: str | None = None
    usage_count: int | None = None
    last_used_at: str | None = None
    risk_score: int | None = None
    deprecated_by: str | None = None
    version: str | None = None
    status: str | None = None
    owner: str | None = None
    priority_tier: str | None = None
    next_review_due: str | None = None
    change_log: list[dict[str, Any]] | None = None
    extra: dict[str, Any] = field(default_factory=dict)  # unknown keys kept round-trip

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase form used on disk and on the wire (None omitted)."""
        d: dict[str, Any] = {}
        for wire, attr in _WIRE_FIELDS.items():
            value = getattr(self, attr)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, list):
                value = list(value)
            d[wire] = value
        for k, v in self.extra.items():
            d.setdefault(k, v)
        return d

    def to_persisted_dict(self) -> dict[str, Any]:
        """Like `to_dict` but without usage telemetry, which lives in the usage snapshot."""
        d = self.to_dict()
        d.pop("usageCount", None)
        d.pop("lastUsedAt", None)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InstructionEntry":
        """
        Build an entry from its camelCase form.

        Raises ValueError for missing required fields, bad enum values or
        fields of the wrong type.
        """
        missing = [k for k in ("id", "title", "body") if not isinstance(data.get(k), str) or not data[k]]
        if missing:
            raise ValueError(f"missing required field(s): {', '.join(missing)}")

        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            attr = _WIRE_FIELDS.get(key)
            if attr is None:
                extra[key] = value
            elif value is not None:
                kwargs[attr] = value

        try:
            kwargs["audience"] = Audience(kwargs.get("audience", Audience.ALL))
        except ValueError:
            raise ValueError(f"invalid audience: {kwargs.get('audience')!r}") from None
        try:
            kwargs["requirement"] = Requirement(kwargs.get("requirement", Requirement.OPTIONAL))
        except ValueError:
            raise ValueError(f"invalid requirement: {kwargs.get('requirement')!r}") from None

        priority = kwargs.get("priority", 50)
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            raise ValueError(f"priority must be a number: {priority!r}")
        if not math.isfinite(priority):
            raise ValueError(f"priority must be finite: {priority!r}")
        kwargs["priority"] = int(priority)

        for attr in _STRING_FIELDS:
            if attr in kwargs and not isinstance(kwargs[attr], str):
                raise ValueError(f"{_wire_name(attr)} must be a string: {kwargs[attr]!r}")
        for attr in _COUNTER_FIELDS:
            value = kwargs.get(attr)
            if attr in kwargs and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValueError(f"{_wire_name(attr)} must be an integer: {value!r}")

        categories = kwargs.get("categories", [])
        if not isinstance(categories, list):
            raise ValueError("categories must be a list")
        kwargs["categories"] = [c for c in categories if isinstance(c, str)]

        if "change_log" in kwargs and not isinstance(kwargs["change_log"], list):
            raise ValueError("changeLog must be a list")

        return cls(extra=extra, **kwargs)

    def persisted_equal(self, other: "InstructionEntry") -> bool:
        """True when both would serialize identically, ignoring updatedAt."""
        a = self.to_persisted_dict()
        b = other.to_persisted_dict()
        a.pop("updatedAt", None)
        b.pop("updatedAt", None)
        return a == b
