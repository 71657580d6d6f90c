"""
Error taxonomy for catalog operations.

Every catalog failure is recoverable: the protocol server maps these to
JSON-RPC errors and keeps serving. Missing entries and manifest drift are
reported as result data, not raised.
"""

from __future__ import annotations

from typing import Any


class CatalogError(Exception):
    """Base class for catalog failures."""

    kind = "catalog_error"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class ValidationError(CatalogError, ValueError):
    """Input rejected before any write (missing field, bad enum, bad id)."""

    kind = "validation_error"


class IntegrityMismatch(CatalogError):
    """Stored sourceHash disagrees with the recomputed body hash."""

    kind = "integrity_mismatch"

    def __init__(self, issues: list[dict[str, Any]]):
        self.issues = issues
        ids = ", ".join(i["id"] for i in issues[:5])
        more = f" (+{len(issues) - 5} more)" if len(issues) > 5 else ""
        super().__init__(f"{len(issues)} integrity issue(s): {ids}{more}")

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["issues"] = self.issues
        return d


class WriteFailure(CatalogError):
    """A single file write failed after exhausting its retry budget."""

    kind = "write_failure"

    def __init__(self, path: str, attempts: int, cause: BaseException | None = None):
        self.path = path
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"write failed after {attempts} attempt(s): {path}: {cause}")


class BootstrapDenied(CatalogError):
    """Mutation refused by the bootstrap gate."""

    kind = "mutation_blocked"

    def __init__(self, reason: str, target: str | None = None):
        self.reason = reason
        self.target = target
        super().__init__(reason)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"error": self.kind, "reason": self.reason, "bootstrap": True}
        if self.target:
            d["target"] = self.target
        return d
