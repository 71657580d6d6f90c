"""Baseline bootstrap instructions written into empty or incomplete workspaces."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .catalog import Catalog

logger = logging.getLogger(__name__)

BOOTSTRAP_SEEDS: tuple[dict[str, Any], ...] = (
    {
        "id": "000-bootstrapper",
        "title": "Bootstrap: Initial Workspace Activation",
        "body": (
            "Purpose: give a fresh agent the first safe steps for enabling catalog mutation.\n"
            "1. Call bootstrap/status to see whether confirmation is required.\n"
            "2. Call bootstrap/request and hand the returned token to a human.\n"
            "3. Only after the human approves, call bootstrap/confirmFinalize with that token."
        ),
        "priority": 1,
        "audience": "all",
        "requirement": "mandatory",
        "categories": ["bootstrap", "lifecycle"],
        "owner": "system",
        "version": "1.0.0",
        "priorityTier": "P0",
        "semanticSummary": "Bootstrap activation steps with confirmation token gating mutations",
    },
    {
        "id": "001-lifecycle-bootstrap",
        "title": "Lifecycle Bootstrap: Local-First Instruction Strategy",
        "body": (
            "Purpose: early lifecycle guidance after bootstrap confirmation.\n"
            "Keep the catalog minimal, prefer local-first P0/P1 additions, and promote only after stability."
        ),
        "priority": 10,
        "audience": "all",
        "requirement": "recommended",
        "categories": ["bootstrap", "lifecycle"],
        "owner": "system",
        "version": "1.0.0",
        "priorityTier": "P1",
        "semanticSummary": "Lifecycle and promotion guardrails after bootstrap confirmation",
    },
)

BOOTSTRAP_IDS: frozenset[str] = frozenset(seed["id"] for seed in BOOTSTRAP_SEEDS)


@dataclass
class SeedSummary:
    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"created": self.created, "existing": self.existing}


def ensure_seeds(catalog: "Catalog") -> SeedSummary:
    """
    Write each bootstrap seed whose file is missing.

    Existing files are never touched, even if they failed to load.
    """
    summary = SeedSummary()
    for seed in BOOTSTRAP_SEEDS:
        if catalog.path_for(seed["id"]).exists():
            summary.existing.append(seed["id"])
            continue
        catalog.add(dict(seed), overwrite=False, lax=True)
        summary.created.append(seed["id"])
    if summary.created:
        logger.info("seeded bootstrap instructions: %s", ", ".join(summary.created))
    return summary
