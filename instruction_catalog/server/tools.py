"""Tool descriptions and input schemas advertised through tools/list."""

from __future__ import annotations

from typing import Any

from .registry import ToolSpec

_EMPTY: dict[str, Any] = {"type": "object", "properties": {}}

_ENTRY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": {"type": "string"},
        "title": {"type": "string"},
        "body": {"type": "string"},
        "rationale": {"type": "string"},
        "priority": {"type": "integer", "minimum": 1, "maximum": 100},
        "audience": {"type": "string", "enum": ["individual", "group", "all"]},
        "requirement": {
            "type": "string",
            "enum": ["mandatory", "critical", "recommended", "optional", "deprecated"],
        },
        "categories": {"type": "array", "items": {"type": "string"}},
        "deprecatedBy": {"type": "string"},
        "version": {"type": "string"},
        "status": {"type": "string"},
        "owner": {"type": "string"},
        "priorityTier": {"type": "string"},
        "nextReviewDue": {"type": "string"},
    },
}


def _obj(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "instructions/add",
        "Add one instruction. overwrite replaces an existing id; lax fills defaults for partial input.",
        _obj(
            {"entry": _ENTRY_SCHEMA, "overwrite": {"type": "boolean"}, "lax": {"type": "boolean"}},
            ["entry"],
        ),
        mutation=True,
    ),
    ToolSpec(
        "instructions/update",
        "Overwrite an existing instruction; omitted fields keep their values and createdAt is preserved.",
        _obj({"entry": _ENTRY_SCHEMA}, ["entry"]),
        mutation=True,
    ),
    ToolSpec("instructions/get", "Fetch one instruction by id.", _obj({"id": {"type": "string"}}, ["id"])),
    ToolSpec(
        "instructions/list",
        "List instructions, optionally filtered by category. Returns the catalog hash.",
        _obj({"category": {"type": "string"}}),
    ),
    ToolSpec(
        "instructions/search",
        "Keyword search over title, body and categories, ranked by relevance.",
        _obj(
            {
                "q": {"type": "string"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 500},
                "categories": {"type": "array", "items": {"type": "string"}},
            },
            ["q"],
        ),
    ),
    ToolSpec(
        "instructions/diff",
        "Report what changed relative to a client's known hash and entries.",
        _obj(
            {
                "clientHash": {"type": "string"},
                "known": {
                    "type": "array",
                    "items": _obj({"id": {"type": "string"}, "sourceHash": {"type": "string"}}, ["id"]),
                },
            }
        ),
    ),
    ToolSpec(
        "instructions/import",
        "Import many instructions; mode skip keeps existing ids, overwrite replaces them.",
        _obj(
            {
                "entries": {"type": "array", "items": _ENTRY_SCHEMA},
                "mode": {"type": "string", "enum": ["skip", "overwrite"]},
            },
            ["entries"],
        ),
        mutation=True,
    ),
    ToolSpec(
        "instructions/remove",
        "Remove instructions by id; reports an outcome per id.",
        _obj({"ids": {"type": "array", "items": {"type": "string"}}, "missingOk": {"type": "boolean"}}, ["ids"]),
        mutation=True,
    ),
    ToolSpec(
        "instructions/export",
        "Export all or selected instructions as JSON entries or markdown documents.",
        _obj(
            {
                "ids": {"type": "array", "items": {"type": "string"}},
                "format": {"type": "string", "enum": ["json", "markdown"]},
            }
        ),
    ),
    ToolSpec(
        "instructions/groom",
        "Maintenance pass: normalize categories, repair hashes, merge duplicates, drop deprecated.",
        _obj(
            {
                "mode": _obj(
                    {
                        "dryRun": {"type": "boolean"},
                        "removeDeprecated": {"type": "boolean"},
                        "mergeDuplicates": {"type": "boolean"},
                    }
                )
            }
        ),
        mutation=True,
    ),
    ToolSpec(
        "instructions/repair",
        "Rewrite entries whose stored sourceHash disagrees with their body.",
        _EMPTY,
        mutation=True,
    ),
    ToolSpec("instructions/reload", "Reload the catalog from disk.", _EMPTY),
    ToolSpec("instructions/governanceHash", "Hash over governance metadata projections.", _EMPTY),
    ToolSpec(
        "instructions/governanceUpdate",
        "Set owner, status or review dates on one instruction, optionally bumping its version.",
        _obj(
            {
                "id": {"type": "string"},
                "owner": {"type": "string"},
                "status": {"type": "string", "enum": ["draft", "review", "approved", "deprecated", "active"]},
                "lastReviewedAt": {"type": "string"},
                "nextReviewDue": {"type": "string"},
                "bump": {"type": "string", "enum": ["none", "patch", "minor", "major"]},
            },
            ["id"],
        ),
        mutation=True,
    ),
    ToolSpec("integrity/verify", "Verify every stored sourceHash against its body.", _EMPTY),
    ToolSpec("integrity/hardening", "Self-check canonicalization and import-order hash invariance.", _EMPTY),
    ToolSpec("manifest/status", "Compare the manifest snapshot with the live catalog.", _EMPTY),
    ToolSpec("manifest/refresh", "Rewrite the manifest snapshot from the live catalog.", _EMPTY),
    ToolSpec("manifest/repair", "Fully recompute drift and rewrite the manifest.", _EMPTY),
    ToolSpec(
        "bootstrap/request",
        "Issue a one-time confirmation token for a human to approve mutation.",
        _obj({"rationale": {"type": "string"}}),
    ),
    ToolSpec(
        "bootstrap/confirmFinalize",
        "Confirm the workspace with a previously issued token.",
        _obj({"token": {"type": "string"}}, ["token"]),
    ),
    ToolSpec("bootstrap/status", "Report bootstrap gating state.", _EMPTY),
    ToolSpec("usage/track", "Record one use of an instruction.", _obj({"id": {"type": "string"}}, ["id"])),
    ToolSpec(
        "usage/hotset",
        "Most used instructions.",
        _obj({"limit": {"type": "integer", "minimum": 1, "maximum": 500}}),
    ),
    ToolSpec("health/check", "Server and catalog health summary.", _EMPTY),
)
