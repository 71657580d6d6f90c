"""
Protocol method handlers over a `CatalogContext`.

Argument problems raise ValueError, which the server maps to
"Invalid params". Mutating handlers consult the bootstrap gate before any
write and answer a blocked call with a structured `mutation_blocked` result.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from .. import __version__
from ..catalog.markdown import entry_to_markdown
from ..context import CatalogContext
from ..errors import BootstrapDenied
from .registry import Handler, HandlerRegistry
from .tools import TOOL_SPECS

logger = logging.getLogger(__name__)

_EXPORT_FORMATS = ("json", "markdown")


def _require_str(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value.strip()


def _optional_str(params: dict[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _flag(params: dict[str, Any], key: str) -> bool:
    value = params.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def _optional_int(params: dict[str, Any], key: str) -> int | None:
    value = params.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return value


def _str_list(params: dict[str, Any], key: str, *, required: bool = False) -> list[str] | None:
    value = params.get(key)
    if value is None:
        if required:
            raise ValueError(f"{key} is required")
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be an array of strings")
    return value


def _entry_arg(params: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Split add/update params into (entry, flags).

    Accepts `{entry: {...}, overwrite, lax}` and the flat form where the
    entry fields sit directly in params next to the flags.
    """
    entry = params.get("entry")
    if entry is None and "id" in params:
        entry = params
    if not isinstance(entry, dict):
        raise ValueError("entry must be an object")
    flags = {k: params[k] for k in ("overwrite", "lax") if k in params}
    for k in ("overwrite", "lax"):
        if k in entry and k not in flags:
            flags[k] = entry[k]
    entry = {k: v for k, v in entry.items() if k not in ("overwrite", "lax")}
    return entry, flags


def _guarded(ctx: CatalogContext, name: str, fn: Handler, *, when: Callable[[dict[str, Any]], bool] | None = None) -> Handler:
    """Wrap a mutating handler with the bootstrap gate check."""

    def handler(params: dict[str, Any]) -> Any:
        if when is None or when(params):
            try:
                ctx.gate.check_mutation(target=name)
            except BootstrapDenied as exc:
                return exc.to_dict()
        return fn(params)

    return handler


def build_handlers(ctx: CatalogContext) -> dict[str, Handler]:
    catalog = ctx.catalog

    def add(params: dict[str, Any]) -> dict[str, Any]:
        entry, flags = _entry_arg(params)
        return catalog.add(entry, overwrite=_flag(flags, "overwrite"), lax=_flag(flags, "lax"))

    def update(params: dict[str, Any]) -> dict[str, Any]:
        entry, _ = _entry_arg(params)
        return catalog.update(entry)

    def get(params: dict[str, Any]) -> dict[str, Any]:
        entry_id = _require_str(params, "id")
        entry = catalog.get(entry_id)
        if entry is None:
            return {"id": entry_id, "notFound": True}
        return {"hash": catalog.hash, "item": entry.to_dict()}

    def list_(params: dict[str, Any]) -> dict[str, Any]:
        return catalog.list(category=_optional_str(params, "category"))

    def search(params: dict[str, Any]) -> dict[str, Any]:
        query = params.get("q", params.get("query"))
        if not isinstance(query, str):
            raise ValueError("q must be a string")
        return catalog.search(
            query,
            limit=_optional_int(params, "limit"),
            categories=_str_list(params, "categories"),
        )

    def diff(params: dict[str, Any]) -> dict[str, Any]:
        known = params.get("known")
        if known is not None and not isinstance(known, list):
            raise ValueError("known must be an array")
        return catalog.diff(_optional_str(params, "clientHash"), known)

    def import_(params: dict[str, Any]) -> dict[str, Any]:
        entries = params.get("entries")
        if not isinstance(entries, list):
            raise ValueError("entries must be an array")
        mode = params.get("mode", "skip")
        return catalog.import_entries(entries, mode=mode)

    def remove(params: dict[str, Any]) -> dict[str, Any]:
        ids = _str_list(params, "ids", required=True)
        return catalog.remove(ids or [], missing_ok=_flag(params, "missingOk"))

    def export(params: dict[str, Any]) -> dict[str, Any]:
        fmt = params.get("format", "json")
        if fmt not in _EXPORT_FORMATS:
            raise ValueError(f"format must be one of: {', '.join(_EXPORT_FORMATS)}")
        ids = _str_list(params, "ids")
        items = catalog.export(ids)
        if fmt == "json":
            return {"hash": catalog.hash, "count": len(items), "items": items}
        documents = []
        for item in items:
            entry = catalog.get(item["id"])
            if entry is not None:
                documents.append({"id": entry.id, "markdown": entry_to_markdown(entry)})
        return {"hash": catalog.hash, "count": len(documents), "documents": documents}

    def _groom_mode(params: dict[str, Any]) -> dict[str, Any]:
        mode = params.get("mode") or {}
        if not isinstance(mode, dict):
            raise ValueError("mode must be an object")
        return mode

    def groom(params: dict[str, Any]) -> dict[str, Any]:
        mode = _groom_mode(params)
        return catalog.groom(
            dry_run=_flag(mode, "dryRun"),
            remove_deprecated=_flag(mode, "removeDeprecated"),
            merge_duplicates=_flag(mode, "mergeDuplicates"),
        )

    def repair(params: dict[str, Any]) -> dict[str, Any]:
        return catalog.repair_hashes()

    def reload(params: dict[str, Any]) -> dict[str, Any]:
        report = catalog.reload()
        return {"hash": catalog.hash, "count": catalog.count, **report.to_dict()}

    def governance_hash(params: dict[str, Any]) -> dict[str, Any]:
        return catalog.governance_hash()

    def governance_update(params: dict[str, Any]) -> dict[str, Any]:
        return catalog.governance_update(
            _require_str(params, "id"),
            owner=_optional_str(params, "owner"),
            status=_optional_str(params, "status"),
            last_reviewed_at=_optional_str(params, "lastReviewedAt"),
            next_review_due=_optional_str(params, "nextReviewDue"),
            bump=_optional_str(params, "bump") or "none",
        )

    def verify(params: dict[str, Any]) -> dict[str, Any]:
        return catalog.verify()

    def hardening(params: dict[str, Any]) -> dict[str, Any]:
        catalog.ensure_fresh()
        report = ctx.hasher.hardening_probe(catalog.entries())
        policy = ctx.hasher.policy
        return {
            "hash": catalog.hash,
            "enabled": policy.hardening_enabled,
            "canonVariants": policy.canon_variants,
            "importSetSize": policy.import_set_size,
            "contentFields": list(policy.content_fields),
            **report.to_dict(),
        }

    def manifest_status(params: dict[str, Any]) -> dict[str, Any]:
        catalog.ensure_fresh()
        return ctx.manifest.status(catalog)

    def manifest_refresh(params: dict[str, Any]) -> dict[str, Any]:
        catalog.ensure_fresh()
        return ctx.manifest.refresh(catalog)

    def manifest_repair(params: dict[str, Any]) -> dict[str, Any]:
        catalog.ensure_fresh()
        return ctx.manifest.repair(catalog)

    def bootstrap_request(params: dict[str, Any]) -> dict[str, Any]:
        return ctx.gate.request_token(_optional_str(params, "rationale"))

    def bootstrap_finalize(params: dict[str, Any]) -> dict[str, Any]:
        return ctx.gate.finalize(_require_str(params, "token"))

    def bootstrap_status(params: dict[str, Any]) -> dict[str, Any]:
        return ctx.gate.status()

    def usage_track(params: dict[str, Any]) -> dict[str, Any]:
        return catalog.track_usage(_require_str(params, "id"))

    def usage_hotset(params: dict[str, Any]) -> dict[str, Any]:
        return catalog.hotset(_optional_int(params, "limit") or 10)

    def health(params: dict[str, Any]) -> dict[str, Any]:
        catalog.ensure_fresh()
        return {
            "status": "ok",
            "version": __version__,
            "hash": catalog.hash,
            "count": catalog.count,
            "generation": catalog.generation,
            "loadIssues": len(catalog.issues),
            "mutationBlockedReason": ctx.gate.mutation_block_reason(),
        }

    def not_dry_run(params: dict[str, Any]) -> bool:
        return not _flag(_groom_mode(params), "dryRun")

    return {
        "instructions/add": _guarded(ctx, "instructions/add", add),
        "instructions/update": _guarded(ctx, "instructions/update", update),
        "instructions/get": get,
        "instructions/list": list_,
        "instructions/search": search,
        "instructions/diff": diff,
        "instructions/import": _guarded(ctx, "instructions/import", import_),
        "instructions/remove": _guarded(ctx, "instructions/remove", remove),
        "instructions/export": export,
        "instructions/groom": _guarded(ctx, "instructions/groom", groom, when=not_dry_run),
        "instructions/repair": _guarded(ctx, "instructions/repair", repair),
        "instructions/reload": reload,
        "instructions/governanceHash": governance_hash,
        "instructions/governanceUpdate": _guarded(ctx, "instructions/governanceUpdate", governance_update),
        "integrity/verify": verify,
        "integrity/hardening": hardening,
        "manifest/status": manifest_status,
        "manifest/refresh": manifest_refresh,
        "manifest/repair": manifest_repair,
        "bootstrap/request": bootstrap_request,
        "bootstrap/confirmFinalize": bootstrap_finalize,
        "bootstrap/status": bootstrap_status,
        "usage/track": usage_track,
        "usage/hotset": usage_hotset,
        "health/check": health,
    }


def build_registry(ctx: CatalogContext) -> HandlerRegistry:
    """Register every advertised tool against its handler."""
    handlers = build_handlers(ctx)
    registry = HandlerRegistry()
    for spec in TOOL_SPECS:
        registry.register(spec, handlers[spec.name])
    missing = set(handlers) - set(registry.names())
    if missing:
        raise RuntimeError(f"handlers without a tool spec: {', '.join(sorted(missing))}")
    return registry
