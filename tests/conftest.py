"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from instruction_catalog.audit_log import AuditLog
from instruction_catalog.catalog.atomic_fs import AtomicFileStore
from instruction_catalog.catalog.catalog import Catalog
from instruction_catalog.catalog.hashing import HashEngine
from instruction_catalog.catalog.manifest import ManifestTracker
from instruction_catalog.config import AtomicWriteConfig, CatalogConfig
from instruction_catalog.context import CatalogContext


def make_entry(entry_id: str, body: str | None = None, **overrides: Any) -> dict[str, Any]:
    """A complete, valid entry dict."""
    entry: dict[str, Any] = {
        "id": entry_id,
        "title": f"Title {entry_id}",
        "body": body if body is not None else f"Body of {entry_id}",
        "priority": 50,
        "audience": "all",
        "requirement": "optional",
        "categories": ["general"],
    }
    entry.update(overrides)
    return entry


def write_raw_entry(directory: Path, data: dict[str, Any]) -> Path:
    """Write an entry file directly, bypassing the catalog."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{data['id']}.json"
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def config(tmp_path: Path) -> CatalogConfig:
    return CatalogConfig(root=tmp_path, atomic=AtomicWriteConfig(attempts=3, backoff_ms=0))


@pytest.fixture
def store(config: CatalogConfig) -> AtomicFileStore:
    return AtomicFileStore(config.atomic, sleep=lambda _: None)


@pytest.fixture
def catalog(config: CatalogConfig, store: AtomicFileStore) -> Catalog:
    """A loaded, empty catalog with manifest and audit wired in (no seeds)."""
    cat = Catalog(
        config,
        store=store,
        hasher=HashEngine(config.hashing),
        audit=AuditLog(config.audit_log_path),
        manifest=ManifestTracker(config.manifest_path, store, config.manifest),
    )
    cat.load()
    return cat


@pytest.fixture
def ctx(config: CatalogConfig) -> CatalogContext:
    """A started context: seeded, bootstrap not yet confirmed."""
    context = CatalogContext.create(config)
    yield context
    context.close()


@pytest.fixture
def confirmed_ctx(ctx: CatalogContext) -> CatalogContext:
    issued = ctx.gate.request_token()
    assert ctx.gate.finalize(issued["token"]) == {"confirmed": True}
    return ctx
