"""Tests for protocol handlers wired to a real catalog context."""

from __future__ import annotations

import asyncio
import io
import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from conftest import make_entry, write_raw_entry
from instruction_catalog.catalog.markdown import entry_from_markdown
from instruction_catalog.catalog.seeds import BOOTSTRAP_IDS
from instruction_catalog.context import CatalogContext
from instruction_catalog.server import ProtocolServer, build_registry
from instruction_catalog.server.registry import HandlerRegistry
from instruction_catalog.server.tools import TOOL_SPECS


def call(registry: HandlerRegistry, name: str, params: dict[str, Any] | None = None) -> Any:
    return asyncio.run(registry.invoke(name, params or {}))


@pytest.fixture
def registry(ctx: CatalogContext) -> HandlerRegistry:
    return build_registry(ctx)


@pytest.fixture
def open_registry(confirmed_ctx: CatalogContext) -> HandlerRegistry:
    return build_registry(confirmed_ctx)


def test_every_tool_spec_has_a_handler(registry: HandlerRegistry):
    assert len(registry) == len(TOOL_SPECS) == 25
    assert "instructions/add" in registry.names()
    assert registry.spec("instructions/add").mutation is True


class TestGate:
    def test_fresh_workspace_blocks_mutation(self, registry: HandlerRegistry, ctx: CatalogContext):
        result = call(registry, "instructions/add", {"entry": make_entry("a")})

        assert result == {
            "error": "mutation_blocked",
            "reason": "bootstrap_confirmation_required",
            "bootstrap": True,
            "target": "instructions/add",
        }
        assert not ctx.catalog.path_for("a").exists()

    def test_dry_run_groom_is_not_gated(self, registry: HandlerRegistry):
        result = call(registry, "instructions/groom", {"mode": {"dryRun": True}})
        assert result["dryRun"] is True

        blocked = call(registry, "instructions/groom", {"mode": {}})
        assert blocked["error"] == "mutation_blocked"

    def test_reads_are_never_gated(self, registry: HandlerRegistry):
        listed = call(registry, "instructions/list")
        assert {i["id"] for i in listed["items"]} == set(BOOTSTRAP_IDS)

    def test_token_flow_over_handlers(self, registry: HandlerRegistry):
        status = call(registry, "bootstrap/status")
        assert status["requireConfirmation"] is True

        token = call(registry, "bootstrap/request", {"rationale": "setting up"})["token"]
        assert call(registry, "bootstrap/confirmFinalize", {"token": token}) == {"confirmed": True}

        added = call(registry, "instructions/add", {"entry": make_entry("a")})
        assert added["created"] is True


class TestInstructions:
    def test_add_flat_form_and_get(self, open_registry: HandlerRegistry):
        call(open_registry, "instructions/add", {"id": "x", "body": "hello", "lax": True})

        got = call(open_registry, "instructions/get", {"id": "x"})
        assert got["item"]["title"] == "x"
        assert got["hash"] == call(open_registry, "health/check")["hash"]

        assert call(open_registry, "instructions/get", {"id": "nope"}) == {"id": "nope", "notFound": True}

    def test_update_and_remove(self, open_registry: HandlerRegistry):
        call(open_registry, "instructions/add", {"entry": make_entry("a")})
        call(open_registry, "instructions/update", {"entry": {"id": "a", "priority": 7}})
        assert call(open_registry, "instructions/get", {"id": "a"})["item"]["priority"] == 7

        removed = call(open_registry, "instructions/remove", {"ids": ["a", "ghost"], "missingOk": True})
        assert removed["removedIds"] == ["a"]
        assert removed["errorCount"] == 0

    def test_import_and_export_markdown(self, open_registry: HandlerRegistry):
        call(open_registry, "instructions/import", {"entries": [make_entry("a"), make_entry("b")]})

        exported = call(open_registry, "instructions/export", {"format": "markdown", "ids": ["a"]})

        assert exported["count"] == 1
        doc = entry_from_markdown(exported["documents"][0]["markdown"])
        assert doc["id"] == "a"
        assert doc["body"] == "Body of a"

    def test_search_and_diff(self, open_registry: HandlerRegistry):
        call(open_registry, "instructions/add", {"entry": make_entry("a", "rotate the logs weekly")})

        found = call(open_registry, "instructions/search", {"q": "rotate logs"})
        assert found["items"][0]["id"] == "a"

        current = call(open_registry, "health/check")["hash"]
        assert call(open_registry, "instructions/diff", {"clientHash": current})["upToDate"] is True

    def test_invalid_arguments_raise_value_error(self, open_registry: HandlerRegistry):
        with pytest.raises(ValueError):
            call(open_registry, "instructions/search", {})
        with pytest.raises(ValueError):
            call(open_registry, "instructions/remove", {"ids": "a"})
        with pytest.raises(ValueError):
            call(open_registry, "instructions/export", {"format": "pdf"})
        with pytest.raises(ValueError):
            call(open_registry, "instructions/add", {"entry": make_entry("a"), "overwrite": "yes"})

    def test_hardening_and_governance(self, open_registry: HandlerRegistry):
        hardening = call(open_registry, "integrity/hardening")
        assert hardening["ok"] is True
        assert hardening["contentFields"] == ["body"]

        gov = call(open_registry, "instructions/governanceHash")
        assert gov["count"] == len(BOOTSTRAP_IDS)

    def test_governance_update(self, registry: HandlerRegistry, ctx: CatalogContext):
        params = {"id": "001-lifecycle-bootstrap", "status": "review", "bump": "major"}
        assert call(registry, "instructions/governanceUpdate", params)["error"] == "mutation_blocked"

        token = call(registry, "bootstrap/request")["token"]
        call(registry, "bootstrap/confirmFinalize", {"token": token})
        result = call(registry, "instructions/governanceUpdate", params)

        assert result["changed"] is True
        assert result["status"] == "review"
        assert ctx.catalog.get("001-lifecycle-bootstrap").status == "review"
        assert call(registry, "instructions/governanceUpdate", {"id": "ghost"}) == {"id": "ghost", "notFound": True}

    def test_manifest_handlers_see_external_files(self, open_registry: HandlerRegistry, confirmed_ctx: CatalogContext):
        catalog = confirmed_ctx.catalog
        assert call(open_registry, "manifest/status")["drift"] == 0
        write_raw_entry(catalog.directory, make_entry("external"))
        catalog.mark_stale()

        status = call(open_registry, "manifest/status")

        assert status["count"] == len(BOOTSTRAP_IDS) + 1
        assert status["drift"] == 1
        assert status["details"] == [{"id": "external", "change": "added"}]

        call(open_registry, "manifest/refresh")
        assert call(open_registry, "manifest/status")["drift"] == 0

    def test_usage_handlers(self, open_registry: HandlerRegistry):
        call(open_registry, "usage/track", {"id": "000-bootstrapper"})
        hot = call(open_registry, "usage/hotset", {"limit": 3})
        assert hot["items"][0]["id"] == "000-bootstrapper"


def test_concurrent_add_then_remove_leaves_catalog_unchanged(confirmed_ctx: CatalogContext):
    catalog = confirmed_ctx.catalog
    directory = catalog.directory
    before_hash = catalog.hash
    ids = [f"churn-{n:03d}" for n in range(40)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: catalog.add(make_entry(i)), ids))
    assert catalog.ids() >= set(ids)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: catalog.remove([i]), ids))

    assert catalog.hash == before_hash
    assert catalog.ids() == set(BOOTSTRAP_IDS)
    assert not [p for p in directory.iterdir() if p.name.startswith("churn-") or p.name.endswith(".tmp")]
    assert confirmed_ctx.manifest.status(catalog)["drift"] == 0


def test_concurrent_handler_calls(confirmed_ctx: CatalogContext):
    registry = build_registry(confirmed_ctx)
    ids = [f"job-{n}" for n in range(10)]

    async def churn() -> None:
        await asyncio.gather(
            *(registry.invoke("instructions/add", {"entry": make_entry(i)}) for i in ids)
        )
        await asyncio.gather(*(registry.invoke("instructions/remove", {"ids": [i]}) for i in ids))

    asyncio.run(churn())

    assert confirmed_ctx.catalog.ids() == set(BOOTSTRAP_IDS)


def test_end_to_end_session(confirmed_ctx: CatalogContext):
    registry = build_registry(confirmed_ctx)
    out = io.BytesIO()
    server = ProtocolServer(registry, out)
    messages = [
        {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
        {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": "instructions/add", "arguments": {"entry": make_entry("e2e")}},
        },
        {"jsonrpc": "2.0", "id": 3, "method": "instructions/get", "params": {"id": "e2e"}},
    ]

    async def go() -> int:
        stream = asyncio.StreamReader()
        for m in messages:
            stream.feed_data(json.dumps(m).encode("utf-8") + b"\n")
        stream.feed_eof()
        return await server.serve(stream)

    assert asyncio.run(go()) == 0
    lines = [json.loads(line) for line in out.getvalue().splitlines()]
    responses = {m["id"]: m for m in lines if "id" in m}
    added = json.loads(responses[2]["result"]["content"][0]["text"])
    assert added["created"] is True
    assert responses[3]["result"]["item"]["id"] == "e2e"
