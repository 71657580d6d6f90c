"""Tests for markdown/frontmatter rendering of entries."""

from __future__ import annotations

import frontmatter

from conftest import make_entry
from instruction_catalog.catalog.catalog import Catalog
from instruction_catalog.catalog.markdown import entry_from_markdown, entry_to_markdown


def test_markdown_document_layout(catalog: Catalog):
    catalog.add(make_entry("a", "First line\nSecond line", categories=["ops"], owner="team"))
    entry = catalog.get("a")

    post = frontmatter.loads(entry_to_markdown(entry))

    assert post.content == "First line\nSecond line"
    assert post["id"] == "a"
    assert post["owner"] == "team"
    assert post["categories"] == ["ops"]
    assert "sourceHash" not in post.metadata
    assert "body" not in post.metadata


def test_markdown_import_restores_entry(catalog: Catalog):
    catalog.add(make_entry("a", "Body text", priority=12, requirement="recommended"))
    original = catalog.get("a")
    data = entry_from_markdown(entry_to_markdown(original))
    catalog.remove(["a"])

    catalog.import_entries([data])

    restored = catalog.get("a")
    assert restored.body == original.body
    assert restored.priority == 12
    assert restored.requirement == original.requirement
    assert restored.source_hash == original.source_hash
    assert restored.created_at == original.created_at


def test_unquoted_dates_import_as_strings(catalog: Catalog):
    text = "---\nid: dated\ntitle: Dated\nnextReviewDue: 2026-07-01\n---\nReview me.\n"

    data = entry_from_markdown(text)
    result = catalog.import_entries([data])

    assert data["nextReviewDue"] == "2026-07-01"
    assert result["imported"] == 1
    assert catalog.get("dated").next_review_due == "2026-07-01"
