"""Tests for the instructions directory watcher."""

from __future__ import annotations

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from conftest import make_entry, write_raw_entry
from instruction_catalog.catalog.catalog import Catalog
from instruction_catalog.catalog.watcher import InstructionDirHandler


@pytest.fixture
def handler(catalog: Catalog) -> InstructionDirHandler:
    return InstructionDirHandler(catalog)


@pytest.mark.parametrize(
    ("path", "relevant"),
    [
        ("/x/instructions/a.json", True),
        ("/x/instructions/A.JSON", True),
        ("/x/instructions/.a.json.0f0f0f0f0f0f.tmp", False),
        ("/x/instructions/bootstrap.confirmed.json", False),
        ("/x/instructions/notes.md", False),
    ],
)
def test_is_relevant(path: str, relevant: bool):
    assert InstructionDirHandler.is_relevant(path) is relevant


def test_events_mark_catalog_stale(handler: InstructionDirHandler, catalog: Catalog):
    seen: list[str] = []
    handler.on_change = seen.append
    write_raw_entry(catalog.directory, make_entry("ext"))
    path = str(catalog.path_for("ext"))

    handler.on_created(FileCreatedEvent(path))

    assert handler.changes == 1
    assert seen == [path]
    assert catalog.get("ext") is not None


def test_atomic_rename_counts_as_change(handler: InstructionDirHandler, catalog: Catalog):
    tmp = str(catalog.directory / ".a.json.abcdefabcdef.tmp")
    dest = str(catalog.directory / "a.json")

    handler.on_moved(FileMovedEvent(tmp, dest))

    assert handler.changes == 1


def test_irrelevant_events_are_ignored(handler: InstructionDirHandler, catalog: Catalog):
    handler.on_modified(FileModifiedEvent(str(catalog.directory / ".x.json.123456123456.tmp")))
    handler.on_deleted(FileDeletedEvent(str(catalog.directory / "bootstrap.confirmed.json")))
    handler.on_created(DirCreatedEvent(str(catalog.directory / "sub.json")))

    assert handler.changes == 0


def test_deleted_file_disappears_after_reload(handler: InstructionDirHandler, catalog: Catalog):
    catalog.add(make_entry("gone"))
    path = catalog.path_for("gone")
    path.unlink()

    handler.on_deleted(FileDeletedEvent(str(path)))

    assert catalog.get("gone") is None
