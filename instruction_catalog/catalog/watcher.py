"""
Directory watcher that marks the catalog stale when entry files change on disk.

The observer thread never touches catalog state beyond setting the stale
flag; the next catalog operation reloads under the catalog lock.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .catalog import Catalog
from .loader import BOOTSTRAP_MARKER

logger = logging.getLogger(__name__)


class InstructionDirHandler(FileSystemEventHandler):
    """Flags the catalog for reload on any relevant create/modify/delete/move."""

    def __init__(self, catalog: Catalog, on_change: Callable[[str], None] | None = None):
        super().__init__()
        self.catalog = catalog
        self.on_change = on_change
        self.changes = 0

    @staticmethod
    def is_relevant(path: str) -> bool:
        p = Path(path)
        # Temp files from atomic writes are hidden (".<name>.<hex>.tmp").
        if p.name.startswith("."):
            return False
        return p.suffix.lower() == ".json" and p.name != BOOTSTRAP_MARKER

    def _flag(self, path: str) -> None:
        self.changes += 1
        self.catalog.mark_stale()
        logger.debug("instruction file changed: %s", path)
        if self.on_change:
            self.on_change(path)

    def on_created(self, event: FileCreatedEvent) -> None:
        if not event.is_directory and self.is_relevant(event.src_path):
            self._flag(event.src_path)

    def on_modified(self, event: FileModifiedEvent) -> None:
        if not event.is_directory and self.is_relevant(event.src_path):
            self._flag(event.src_path)

    def on_deleted(self, event: FileDeletedEvent) -> None:
        if not event.is_directory and self.is_relevant(event.src_path):
            self._flag(event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:
        if event.is_directory:
            return
        # A rename from a temp file into "<id>.json" is how atomic writes land.
        if self.is_relevant(event.src_path) or self.is_relevant(event.dest_path):
            self._flag(event.dest_path)


def watch_instructions(
    catalog: Catalog,
    on_change: Callable[[str], None] | None = None,
) -> tuple[Observer, InstructionDirHandler]:
    """
    Start watching the catalog's instructions directory.

    Returns:
        Tuple of (observer, handler) - caller should call observer.stop() to stop watching
    """
    catalog.directory.mkdir(parents=True, exist_ok=True)
    handler = InstructionDirHandler(catalog, on_change=on_change)
    observer = Observer()
    observer.schedule(handler, str(catalog.directory), recursive=False)
    observer.daemon = True
    observer.start()
    logger.info("watching %s for changes", catalog.directory)
    return observer, handler
