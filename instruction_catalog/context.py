"""Process-wide wiring of the catalog and its collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .audit_log import AuditLog
from .bootstrap import BootstrapGate
from .catalog.atomic_fs import AtomicFileStore
from .catalog.catalog import Catalog
from .catalog.hashing import HashEngine
from .catalog.manifest import ManifestTracker
from .catalog.seeds import SeedSummary, ensure_seeds
from .config import CatalogConfig

logger = logging.getLogger(__name__)


@dataclass
class CatalogContext:
    """
    Everything a handler needs, built once per process from one config.

    Handlers receive this object explicitly; nothing is looked up through
    module-level state.
    """

    config: CatalogConfig
    store: AtomicFileStore
    hasher: HashEngine
    audit: AuditLog
    manifest: ManifestTracker
    catalog: Catalog
    gate: BootstrapGate
    seeds: SeedSummary = field(default_factory=SeedSummary)
    observer: Any = None

    @classmethod
    def create(cls, config: CatalogConfig, *, load: bool = True) -> "CatalogContext":
        store = AtomicFileStore(config.atomic)
        hasher = HashEngine(config.hashing)
        audit = AuditLog(config.audit_log_path, enabled=config.audit.enabled)
        manifest = ManifestTracker(config.manifest_path, store, config.manifest)
        catalog = Catalog(config, store=store, hasher=hasher, audit=audit, manifest=manifest)
        gate = BootstrapGate(config.bootstrap, catalog, store)
        ctx = cls(
            config=config,
            store=store,
            hasher=hasher,
            audit=audit,
            manifest=manifest,
            catalog=catalog,
            gate=gate,
        )
        if load:
            ctx.start()
        return ctx

    def start(self) -> None:
        """Load the catalog, seed a fresh workspace and start the optional watcher."""
        self.config.instructions_path.mkdir(parents=True, exist_ok=True)
        self.catalog.load()
        if self.config.bootstrap.auto_seed and not self.config.bootstrap.reference_mode:
            self.seeds = ensure_seeds(self.catalog)
        if self.config.watch and self.observer is None:
            from .catalog.watcher import watch_instructions

            self.observer, _ = watch_instructions(self.catalog)

    def close(self) -> None:
        if self.observer is not None:
            self.observer.stop()
            self.observer.join(timeout=2)
            self.observer = None
