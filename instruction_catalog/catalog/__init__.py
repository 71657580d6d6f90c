"""
Catalog engine: durable files, hashing, the in-memory index and its manifest.
"""

from __future__ import annotations

from .atomic_fs import AtomicFileStore
from .catalog import Catalog
from .hashing import HashEngine, canonicalize_body, sha256_hex
from .loader import LoadIssue, LoadReport
from .manifest import ManifestSnapshot, ManifestTracker

__all__ = [
    "AtomicFileStore",
    "Catalog",
    "HashEngine",
    "LoadIssue",
    "LoadReport",
    "ManifestSnapshot",
    "ManifestTracker",
    "canonicalize_body",
    "sha256_hex",
]
