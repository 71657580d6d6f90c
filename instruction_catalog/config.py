"""
Immutable runtime configuration.

The CLI resolves options, environment variables and an optional TOML file
into one `CatalogConfig` at startup. Library code only ever receives the
resolved object.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from . import __version__


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


@dataclass(frozen=True)
class AtomicWriteConfig:
    attempts: int = 5
    backoff_ms: int = 10

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.backoff_ms < 0:
            raise ValueError("backoff_ms must be >= 0")


@dataclass(frozen=True)
class HashPolicy:
    """Which fields are hash-bearing and how hard the hardening self-check runs."""

    content_fields: tuple[str, ...] = ("body",)
    hardening_enabled: bool = True
    canon_variants: int = 1
    import_set_size: int = 2

    def __post_init__(self) -> None:
        if not self.content_fields:
            raise ValueError("content_fields must name at least one field")
        # frozen: assign clamped values through object.__setattr__
        object.__setattr__(self, "content_fields", tuple(self.content_fields))
        object.__setattr__(self, "canon_variants", _clamp(int(self.canon_variants), 1, 8))
        object.__setattr__(self, "import_set_size", _clamp(int(self.import_set_size), 2, 5))


@dataclass(frozen=True)
class ManifestConfig:
    enabled: bool = True
    fastload: bool = True


@dataclass(frozen=True)
class BootstrapConfig:
    reference_mode: bool = False
    token_ttl_sec: int = 900
    auto_seed: bool = True


@dataclass(frozen=True)
class AuditConfig:
    enabled: bool = True


@dataclass(frozen=True)
class ServerConfig:
    name: str = "instruction-catalog"
    version: str = __version__


@dataclass(frozen=True)
class CatalogConfig:
    root: Path
    instructions_dir: Path | None = None
    watch: bool = False
    require_category: bool = False
    atomic: AtomicWriteConfig = field(default_factory=AtomicWriteConfig)
    hashing: HashPolicy = field(default_factory=HashPolicy)
    manifest: ManifestConfig = field(default_factory=ManifestConfig)
    bootstrap: BootstrapConfig = field(default_factory=BootstrapConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @property
    def instructions_path(self) -> Path:
        return self.instructions_dir if self.instructions_dir is not None else self.root / "instructions"

    @property
    def manifest_path(self) -> Path:
        return self.root / "snapshots" / "catalog-manifest.json"

    @property
    def usage_path(self) -> Path:
        return self.root / "snapshots" / "usage-snapshot.json"

    @property
    def audit_log_path(self) -> Path:
        return self.root / "logs" / "instruction-transactions.log.jsonl"

    def with_overrides(self, **changes: Any) -> "CatalogConfig":
        """Return a copy with top-level fields replaced (None values ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def load_config_file(path: Path, *, root: Path | None = None) -> CatalogConfig:
    """
    Load a `CatalogConfig` from TOML.

    Relative paths resolve against the file's directory. Unknown keys are
    ignored; missing sections keep their defaults.

        root = "."
        instructions_dir = "instructions"

        [atomic]
        attempts = 5
        backoff_ms = 10

        [hashing]
        content_fields = ["body"]
        canon_variants = 2

        [bootstrap]
        reference_mode = false
        token_ttl_sec = 900
    """
    import tomllib

    data = tomllib.loads(path.read_text(encoding="utf-8"))
    base = path.parent

    def _path(raw: Any) -> Path | None:
        if not isinstance(raw, str) or not raw.strip():
            return None
        p = Path(raw)
        return p if p.is_absolute() else (base / p).resolve()

    resolved_root = root or _path(data.get("root")) or base.resolve()

    atomic = _coerce_dict(data.get("atomic"))
    hashing = _coerce_dict(data.get("hashing"))
    manifest = _coerce_dict(data.get("manifest"))
    bootstrap = _coerce_dict(data.get("bootstrap"))
    audit = _coerce_dict(data.get("audit"))
    server = _coerce_dict(data.get("server"))

    fields_raw = hashing.get("content_fields", ["body"])
    if not isinstance(fields_raw, list) or not all(isinstance(f, str) for f in fields_raw):
        raise ValueError("hashing.content_fields must be a list of strings")

    return CatalogConfig(
        root=resolved_root,
        instructions_dir=_path(data.get("instructions_dir")),
        watch=bool(data.get("watch", False)),
        require_category=bool(data.get("require_category", False)),
        atomic=AtomicWriteConfig(
            attempts=int(atomic.get("attempts", 5)),
            backoff_ms=int(atomic.get("backoff_ms", 10)),
        ),
        hashing=HashPolicy(
            content_fields=tuple(fields_raw),
            hardening_enabled=bool(hashing.get("hardening_enabled", True)),
            canon_variants=int(hashing.get("canon_variants", 1)),
            import_set_size=int(hashing.get("import_set_size", 2)),
        ),
        manifest=ManifestConfig(
            enabled=bool(manifest.get("enabled", True)),
            fastload=bool(manifest.get("fastload", True)),
        ),
        bootstrap=BootstrapConfig(
            reference_mode=bool(bootstrap.get("reference_mode", False)),
            token_ttl_sec=int(bootstrap.get("token_ttl_sec", 900)),
            auto_seed=bool(bootstrap.get("auto_seed", True)),
        ),
        audit=AuditConfig(enabled=bool(audit.get("enabled", True))),
        server=ServerConfig(
            name=str(server.get("name", "instruction-catalog")),
            version=str(server.get("version", __version__)),
        ),
    )
