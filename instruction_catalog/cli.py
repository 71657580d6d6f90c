"""CLI entrypoint for instruction-catalog."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import BootstrapConfig, CatalogConfig, load_config_file

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _configure_logging(level: str) -> None:
    """Route all logging to stderr; stdout is reserved for protocol messages."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(level.upper())


def _resolve_config(
    root: Path | None,
    instructions_dir: Path | None,
    config_file: Path | None,
    reference_mode: bool,
) -> CatalogConfig:
    if config_file is not None:
        config = load_config_file(config_file, root=root.resolve() if root else None)
    else:
        config = CatalogConfig(root=(root or Path.cwd()).resolve())
    if instructions_dir is not None:
        config = config.with_overrides(instructions_dir=instructions_dir.resolve())
    if reference_mode:
        bootstrap = config.bootstrap
        config = config.with_overrides(
            bootstrap=BootstrapConfig(
                reference_mode=True,
                token_ttl_sec=bootstrap.token_ttl_sec,
                auto_seed=bootstrap.auto_seed,
            )
        )
    return config


@click.group()
@click.version_option(__version__, prog_name="instruction-catalog")
@click.option(
    "--root",
    "-r",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    envvar="INSTRUCTION_CATALOG_ROOT",
    help="Catalog root holding instructions/, snapshots/ and logs/ (defaults to cwd)",
)
@click.option(
    "--instructions-dir",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    envvar="INSTRUCTION_CATALOG_DIR",
    help="Instruction files directory (defaults to <root>/instructions)",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    envvar="INSTRUCTION_CATALOG_CONFIG",
    help="TOML configuration file",
)
@click.option(
    "--reference-mode",
    is_flag=True,
    envvar="INSTRUCTION_CATALOG_REFERENCE_MODE",
    help="Serve the catalog read-only; every mutation is refused",
)
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    envvar="INSTRUCTION_CATALOG_LOG_LEVEL",
    show_default=True,
)
@click.pass_context
def cli(
    ctx: click.Context,
    root: Path | None,
    instructions_dir: Path | None,
    config_file: Path | None,
    reference_mode: bool,
    log_level: str,
) -> None:
    """instruction-catalog - file-backed instruction store served over JSON-RPC on stdio."""
    ctx.ensure_object(dict)
    _configure_logging(log_level)
    try:
        ctx.obj["config"] = _resolve_config(root, instructions_dir, config_file, reference_mode)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from None


@cli.command()
@click.option("--watch/--no-watch", default=None, help="Reload when instruction files change on disk")
@click.pass_context
def serve(ctx: click.Context, watch: bool | None) -> None:
    """Serve the catalog over JSON-RPC on stdin/stdout."""
    from .commands.serve import run_serve

    config: CatalogConfig = ctx.obj["config"]
    if watch is not None:
        config = config.with_overrides(watch=watch)
    sys.exit(run_serve(config))


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.option("--strict", is_flag=True, help="Exit non-zero on any integrity issue or skipped file")
@click.pass_context
def verify(ctx: click.Context, output_json: bool, strict: bool) -> None:
    """Verify every stored sourceHash against its body."""
    from .commands.integrity import run_verify

    sys.exit(run_verify(ctx.obj["config"], output_json=output_json, strict=strict))


@cli.group()
def manifest() -> None:
    """Inspect and repair the manifest snapshot."""


@manifest.command("status")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def manifest_status(ctx: click.Context, output_json: bool) -> None:
    """Report drift between the manifest and the instruction files."""
    from .commands.integrity import run_manifest_status

    sys.exit(run_manifest_status(ctx.obj["config"], output_json=output_json))


@manifest.command("repair")
@click.pass_context
def manifest_repair(ctx: click.Context) -> None:
    """Recompute drift fully and rewrite the manifest."""
    from .commands.integrity import run_manifest_repair

    sys.exit(run_manifest_repair(ctx.obj["config"]))


@cli.group()
def bootstrap() -> None:
    """Bootstrap confirmation state."""


@bootstrap.command("status")
@click.pass_context
def bootstrap_status(ctx: click.Context) -> None:
    """Show whether mutation is gated."""
    from .commands.integrity import run_bootstrap_status

    sys.exit(run_bootstrap_status(ctx.obj["config"]))


@bootstrap.command("confirm")
@click.pass_context
def bootstrap_confirm(ctx: click.Context) -> None:
    """Confirm this workspace for mutation."""
    from .commands.integrity import run_bootstrap_confirm

    sys.exit(run_bootstrap_confirm(ctx.obj["config"]))


@cli.command("export")
@click.argument("out_dir", type=click.Path(file_okay=False, dir_okay=True, path_type=Path))
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["json", "markdown"]),
    default="json",
    show_default=True,
)
@click.option("--id", "ids", multiple=True, help="Export only these ids (repeatable)")
@click.pass_context
def export_cmd(ctx: click.Context, out_dir: Path, fmt: str, ids: tuple[str, ...]) -> None:
    """Export instructions as one file each."""
    from .commands.transfer import run_export

    sys.exit(run_export(ctx.obj["config"], out_dir, fmt=fmt, ids=list(ids)))


@cli.command("import")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option(
    "--mode",
    type=click.Choice(["skip", "overwrite"]),
    default="skip",
    show_default=True,
    help="What to do with ids that already exist",
)
@click.pass_context
def import_cmd(ctx: click.Context, paths: tuple[Path, ...], mode: str) -> None:
    """Import instructions from json or markdown files and directories."""
    from .commands.transfer import run_import

    sys.exit(run_import(ctx.obj["config"], list(paths), mode=mode))


@cli.command()
@click.option("--last", "last_n", type=int, default=20, show_default=True, help="Show only the last N entries")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def audit(ctx: click.Context, last_n: int, output_json: bool) -> None:
    """Show recent catalog mutations from the audit log."""
    from .commands.audit import run_audit

    sys.exit(run_audit(ctx.obj["config"], last_n=last_n, output_json=output_json))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
