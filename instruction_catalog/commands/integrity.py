"""Integrity commands - hash verification, manifest drift and bootstrap state."""

from __future__ import annotations

import json

from rich.console import Console
from rich.table import Table

from ..config import CatalogConfig
from ..context import CatalogContext
from ..errors import IntegrityMismatch


def _open(config: CatalogConfig) -> CatalogContext:
    # Read-only commands load without seeding.
    ctx = CatalogContext.create(config, load=False)
    ctx.catalog.load()
    return ctx


def run_verify(config: CatalogConfig, *, output_json: bool = False, strict: bool = False) -> int:
    console = Console(stderr=True)
    ctx = _open(config)
    result = ctx.catalog.verify()
    load_issues = [i.to_dict() for i in ctx.catalog.issues]

    if output_json:
        print(json.dumps({**result, "loadIssues": load_issues}, indent=2))
    else:
        console.print(f"[bold]Catalog[/bold] {config.instructions_path}")
        console.print(f"  entries: {result['count']}  hash: [dim]{result['hash']}[/dim]")
        for issue in load_issues:
            console.print(f"  [yellow]skipped[/yellow] {issue['file']}: {issue['reason']}")
        if result["issues"]:
            table = Table(title="Integrity issues")
            table.add_column("id", style="cyan", no_wrap=True)
            table.add_column("stored sourceHash", style="dim")
            table.add_column("actual", style="dim")
            for issue in result["issues"]:
                table.add_row(issue["id"], issue["expected"][:16], issue["actual"][:16])
            console.print(table)
        else:
            console.print("All sourceHash values match their bodies", style="green")

    if strict:
        try:
            ctx.catalog.require_integrity()
        except IntegrityMismatch as e:
            console.print(str(e), style="red")
            return 1
        if load_issues:
            return 1
    return 0


def run_manifest_status(config: CatalogConfig, *, output_json: bool = False) -> int:
    console = Console(stderr=True)
    ctx = _open(config)
    status = ctx.manifest.status(ctx.catalog)

    if output_json:
        print(json.dumps(status, indent=2))
        return 0

    if not status["manifestPresent"]:
        console.print("No manifest snapshot yet", style="yellow")
    console.print(f"  entries: {status['count']}  manifest: {status['manifestCount']}  drift: {status['drift']}")
    if status["fastload"]:
        console.print("  [dim](fastload: count and signature match)[/dim]")
    for detail in status["details"]:
        console.print(f"  [yellow]{detail['change']}[/yellow] {detail['id']}")
    return 0


def run_manifest_repair(config: CatalogConfig) -> int:
    console = Console(stderr=True)
    ctx = _open(config)
    result = ctx.manifest.repair(ctx.catalog)
    if result["repaired"]:
        console.print(
            f"Manifest consistent (drift {result['driftBefore']} -> {result['driftAfter']})",
            style="green",
        )
        return 0
    console.print(f"Manifest still drifting: {result['driftAfter']}", style="red")
    return 1


def run_bootstrap_status(config: CatalogConfig) -> int:
    console = Console(stderr=True)
    ctx = _open(config)
    status = ctx.gate.status()
    table = Table(title="Bootstrap", show_header=False)
    table.add_column("key", style="cyan")
    table.add_column("value")
    for key, value in status.items():
        table.add_row(key, str(value))
    console.print(table)
    return 0


def run_bootstrap_confirm(config: CatalogConfig) -> int:
    """Confirm the workspace from the terminal (the operator is the human in the loop)."""
    console = Console(stderr=True)
    ctx = CatalogContext.create(config)
    issued = ctx.gate.request_token("confirmed from the command line")
    if issued.get("referenceMode"):
        console.print("Reference mode: mutation is permanently disabled", style="red")
        return 1
    if issued.get("alreadyConfirmed"):
        console.print("Workspace already confirmed", style="green")
        return 0
    result = ctx.gate.finalize(issued["token"])
    if result.get("confirmed"):
        console.print(f"Workspace confirmed ({ctx.gate.marker_path.name} written)", style="green")
        return 0
    console.print(f"Confirmation failed: {result.get('error')}", style="red")
    return 1
