"""Serve command - run the JSON-RPC server on stdin/stdout."""

from __future__ import annotations

import asyncio

from rich.console import Console

from ..config import CatalogConfig
from ..context import CatalogContext
from ..server import build_registry, run_stdio


def run_serve(config: CatalogConfig) -> int:
    """
    Serve one client session on stdio until `exit` or end of input.

    stdout carries protocol messages only; status goes to stderr.
    """
    console = Console(stderr=True)
    ctx = CatalogContext.create(config)
    try:
        registry = build_registry(ctx)
        issues = ctx.catalog.issues
        if issues:
            console.print(f"[yellow]{len(issues)} instruction file(s) skipped at load[/yellow]")
        if ctx.seeds.created:
            console.print(f"[dim]Seeded: {', '.join(ctx.seeds.created)}[/dim]")
        server_info = {"name": config.server.name, "version": config.server.version}
        return asyncio.run(run_stdio(registry, server_info=server_info))
    except KeyboardInterrupt:
        return 130
    finally:
        ctx.close()
