"""Export and import commands - move instructions between catalogs and files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from rich.console import Console

from ..catalog.markdown import entry_from_markdown, entry_to_markdown
from ..config import CatalogConfig
from ..context import CatalogContext
from ..errors import BootstrapDenied


def run_export(config: CatalogConfig, out_dir: Path, *, fmt: str = "json", ids: list[str] | None = None) -> int:
    """Write one file per instruction into `out_dir` (`<id>.json` or `<id>.md`)."""
    console = Console(stderr=True)
    ctx = CatalogContext.create(config, load=False)
    ctx.catalog.load()

    out_dir.mkdir(parents=True, exist_ok=True)
    items = ctx.catalog.export(ids or None)
    for item in items:
        if fmt == "markdown":
            entry = ctx.catalog.get(item["id"])
            if entry is None:
                continue
            (out_dir / f"{entry.id}.md").write_text(entry_to_markdown(entry), encoding="utf-8")
        else:
            (out_dir / f"{item['id']}.json").write_text(json.dumps(item, indent=2) + "\n", encoding="utf-8")

    console.print(f"Exported {len(items)} instruction(s) to {out_dir}", style="green")
    return 0


def _read_import_file(path: Path) -> list[dict[str, Any]]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".md":
        return [entry_from_markdown(text)]
    data = json.loads(text)
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("entries"), list):
        return data["entries"]
    return [data]


def run_import(config: CatalogConfig, paths: list[Path], *, mode: str = "skip") -> int:
    """Import json/markdown files (directories are expanded) through the catalog."""
    console = Console(stderr=True)
    ctx = CatalogContext.create(config)

    try:
        ctx.gate.check_mutation(target="import")
    except BootstrapDenied as e:
        console.print(f"Import blocked: {e.reason}", style="red")
        return 1

    files: list[Path] = []
    for p in paths:
        if p.is_dir():
            files.extend(sorted(f for f in p.iterdir() if f.suffix.lower() in (".json", ".md")))
        else:
            files.append(p)

    entries: list[dict[str, Any]] = []
    for f in files:
        try:
            entries.extend(_read_import_file(f))
        except (OSError, ValueError) as e:
            console.print(f"Skipping {f}: {e}", style="yellow")

    result = ctx.catalog.import_entries(entries, mode=mode)
    console.print(
        f"imported {result['imported']}, overwritten {result['overwritten']}, "
        f"skipped {result['skipped']}, errors {len(result['errors'])}"
    )
    for err in result["errors"]:
        console.print(f"  [red]{err['id']}[/red]: {err['error']}")
    return 1 if result["errors"] else 0
