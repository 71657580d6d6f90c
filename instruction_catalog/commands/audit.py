"""Audit command - show recent catalog mutations."""

from __future__ import annotations

import json

from rich.console import Console

from ..audit_log import AuditLog, format_audit_entry
from ..config import CatalogConfig


def run_audit(config: CatalogConfig, *, last_n: int | None = 20, output_json: bool = False) -> int:
    console = Console(stderr=True)
    log = AuditLog(config.audit_log_path)
    entries = log.read(last_n)

    if output_json:
        print(json.dumps([e.to_dict() for e in entries], indent=2))
        return 0

    if not entries:
        console.print("No audit entries", style="yellow")
        return 0
    for entry in entries:
        console.print(format_audit_entry(entry), highlight=False)
    return 0
