"""Markdown-with-frontmatter rendering of instruction entries."""

from __future__ import annotations

from datetime import date
from typing import Any

import frontmatter

from ..models import InstructionEntry

# Keys that stay out of the frontmatter block.
_BODY_KEY = "body"
_DERIVED_KEYS = ("sourceHash", "riskScore", "usageCount", "lastUsedAt")


def entry_to_markdown(entry: InstructionEntry) -> str:
    """Render an entry as a markdown document with YAML frontmatter."""
    metadata = {k: v for k, v in entry.to_dict().items() if k != _BODY_KEY and k not in _DERIVED_KEYS}
    post = frontmatter.Post(entry.body, **metadata)
    return frontmatter.dumps(post) + "\n"


def entry_from_markdown(text: str) -> dict[str, Any]:
    """
    Parse a markdown document back into an entry dict suitable for import.

    Derived fields are dropped; the catalog recomputes them on import.
    """
    post = frontmatter.loads(text)
    data = {k: v for k, v in post.metadata.items() if k not in _DERIVED_KEYS}
    for key, value in data.items():
        # unquoted YAML timestamps come back as date/datetime objects
        if isinstance(value, date):
            data[key] = value.isoformat()
    data[_BODY_KEY] = post.content
    return data
