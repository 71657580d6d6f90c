"""
Durable single-file read/write with bounded retry.

Writes go to a uniquely named temp file beside the target and are renamed
into place, so readers see either the old file or the new one. Transient
errors (sharing violations, busy files, a temp file swept away before the
rename) are retried with exponential backoff plus jitter.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import random
import secrets
import time
from pathlib import Path
from typing import Any, Callable

from ..config import AtomicWriteConfig
from ..errors import WriteFailure

logger = logging.getLogger(__name__)

TRANSIENT_ERRNOS = frozenset({errno.EPERM, errno.EBUSY, errno.EACCES, errno.EAGAIN})


def _is_transient(exc: OSError, *, during_rename: bool) -> bool:
    if exc.errno in TRANSIENT_ERRNOS:
        return True
    # Antivirus/indexers occasionally remove the temp file between write and rename.
    return during_rename and exc.errno == errno.ENOENT


class AtomicFileStore:
    """Read/write JSON and text files atomically, retrying transient failures."""

    def __init__(
        self,
        config: AtomicWriteConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or AtomicWriteConfig()
        self._sleep = sleep

    def _backoff(self, attempt: int) -> float:
        base = self.config.backoff_ms
        delay_ms = base * (2 ** (attempt - 1)) + random.uniform(0, base)
        return delay_ms / 1000.0

    @staticmethod
    def temp_path_for(path: Path) -> Path:
        return path.with_name(f".{path.name}.{secrets.token_hex(6)}.tmp")

    def write_text(self, path: Path, text: str) -> None:
        """Atomically replace `path` with `text`. Raises WriteFailure when retries run out."""
        path.parent.mkdir(parents=True, exist_ok=True)
        attempts = self.config.attempts
        last_exc: OSError | None = None

        for attempt in range(1, attempts + 1):
            tmp = self.temp_path_for(path)
            stage = "write"
            try:
                with tmp.open("w", encoding="utf-8", newline="\n") as f:
                    f.write(text)
                    f.flush()
                    os.fsync(f.fileno())
                stage = "rename"
                os.replace(tmp, path)
                return
            except OSError as exc:
                last_exc = exc
                self._discard(tmp)
                if not _is_transient(exc, during_rename=(stage == "rename")) or attempt == attempts:
                    break
                delay = self._backoff(attempt)
                logger.info(
                    "transient %s error on %s (attempt %d/%d): %s; retrying in %.0fms",
                    stage,
                    path.name,
                    attempt,
                    attempts,
                    exc,
                    delay * 1000,
                )
                self._sleep(delay)

        raise WriteFailure(str(path), attempts, last_exc)

    def write_json(self, path: Path, data: Any) -> None:
        self.write_text(path, json.dumps(data, ensure_ascii=False, indent=2) + "\n")

    def write_json_if_changed(self, path: Path, data: Any) -> bool:
        """Write unless the file already holds byte-identical content. Returns True when written."""
        text = json.dumps(data, ensure_ascii=False, indent=2) + "\n"
        if path.exists():
            try:
                if path.read_text(encoding="utf-8") == text:
                    return False
            except OSError:
                pass
        self.write_text(path, text)
        return True

    def read_text(self, path: Path) -> str:
        """Read a file, retrying transient errors. FileNotFoundError propagates immediately."""
        attempts = self.config.attempts
        for attempt in range(1, attempts + 1):
            try:
                return path.read_text(encoding="utf-8")
            except FileNotFoundError:
                raise
            except OSError as exc:
                if exc.errno not in TRANSIENT_ERRNOS or attempt == attempts:
                    raise
                self._sleep(self._backoff(attempt))
        raise AssertionError("unreachable")

    def read_json(self, path: Path) -> Any:
        return json.loads(self.read_text(path))

    def remove(self, path: Path, *, missing_ok: bool = True) -> bool:
        """Delete `path`. Returns False when it was already absent."""
        attempts = self.config.attempts
        last_exc: OSError | None = None
        for attempt in range(1, attempts + 1):
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                if missing_ok:
                    return False
                raise
            except OSError as exc:
                last_exc = exc
                if exc.errno not in TRANSIENT_ERRNOS or attempt == attempts:
                    break
                self._sleep(self._backoff(attempt))
        raise WriteFailure(str(path), attempts, last_exc)

    @staticmethod
    def _discard(tmp: Path) -> None:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("could not remove temp file %s: %s", tmp, exc)
