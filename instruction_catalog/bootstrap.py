"""
Bootstrap confirmation gate for catalog mutation.

A fresh workspace (only the seed instructions, no confirmation marker) must
be confirmed by a human before agents may mutate it:

    bootstrap/request         -> one-time token, shown to a human
    bootstrap/confirmFinalize -> token accepted, marker file written

Reference mode blocks mutation permanently. Any non-seed instruction in the
catalog means the workspace is already in use and needs no confirmation.

Only the sha256 of a pending token is kept, in memory; expiry is checked on
every access.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .catalog.atomic_fs import AtomicFileStore
from .catalog.catalog import Catalog
from .catalog.loader import BOOTSTRAP_MARKER
from .catalog.seeds import BOOTSTRAP_IDS
from .config import BootstrapConfig
from .errors import BootstrapDenied

logger = logging.getLogger(__name__)

REFERENCE_MODE_READ_ONLY = "reference_mode_read_only"
BOOTSTRAP_CONFIRMATION_REQUIRED = "bootstrap_confirmation_required"

DEFAULT_HINT = "Human operator: review context, then provide token to bootstrap/confirmFinalize."


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _token_hash(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class PendingToken:
    token_hash: str
    issued_at: float
    expires_at: float
    hint: str

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


class BootstrapGate:
    """Decides whether mutation is allowed and runs the confirmation token flow."""

    def __init__(
        self,
        config: BootstrapConfig,
        catalog: Catalog,
        store: AtomicFileStore,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.catalog = catalog
        self.store = store
        self._clock = clock
        self._pending: PendingToken | None = None
        self._confirmed = False

    @property
    def marker_path(self) -> Path:
        return self.catalog.directory / BOOTSTRAP_MARKER

    @property
    def reference_mode(self) -> bool:
        return self.config.reference_mode

    def is_confirmed(self) -> bool:
        if not self._confirmed and self.marker_path.exists():
            self._confirmed = True
        return self._confirmed

    def has_non_bootstrap_instructions(self) -> bool:
        return any(i not in BOOTSTRAP_IDS for i in self.catalog.ids())

    def requires_confirmation(self) -> bool:
        if self.reference_mode or self.is_confirmed():
            return False
        return not self.has_non_bootstrap_instructions()

    def mutation_block_reason(self) -> str | None:
        if self.reference_mode:
            return REFERENCE_MODE_READ_ONLY
        if self.requires_confirmation():
            return BOOTSTRAP_CONFIRMATION_REQUIRED
        return None

    def check_mutation(self, target: str | None = None) -> None:
        """Raise BootstrapDenied when mutation is not currently allowed."""
        reason = self.mutation_block_reason()
        if reason is not None:
            logger.info("mutation blocked (%s)%s", reason, f": {target}" if target else "")
            raise BootstrapDenied(reason, target)

    def _live_pending(self) -> PendingToken | None:
        if self._pending is not None and self._pending.expired(self._clock()):
            return None
        return self._pending

    def status(self) -> dict[str, Any]:
        pending = self._live_pending()
        return {
            "referenceMode": self.reference_mode,
            "confirmed": self.is_confirmed(),
            "requireConfirmation": self.requires_confirmation(),
            "nonBootstrapInstructions": self.has_non_bootstrap_instructions(),
            "mutationBlockedReason": self.mutation_block_reason(),
            "pendingToken": pending is not None,
            "pendingExpiresAt": _iso(pending.expires_at) if pending else None,
        }

    def request_token(self, rationale: str | None = None) -> dict[str, Any]:
        """
        Issue a fresh token, replacing any pending one.

        The cleartext is returned exactly once; only its hash is retained.
        """
        if self.reference_mode:
            return {"referenceMode": True, "mutation": False}
        if self.is_confirmed():
            return {"alreadyConfirmed": True}

        now = self._clock()
        token = secrets.token_hex(6)
        hint = rationale.strip() if isinstance(rationale, str) and rationale.strip() else DEFAULT_HINT
        ttl = max(1, int(self.config.token_ttl_sec))
        self._pending = PendingToken(
            token_hash=_token_hash(token),
            issued_at=now,
            expires_at=now + ttl,
            hint=hint,
        )
        logger.info("bootstrap token issued (expires in %ds)", ttl)
        return {"token": token, "expiresAt": _iso(self._pending.expires_at), "hint": hint}

    def finalize(self, token: str) -> dict[str, Any]:
        """
        Confirm the workspace with a previously issued token.

        An expired token is discarded; a wrong token leaves the pending one
        usable for another attempt.
        """
        if self.reference_mode:
            return {"referenceMode": True, "mutation": False}
        if self.is_confirmed():
            return {"alreadyConfirmed": True}
        if self._pending is None:
            return {"error": "no_pending_token"}
        if self._pending.expired(self._clock()):
            self._pending = None
            return {"error": "token_expired"}
        if not isinstance(token, str) or not hmac.compare_digest(_token_hash(token), self._pending.token_hash):
            return {"error": "invalid_token"}

        record = {"confirmedAt": _iso(self._clock()), "tokenHint": self._pending.hint}
        self.store.write_json(self.marker_path, record)
        self._confirmed = True
        self._pending = None
        logger.info("bootstrap confirmed; marker written to %s", self.marker_path)
        return {"confirmed": True}
