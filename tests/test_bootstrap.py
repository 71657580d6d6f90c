"""Tests for the bootstrap confirmation gate."""

from __future__ import annotations

import json

import pytest

from conftest import make_entry
from instruction_catalog.bootstrap import (
    BOOTSTRAP_CONFIRMATION_REQUIRED,
    REFERENCE_MODE_READ_ONLY,
    BootstrapGate,
)
from instruction_catalog.catalog.catalog import Catalog
from instruction_catalog.catalog.seeds import BOOTSTRAP_IDS, ensure_seeds
from instruction_catalog.config import BootstrapConfig
from instruction_catalog.errors import BootstrapDenied


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gate(catalog: Catalog, clock: FakeClock) -> BootstrapGate:
    return BootstrapGate(BootstrapConfig(token_ttl_sec=60), catalog, catalog.store, clock=clock)


class TestBlocking:
    def test_seed_only_workspace_requires_confirmation(self, gate: BootstrapGate, catalog: Catalog):
        ensure_seeds(catalog)
        assert catalog.ids() == set(BOOTSTRAP_IDS)

        assert gate.mutation_block_reason() == BOOTSTRAP_CONFIRMATION_REQUIRED
        with pytest.raises(BootstrapDenied) as exc_info:
            gate.check_mutation(target="instructions/add")
        assert exc_info.value.to_dict() == {
            "error": "mutation_blocked",
            "reason": BOOTSTRAP_CONFIRMATION_REQUIRED,
            "bootstrap": True,
            "target": "instructions/add",
        }

    def test_non_seed_instruction_lifts_the_gate(self, gate: BootstrapGate, catalog: Catalog):
        catalog.add(make_entry("user-rule"))
        assert gate.requires_confirmation() is False
        assert gate.mutation_block_reason() is None
        gate.check_mutation()

    def test_reference_mode_blocks_everything(self, catalog: Catalog, clock: FakeClock):
        catalog.add(make_entry("user-rule"))
        gate = BootstrapGate(BootstrapConfig(reference_mode=True), catalog, catalog.store, clock=clock)

        assert gate.mutation_block_reason() == REFERENCE_MODE_READ_ONLY
        assert gate.request_token() == {"referenceMode": True, "mutation": False}
        assert gate.finalize("anything") == {"referenceMode": True, "mutation": False}


class TestTokenFlow:
    def test_confirm_writes_marker(self, gate: BootstrapGate):
        issued = gate.request_token("first run")
        assert len(issued["token"]) == 12
        assert issued["hint"] == "first run"

        assert gate.finalize(issued["token"]) == {"confirmed": True}

        assert gate.is_confirmed() is True
        assert gate.mutation_block_reason() is None
        marker = json.loads(gate.marker_path.read_text(encoding="utf-8"))
        assert marker["tokenHint"] == "first run"
        assert issued["token"] not in gate.marker_path.read_text(encoding="utf-8")

    def test_second_finalize_reports_already_confirmed(self, gate: BootstrapGate):
        token = gate.request_token()["token"]
        gate.finalize(token)

        assert gate.finalize(token) == {"alreadyConfirmed": True}
        assert gate.request_token() == {"alreadyConfirmed": True}

    def test_marker_survives_new_gate(self, gate: BootstrapGate, catalog: Catalog, clock: FakeClock):
        gate.finalize(gate.request_token()["token"])

        fresh = BootstrapGate(BootstrapConfig(), catalog, catalog.store, clock=clock)
        assert fresh.is_confirmed() is True

    def test_invalid_token_keeps_pending(self, gate: BootstrapGate):
        token = gate.request_token()["token"]

        assert gate.finalize("not-the-token") == {"error": "invalid_token"}
        assert gate.status()["pendingToken"] is True
        assert gate.finalize(token) == {"confirmed": True}

    def test_expired_token_is_discarded(self, gate: BootstrapGate, clock: FakeClock):
        token = gate.request_token()["token"]
        clock.now += 61

        assert gate.status()["pendingToken"] is False
        assert gate.finalize(token) == {"error": "token_expired"}
        assert gate.finalize(token) == {"error": "no_pending_token"}
        assert not gate.marker_path.exists()

    def test_new_request_replaces_pending_token(self, gate: BootstrapGate):
        first = gate.request_token()["token"]
        second = gate.request_token()["token"]

        assert gate.finalize(first) == {"error": "invalid_token"}
        assert gate.finalize(second) == {"confirmed": True}

    def test_finalize_without_request(self, gate: BootstrapGate):
        assert gate.finalize("abc") == {"error": "no_pending_token"}


def test_status_shape(gate: BootstrapGate):
    status = gate.status()
    assert status["referenceMode"] is False
    assert status["confirmed"] is False
    assert status["requireConfirmation"] is True
    assert status["mutationBlockedReason"] == BOOTSTRAP_CONFIRMATION_REQUIRED
    assert status["pendingExpiresAt"] is None


def test_ensure_seeds_never_overwrites(catalog: Catalog):
    first = ensure_seeds(catalog)
    assert sorted(first.created) == sorted(BOOTSTRAP_IDS)

    path = catalog.path_for("000-bootstrapper")
    path.write_text("{broken", encoding="utf-8")
    catalog.reload()

    second = ensure_seeds(catalog)
    assert second.created == []
    assert path.read_text(encoding="utf-8") == "{broken"
