"""Tests for the command-line interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import make_entry, write_raw_entry
from instruction_catalog import __version__
from instruction_catalog.catalog.hashing import sha256_hex
from instruction_catalog.cli import cli


def _write_catalog(root: Path, *ids: str) -> None:
    for entry_id in ids:
        body = f"Body of {entry_id}"
        write_raw_entry(root / "instructions", make_entry(entry_id, body, sourceHash=sha256_hex(body)))


def run(root: Path, *args: str):
    return CliRunner().invoke(cli, ["--root", str(root), *args], obj={})


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


class TestVerify:
    def test_clean_catalog_json(self, tmp_path: Path):
        _write_catalog(tmp_path, "a", "b")

        result = run(tmp_path, "verify", "--json")

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["count"] == 2
        assert data["issueCount"] == 0
        assert data["loadIssues"] == []

    def test_strict_fails_on_bad_hash(self, tmp_path: Path):
        _write_catalog(tmp_path, "a")
        write_raw_entry(tmp_path / "instructions", make_entry("b", sourceHash="stale"))

        assert run(tmp_path, "verify").exit_code == 0
        assert run(tmp_path, "verify", "--strict").exit_code == 1

    def test_verify_does_not_seed(self, tmp_path: Path):
        run(tmp_path, "verify")
        assert not list((tmp_path / "instructions").glob("*.json"))


class TestManifest:
    def test_status_then_repair(self, tmp_path: Path):
        _write_catalog(tmp_path, "a", "b")

        before = json.loads(run(tmp_path, "manifest", "status", "--json").stdout)
        assert before["manifestPresent"] is False
        assert before["drift"] == 2

        assert run(tmp_path, "manifest", "repair").exit_code == 0

        after = json.loads(run(tmp_path, "manifest", "status", "--json").stdout)
        assert after["drift"] == 0


class TestTransfer:
    @pytest.mark.parametrize("fmt", ["json", "markdown"])
    def test_export_then_import_into_new_workspace(self, tmp_path: Path, fmt: str):
        source = tmp_path / "source"
        target = tmp_path / "target"
        out = tmp_path / "out"
        _write_catalog(source, "a", "b")

        assert run(source, "export", str(out), "--format", fmt).exit_code == 0
        suffix = ".md" if fmt == "markdown" else ".json"
        assert sorted(p.name for p in out.iterdir()) == [f"a{suffix}", f"b{suffix}"]

        # a fresh workspace holds only seeds and must be confirmed first
        assert run(target, "import", str(out)).exit_code == 1
        assert not (target / "instructions" / "a.json").exists()

        assert run(target, "bootstrap", "confirm").exit_code == 0
        assert run(target, "import", str(out)).exit_code == 0

        imported = json.loads((target / "instructions" / "a.json").read_text(encoding="utf-8"))
        assert imported["body"] == "Body of a"
        assert imported["sourceHash"] == sha256_hex("Body of a")

        audit = json.loads(run(target, "audit", "--json").stdout)
        assert audit[-1]["action"] == "import"
        assert audit[-1]["ids"] == ["a", "b"]

    def test_import_reports_bad_entries(self, tmp_path: Path):
        _write_catalog(tmp_path, "existing")
        payload = tmp_path / "batch.json"
        payload.write_text(json.dumps({"entries": [make_entry("ok"), {"id": "bad"}]}), encoding="utf-8")

        result = run(tmp_path, "import", str(payload))

        assert result.exit_code == 1
        assert (tmp_path / "instructions" / "ok.json").exists()


class TestBootstrap:
    def test_reference_mode_refuses_confirmation(self, tmp_path: Path):
        result = run(tmp_path, "--reference-mode", "bootstrap", "confirm")
        assert result.exit_code == 1

    def test_confirm_twice(self, tmp_path: Path):
        assert run(tmp_path, "bootstrap", "confirm").exit_code == 0
        assert run(tmp_path, "bootstrap", "confirm").exit_code == 0
        assert (tmp_path / "instructions" / "bootstrap.confirmed.json").exists()

    def test_status(self, tmp_path: Path):
        assert run(tmp_path, "bootstrap", "status").exit_code == 0
