"""Tests for the JSONL audit log."""

from __future__ import annotations

from pathlib import Path

from instruction_catalog.audit_log import AuditEntry, AuditLog, format_audit_entry


def test_append_and_read(tmp_path: Path):
    log = AuditLog(tmp_path / "logs" / "audit.jsonl")
    log.log("add", ["a"], {"hash": "h1"})
    log.log("remove", ["a", "b"])

    entries = log.read()

    assert [e.action for e in entries] == ["add", "remove"]
    assert entries[0].meta == {"hash": "h1"}
    assert entries[1].ids == ["a", "b"]


def test_read_last_n(tmp_path: Path):
    log = AuditLog(tmp_path / "audit.jsonl")
    for n in range(5):
        log.log(f"op{n}")

    assert [e.action for e in log.read(last_n=2)] == ["op3", "op4"]
    assert log.read(last_n=0) == []


def test_malformed_lines_are_skipped(tmp_path: Path):
    path = tmp_path / "audit.jsonl"
    log = AuditLog(path)
    log.log("add", ["a"])
    with path.open("a", encoding="utf-8") as f:
        f.write("{truncated\n")
        f.write('{"no_action": true}\n')
    log.log("remove", ["a"])

    assert [e.action for e in log.read()] == ["add", "remove"]


def test_disabled_log_writes_nothing(tmp_path: Path):
    log = AuditLog(tmp_path / "audit.jsonl", enabled=False)
    entry = log.log("add", ["a"])

    assert entry.action == "add"
    assert not log.path.exists()
    assert log.read() == []


def test_format_entry():
    entry = AuditEntry(ts="2026-01-01T00:00:00Z", action="import", ids=["a", "b"], meta={"mode": "skip"})
    text = format_audit_entry(entry)

    assert text.splitlines()[0] == "[2026-01-01T00:00:00Z] import"
    assert "ids: a, b" in text
    assert "mode: skip" in text
    assert AuditEntry.from_dict(entry.to_dict()) == entry
