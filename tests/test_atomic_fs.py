"""Tests for atomic writes and their retry behavior."""

from __future__ import annotations

import errno
import json
import os
from pathlib import Path

import pytest

from instruction_catalog.catalog.atomic_fs import AtomicFileStore
from instruction_catalog.config import AtomicWriteConfig
from instruction_catalog.errors import WriteFailure


def _tmp_files(directory: Path) -> list[Path]:
    return [p for p in directory.iterdir() if p.name.endswith(".tmp")]


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class TestWrite:
    def test_write_json_round_trip(self, tmp_path: Path):
        store = AtomicFileStore()
        target = tmp_path / "sub" / "a.json"
        store.write_json(target, {"id": "a", "n": 1})

        assert json.loads(target.read_text(encoding="utf-8")) == {"id": "a", "n": 1}
        assert store.read_json(target) == {"id": "a", "n": 1}
        assert _tmp_files(target.parent) == []

    def test_write_if_changed_skips_identical_content(self, tmp_path: Path):
        store = AtomicFileStore()
        target = tmp_path / "m.json"

        assert store.write_json_if_changed(target, {"a": 1}) is True
        assert store.write_json_if_changed(target, {"a": 1}) is False
        assert store.write_json_if_changed(target, {"a": 2}) is True

    def test_temp_names_are_hidden_and_unique(self, tmp_path: Path):
        a = AtomicFileStore.temp_path_for(tmp_path / "x.json")
        b = AtomicFileStore.temp_path_for(tmp_path / "x.json")
        assert a != b
        assert a.name.startswith(".x.json.") and a.name.endswith(".tmp")


class TestRetry:
    def test_transient_rename_error_is_retried(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        real_replace = os.replace
        failures = {"left": 2}

        def flaky_replace(src, dst):
            if failures["left"]:
                failures["left"] -= 1
                raise OSError(errno.EBUSY, "resource busy")
            return real_replace(src, dst)

        monkeypatch.setattr("instruction_catalog.catalog.atomic_fs.os.replace", flaky_replace)
        sleeps = _Sleeps()
        store = AtomicFileStore(AtomicWriteConfig(attempts=5, backoff_ms=10), sleep=sleeps)

        store.write_json(tmp_path / "a.json", {"ok": True})

        assert json.loads((tmp_path / "a.json").read_text(encoding="utf-8")) == {"ok": True}
        assert len(sleeps.calls) == 2
        # exponential backoff: base*2**(n-1) plus jitter below base
        assert 0.010 <= sleeps.calls[0] <= 0.020
        assert 0.020 <= sleeps.calls[1] <= 0.030
        assert _tmp_files(tmp_path) == []

    def test_vanished_temp_file_before_rename_is_retried(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        real_replace = os.replace
        calls = {"n": 0}

        def vanishing_replace(src, dst):
            calls["n"] += 1
            if calls["n"] == 1:
                raise FileNotFoundError(errno.ENOENT, "gone")
            return real_replace(src, dst)

        monkeypatch.setattr("instruction_catalog.catalog.atomic_fs.os.replace", vanishing_replace)
        store = AtomicFileStore(AtomicWriteConfig(attempts=3, backoff_ms=0), sleep=_Sleeps())

        store.write_text(tmp_path / "a.txt", "hello")

        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "hello"
        assert calls["n"] == 2

    def test_exhaustion_raises_write_failure_and_cleans_up(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        def always_busy(src, dst):
            raise PermissionError(errno.EACCES, "denied")

        monkeypatch.setattr("instruction_catalog.catalog.atomic_fs.os.replace", always_busy)
        sleeps = _Sleeps()
        store = AtomicFileStore(AtomicWriteConfig(attempts=3, backoff_ms=1), sleep=sleeps)

        with pytest.raises(WriteFailure) as exc_info:
            store.write_json(tmp_path / "a.json", {})

        assert exc_info.value.attempts == 3
        assert len(sleeps.calls) == 2
        assert not (tmp_path / "a.json").exists()
        assert _tmp_files(tmp_path) == []

    def test_non_transient_error_fails_without_retry(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        def disk_full(src, dst):
            raise OSError(errno.ENOSPC, "no space")

        monkeypatch.setattr("instruction_catalog.catalog.atomic_fs.os.replace", disk_full)
        sleeps = _Sleeps()
        store = AtomicFileStore(AtomicWriteConfig(attempts=5, backoff_ms=1), sleep=sleeps)

        with pytest.raises(WriteFailure):
            store.write_text(tmp_path / "a.txt", "x")
        assert sleeps.calls == []


class TestRemove:
    def test_remove_existing_and_missing(self, tmp_path: Path):
        store = AtomicFileStore()
        target = tmp_path / "a.json"
        target.write_text("{}", encoding="utf-8")

        assert store.remove(target) is True
        assert store.remove(target) is False
        with pytest.raises(FileNotFoundError):
            store.remove(target, missing_ok=False)


class TestConfig:
    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            AtomicWriteConfig(attempts=0)
