"""Tests for crash-safe single and multi-file writes."""

import os

import pytest

from clihub.core.errors import RollbackError, StorageIOError
from clihub.utils import atomic_write as atomic_write_module
from clihub.utils.atomic_write import FileWrite, atomic_write, read_prior, write_all


def _fail_replace_on(monkeypatch, failing_calls):
    real_replace = os.replace
    calls = {"count": 0}

    def _flaky_replace(src, dst):
        calls["count"] += 1
        if calls["count"] in failing_calls:
            raise OSError(f"simulated failure #{calls['count']}")
        return real_replace(src, dst)

    monkeypatch.setattr(atomic_write_module.os, "replace", _flaky_replace)
    return calls


def test_atomic_write_creates_parents_and_accepts_text(tmp_path):
    target = tmp_path / "nested" / "dir" / "file.json"
    atomic_write(target, '{"a": 1}\n')
    assert target.read_text(encoding="utf-8") == '{"a": 1}\n'

    atomic_write(target, b"replaced")
    assert target.read_bytes() == b"replaced"
    assert sorted(p.name for p in target.parent.iterdir()) == ["file.json"]


def test_atomic_write_preserves_file_mode(tmp_path):
    target = tmp_path / "auth.json"
    target.write_text("{}", encoding="utf-8")
    os.chmod(target, 0o600)
    atomic_write(target, "{}\n")
    assert (os.stat(target).st_mode & 0o777) == 0o600


def test_read_prior_returns_none_for_missing(tmp_path):
    assert read_prior(tmp_path / "missing") is None


def test_write_all_commits_every_file(tmp_path):
    first = tmp_path / "a" / "auth.json"
    second = tmp_path / "a" / "config.toml"
    write_all([FileWrite.text(first, "{}\n"), FileWrite.text(second, 'model = "o3"\n')])
    assert first.read_text(encoding="utf-8") == "{}\n"
    assert second.read_text(encoding="utf-8") == 'model = "o3"\n'


def test_write_all_rolls_back_on_second_failure(tmp_path, monkeypatch):
    created = tmp_path / "new.json"
    existing = tmp_path / "existing.toml"
    existing.write_text("old = true\n", encoding="utf-8")
    replaced = tmp_path / "replaced.json"
    replaced.write_text('{"old": true}\n', encoding="utf-8")

    _fail_replace_on(monkeypatch, {3})
    with pytest.raises(StorageIOError) as exc_info:
        write_all(
            [
                FileWrite.text(created, "{}\n"),
                FileWrite.text(replaced, '{"new": true}\n'),
                FileWrite.text(existing, "new = true\n"),
            ]
        )

    assert exc_info.value.operation == "write"
    assert exc_info.value.path == existing
    assert not isinstance(exc_info.value, RollbackError)
    assert not created.exists()
    assert replaced.read_text(encoding="utf-8") == '{"old": true}\n'
    assert existing.read_text(encoding="utf-8") == "old = true\n"
    assert sorted(p.name for p in tmp_path.iterdir()) == ["existing.toml", "replaced.json"]


def test_write_all_reports_failed_rollback(tmp_path, monkeypatch):
    first = tmp_path / "first.json"
    first.write_text("before", encoding="utf-8")
    second = tmp_path / "second.json"

    # Call 2 is the second commit, call 3 is the rollback of the first file.
    _fail_replace_on(monkeypatch, {2, 3})
    with pytest.raises(RollbackError) as exc_info:
        write_all([FileWrite.text(first, "after"), FileWrite.text(second, "new")])

    assert exc_info.value.error_code == "rollback_failed"
    assert first.read_text(encoding="utf-8") == "after"


def test_write_all_rejects_duplicate_destinations(tmp_path):
    target = tmp_path / "same.json"
    with pytest.raises(StorageIOError) as exc_info:
        write_all([FileWrite.text(target, "1"), FileWrite.text(target, "2")])
    assert exc_info.value.operation == "plan"
    assert not target.exists()


def test_write_all_empty_set_is_noop(tmp_path):
    write_all([])
    assert list(tmp_path.iterdir()) == []
