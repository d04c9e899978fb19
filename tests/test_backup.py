"""Tests for configuration snapshots and retention."""

import pytest

from clihub.core.backup import BackupManager
from clihub.core.errors import CorruptConfigError, SettingsValidationError, StorageIOError


def _doc(marker):
    return {"version": 3, "marker": marker}


def test_snapshot_and_load(tmp_path):
    manager = BackupManager(tmp_path / "backups")
    snapshot = manager.snapshot(_doc("a"), 3)
    assert snapshot.path.exists()
    assert snapshot.sequence == 1
    assert manager.load(snapshot.backup_id) == _doc("a")
    assert manager.load(snapshot.path.name) == _doc("a")


def test_retention_keeps_newest(tmp_path):
    manager = BackupManager(tmp_path / "backups", retain=3)
    created = [manager.snapshot(_doc(i), 3) for i in range(5)]

    listed = manager.list()
    assert [s.sequence for s in listed] == [5, 4, 3]
    assert [s.backup_id for s in listed] == [s.backup_id for s in reversed(created[2:])]
    assert all(s.source_version == 3 for s in listed)
    assert len(list((tmp_path / "backups").glob("*.json"))) == 3


def test_snapshot_retain_override(tmp_path):
    manager = BackupManager(tmp_path / "backups", retain=10)
    for i in range(4):
        manager.snapshot(_doc(i), 3, retain=2)
    assert len(manager.list()) == 2
    assert len(manager.prune(1)) == 1
    assert manager.load(manager.list()[0].backup_id) == _doc(3)


def test_sequence_survives_new_manager(tmp_path):
    BackupManager(tmp_path / "backups").snapshot(_doc("a"), 3)
    second = BackupManager(tmp_path / "backups").snapshot(_doc("b"), 3)
    assert second.sequence == 2


def test_foreign_files_are_pruned_first(tmp_path):
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    foreign = backup_dir / "manual-copy.json"
    foreign.write_text("{}", encoding="utf-8")
    (backup_dir / "notes.txt").write_text("kept", encoding="utf-8")

    manager = BackupManager(backup_dir, retain=2)
    manager.snapshot(_doc("a"), 3)
    assert foreign.exists()
    manager.snapshot(_doc("b"), 3)

    assert not foreign.exists()
    assert (backup_dir / "notes.txt").exists()
    assert len(manager.list()) == 2


def test_invalid_retention_and_ids(tmp_path):
    manager = BackupManager(tmp_path / "backups")
    with pytest.raises(SettingsValidationError):
        manager.prune(0)
    with pytest.raises(SettingsValidationError):
        manager.path_for("../config")
    with pytest.raises(StorageIOError):
        manager.load("backup_20240101_000000_000000_000001")


def test_load_rejects_bad_envelope(tmp_path):
    manager = BackupManager(tmp_path / "backups")
    snapshot = manager.snapshot(_doc("a"), 3)
    snapshot.path.write_text('{"sequence": 1}', encoding="utf-8")
    with pytest.raises(CorruptConfigError):
        manager.load(snapshot.backup_id)


def test_list_empty_directory(tmp_path):
    assert BackupManager(tmp_path / "missing").list() == []
