"""Tests for schema detection, upgrades and document loading."""

import json

import pytest

from clihub.core.apps import AppType
from clihub.core.backup import BackupManager
from clihub.core.errors import CorruptConfigError
from clihub.core.migration import MigrationRunner, load_document, validate_document
from clihub.core.models import CURRENT_SCHEMA_VERSION, ConfigDocument

V1_DOCUMENT = {
    "providers": {
        "p1": {"id": "p1", "name": "Official", "settingsConfig": {"env": {"ANTHROPIC_AUTH_TOKEN": "t"}}},
        "p2": {"name": "Relay", "settingsConfig": {}},
    },
    "current": "p1",
}

V2_DOCUMENT = {
    "version": 2,
    "claude": {"providers": {"a": {"name": "A", "settingsConfig": {}}}, "current": "a"},
    "codex": {"providers": {}, "current": ""},
    "gemini": {"providers": {}, "current": ""},
    "mcp": {
        "claude": {"servers": {"fs": {"name": "fs", "server": {"command": "npx"}, "enabled": True}}},
        "codex": {"servers": {"fs": {"server": {"command": "npx"}, "enabled": True}}},
    },
    "prompts": {"claude": {"prompts": {"p": {"id": "p", "name": "Reviewer", "content": "Be strict"}}}},
    "common_config_snippets": {"codex": "disable_response_storage = true"},
    "claude_common_config_snippet": '{"includeCoAuthoredBy": false}',
}


def test_detect_version():
    runner = MigrationRunner()
    assert runner.detect_version(V1_DOCUMENT) == 1
    assert runner.detect_version({k: v for k, v in V2_DOCUMENT.items() if k != "version"}) == 2
    assert runner.detect_version({"version": CURRENT_SCHEMA_VERSION}) == CURRENT_SCHEMA_VERSION


@pytest.mark.parametrize(
    "raw",
    [
        [1, 2],
        {"version": CURRENT_SCHEMA_VERSION + 1},
        {"version": "3"},
        {"version": True},
        {"version": 0},
        {},
        {"providers": {}, "current": {"claude": "a"}},
    ],
)
def test_unrecognized_documents_are_corrupt(raw):
    with pytest.raises(CorruptConfigError):
        MigrationRunner().migrate(raw)


def test_v1_upgrade():
    result = MigrationRunner().migrate(V1_DOCUMENT)
    assert result.from_version == 1
    assert result.changed

    document = validate_document(result.document)
    assert document.version == CURRENT_SCHEMA_VERSION
    assert sorted(document.providers[AppType.CLAUDE]) == ["p1", "p2"]
    assert document.providers[AppType.CLAUDE]["p2"].id == "p2"
    assert document.current == {AppType.CLAUDE: "p1"}
    assert document.providers[AppType.CODEX] == {}


def test_v2_upgrade_unifies_sections():
    result = MigrationRunner().migrate(V2_DOCUMENT)
    document = validate_document(result.document)

    assert document.current == {AppType.CLAUDE: "a"}
    assert document.common_snippets == {
        AppType.CODEX: "disable_response_storage = true",
        AppType.CLAUDE: '{"includeCoAuthoredBy": false}',
    }
    server = document.mcp_servers["fs"]
    assert server.server == {"command": "npx"}
    assert server.apps.enabled_apps() == [AppType.CLAUDE, AppType.CODEX]
    assert document.prompts[AppType.CLAUDE]["p"].content == "Be strict"


def test_migration_is_pure():
    raw = json.loads(json.dumps(V2_DOCUMENT))
    MigrationRunner().migrate(raw)
    assert raw == V2_DOCUMENT


def test_current_document_is_unchanged():
    current = ConfigDocument().to_dict()
    result = MigrationRunner().migrate(current)
    assert not result.changed
    assert result.document == current


def test_structurally_invalid_v2_is_corrupt():
    with pytest.raises(CorruptConfigError) as exc_info:
        MigrationRunner().migrate({"version": 2, "claude": "oops"})
    assert "claude" in exc_info.value.detail


def test_dangling_current_is_corrupt():
    with pytest.raises(CorruptConfigError):
        validate_document({"version": CURRENT_SCHEMA_VERSION, "current": {"claude": "missing"}})


def test_load_creates_default_document(tmp_path):
    path = tmp_path / "config.json"
    result = load_document(path)
    assert result.created
    assert json.loads(path.read_text(encoding="utf-8"))["version"] == CURRENT_SCHEMA_VERSION


def test_load_migrates_archives_and_backs_up(tmp_path):
    path = tmp_path / "config.json"
    raw_bytes = json.dumps(V1_DOCUMENT).encode("utf-8")
    path.write_bytes(raw_bytes)
    backups = BackupManager(tmp_path / "backups")

    result = load_document(path, backup_manager=backups)

    assert result.migrated
    assert result.from_version == 1
    assert result.archive_path is not None
    assert result.archive_path.parent == tmp_path
    assert result.archive_path.name.startswith("config.json.v1-")
    assert result.archive_path.read_bytes() == raw_bytes
    assert json.loads(path.read_text(encoding="utf-8"))["version"] == CURRENT_SCHEMA_VERSION

    snapshots = backups.list()
    assert [s.backup_id for s in snapshots] == [result.backup_id]
    assert backups.load(result.backup_id) == V1_DOCUMENT

    again = load_document(path, backup_manager=backups)
    assert not again.migrated
    assert again.document == result.document


def test_archive_names_do_not_collide(tmp_path):
    runner = MigrationRunner()
    ssot = tmp_path / "config.json"
    first = runner.archive(b"one", ssot, 1)
    second = runner.archive(b"two", ssot, 1)
    assert first != second
    assert first.read_bytes() == b"one"
    assert second.read_bytes() == b"two"


def test_load_refuses_corrupt_file_without_repair(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(CorruptConfigError) as exc_info:
        load_document(path)
    assert exc_info.value.path == path
    assert path.read_text(encoding="utf-8") == "{not json"


def test_load_refuses_unversioned_document_of_unknown_layout(tmp_path):
    path = tmp_path / "config.json"
    raw = {
        "providers": {"claude": {"a": {"id": "a", "name": "A", "settingsConfig": {}}}},
        "current": {"claude": "a"},
    }
    path.write_text(json.dumps(raw), encoding="utf-8")

    with pytest.raises(CorruptConfigError) as exc_info:
        load_document(path)

    assert "providers" in exc_info.value.detail
    assert json.loads(path.read_text(encoding="utf-8")) == raw
    assert not list(tmp_path.glob("*.bak"))


def test_load_refuses_newer_version(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"version": CURRENT_SCHEMA_VERSION + 1}), encoding="utf-8")
    with pytest.raises(CorruptConfigError):
        load_document(path)
    assert not list(tmp_path.glob("*.bak"))
