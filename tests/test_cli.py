"""Tests for the `cli-hub` command line."""

from __future__ import annotations

import json

from click.testing import CliRunner

from clihub.cli import cli as cli_module


def _run_cli(tmp_path, args: list[str], **kwargs):
    runner = CliRunner()
    config_dir = str(tmp_path / ".cli-hub")
    return runner.invoke(
        cli_module.cli,
        ["--config-dir", config_dir, *args],
        env={"HOME": str(tmp_path), "CLI_HUB_CONFIG_DIR": None},
        **kwargs,
    )


def _add(tmp_path, provider_id, token="t"):
    settings = json.dumps({"env": {"ANTHROPIC_AUTH_TOKEN": token}})
    result = _run_cli(
        tmp_path,
        ["add", "claude", "--id", provider_id, "--name", provider_id.upper(), "--settings", settings],
    )
    assert result.exit_code == 0, result.output
    return result


def test_help_renders(tmp_path):
    result = CliRunner().invoke(cli_module.cli, ["--help"])
    assert result.exit_code == 0
    assert "switch" in result.output
    assert "snippet" in result.output


def test_add_list_switch_current(tmp_path):
    assert "a" in _add(tmp_path, "a").output
    _add(tmp_path, "b", token="other")

    rows = json.loads(_run_cli(tmp_path, ["list", "claude", "--json"]).output)
    assert [(row["id"], row["current"]) for row in rows] == [("a", True), ("b", False)]
    assert rows[0]["settingsConfig"] == {"env": {"ANTHROPIC_AUTH_TOKEN": "t"}}

    switch_result = _run_cli(tmp_path, ["switch", "claude", "b"])
    assert switch_result.exit_code == 0, switch_result.output
    assert "Switched" in switch_result.output

    current = _run_cli(tmp_path, ["current", "claude"])
    assert current.exit_code == 0
    assert current.output.strip() == "b"

    live = json.loads((tmp_path / ".claude" / "settings.json").read_text(encoding="utf-8"))
    assert live == {"env": {"ANTHROPIC_AUTH_TOKEN": "other"}}


def test_list_accepts_aliases_and_rejects_unknown_app(tmp_path):
    _add(tmp_path, "a")
    result = _run_cli(tmp_path, ["list", "Claude-Code", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output)[0]["id"] == "a"

    bad = _run_cli(tmp_path, ["list", "vim"])
    assert bad.exit_code == 2
    assert "Unsupported app id" in bad.output


def test_engine_errors_become_click_errors(tmp_path):
    _add(tmp_path, "a")

    missing = _run_cli(tmp_path, ["show", "claude", "nope"])
    assert missing.exit_code == 1
    assert "does not exist" in missing.output

    in_use = _run_cli(tmp_path, ["delete", "claude", "a"])
    assert in_use.exit_code == 1
    assert "cannot be deleted" in in_use.output

    no_current = _run_cli(tmp_path, ["current", "codex"])
    assert no_current.exit_code == 1


def test_show_outputs_provider_json(tmp_path):
    _add(tmp_path, "a")
    result = _run_cli(tmp_path, ["show", "claude", "a"])
    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["id"] == "a"
    assert payload["name"] == "A"


def test_reorder_parses_pairs(tmp_path):
    _add(tmp_path, "a")
    _add(tmp_path, "b")
    result = _run_cli(tmp_path, ["reorder", "claude", "b=0", "a=1"])
    assert result.exit_code == 0, result.output
    rows = json.loads(_run_cli(tmp_path, ["list", "claude", "--json"]).output)
    assert [row["id"] for row in rows] == ["b", "a"]

    bad = _run_cli(tmp_path, ["reorder", "claude", "b"])
    assert bad.exit_code == 2


def test_snippet_commands(tmp_path):
    _add(tmp_path, "a")
    snippet_file = tmp_path / "snippet.json"
    snippet_file.write_text('{"includeCoAuthoredBy": false}', encoding="utf-8")

    assert _run_cli(tmp_path, ["snippet", "set", "claude", str(snippet_file)]).exit_code == 0
    shown = _run_cli(tmp_path, ["snippet", "show", "claude"])
    assert '{"includeCoAuthoredBy": false}' in shown.output

    enabled = _run_cli(tmp_path, ["snippet", "enable", "claude", "a"])
    assert enabled.exit_code == 0, enabled.output
    live = json.loads((tmp_path / ".claude" / "settings.json").read_text(encoding="utf-8"))
    assert live["includeCoAuthoredBy"] is False

    disabled = _run_cli(tmp_path, ["snippet", "disable", "claude", "a"])
    assert disabled.exit_code == 0
    live = json.loads((tmp_path / ".claude" / "settings.json").read_text(encoding="utf-8"))
    assert "includeCoAuthoredBy" not in live

    invalid = _run_cli(tmp_path, ["snippet", "set", "claude"], input="[1, 2]")
    assert invalid.exit_code == 1


def test_seed_imports_live_configuration(tmp_path):
    live = tmp_path / ".claude" / "settings.json"
    live.parent.mkdir(parents=True)
    live.write_text('{"env": {"ANTHROPIC_AUTH_TOKEN": "existing"}}', encoding="utf-8")

    result = _run_cli(tmp_path, ["seed", "claude"])
    assert result.exit_code == 0, result.output
    assert "default" in result.output

    again = _run_cli(tmp_path, ["seed", "claude"])
    assert "nothing imported" in again.output


def test_sync_reports_success(tmp_path):
    _add(tmp_path, "a")
    result = _run_cli(tmp_path, ["sync"])
    assert result.exit_code == 0
    assert "in sync" in result.output


def test_export_import_backups_restore(tmp_path):
    _add(tmp_path, "a")
    bundle_path = tmp_path / "bundle.json"

    exported = _run_cli(tmp_path, ["export", str(bundle_path)])
    assert exported.exit_code == 0, exported.output
    assert json.loads(bundle_path.read_text(encoding="utf-8"))["format"] == "cli-hub-bundle"

    _add(tmp_path, "b")
    imported = _run_cli(tmp_path, ["import", str(bundle_path)])
    assert imported.exit_code == 0, imported.output
    assert "Import complete" in imported.output
    rows = json.loads(_run_cli(tmp_path, ["list", "claude", "--json"]).output)
    assert [row["id"] for row in rows] == ["a"]

    backups = json.loads(_run_cli(tmp_path, ["backups", "--json"]).output)
    assert len(backups) == 1

    restored = _run_cli(tmp_path, ["restore", backups[0]["backupId"]])
    assert restored.exit_code == 0, restored.output
    rows = json.loads(_run_cli(tmp_path, ["list", "claude", "--json"]).output)
    assert [row["id"] for row in rows] == ["a", "b"]


def test_import_rejects_bad_bundle(tmp_path):
    bundle_path = tmp_path / "bad.json"
    bundle_path.write_text('{"format": "other"}', encoding="utf-8")
    result = _run_cli(tmp_path, ["import", str(bundle_path)])
    assert result.exit_code == 1
    assert "Not a cli-hub bundle" in result.output


def test_corrupt_config_halts(tmp_path):
    config = tmp_path / ".cli-hub" / "config.json"
    config.parent.mkdir(parents=True)
    config.write_text("{broken", encoding="utf-8")

    result = _run_cli(tmp_path, ["list", "claude"])
    assert result.exit_code == 1
    assert "corrupt" in result.output
    assert config.read_text(encoding="utf-8") == "{broken"
