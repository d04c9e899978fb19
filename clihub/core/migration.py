"""Version-gated schema upgrades for the configuration document.

Schema history:

* v1: ``{"providers": {...}, "current": "<id>"}``, Claude only, no version.
* v2: per-app sections ``{"claude": {"providers", "current"}, ...}`` plus
  ``mcp``, ``prompts`` and ``common_config_snippets``.
* v3: the :class:`~clihub.core.models.ConfigDocument` shape.

Steps are pure functions ``dict -> (dict, changed)``. The runner writes an
archive of the raw document next to the SSOT before the first step runs and
refuses anything it does not recognize instead of guessing at a repair.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from clihub.core.apps import ALL_APPS
from clihub.core.backup import BackupManager
from clihub.core.errors import CorruptConfigError, StorageIOError
from clihub.core.models import CURRENT_SCHEMA_VERSION, ConfigDocument
from clihub.utils.atomic_write import atomic_write
from clihub.utils.json_utils import dump_canonical_json
from clihub.utils.log import get_logger

logger = get_logger()

MigrationStep = Callable[[Dict[str, Any]], Tuple[Dict[str, Any], bool]]

_V2_APP_KEYS = tuple(app.value for app in ALL_APPS)
_V2_SECTION_KEYS = _V2_APP_KEYS + ("mcp",)


class MigrationStepError(ValueError):
    """A step found a structure it cannot convert."""


def _object(value: Any, label: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MigrationStepError(f"'{label}' must be an object")
    return value


def _providers_with_ids(providers: Mapping[str, Any], label: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, entry in providers.items():
        if not isinstance(entry, dict):
            raise MigrationStepError(f"provider '{key}' in '{label}' must be an object")
        entry = copy.deepcopy(entry)
        entry.setdefault("id", key)
        result[key] = entry
    return result


def migrate_v1_to_v2(raw: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    providers = _object(raw.get("providers"), "providers")
    current = raw.get("current")
    if current is not None and not isinstance(current, str):
        raise MigrationStepError("'current' must be a string")
    migrated: Dict[str, Any] = {
        "version": 2,
        "claude": {"providers": copy.deepcopy(providers), "current": current or ""},
        "codex": {"providers": {}, "current": ""},
        "gemini": {"providers": {}, "current": ""},
        "mcp": copy.deepcopy(raw.get("mcp") or {}),
        "prompts": {},
        "common_config_snippets": {},
    }
    return migrated, True


def _unify_mcp(mcp: Dict[str, Any]) -> Dict[str, Any]:
    """Merge per-app MCP entries into one server table keyed by id."""
    if "servers" in mcp and mcp["servers"] is not None:
        servers: Dict[str, Any] = {}
        for key, value in _object(mcp["servers"], "mcp.servers").items():
            if not isinstance(value, dict):
                raise MigrationStepError(f"MCP server '{key}' must be an object")
            servers[key] = copy.deepcopy(value)
            servers[key].setdefault("id", key)
        return servers

    unified: Dict[str, Any] = {}
    for app in _V2_APP_KEYS:
        section = _object(mcp.get(app), f"mcp.{app}")
        for server_id, entry in _object(section.get("servers"), f"mcp.{app}.servers").items():
            if not isinstance(entry, dict):
                raise MigrationStepError(f"MCP server '{server_id}' must be an object")
            enabled = entry.get("enabled", True) is not False
            existing = unified.get(server_id)
            if existing is not None:
                existing["apps"][app] = enabled
                if existing["server"] != entry.get("server", {}):
                    logger.warning(
                        "[migration] MCP server '%s' differs between apps; keeping the first one",
                        server_id,
                    )
                continue
            tags = entry.get("tags")
            unified[server_id] = {
                "id": server_id,
                "name": entry.get("name") or server_id,
                "server": copy.deepcopy(entry.get("server", {})),
                "apps": {key: key == app and enabled for key in _V2_APP_KEYS},
                "description": entry.get("description"),
                "homepage": entry.get("homepage"),
                "docs": entry.get("docs"),
                "tags": [tag for tag in tags if isinstance(tag, str)] if isinstance(tags, list) else [],
            }
    return unified


def migrate_v2_to_v3(raw: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    providers: Dict[str, Any] = {}
    current: Dict[str, str] = {}
    for app in _V2_APP_KEYS:
        section = _object(raw.get(app), app)
        providers[app] = _providers_with_ids(
            _object(section.get("providers"), f"{app}.providers"), app
        )
        current_id = section.get("current")
        if current_id is not None and not isinstance(current_id, str):
            raise MigrationStepError(f"'{app}.current' must be a string")
        if current_id:
            current[app] = current_id

    snippets: Dict[str, str] = {}
    for app, value in _object(raw.get("common_config_snippets"), "common_config_snippets").items():
        if isinstance(value, str):
            snippets[app] = value
    legacy_claude = raw.get("claude_common_config_snippet")
    if isinstance(legacy_claude, str) and "claude" not in snippets:
        snippets["claude"] = legacy_claude

    prompts: Dict[str, Any] = {}
    prompt_root = _object(raw.get("prompts"), "prompts")
    for app in _V2_APP_KEYS:
        section = _object(prompt_root.get(app), f"prompts.{app}")
        prompts[app] = copy.deepcopy(_object(section.get("prompts"), f"prompts.{app}.prompts"))

    migrated: Dict[str, Any] = {
        "version": 3,
        "providers": providers,
        "current": current,
        "commonSnippets": snippets,
        "mcpServers": _unify_mcp(_object(raw.get("mcp"), "mcp")),
        "prompts": prompts,
        "settings": copy.deepcopy(_object(raw.get("settings"), "settings")),
    }
    return migrated, True


DEFAULT_STEPS: Dict[int, MigrationStep] = {
    1: migrate_v1_to_v2,
    2: migrate_v2_to_v3,
}


@dataclass(frozen=True)
class MigrationResult:
    document: Dict[str, Any]
    from_version: int
    changed: bool
    archive_path: Optional[Path] = None


class MigrationRunner:
    """Applies ordered steps until a raw document reaches the current schema."""

    def __init__(
        self,
        steps: Optional[Mapping[int, MigrationStep]] = None,
        current_version: int = CURRENT_SCHEMA_VERSION,
    ) -> None:
        self.steps = dict(DEFAULT_STEPS if steps is None else steps)
        self.current_version = current_version

    def detect_version(self, raw: Any, path: Optional[Path] = None) -> int:
        if not isinstance(raw, dict):
            raise CorruptConfigError(
                "Configuration root must be a JSON object", path=path, detail=type(raw).__name__
            )
        if "version" in raw:
            version = raw["version"]
            if isinstance(version, bool) or not isinstance(version, int):
                raise CorruptConfigError(
                    "Configuration version must be an integer", path=path, detail=repr(version)
                )
            if version > self.current_version:
                raise CorruptConfigError(
                    f"Configuration version {version} is newer than supported version "
                    f"{self.current_version}",
                    path=path,
                    detail=f"version={version}",
                )
            if version < 1 or (version < self.current_version and version not in self.steps):
                raise CorruptConfigError(
                    f"Unrecognized configuration version {version}",
                    path=path,
                    detail=f"version={version}",
                )
            return version
        if any(key in raw for key in _V2_SECTION_KEYS):
            return 2
        if isinstance(raw.get("providers"), dict) and isinstance(raw.get("current"), str):
            return 1
        raise CorruptConfigError(
            "Configuration has no version and matches no known layout",
            path=path,
            detail=f"keys={sorted(raw)}",
        )

    def migrate(self, raw: Any, path: Optional[Path] = None) -> MigrationResult:
        """Pure upgrade; no files are touched."""
        from_version = self.detect_version(raw, path)
        document = copy.deepcopy(raw)
        version = from_version
        changed = False
        while version < self.current_version:
            step = self.steps.get(version)
            if step is None:
                raise CorruptConfigError(
                    f"No migration available from version {version}",
                    path=path,
                    detail=f"version={version}",
                )
            try:
                document, step_changed = step(document)
            except MigrationStepError as exc:
                raise CorruptConfigError(
                    f"Cannot migrate configuration from version {version}",
                    path=path,
                    detail=str(exc),
                ) from exc
            changed = changed or step_changed
            version += 1
            document["version"] = version
            logger.debug("[migration] Applied step", extra={"to_version": version})
        return MigrationResult(document=document, from_version=from_version, changed=changed)

    def archive(self, raw_bytes: bytes, ssot_path: Path, from_version: int) -> Path:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        archive_path = ssot_path.with_name(f"{ssot_path.name}.v{from_version}-{stamp}.bak")
        counter = 1
        while archive_path.exists():
            archive_path = ssot_path.with_name(
                f"{ssot_path.name}.v{from_version}-{stamp}-{counter}.bak"
            )
            counter += 1
        atomic_write(archive_path, raw_bytes)
        logger.info(
            "[migration] Archived pre-migration configuration",
            extra={"path": str(archive_path), "from_version": from_version},
        )
        return archive_path

    def run(self, raw_bytes: bytes, ssot_path: Path) -> MigrationResult:
        """Parse, archive when an upgrade is needed, then migrate."""
        raw = parse_document_bytes(raw_bytes, ssot_path)
        from_version = self.detect_version(raw, ssot_path)
        if from_version == self.current_version:
            return MigrationResult(document=raw, from_version=from_version, changed=False)
        archive_path = self.archive(raw_bytes, ssot_path, from_version)
        result = self.migrate(raw, ssot_path)
        logger.info(
            "[migration] Upgraded configuration",
            extra={"from_version": from_version, "to_version": self.current_version},
        )
        return MigrationResult(
            document=result.document,
            from_version=from_version,
            changed=result.changed,
            archive_path=archive_path,
        )


def parse_document_bytes(raw_bytes: bytes, path: Optional[Path] = None) -> Any:
    try:
        return json.loads(raw_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptConfigError(
            "Configuration file is not valid JSON", path=path, detail=str(exc)
        ) from exc


def validate_document(raw: Mapping[str, Any], path: Optional[Path] = None) -> ConfigDocument:
    try:
        return ConfigDocument.model_validate(raw)
    except ValidationError as exc:
        raise CorruptConfigError(
            "Configuration failed validation", path=path, detail=str(exc)
        ) from exc


@dataclass(frozen=True)
class LoadResult:
    document: ConfigDocument
    created: bool = False
    migrated: bool = False
    from_version: int = CURRENT_SCHEMA_VERSION
    archive_path: Optional[Path] = None
    backup_id: Optional[str] = None


def load_document(
    path: Path,
    runner: Optional[MigrationRunner] = None,
    backup_manager: Optional[BackupManager] = None,
) -> LoadResult:
    """Load the SSOT, migrating and persisting it when it is outdated.

    A missing file yields a default document which is saved immediately.
    """
    runner = runner or MigrationRunner()
    try:
        raw_bytes = path.read_bytes()
    except FileNotFoundError:
        document = ConfigDocument()
        atomic_write(path, dump_canonical_json(document.to_dict()))
        logger.info("[migration] Created default configuration", extra={"path": str(path)})
        return LoadResult(document=document, created=True)
    except OSError as exc:
        raise StorageIOError(f"Failed to read {path}: {exc}", path=path, operation="read") from exc

    result = runner.run(raw_bytes, path)
    document = validate_document(result.document, path)
    if not result.changed:
        return LoadResult(document=document, from_version=result.from_version)

    backup_id: Optional[str] = None
    if backup_manager is not None:
        snapshot = backup_manager.snapshot(
            parse_document_bytes(raw_bytes, path),
            result.from_version,
            retain=document.settings.backup_retain,
        )
        backup_id = snapshot.backup_id
    atomic_write(path, dump_canonical_json(document.to_dict()))
    return LoadResult(
        document=document,
        migrated=True,
        from_version=result.from_version,
        archive_path=result.archive_path,
        backup_id=backup_id,
    )
