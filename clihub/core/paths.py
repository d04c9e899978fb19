"""Filesystem locations for the SSOT, backups and each target's live files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from clihub.core.apps import AppType

APP_DIR_ENV = "CLI_HUB_CONFIG_DIR"
APP_DIR_NAME = ".cli-hub"
CONFIG_FILE_NAME = "config.json"
BACKUP_DIR_NAME = "backups"
LOG_DIR_NAME = "logs"

_DEFAULT_APP_DIRS: Dict[AppType, str] = {
    AppType.CLAUDE: ".claude",
    AppType.CODEX: ".codex",
    AppType.GEMINI: ".gemini",
}


def _expand(raw: str) -> Path:
    return Path(os.path.expandvars(raw.strip())).expanduser()


def resolve_app_config_dir(explicit: Optional[str] = None) -> Path:
    """Directory holding the SSOT: explicit argument > env var > ~/.cli-hub."""
    if explicit and explicit.strip():
        return _expand(explicit)
    env_value = os.getenv(APP_DIR_ENV, "")
    if env_value.strip():
        return _expand(env_value)
    return Path.home() / APP_DIR_NAME


@dataclass
class ConfigPaths:
    """Resolved locations; per-target overrides come from the document settings."""

    app_config_dir: Path
    overrides: Dict[AppType, str] = field(default_factory=dict)

    @classmethod
    def from_environment(cls, explicit_dir: Optional[str] = None) -> "ConfigPaths":
        return cls(app_config_dir=resolve_app_config_dir(explicit_dir))

    @property
    def config_path(self) -> Path:
        return self.app_config_dir / CONFIG_FILE_NAME

    @property
    def backup_dir(self) -> Path:
        return self.app_config_dir / BACKUP_DIR_NAME

    @property
    def log_dir(self) -> Path:
        return self.app_config_dir / LOG_DIR_NAME

    def app_dir(self, app: AppType) -> Path:
        """Config directory of a target tool, honoring a non-blank override."""
        override = self.overrides.get(app)
        if override and override.strip():
            return _expand(override)
        return Path.home() / _DEFAULT_APP_DIRS[app]

    def set_override(self, app: AppType, directory: Optional[str]) -> None:
        if directory and directory.strip():
            self.overrides[app] = directory.strip()
        else:
            self.overrides.pop(app, None)

    # Live file locations

    def claude_settings_path(self) -> Path:
        directory = self.app_dir(AppType.CLAUDE)
        settings = directory / "settings.json"
        legacy = directory / "claude.json"
        # Older installs used claude.json; keep writing there until settings.json exists.
        if not settings.exists() and legacy.exists():
            return legacy
        return settings

    def codex_auth_path(self) -> Path:
        return self.app_dir(AppType.CODEX) / "auth.json"

    def codex_config_path(self) -> Path:
        return self.app_dir(AppType.CODEX) / "config.toml"

    def gemini_env_path(self) -> Path:
        return self.app_dir(AppType.GEMINI) / ".env"

    def gemini_settings_path(self) -> Path:
        return self.app_dir(AppType.GEMINI) / "settings.json"
