"""Codex: ``auth.json`` plus a free-form ``config.toml``.

Settings shape is ``{"auth": {...}, "config": "<toml text>"}``. The TOML text
is passed through byte for byte; it is only parsed to reject invalid input.
The common snippet is kept in a marked block inside that text.
"""

from __future__ import annotations

import copy
import tomllib
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from clihub.core.adapters.base import FormatAdapter, LiveFiles, load_json_object
from clihub.core.apps import AppType
from clihub.core.errors import SettingsValidationError
from clihub.core.models import Provider
from clihub.core import snippets
from clihub.utils.atomic_write import FileWrite
from clihub.utils.json_utils import dump_canonical_json


def validate_toml(text: str, *, path: Optional[Path] = None, label: str = "config.toml") -> None:
    if not text.strip():
        return
    try:
        tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise SettingsValidationError(f"Invalid TOML in {label}: {exc}", path=path) from exc


class CodexAdapter(FormatAdapter):
    app = AppType.CODEX

    def live_paths(self) -> List[Path]:
        return [self.paths.codex_auth_path(), self.paths.codex_config_path()]

    def validate_settings(self, settings: Mapping[str, Any], provider_id: str = "") -> None:
        if not isinstance(settings, Mapping):
            raise SettingsValidationError("Codex configuration must be a JSON object")
        if "auth" not in settings:
            raise SettingsValidationError(f"Provider '{provider_id}' is missing auth configuration")
        if not isinstance(settings["auth"], dict):
            raise SettingsValidationError(
                f"Provider '{provider_id}' auth configuration must be a JSON object"
            )
        config = settings.get("config")
        if config is not None:
            if not isinstance(config, str):
                raise SettingsValidationError("Codex config field must be a string")
            validate_toml(config)

    def render_settings(self, settings: Mapping[str, Any], provider: Provider) -> List[FileWrite]:
        auth_path, config_path = self.live_paths()
        config_text = settings.get("config") or ""
        return [
            FileWrite.text(auth_path, dump_canonical_json(settings["auth"])),
            FileWrite.text(config_path, config_text),
        ]

    def parse(self, files: LiveFiles) -> Dict[str, Any]:
        auth_path, config_path = self.live_paths()
        auth_bytes = files.get(auth_path)
        auth = load_json_object(auth_bytes, auth_path) if auth_bytes is not None else {}
        config_bytes = files.get(config_path)
        config_text = ""
        if config_bytes is not None:
            try:
                config_text = config_bytes.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise SettingsValidationError(
                    f"{config_path} is not valid UTF-8", path=config_path
                ) from exc
            validate_toml(config_text, path=config_path, label=str(config_path))
        return {"auth": auth, "config": config_text}

    # Snippet capability: marked text block inside ``config``

    def parse_snippet(self, snippet: Optional[str]) -> Optional[str]:
        if snippet is None or not snippet.strip():
            return None
        validate_toml(snippet, label="common config snippet")
        return snippet

    def _config_text(self, settings: Mapping[str, Any]) -> str:
        config = settings.get("config")
        return config if isinstance(config, str) else ""

    def merge_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> Dict[str, Any]:
        result = copy.deepcopy(dict(settings))
        parsed = self.parse_snippet(snippet)
        if parsed is None:
            return result
        merged = snippets.merge_text(self._config_text(settings), parsed)
        validate_toml(merged, label="config.toml with common snippet")
        result["config"] = merged
        return result

    def remove_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> Dict[str, Any]:
        result = copy.deepcopy(dict(settings))
        config = settings.get("config")
        if not isinstance(config, str) or snippet is None or not snippet.strip():
            return result
        result["config"] = snippets.remove_text(config, snippet)
        return result

    def has_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> bool:
        if snippet is None or not snippet.strip():
            return False
        return snippets.contains_text(self._config_text(settings), snippet)

    def backfill(self, stored: Mapping[str, Any], live: Mapping[str, Any]) -> Dict[str, Any]:
        result = copy.deepcopy(dict(stored))
        result.update(copy.deepcopy(dict(live)))
        return result
