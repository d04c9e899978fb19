"""Gemini CLI: ``.env`` for credentials plus an optional ``settings.json``.

Settings shape is ``{"env": {KEY: value}, "config": {...}}``. ``config`` is
written to settings.json only when present; the common snippet is merged into
it. Providers recognized as Google official or PackyCode also get the
matching ``security.auth.selectedType`` in settings.json.
"""

from __future__ import annotations

import copy
import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from clihub.core.adapters.base import FormatAdapter, LiveFiles, StructuredSnippetMixin, load_json_object
from clihub.core.apps import AppType
from clihub.core.errors import SettingsValidationError
from clihub.core.models import Provider
from clihub.core import snippets
from clihub.utils.atomic_write import FileWrite
from clihub.utils.json_utils import dump_canonical_json

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

PACKYCODE_KEYWORDS = ("packycode", "packyapi", "packy")
PACKYCODE_PARTNER_KEY = "packycode"
GOOGLE_OFFICIAL_PARTNER_KEY = "google-official"
PACKYCODE_SELECTED_TYPE = "gemini-api-key"
GOOGLE_OAUTH_SELECTED_TYPE = "oauth-personal"


class GeminiAuthType(str, Enum):
    GOOGLE_OFFICIAL = "google_official"
    PACKYCODE = "packycode"
    GENERIC = "generic"


def _has_packy_keyword(value: Optional[str]) -> bool:
    if not value:
        return False
    lowered = value.lower()
    return any(keyword in lowered for keyword in PACKYCODE_KEYWORDS)


def detect_auth_type(provider: Provider) -> GeminiAuthType:
    partner = (provider.meta.partner_promotion_key or "").lower()
    if partner == GOOGLE_OFFICIAL_PARTNER_KEY:
        return GeminiAuthType.GOOGLE_OFFICIAL
    if partner == PACKYCODE_PARTNER_KEY:
        return GeminiAuthType.PACKYCODE

    name = provider.name.lower()
    if name == "google" or name.startswith("google "):
        return GeminiAuthType.GOOGLE_OFFICIAL

    env = provider.settings_config.get("env")
    base_url = env.get("GOOGLE_GEMINI_BASE_URL") if isinstance(env, dict) else None
    for candidate in (provider.name, provider.website_url, base_url):
        if isinstance(candidate, str) and _has_packy_keyword(candidate):
            return GeminiAuthType.PACKYCODE
    return GeminiAuthType.GENERIC


def parse_env(text: str) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` lines; blank lines and ``#`` comments are skipped."""
    values: Dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not _ENV_KEY_RE.match(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        values[key] = value
    return values


def _needs_quotes(value: str) -> bool:
    if value != value.strip():
        return True
    return len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"')


def serialize_env(values: Mapping[str, str]) -> str:
    """Inverse of ``parse_env``; values that parsing would alter are double-quoted."""
    lines = []
    for key in sorted(values):
        value = values[key]
        lines.append(f'{key}="{value}"' if _needs_quotes(value) else f"{key}={value}")
    return "\n".join(lines) + ("\n" if lines else "")


class GeminiAdapter(StructuredSnippetMixin, FormatAdapter):
    app = AppType.GEMINI
    _snippet_scope = "config"

    def live_paths(self) -> List[Path]:
        return [self.paths.gemini_env_path(), self.paths.gemini_settings_path()]

    def validate_settings(self, settings: Mapping[str, Any], provider_id: str = "") -> None:
        if not isinstance(settings, Mapping):
            raise SettingsValidationError("Gemini configuration must be a JSON object")
        env = settings.get("env")
        if env is not None:
            if not isinstance(env, dict):
                raise SettingsValidationError(
                    f"Gemini settings for '{provider_id}': 'env' must be an object"
                )
            for key, value in env.items():
                if not _ENV_KEY_RE.match(key):
                    raise SettingsValidationError(f"Invalid environment variable name: '{key}'")
                if not isinstance(value, str):
                    raise SettingsValidationError(
                        f"Environment variable '{key}' must be a string"
                    )
                if "\n" in value or "\r" in value:
                    raise SettingsValidationError(
                        f"Environment variable '{key}' must not contain line breaks"
                    )
        config = settings.get("config")
        if config is not None and not isinstance(config, dict):
            raise SettingsValidationError(
                "Gemini config invalid: config must be an object or null"
            )

    def render_settings(self, settings: Mapping[str, Any], provider: Provider) -> List[FileWrite]:
        env_path, settings_path = self.live_paths()
        auth_type = detect_auth_type(provider)

        env: Dict[str, str] = dict(settings.get("env") or {})
        config: Optional[Dict[str, Any]] = None
        if "config" in settings:
            config = copy.deepcopy(settings.get("config") or {})

        selected_type: Optional[str] = None
        if auth_type is GeminiAuthType.GOOGLE_OFFICIAL:
            env = {}
            selected_type = GOOGLE_OAUTH_SELECTED_TYPE
        elif auth_type is GeminiAuthType.PACKYCODE:
            selected_type = PACKYCODE_SELECTED_TYPE
        if selected_type is not None:
            config = snippets.merge_structured(
                config or {}, {"security": {"auth": {"selectedType": selected_type}}}
            )

        writes = [FileWrite.text(env_path, serialize_env(env))]
        if config is not None:
            writes.append(FileWrite.text(settings_path, dump_canonical_json(config)))
        return writes

    def parse(self, files: LiveFiles) -> Dict[str, Any]:
        env_path, settings_path = self.live_paths()
        env: Dict[str, str] = {}
        env_bytes = files.get(env_path)
        if env_bytes is not None:
            try:
                env = parse_env(env_bytes.decode("utf-8"))
            except UnicodeDecodeError as exc:
                raise SettingsValidationError(f"{env_path} is not valid UTF-8", path=env_path) from exc
        settings_bytes = files.get(settings_path)
        config = load_json_object(settings_bytes, settings_path) if settings_bytes is not None else {}
        return {"env": env, "config": config}

    def backfill(self, stored: Mapping[str, Any], live: Mapping[str, Any]) -> Dict[str, Any]:
        result = copy.deepcopy(dict(stored))
        result["env"] = copy.deepcopy(live.get("env") or {})
        # A config-less provider leaves settings.json untouched, so what is live there is not its own.
        if "config" in stored:
            result["config"] = copy.deepcopy(live.get("config") or {})
        return result
