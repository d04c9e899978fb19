"""Claude Code: a single JSON settings file."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from clihub.core.adapters.base import FormatAdapter, LiveFiles, StructuredSnippetMixin, load_json_object
from clihub.core.apps import AppType
from clihub.core.errors import SettingsValidationError
from clihub.core.models import Provider
from clihub.utils.atomic_write import FileWrite
from clihub.utils.json_utils import dump_canonical_json
from clihub.utils.log import get_logger

logger = get_logger()

LEGACY_SMALL_FAST_KEY = "ANTHROPIC_SMALL_FAST_MODEL"
MODEL_KEY = "ANTHROPIC_MODEL"
HAIKU_KEY = "ANTHROPIC_DEFAULT_HAIKU_MODEL"
SONNET_KEY = "ANTHROPIC_DEFAULT_SONNET_MODEL"
OPUS_KEY = "ANTHROPIC_DEFAULT_OPUS_MODEL"


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value is not None:
            return value
    return None


def normalize_claude_models(settings: Dict[str, Any]) -> bool:
    """Fill per-tier model keys and drop the retired small/fast key.

    Tiers that are already set win. Haiku prefers the old small/fast value,
    sonnet and opus prefer the main model. Returns True when ``settings`` was
    modified in place.
    """
    env = settings.get("env")
    if not isinstance(env, dict):
        return False

    def _string(key: str) -> Optional[str]:
        value = env.get(key)
        return value if isinstance(value, str) else None

    model = _string(MODEL_KEY)
    small_fast = _string(LEGACY_SMALL_FAST_KEY)
    targets = {
        HAIKU_KEY: _first(small_fast, model),
        SONNET_KEY: _first(model, small_fast),
        OPUS_KEY: _first(model, small_fast),
    }

    changed = False
    for key, value in targets.items():
        if key not in env and value is not None:
            env[key] = value
            changed = True
    if LEGACY_SMALL_FAST_KEY in env:
        del env[LEGACY_SMALL_FAST_KEY]
        changed = True
    return changed


class ClaudeAdapter(StructuredSnippetMixin, FormatAdapter):
    app = AppType.CLAUDE

    def live_paths(self) -> List[Path]:
        return [self.paths.claude_settings_path()]

    def validate_settings(self, settings: Mapping[str, Any], provider_id: str = "") -> None:
        if not isinstance(settings, Mapping):
            raise SettingsValidationError(
                f"Claude settings for '{provider_id}' must be a JSON object"
            )
        env = settings.get("env")
        if env is not None and not isinstance(env, dict):
            raise SettingsValidationError(
                f"Claude settings for '{provider_id}': 'env' must be an object"
            )

    def render_settings(self, settings: Mapping[str, Any], provider: Provider) -> List[FileWrite]:
        return [FileWrite.text(self.live_paths()[0], dump_canonical_json(dict(settings)))]

    def parse(self, files: LiveFiles) -> Dict[str, Any]:
        path = self.live_paths()[0]
        data = files.get(path)
        if data is None:
            return {}
        return load_json_object(data, path)

    def normalize(self, settings: Dict[str, Any]) -> bool:
        changed = normalize_claude_models(settings)
        if changed:
            logger.debug("[claude] Normalized model keys in provider settings")
        return changed
