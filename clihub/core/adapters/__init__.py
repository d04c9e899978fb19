"""Format adapters, one per target application."""

from __future__ import annotations

from typing import Dict, Type

from clihub.core.adapters.base import FormatAdapter
from clihub.core.adapters.claude import ClaudeAdapter
from clihub.core.adapters.codex import CodexAdapter
from clihub.core.adapters.gemini import GeminiAdapter
from clihub.core.apps import ALL_APPS, AppType
from clihub.core.paths import ConfigPaths

ADAPTER_TYPES: Dict[AppType, Type[FormatAdapter]] = {
    AppType.CLAUDE: ClaudeAdapter,
    AppType.CODEX: CodexAdapter,
    AppType.GEMINI: GeminiAdapter,
}


def get_adapter(app: AppType, paths: ConfigPaths) -> FormatAdapter:
    return ADAPTER_TYPES[app](paths)


def build_adapters(paths: ConfigPaths) -> Dict[AppType, FormatAdapter]:
    return {app: get_adapter(app, paths) for app in ALL_APPS}


__all__ = [
    "ClaudeAdapter",
    "CodexAdapter",
    "FormatAdapter",
    "GeminiAdapter",
    "build_adapters",
    "get_adapter",
]
