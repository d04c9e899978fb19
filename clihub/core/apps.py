"""Target applications whose configuration files the engine manages."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from clihub.core.errors import SettingsValidationError


class AppType(str, Enum):
    """Supported CLI tools."""

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"

    @classmethod
    def _aliases(cls) -> Dict[str, "AppType"]:
        return {
            "claude-code": cls.CLAUDE,
            "claude_code": cls.CLAUDE,
            "openai-codex": cls.CODEX,
            "gemini-cli": cls.GEMINI,
            "gemini_cli": cls.GEMINI,
        }

    @classmethod
    def _missing_(cls, value: object) -> Optional["AppType"]:
        """Accept case/whitespace variants and a few historical labels."""
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
            return cls._aliases().get(normalized)
        return None

    @classmethod
    def parse(cls, value: str) -> "AppType":
        """Parse an app identifier, raising a validation error with the allowed values."""
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise SettingsValidationError(
                f"Unsupported app id: '{value}'. Allowed: {allowed}."
            ) from None

    @property
    def display_name(self) -> str:
        return {
            AppType.CLAUDE: "Claude Code",
            AppType.CODEX: "Codex",
            AppType.GEMINI: "Gemini CLI",
        }[self]


ALL_APPS = (AppType.CLAUDE, AppType.CODEX, AppType.GEMINI)
