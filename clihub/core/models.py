"""Persisted data model for the configuration document.

All models serialize with camelCase keys so documents written by earlier
releases load unchanged; Python code uses the snake_case attribute names.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from clihub.core.apps import ALL_APPS, AppType

# Bump together with a new step in clihub.core.migration.
CURRENT_SCHEMA_VERSION = 3

USAGE_QUERY_INTERVAL_MAX_MINUTES = 1440


def now_millis() -> int:
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
        "protected_namespaces": (),
    }


class ProviderCategory(str, Enum):
    """Where a provider's endpoint comes from."""

    OFFICIAL = "official"
    REGIONAL_OFFICIAL = "regional_official"
    AGGREGATOR = "aggregator"
    THIRD_PARTY = "third_party"
    CUSTOM = "custom"

    @classmethod
    def _missing_(cls, value: object) -> Optional["ProviderCategory"]:
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_")
            if normalized == "cn_official":
                return cls.REGIONAL_OFFICIAL
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class CustomEndpoint(_CamelModel):
    """A user-added endpoint URL remembered for a provider."""

    url: str
    added_at: int = Field(default_factory=now_millis)
    last_used: Optional[int] = None


class UsageScript(_CamelModel):
    """Script used by the host to query remaining quota; stored, never executed here."""

    model_config = {"extra": "allow"}

    enabled: bool = False
    language: str = "javascript"
    code: str = ""
    timeout: Optional[int] = None
    auto_query_interval: Optional[int] = None


class ProviderMeta(_CamelModel):
    """Auxiliary provider data that never reaches the live files."""

    model_config = {"extra": "allow"}

    custom_endpoints: Dict[str, CustomEndpoint] = Field(default_factory=dict)
    usage_script: Optional[UsageScript] = None
    partner_promotion_key: Optional[str] = None
    # Set when the target's common snippet has been merged into settings_config.
    common_config_enabled: bool = False


class Provider(_CamelModel):
    """One provider profile for a target application."""

    id: str
    name: str
    settings_config: Dict[str, Any] = Field(default_factory=dict)
    website_url: Optional[str] = None
    category: Optional[ProviderCategory] = None
    notes: Optional[str] = None
    sort_index: Optional[int] = None
    created_at: Optional[int] = None
    icon: Optional[str] = None
    icon_color: Optional[str] = None
    meta: ProviderMeta = Field(default_factory=ProviderMeta)

    @field_validator("meta", mode="before")
    @classmethod
    def _null_meta(cls, value: Any) -> Any:
        return {} if value is None else value


class ProviderSortUpdate(_CamelModel):
    id: str
    sort_index: int = Field(ge=0)


class McpApps(BaseModel):
    """Which target applications an MCP server is enabled for."""

    claude: bool = False
    codex: bool = False
    gemini: bool = False

    def enabled_apps(self) -> List[AppType]:
        return [app for app in ALL_APPS if getattr(self, app.value)]


class McpServer(_CamelModel):
    id: str
    name: str
    server: Dict[str, Any] = Field(default_factory=dict)
    apps: McpApps = Field(default_factory=McpApps)
    description: Optional[str] = None
    homepage: Optional[str] = None
    docs: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class Prompt(_CamelModel):
    id: str
    name: str
    content: str = ""
    description: Optional[str] = None
    enabled: bool = False
    created_at: Optional[int] = None
    updated_at: Optional[int] = None


class AppSettings(_CamelModel):
    """Engine settings stored inside the document."""

    model_config = {"extra": "allow"}

    claude_config_dir: Optional[str] = None
    codex_config_dir: Optional[str] = None
    gemini_config_dir: Optional[str] = None
    backup_retain: int = Field(default=10, ge=1)
    language: Optional[str] = None

    @field_validator("claude_config_dir", "codex_config_dir", "gemini_config_dir", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    def config_dir_override(self, app: AppType) -> Optional[str]:
        return getattr(self, f"{app.value}_config_dir")

    def set_config_dir_override(self, app: AppType, directory: Optional[str]) -> None:
        value = directory.strip() if directory and directory.strip() else None
        setattr(self, f"{app.value}_config_dir", value)


def _empty_per_app() -> Dict[AppType, Dict[str, Any]]:
    return {app: {} for app in ALL_APPS}


class ConfigDocument(_CamelModel):
    """The single authoritative document (SSOT)."""

    version: int = CURRENT_SCHEMA_VERSION
    providers: Dict[AppType, Dict[str, Provider]] = Field(default_factory=_empty_per_app)
    current: Dict[AppType, str] = Field(default_factory=dict)
    common_snippets: Dict[AppType, str] = Field(default_factory=dict)
    mcp_servers: Dict[str, McpServer] = Field(default_factory=dict)
    prompts: Dict[AppType, Dict[str, Prompt]] = Field(default_factory=_empty_per_app)
    settings: AppSettings = Field(default_factory=AppSettings)

    @model_validator(mode="after")
    def _check_references(self) -> "ConfigDocument":
        if self.version != CURRENT_SCHEMA_VERSION:
            raise ValueError(
                f"document version {self.version} does not match schema {CURRENT_SCHEMA_VERSION}"
            )
        for app in ALL_APPS:
            self.providers.setdefault(app, {})
            self.prompts.setdefault(app, {})
        for app, providers in self.providers.items():
            for key, provider in providers.items():
                if key != provider.id:
                    raise ValueError(
                        f"provider key '{key}' does not match its id '{provider.id}' ({app.value})"
                    )
        for app, current_id in self.current.items():
            if current_id not in self.providers.get(app, {}):
                raise ValueError(
                    f"current provider '{current_id}' for {app.value} does not exist"
                )
        return self

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def provider_sort_key(provider: Provider) -> tuple:
    """Listing order: indexed first, then by creation time, then name."""
    has_index = provider.sort_index is not None
    return (
        0 if has_index else 1,
        provider.sort_index if has_index else 0,
        provider.created_at is None,
        provider.created_at or 0,
        provider.name.casefold(),
        provider.id,
    )
