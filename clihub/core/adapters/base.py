"""Base interface for rendering provider settings into a target's live files."""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from clihub.core.apps import AppType
from clihub.core.errors import SettingsValidationError, StorageIOError
from clihub.core.models import Provider
from clihub.core.paths import ConfigPaths
from clihub.core import snippets
from clihub.utils.atomic_write import FileWrite
from clihub.utils.log import get_logger

logger = get_logger()

LiveFiles = Mapping[Path, bytes]


def load_json_bytes(data: bytes, path: Path) -> Any:
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SettingsValidationError(f"Invalid JSON in {path}: {exc}", path=path) from exc


def load_json_object(data: bytes, path: Path) -> Dict[str, Any]:
    value = load_json_bytes(data, path)
    if not isinstance(value, dict):
        raise SettingsValidationError(f"{path} must contain a JSON object", path=path)
    return value


class FormatAdapter(ABC):
    """Renders and parses one target application's live configuration.

    ``render`` is pure and deterministic so identical input always produces
    identical bytes. Files returned by one ``render`` call form a single
    write-set and must be committed together.
    """

    app: AppType

    def __init__(self, paths: ConfigPaths) -> None:
        self.paths = paths

    @abstractmethod
    def live_paths(self) -> List[Path]:
        """Live files of this target; the first one is the primary file."""

    @abstractmethod
    def validate_settings(self, settings: Mapping[str, Any], provider_id: str = "") -> None:
        """Raise SettingsValidationError when ``settings`` cannot be rendered."""

    @abstractmethod
    def render_settings(self, settings: Mapping[str, Any], provider: Provider) -> List[FileWrite]:
        """Produce the write-set for already snippet-merged settings."""

    @abstractmethod
    def parse(self, files: LiveFiles) -> Dict[str, Any]:
        """Inverse of render: rebuild settings from live file contents."""

    # Snippet capability

    @abstractmethod
    def parse_snippet(self, snippet: Optional[str]) -> Any:
        """Return the snippet in the form the merge strategy expects, or None if empty."""

    @abstractmethod
    def merge_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def remove_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def has_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> bool:
        ...

    def replace_snippet(
        self, settings: Mapping[str, Any], old: Optional[str], new: Optional[str]
    ) -> Dict[str, Any]:
        result = self.remove_snippet(settings, old)
        return self.merge_snippet(result, new)

    def validate_snippet(self, snippet: Optional[str]) -> None:
        self.parse_snippet(snippet)

    def normalize(self, settings: Dict[str, Any]) -> bool:
        """Rewrite legacy keys in place; return True when something changed."""
        return False

    def backfill(self, stored: Mapping[str, Any], live: Mapping[str, Any]) -> Dict[str, Any]:
        """Combine parsed live settings with the stored snapshot; live wins."""
        return copy.deepcopy(dict(live))

    # Shared behavior

    def prepare_settings(self, provider: Provider, snippet: Optional[str] = None) -> Dict[str, Any]:
        """Snippet-merged, validated settings for ``provider``."""
        settings: Dict[str, Any] = copy.deepcopy(provider.settings_config)
        if snippet is not None:
            settings = self.merge_snippet(settings, snippet)
        self.validate_settings(settings, provider.id)
        return settings

    def render(self, provider: Provider, snippet: Optional[str] = None) -> List[FileWrite]:
        return self.render_settings(self.prepare_settings(provider, snippet), provider)

    def read_files(self) -> Dict[Path, bytes]:
        files: Dict[Path, bytes] = {}
        for path in self.live_paths():
            try:
                files[path] = path.read_bytes()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageIOError(
                    f"Failed to read {path}: {exc}", path=path, operation="read"
                ) from exc
        return files

    def read_live(self) -> Dict[str, Any]:
        """Parse the target's current on-disk state."""
        primary = self.live_paths()[0]
        files = self.read_files()
        if primary not in files:
            raise StorageIOError(
                f"{self.app.display_name} live configuration not found: {primary}",
                path=primary,
                operation="read",
            )
        return self.parse(files)


class StructuredSnippetMixin:
    """Snippet support for JSON-tree settings; ``_snippet_scope`` selects the subtree."""

    app: AppType
    _snippet_scope: Optional[str] = None

    def parse_snippet(self, snippet: Optional[str]) -> Optional[Dict[str, Any]]:
        if snippet is None or not snippet.strip():
            return None
        try:
            value = json.loads(snippet)
        except json.JSONDecodeError as exc:
            raise SettingsValidationError(
                f"Common config snippet for {self.app.value} is not valid JSON: {exc.msg}"
            ) from exc
        if not isinstance(value, dict):
            raise SettingsValidationError(
                f"Common config snippet for {self.app.value} must be a JSON object"
            )
        return value

    def _scope(self, settings: Mapping[str, Any]) -> Dict[str, Any]:
        if self._snippet_scope is None:
            return dict(settings)
        scoped = settings.get(self._snippet_scope)
        return dict(scoped) if isinstance(scoped, dict) else {}

    def _with_scope(self, settings: Mapping[str, Any], scoped: Dict[str, Any]) -> Dict[str, Any]:
        if self._snippet_scope is None:
            return scoped
        result = copy.deepcopy(dict(settings))
        result[self._snippet_scope] = scoped
        return result

    def merge_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> Dict[str, Any]:
        parsed = self.parse_snippet(snippet)
        if parsed is None:
            return copy.deepcopy(dict(settings))
        return self._with_scope(settings, snippets.merge_structured(self._scope(settings), parsed))

    def remove_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> Dict[str, Any]:
        parsed = self.parse_snippet(snippet)
        if parsed is None:
            return copy.deepcopy(dict(settings))
        if self._snippet_scope is not None and not isinstance(
            settings.get(self._snippet_scope), dict
        ):
            return copy.deepcopy(dict(settings))
        return self._with_scope(settings, snippets.remove_structured(self._scope(settings), parsed))

    def has_snippet(self, settings: Mapping[str, Any], snippet: Optional[str]) -> bool:
        parsed = self.parse_snippet(snippet)
        if parsed is None:
            return False
        return snippets.contains_structured(self._scope(settings), parsed)
