"""Authoritative registry of provider profiles and owner of the SSOT document.

Every mutation follows the same path: change a working copy of the document
under the write lock, swap it in, copy out a snapshot, release the lock, then
persist the SSOT and render the affected target from the snapshot. File I/O
never happens while the document lock is held.
"""

from __future__ import annotations

import copy
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from clihub.core.adapters import FormatAdapter, build_adapters, get_adapter
from clihub.core.apps import ALL_APPS, AppType
from clihub.core.backup import BackupManager
from clihub.core.errors import (
    ClihubError,
    PartialSyncError,
    ProviderInUseError,
    ProviderNotFoundError,
    RollbackError,
    SettingsValidationError,
    StorageIOError,
)
from clihub.core.events import ProviderEvents
from clihub.core.migration import LoadResult, MigrationRunner, load_document
from clihub.core.models import (
    USAGE_QUERY_INTERVAL_MAX_MINUTES,
    ConfigDocument,
    CustomEndpoint,
    Provider,
    ProviderCategory,
    ProviderSortUpdate,
    now_millis,
    provider_sort_key,
)
from clihub.core.paths import ConfigPaths
from clihub.utils.atomic_write import atomic_write, write_all
from clihub.utils.json_utils import dump_canonical_json
from clihub.utils.log import get_logger
from clihub.utils.rwlock import ReadWriteLock

logger = get_logger()

T = TypeVar("T")

ProviderInput = Union[Provider, Mapping[str, Any]]
SortUpdateInput = Union[ProviderSortUpdate, Mapping[str, Any]]

DEFAULT_PROVIDER_ID = "default"


def _coerce_provider(value: ProviderInput, *, generate_id: bool = False) -> Provider:
    if isinstance(value, Provider):
        provider = value.model_copy(deep=True)
        if generate_id and not provider.id.strip():
            provider.id = uuid.uuid4().hex
        return provider
    data = dict(value)
    if generate_id and not str(data.get("id") or "").strip():
        data["id"] = uuid.uuid4().hex
    try:
        return Provider.model_validate(data)
    except ValidationError as exc:
        raise SettingsValidationError(f"Invalid provider: {exc}") from exc


def _coerce_sort_update(value: SortUpdateInput) -> ProviderSortUpdate:
    if isinstance(value, ProviderSortUpdate):
        return value
    try:
        return ProviderSortUpdate.model_validate(dict(value))
    except ValidationError as exc:
        raise SettingsValidationError(f"Invalid sort update: {exc}") from exc


def _normalize_endpoint_url(url: str) -> str:
    cleaned = (url or "").strip().rstrip("/")
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise SettingsValidationError(f"Endpoint must be an http(s) URL: '{url}'")
    return cleaned


class ProfileStore:
    """Holds the configuration document and keeps live files in step with it."""

    def __init__(
        self,
        paths: ConfigPaths,
        document: ConfigDocument,
        *,
        backup_manager: Optional[BackupManager] = None,
        events: Optional[ProviderEvents] = None,
        load_result: Optional[LoadResult] = None,
    ) -> None:
        self.paths = paths
        self.backups = backup_manager or BackupManager(paths.backup_dir)
        self.events = events or ProviderEvents()
        self.load_result = load_result

        self._doc = document
        self._doc_lock = ReadWriteLock("document")
        self._ssot_lock = threading.Lock()
        self._app_locks: Dict[AppType, threading.Lock] = {app: threading.Lock() for app in ALL_APPS}
        self._generation = 0
        self._persisted_generation = 0
        self._rendered_generation: Dict[AppType, int] = {}
        self._halted: Dict[AppType, str] = {}

        self._apply_settings(document)
        self._adapters: Dict[AppType, FormatAdapter] = build_adapters(self.paths)

    @classmethod
    def open(
        cls,
        app_config_dir: Optional[str] = None,
        *,
        events: Optional[ProviderEvents] = None,
        runner: Optional[MigrationRunner] = None,
    ) -> "ProfileStore":
        """Load (creating or migrating as needed) the SSOT and build a store on it."""
        paths = ConfigPaths.from_environment(app_config_dir)
        backups = BackupManager(paths.backup_dir)
        result = load_document(paths.config_path, runner, backups)
        logger.debug(
            "[store] Loaded configuration",
            extra={
                "path": str(paths.config_path),
                "created_default": result.created,
                "migrated": result.migrated,
                "from_version": result.from_version,
            },
        )
        return cls(paths, result.document, backup_manager=backups, events=events, load_result=result)

    def _apply_settings(self, document: ConfigDocument) -> None:
        for app in ALL_APPS:
            self.paths.set_override(app, document.settings.config_dir_override(app))
        self.backups.retain = document.settings.backup_retain

    # Queries

    def get(self, app: AppType) -> List[Provider]:
        """Providers of ``app`` in listing order."""
        with self._doc_lock.read_lock():
            providers = [p.model_copy(deep=True) for p in self._doc.providers[app].values()]
        return sorted(providers, key=provider_sort_key)

    def get_current(self, app: AppType) -> Optional[str]:
        with self._doc_lock.read_lock():
            return self._doc.current.get(app)

    def get_provider(self, app: AppType, provider_id: str) -> Provider:
        with self._doc_lock.read_lock():
            provider = self._doc.providers[app].get(provider_id)
            if provider is None:
                raise ProviderNotFoundError(app.value, provider_id)
            return provider.model_copy(deep=True)

    def document(self) -> ConfigDocument:
        """Deep copy of the whole document."""
        with self._doc_lock.read_lock():
            return self._doc.model_copy(deep=True)

    def get_common_snippet(self, app: AppType) -> Optional[str]:
        with self._doc_lock.read_lock():
            return self._doc.common_snippets.get(app)

    def adapter(self, app: AppType) -> FormatAdapter:
        return self._adapters[app]

    def is_halted(self, app: AppType) -> bool:
        return app in self._halted

    # Provider CRUD

    def add(self, app: AppType, provider: ProviderInput) -> str:
        """Add a provider; the first provider of a target also becomes current."""
        candidate = self._prepare(app, _coerce_provider(provider, generate_id=True))
        if candidate.created_at is None:
            candidate.created_at = now_millis()

        def _apply(doc: ConfigDocument) -> bool:
            if candidate.id in doc.providers[app]:
                raise SettingsValidationError(
                    f"Provider '{candidate.id}' already exists for {app.value}"
                )
            doc.providers[app][candidate.id] = candidate
            if doc.current.get(app) is None:
                doc.current[app] = candidate.id
                return True
            return False

        became_current, snapshot, generation = self._commit(_apply)
        logger.info(
            "[store] Added provider",
            extra={"app": app.value, "provider_id": candidate.id, "current": became_current},
        )
        if became_current:
            self._sync_or_raise(app, snapshot, generation)
        return candidate.id

    def update(self, app: AppType, provider: ProviderInput) -> None:
        """Replace a provider's data; re-render when it is the current one."""
        candidate = self._prepare(app, _coerce_provider(provider))

        def _apply(doc: ConfigDocument) -> bool:
            existing = doc.providers[app].get(candidate.id)
            if existing is None:
                raise ProviderNotFoundError(app.value, candidate.id)
            if candidate.created_at is None:
                candidate.created_at = existing.created_at
            doc.providers[app][candidate.id] = candidate
            return doc.current.get(app) == candidate.id

        is_current, snapshot, generation = self._commit(_apply)
        logger.info(
            "[store] Updated provider",
            extra={"app": app.value, "provider_id": candidate.id, "current": is_current},
        )
        if is_current:
            self._sync_or_raise(app, snapshot, generation)

    def delete(self, app: AppType, provider_id: str) -> None:
        def _apply(doc: ConfigDocument) -> None:
            if provider_id not in doc.providers[app]:
                raise ProviderNotFoundError(app.value, provider_id)
            if doc.current.get(app) == provider_id:
                raise ProviderInUseError(app.value, provider_id)
            del doc.providers[app][provider_id]

        self._commit(_apply)
        logger.info("[store] Deleted provider", extra={"app": app.value, "provider_id": provider_id})

    def duplicate(self, app: AppType, provider_id: str, name: Optional[str] = None) -> str:
        source = self.get_provider(app, provider_id)
        copy_provider = source.model_copy(
            update={
                "id": uuid.uuid4().hex,
                "name": name or f"{source.name} copy",
                "created_at": now_millis(),
                "sort_index": None,
            },
            deep=True,
        )
        return self.add(app, copy_provider)

    def reorder(self, app: AppType, updates: Sequence[SortUpdateInput]) -> None:
        """Apply sort indexes; any unknown id rejects the whole batch."""
        parsed = [_coerce_sort_update(update) for update in updates]

        def _apply(doc: ConfigDocument) -> None:
            providers = doc.providers[app]
            for update in parsed:
                if update.id not in providers:
                    raise ProviderNotFoundError(app.value, update.id)
            for update in parsed:
                providers[update.id].sort_index = update.sort_index

        self._commit(_apply)
        logger.debug("[store] Reordered providers", extra={"app": app.value, "count": len(parsed)})

    # Switching and backfill

    def switch(self, app: AppType, provider_id: str) -> None:
        """Make ``provider_id`` current, render it and notify listeners.

        The outgoing provider is first refreshed from the live files so edits
        made outside the engine are kept.
        """
        with self._doc_lock.read_lock():
            target = self._doc.providers[app].get(provider_id)
            if target is None:
                raise ProviderNotFoundError(app.value, provider_id)
            target = target.model_copy(deep=True)
            previous_id = self._doc.current.get(app)
            previous = self._doc.providers[app].get(previous_id) if previous_id else None
            previous = previous.model_copy(deep=True) if previous is not None else None
            snippet = self._snippet_for(self._doc, app, target)

        adapter = self._adapters[app]
        adapter.prepare_settings(target, snippet)

        backfilled: Optional[Dict[str, Any]] = None
        if previous is not None and previous.id != provider_id:
            backfilled = self._backfill_settings(app, previous)

        def _apply(doc: ConfigDocument) -> None:
            if provider_id not in doc.providers[app]:
                raise ProviderNotFoundError(app.value, provider_id)
            if backfilled is not None and previous is not None and previous.id in doc.providers[app]:
                doc.providers[app][previous.id].settings_config = backfilled
            doc.current[app] = provider_id

        _, snapshot, generation = self._commit(_apply)
        logger.info(
            "[store] Switched provider",
            extra={"app": app.value, "provider_id": provider_id, "previous": previous_id},
        )
        self._sync_or_raise(app, snapshot, generation)
        self.events.emit_provider_switched(app)

    def _backfill_settings(self, app: AppType, provider: Provider) -> Optional[Dict[str, Any]]:
        adapter = self._adapters[app]
        try:
            live = adapter.read_live()
        except ClihubError as exc:
            logger.warning(
                "[store] Live configuration unavailable; using stored settings: %s",
                exc,
                extra={"app": app.value, "provider_id": provider.id},
            )
            return None
        merged = adapter.backfill(provider.settings_config, live)
        adapter.normalize(merged)
        return merged

    def get_for_edit(self, app: AppType, provider_id: str) -> Provider:
        """Provider data to edit; the current one reflects its live files."""
        provider = self.get_provider(app, provider_id)
        if self.get_current(app) != provider_id:
            return provider
        backfilled = self._backfill_settings(app, provider)
        if backfilled is not None:
            provider.settings_config = backfilled
        return provider

    def read_live_settings(self, app: AppType) -> Dict[str, Any]:
        return self._adapters[app].read_live()

    def import_from_live(self, app: AppType) -> Optional[str]:
        """Seed a ``default`` provider from the live files of an empty target."""
        with self._doc_lock.read_lock():
            if self._doc.providers[app]:
                return None
        live = self._adapters[app].read_live()
        candidate = self._prepare(
            app,
            Provider(
                id=DEFAULT_PROVIDER_ID,
                name=DEFAULT_PROVIDER_ID,
                settings_config=live,
                category=ProviderCategory.CUSTOM,
                created_at=now_millis(),
            ),
        )

        def _apply(doc: ConfigDocument) -> bool:
            if doc.providers[app]:
                return False
            doc.providers[app][candidate.id] = candidate
            doc.current[app] = candidate.id
            return True

        seeded, _, _ = self._commit(_apply)
        if not seeded:
            return None
        logger.info("[store] Imported live configuration", extra={"app": app.value})
        return candidate.id

    def sync_current_to_live(self, app: Optional[AppType] = None) -> Dict[str, str]:
        """Re-render current providers; returns per-target failure messages."""
        with self._doc_lock.read_lock():
            snapshot = self._doc.model_copy(deep=True)
            generation = self._generation
        return self._sync_targets([app] if app is not None else list(ALL_APPS), snapshot, generation)

    # Common snippet

    def set_common_snippet(self, app: AppType, snippet: Optional[str]) -> None:
        """Store a new snippet, swapping it into every provider that uses it."""
        adapter = self._adapters[app]
        new = snippet if snippet is not None and snippet.strip() else None
        adapter.validate_snippet(new)

        def _apply(doc: ConfigDocument) -> bool:
            old = doc.common_snippets.get(app)
            current_id = doc.current.get(app)
            affects_current = (
                current_id is not None and doc.providers[app][current_id].meta.common_config_enabled
            )
            for provider in doc.providers[app].values():
                if not provider.meta.common_config_enabled:
                    continue
                settings = adapter.replace_snippet(provider.settings_config, old, new)
                adapter.validate_settings(settings, provider.id)
                provider.settings_config = settings
                if new is None:
                    provider.meta.common_config_enabled = False
            if new is None:
                doc.common_snippets.pop(app, None)
            else:
                doc.common_snippets[app] = new
            return affects_current

        rerender, snapshot, generation = self._commit(_apply)
        logger.info("[store] Updated common snippet", extra={"app": app.value, "cleared": new is None})
        if rerender:
            self._sync_or_raise(app, snapshot, generation)

    def toggle_common_snippet(self, app: AppType, provider_id: str, enabled: bool) -> None:
        adapter = self._adapters[app]

        def _apply(doc: ConfigDocument) -> bool:
            provider = doc.providers[app].get(provider_id)
            if provider is None:
                raise ProviderNotFoundError(app.value, provider_id)
            snippet = doc.common_snippets.get(app)
            if enabled:
                if not snippet:
                    raise SettingsValidationError(
                        f"No common config snippet is set for {app.value}"
                    )
                settings = adapter.merge_snippet(provider.settings_config, snippet)
            else:
                settings = adapter.remove_snippet(provider.settings_config, snippet)
            adapter.validate_settings(settings, provider.id)
            provider.settings_config = settings
            provider.meta.common_config_enabled = enabled
            return doc.current.get(app) == provider_id

        is_current, snapshot, generation = self._commit(_apply)
        logger.info(
            "[store] Toggled common snippet",
            extra={"app": app.value, "provider_id": provider_id, "enabled": enabled},
        )
        if is_current:
            self._sync_or_raise(app, snapshot, generation)

    # Custom endpoints

    def add_custom_endpoint(self, app: AppType, provider_id: str, url: str) -> None:
        normalized = _normalize_endpoint_url(url)

        def _apply(doc: ConfigDocument) -> None:
            provider = self._require(doc, app, provider_id)
            provider.meta.custom_endpoints[normalized] = CustomEndpoint(url=normalized)

        self._commit(_apply)

    def remove_custom_endpoint(self, app: AppType, provider_id: str, url: str) -> None:
        normalized = (url or "").strip().rstrip("/")

        def _apply(doc: ConfigDocument) -> None:
            provider = self._require(doc, app, provider_id)
            provider.meta.custom_endpoints.pop(normalized, None)

        self._commit(_apply)

    def mark_endpoint_used(self, app: AppType, provider_id: str, url: str) -> None:
        normalized = (url or "").strip().rstrip("/")

        def _apply(doc: ConfigDocument) -> None:
            provider = self._require(doc, app, provider_id)
            endpoint = provider.meta.custom_endpoints.get(normalized)
            if endpoint is not None:
                endpoint.last_used = now_millis()

        self._commit(_apply)

    # Document-level operations

    def change_app_config_dir(self, app: AppType, directory: Optional[str]) -> None:
        """Point a target at another config directory and render into it.

        Files in the old location are left untouched.
        """

        def _apply(doc: ConfigDocument) -> None:
            doc.settings.set_config_dir_override(app, directory)

        _, snapshot, generation = self._commit(_apply)
        with self._app_locks[app]:
            self.paths.set_override(app, snapshot.settings.config_dir_override(app))
            self._adapters[app] = get_adapter(app, self.paths)
        logger.info(
            "[store] Changed config directory",
            extra={"app": app.value, "directory": str(self.paths.app_dir(app))},
        )
        if snapshot.current.get(app) is not None:
            self._sync_or_raise(app, snapshot, generation)

    def replace_document(self, document: ConfigDocument) -> Dict[str, str]:
        """Swap in a whole document (import/restore) and re-render every target."""
        replacement = document.model_copy(deep=True)

        _, snapshot, generation = self._commit(lambda doc: None, replacement=replacement)
        for app in ALL_APPS:
            with self._app_locks[app]:
                self.paths.set_override(app, snapshot.settings.config_dir_override(app))
                self._adapters[app] = get_adapter(app, self.paths)
        self.backups.retain = snapshot.settings.backup_retain
        return self._sync_targets(list(ALL_APPS), snapshot, generation)

    def clear_halt(self, app: AppType) -> None:
        with self._app_locks[app]:
            if self._halted.pop(app, None) is not None:
                logger.info("[store] Cleared write halt", extra={"app": app.value})

    # Internals

    def _require(self, doc: ConfigDocument, app: AppType, provider_id: str) -> Provider:
        provider = doc.providers[app].get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(app.value, provider_id)
        return provider

    def _prepare(self, app: AppType, provider: Provider) -> Provider:
        """Validate and normalize a provider before it enters the document."""
        if not provider.id.strip():
            raise SettingsValidationError("Provider id must not be empty")
        if not provider.name.strip():
            raise SettingsValidationError("Provider name must not be empty")
        adapter = self._adapters[app]
        settings = copy.deepcopy(provider.settings_config)
        adapter.normalize(settings)
        adapter.validate_settings(settings, provider.id)
        script = provider.meta.usage_script
        if (
            script is not None
            and script.auto_query_interval is not None
            and script.auto_query_interval > USAGE_QUERY_INTERVAL_MAX_MINUTES
        ):
            raise SettingsValidationError(
                f"Auto query interval cannot exceed {USAGE_QUERY_INTERVAL_MAX_MINUTES} minutes, "
                f"got {script.auto_query_interval}"
            )
        provider.settings_config = settings
        return provider

    def _snippet_for(self, doc: ConfigDocument, app: AppType, provider: Provider) -> Optional[str]:
        if not provider.meta.common_config_enabled:
            return None
        return doc.common_snippets.get(app)

    def _commit(
        self,
        mutate: Callable[[ConfigDocument], T],
        *,
        replacement: Optional[ConfigDocument] = None,
    ) -> Tuple[T, ConfigDocument, int]:
        """Apply ``mutate`` atomically in memory, then persist the SSOT.

        ``mutate`` works on a copy; if it raises, the document is unchanged.
        A ``replacement`` document is swapped in whole instead of a copy.
        """
        with self._doc_lock.write_lock():
            working = replacement if replacement is not None else self._doc.model_copy(deep=True)
            result = mutate(working)
            previous = self._doc
            self._doc = working
            self._generation += 1
            generation = self._generation
            snapshot = working.model_copy(deep=True)
        self._persist(snapshot, generation, previous)
        return result, snapshot, generation

    def _persist(self, snapshot: ConfigDocument, generation: int, previous: ConfigDocument) -> None:
        payload = dump_canonical_json(snapshot.to_dict())
        with self._ssot_lock:
            if generation <= self._persisted_generation:
                return
            try:
                atomic_write(self.paths.config_path, payload)
            except StorageIOError:
                with self._doc_lock.write_lock():
                    if self._generation == generation:
                        self._doc = previous
                logger.error(
                    "[store] Failed to save configuration; in-memory state restored",
                    extra={"path": str(self.paths.config_path), "generation": generation},
                )
                raise
            self._persisted_generation = generation
        logger.debug(
            "[store] Saved configuration",
            extra={"path": str(self.paths.config_path), "generation": generation},
        )

    def _write_live(self, app: AppType, snapshot: ConfigDocument, generation: int) -> bool:
        with self._app_locks[app]:
            reason = self._halted.get(app)
            if reason is not None:
                raise StorageIOError(
                    f"Writes to {app.value} are halted after a failed rollback: {reason}",
                    operation="halted",
                    error_code="write_halted",
                )
            if generation < self._rendered_generation.get(app, 0):
                return False
            current_id = snapshot.current.get(app)
            if current_id is None:
                return False
            provider = snapshot.providers[app][current_id]
            adapter = self._adapters[app]
            files = adapter.render(provider, self._snippet_for(snapshot, app, provider))
            try:
                write_all(files)
            except RollbackError as exc:
                self._halted[app] = str(exc)
                logger.error(
                    "[store] Rollback failed; halting writes",
                    extra={"app": app.value, "path": str(exc.path) if exc.path else None},
                )
                raise
            self._rendered_generation[app] = generation
        logger.info(
            "[store] Synced live configuration",
            extra={"app": app.value, "provider_id": current_id, "files": [str(f.path) for f in files]},
        )
        return True

    def _sync_or_raise(self, app: AppType, snapshot: ConfigDocument, generation: int) -> None:
        try:
            self._write_live(app, snapshot, generation)
        except RollbackError:
            raise
        except ClihubError as exc:
            logger.warning(
                "[store] Live sync failed after save: %s",
                exc,
                extra={"app": app.value},
            )
            raise PartialSyncError({app.value: str(exc)}) from exc

    def _sync_targets(
        self, apps: Sequence[AppType], snapshot: ConfigDocument, generation: int
    ) -> Dict[str, str]:
        failures: Dict[str, str] = {}
        for app in apps:
            try:
                self._write_live(app, snapshot, generation)
            except ClihubError as exc:
                failures[app.value] = str(exc)
                logger.warning(
                    "[store] Live sync failed: %s",
                    exc,
                    extra={"app": app.value},
                )
        return failures

    @property
    def config_path(self) -> Path:
        return self.paths.config_path


__all__ = ["DEFAULT_PROVIDER_ID", "ProfileStore"]
