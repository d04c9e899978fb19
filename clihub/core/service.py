"""Asyncio facade over the store.

Every store call blocks on file I/O, so each one is dispatched to a worker
thread and handed back as an awaitable. Bundle import/export and restore are
bounded by a timeout; a write already in flight is not cancelled when the
timeout fires.
"""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar, Union

from clihub.core.apps import AppType
from clihub.core.backup import BackupSnapshot
from clihub.core.bundle import ImportExportCoordinator, ImportResult
from clihub.core.errors import StorageIOError
from clihub.core.models import Provider
from clihub.core.store import ProfileStore, ProviderInput, SortUpdateInput
from clihub.utils.log import get_logger

logger = get_logger()

T = TypeVar("T")

DEFAULT_BUNDLE_TIMEOUT_SEC = 30.0
DEFAULT_MAX_WORKERS = 4


class ProfileService:
    """Non-blocking entry point for hosts running an event loop."""

    def __init__(
        self,
        store: ProfileStore,
        *,
        coordinator: Optional[ImportExportCoordinator] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        bundle_timeout: float = DEFAULT_BUNDLE_TIMEOUT_SEC,
    ) -> None:
        self.store = store
        self.coordinator = coordinator or ImportExportCoordinator(store)
        self.bundle_timeout = bundle_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="clihub-io")

    async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs))

    async def _run_bounded(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        timeout = self.bundle_timeout
        try:
            if timeout <= 0:
                return await self._run(fn, *args)
            return await asyncio.wait_for(self._run(fn, *args), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "[service] Operation timed out",
                extra={"operation": operation, "timeout": timeout},
            )
            raise StorageIOError(
                f"{operation} did not finish within {timeout:g}s",
                operation=operation,
                error_code="timeout",
            ) from exc

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    async def __aenter__(self) -> "ProfileService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    # Store operations

    async def get(self, app: AppType) -> List[Provider]:
        return await self._run(self.store.get, app)

    async def get_current(self, app: AppType) -> Optional[str]:
        return await self._run(self.store.get_current, app)

    async def get_provider(self, app: AppType, provider_id: str) -> Provider:
        return await self._run(self.store.get_provider, app, provider_id)

    async def get_for_edit(self, app: AppType, provider_id: str) -> Provider:
        return await self._run(self.store.get_for_edit, app, provider_id)

    async def add(self, app: AppType, provider: ProviderInput) -> str:
        return await self._run(self.store.add, app, provider)

    async def update(self, app: AppType, provider: ProviderInput) -> None:
        await self._run(self.store.update, app, provider)

    async def delete(self, app: AppType, provider_id: str) -> None:
        await self._run(self.store.delete, app, provider_id)

    async def duplicate(self, app: AppType, provider_id: str, name: Optional[str] = None) -> str:
        return await self._run(self.store.duplicate, app, provider_id, name)

    async def switch(self, app: AppType, provider_id: str) -> None:
        await self._run(self.store.switch, app, provider_id)

    async def reorder(self, app: AppType, updates: Sequence[SortUpdateInput]) -> None:
        await self._run(self.store.reorder, app, updates)

    async def sync_current_to_live(self, app: Optional[AppType] = None) -> Dict[str, str]:
        return await self._run(self.store.sync_current_to_live, app)

    async def import_from_live(self, app: AppType) -> Optional[str]:
        return await self._run(self.store.import_from_live, app)

    async def set_common_snippet(self, app: AppType, snippet: Optional[str]) -> None:
        await self._run(self.store.set_common_snippet, app, snippet)

    async def toggle_common_snippet(self, app: AppType, provider_id: str, enabled: bool) -> None:
        await self._run(self.store.toggle_common_snippet, app, provider_id, enabled)

    async def change_app_config_dir(self, app: AppType, directory: Optional[str]) -> None:
        await self._run(self.store.change_app_config_dir, app, directory)

    async def list_backups(self) -> List[BackupSnapshot]:
        return await self._run(self.store.backups.list)

    # Bundle operations

    async def export_bundle(self) -> bytes:
        return await self._run_bounded("export", self.coordinator.export_bundle)

    async def export_to_file(self, path: Union[str, Path]) -> Path:
        return await self._run_bounded("export", self.coordinator.export_to_file, path)

    async def import_bundle(self, data: bytes) -> ImportResult:
        return await self._run_bounded("import", self.coordinator.import_bundle, data)

    async def import_from_file(self, path: Union[str, Path]) -> ImportResult:
        return await self._run_bounded("import", self.coordinator.import_from_file, path)

    async def restore_backup(self, backup_id: str) -> ImportResult:
        return await self._run_bounded("restore", self.coordinator.restore_backup, backup_id)
