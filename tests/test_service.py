"""Tests for the asyncio facade."""

import asyncio
import time

import pytest

from clihub.core.apps import AppType
from clihub.core.errors import ProviderNotFoundError, StorageIOError
from clihub.core.service import ProfileService


def test_service_runs_store_operations(store):
    async def _scenario():
        async with ProfileService(store) as service:
            await service.add(AppType.CLAUDE, {"id": "a", "name": "A", "settingsConfig": {}})
            await service.add(AppType.CLAUDE, {"id": "b", "name": "B", "settingsConfig": {}})
            await service.switch(AppType.CLAUDE, "b")
            providers = await service.get(AppType.CLAUDE)
            current = await service.get_current(AppType.CLAUDE)
            bundle = await service.export_bundle()
            return providers, current, bundle

    providers, current, bundle = asyncio.run(_scenario())
    assert [p.id for p in providers] == ["a", "b"]
    assert current == "b"
    assert bundle.startswith(b"{")


def test_service_propagates_engine_errors(store):
    async def _scenario():
        async with ProfileService(store) as service:
            await service.switch(AppType.CLAUDE, "missing")

    with pytest.raises(ProviderNotFoundError):
        asyncio.run(_scenario())


def test_bundle_operations_are_bounded(store, monkeypatch):
    service = ProfileService(store, bundle_timeout=0.05)

    def _slow_export():
        time.sleep(0.3)
        return b"{}"

    monkeypatch.setattr(service.coordinator, "export_bundle", _slow_export)

    async def _scenario():
        async with service:
            await service.export_bundle()

    with pytest.raises(StorageIOError) as exc_info:
        asyncio.run(_scenario())
    assert exc_info.value.error_code == "timeout"


def test_concurrent_reads_through_service(store):
    store.add(AppType.CLAUDE, {"id": "a", "name": "A", "settingsConfig": {}})

    async def _scenario():
        async with ProfileService(store, max_workers=4) as service:
            return await asyncio.gather(*(service.get_current(AppType.CLAUDE) for _ in range(10)))

    assert asyncio.run(_scenario()) == ["a"] * 10
