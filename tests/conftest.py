"""Pytest configuration and fixtures for all tests."""

from pathlib import Path

import pytest

from clihub.core.paths import APP_DIR_ENV
from clihub.core.store import ProfileStore


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point HOME at a temp dir so live files of every target land there."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv(APP_DIR_ENV, raising=False)
    return tmp_path


@pytest.fixture
def app_dir(home) -> Path:
    return home / ".cli-hub"


@pytest.fixture
def store(app_dir) -> ProfileStore:
    return ProfileStore.open(str(app_dir))
