"""
Shared pytest fixtures for appid tests.

Every fixture builds components on tmp_path with explicit paths, so tests
never touch a real store directory.
"""

import logging
from pathlib import Path

import pytest

from appid.allocator import IdAllocator
from appid.backup import BackupArchive
from appid.config import StoreConfig
from appid.guard import DocumentGuard
from appid.lock import LockCoordinator, MarkerFileLock
from appid.recovery import RecoveryEngine
from appid.registry_store import RegistryStore


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    """Drop file handlers added during a test so they don't leak into the next."""
    loggers = [logging.getLogger("appid"), logging.getLogger("appid.audit")]
    before = {id(lg): list(lg.handlers) for lg in loggers}
    yield
    for lg in loggers:
        for h in list(lg.handlers):
            if h not in before[id(lg)]:
                lg.removeHandler(h)
                h.close()


@pytest.fixture
def store_config(tmp_path) -> StoreConfig:
    """A store config rooted at tmp_path with a short lock timeout."""
    config = StoreConfig(path=tmp_path)
    config.lock.timeout = 1.0
    config.lock.poll_interval = 0.02
    return config


@pytest.fixture
def registry_path(tmp_path) -> Path:
    return tmp_path / "app-type-registry.json"


@pytest.fixture
def registry_store(registry_path) -> RegistryStore:
    return RegistryStore(registry_path)


@pytest.fixture
def lock_path(tmp_path) -> Path:
    return tmp_path / "locks" / "app-id.lock"


@pytest.fixture
def coordinator(lock_path) -> LockCoordinator:
    return LockCoordinator(MarkerFileLock(lock_path), poll_interval=0.02, timeout=0.5)


@pytest.fixture
def allocator(store_config) -> IdAllocator:
    return IdAllocator.from_config(store_config)


@pytest.fixture
def archive(tmp_path) -> BackupArchive:
    return BackupArchive(tmp_path / "auto-backup")


@pytest.fixture
def watch_path(tmp_path) -> Path:
    return tmp_path / "app-requests.md"


@pytest.fixture
def recovery(watch_path, archive) -> RecoveryEngine:
    return RecoveryEngine(watch_path, archive)


@pytest.fixture
def guard(watch_path, archive, recovery) -> DocumentGuard:
    return DocumentGuard(watch_path, archive, recovery)
