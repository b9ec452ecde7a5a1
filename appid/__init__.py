"""
appid: stable category ids for free-form work requests.

Quick Start:
    from appid import IdAllocator, load_or_create_config

    config = load_or_create_config(Path("."))
    allocator = IdAllocator.from_config(config)
    allocator.assign({"title": "Pomodoro timer", "description": "25 minute focus"})

Two parts share one store directory:
    - IdAllocator maps request text to a persistent category id under an
      exclusive lock, so concurrent processes agree on ids.
    - DocumentGuard + DocumentWatcher back up the request document on every
      change and restore it from the latest backup when it is deleted.

CLI Usage:
    appid assign "title" -d "description"
    appid watch

Environment Variables:
    APPID_STORE_PATH  - Store directory (default: current directory)
    APPID_VERBOSE     - Set to 1 for debug logging to stderr
"""

from .allocator import IdAllocator
from .backup import BackupArchive
from .config import StoreConfig, load_config, load_or_create_config
from .errors import (
    AppIdError,
    CorruptRegistry,
    LockTimeout,
    NoBackupAvailable,
    StorageIOFailure,
)
from .guard import DocumentGuard
from .lock import InProcessLock, LockCoordinator, MarkerFileLock
from .matcher import CategoryMatcher, KeywordMatcher
from .recovery import RecoveryEngine, RecoveryOutcome
from .registry_store import RegistryStore
from .types import BackupSnapshot, CategoryEntry, Registry, Request
from .watcher import DocumentEvent, DocumentWatcher, EventKind

__all__ = [
    "AppIdError",
    "BackupArchive",
    "BackupSnapshot",
    "CategoryEntry",
    "CategoryMatcher",
    "CorruptRegistry",
    "DocumentEvent",
    "DocumentGuard",
    "DocumentWatcher",
    "EventKind",
    "IdAllocator",
    "InProcessLock",
    "KeywordMatcher",
    "LockCoordinator",
    "LockTimeout",
    "MarkerFileLock",
    "NoBackupAvailable",
    "RecoveryEngine",
    "RecoveryOutcome",
    "Registry",
    "RegistryStore",
    "Request",
    "StorageIOFailure",
    "StoreConfig",
    "load_config",
    "load_or_create_config",
]
