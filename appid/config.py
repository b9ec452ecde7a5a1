"""
Configuration management for appid stores.

A store is a directory holding the watched request document, the category
registry, its lock marker, the audit log, and the backup archive. The
configuration is stored as a TOML file in the store directory; every path
in it is relative to that directory.
"""

import os
import re
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "appid.toml"
CONFIG_VERSION = 1

STORE_PATH_ENV = "APPID_STORE_PATH"


DEFAULT_APP_TYPE_KEYWORDS: dict[str, list[str]] = {
    "calculator": ["電卓", "計算", "calculator"],
    "timer": ["時間", "タイマー", "timer", "ポモドーロ"],
    "money": ["お金", "家計", "収支", "money", "財務"],
}

DEFAULT_PRIORITY_KEYWORDS: dict[str, list[str]] = {
    "urgent": ["緊急", "urgent", "急いで", "ASAP"],
}


@dataclass
class LockConfig:
    """Registry lock settings."""
    backend: str = "marker"         # marker | memory
    poll_interval: float = 0.1      # seconds between attempts
    timeout: float = 5.0            # give up after this many seconds
    stale_after: float = 300.0      # reclaim markers older than this; 0 disables


@dataclass
class AllocationConfig:
    """Category id allocation settings."""
    first_id: str = "001"
    increment: int = 1
    max_keywords: int = 5
    min_keyword_length: int = 2
    key_length: int = 20


@dataclass
class BackupConfig:
    """Snapshot archive and watcher settings."""
    max_snapshots: int = 0          # 0 keeps every snapshot
    emit_initial: bool = True       # snapshot an existing document at watch start


@dataclass
class ClassifierConfig:
    """Keyword tables for the coarse app-type / priority guess."""
    app_types: dict[str, list[str]] = field(default_factory=lambda: {
        k: list(v) for k, v in DEFAULT_APP_TYPE_KEYWORDS.items()
    })
    priorities: dict[str, list[str]] = field(default_factory=lambda: {
        k: list(v) for k, v in DEFAULT_PRIORITY_KEYWORDS.items()
    })
    default_app_type: str = "unknown"
    default_priority: str = "medium"


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    watch_file: str = "app-requests.md"
    registry_file: str = "app-type-registry.json"
    lock_file: str = "locks/app-id.lock"
    audit_log: str = "logs/id-assignment.log"
    backup_dir: str = "auto-backup"

    lock: LockConfig = field(default_factory=LockConfig)
    allocation: AllocationConfig = field(default_factory=AllocationConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def watch_path(self) -> Path:
        return self.path / self.watch_file

    @property
    def registry_path(self) -> Path:
        return self.path / self.registry_file

    @property
    def lock_path(self) -> Path:
        return self.path / self.lock_file

    @property
    def audit_log_path(self) -> Path:
        return self.path / self.audit_log

    @property
    def backup_path(self) -> Path:
        return self.path / self.backup_dir

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


_NUMERIC_ID_RE = re.compile(r"^[0-9]+$")


def check_allocation(allocation: AllocationConfig) -> None:
    """
    Reject allocation settings that would write an unloadable registry.

    Raises:
        ValueError: first_id is not numeric, or a count is below 1
    """
    if not isinstance(allocation.first_id, str) or not _NUMERIC_ID_RE.match(allocation.first_id):
        raise ValueError(f"[allocation] first_id must be a string of digits, got {allocation.first_id!r}")
    for name in ("increment", "max_keywords", "min_keyword_length", "key_length"):
        value = getattr(allocation, name)
        if value < 1:
            raise ValueError(f"[allocation] {name} must be at least 1, got {value}")


def get_store_path(override: Optional[Path] = None) -> Path:
    """
    Resolve the store directory.

    Priority: explicit override, then APPID_STORE_PATH, then the current
    working directory.
    """
    if override is not None:
        return Path(override).expanduser().resolve()
    env = os.environ.get(STORE_PATH_ENV)
    if env:
        return Path(env).expanduser().resolve()
    return Path.cwd()


def _section(data: dict, name: str) -> dict:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section [{name}] must be a table")
    return value


def _keyword_table(value: Any, name: str) -> dict[str, list[str]]:
    if not isinstance(value, dict) or not all(
        isinstance(v, list) and all(isinstance(k, str) for k in v)
        for v in value.values()
    ):
        raise ValueError(f"Config [classifier.{name}] must map labels to lists of strings")
    return {label: list(words) for label, words in value.items()}


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = _section(data, "store")
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    paths = _section(data, "paths")
    lock = _section(data, "lock")
    allocation = _section(data, "allocation")
    backup = _section(data, "backup")
    classifier = _section(data, "classifier")

    defaults = StoreConfig(path=store_path)
    default_classifier = ClassifierConfig()

    config = StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        watch_file=paths.get("watch_file", defaults.watch_file),
        registry_file=paths.get("registry_file", defaults.registry_file),
        lock_file=paths.get("lock_file", defaults.lock_file),
        audit_log=paths.get("audit_log", defaults.audit_log),
        backup_dir=paths.get("backup_dir", defaults.backup_dir),
        lock=LockConfig(
            backend=lock.get("backend", "marker"),
            poll_interval=float(lock.get("poll_interval", 0.1)),
            timeout=float(lock.get("timeout", 5.0)),
            stale_after=float(lock.get("stale_after", 300.0)),
        ),
        allocation=AllocationConfig(
            first_id=str(allocation.get("first_id", "001")),
            increment=int(allocation.get("increment", 1)),
            max_keywords=int(allocation.get("max_keywords", 5)),
            min_keyword_length=int(allocation.get("min_keyword_length", 2)),
            key_length=int(allocation.get("key_length", 20)),
        ),
        backup=BackupConfig(
            max_snapshots=int(backup.get("max_snapshots", 0)),
            emit_initial=bool(backup.get("emit_initial", True)),
        ),
        classifier=ClassifierConfig(
            app_types=_keyword_table(
                classifier.get("app_types", default_classifier.app_types), "app_types"),
            priorities=_keyword_table(
                classifier.get("priorities", default_classifier.priorities), "priorities"),
            default_app_type=classifier.get("default_app_type", "unknown"),
            default_priority=classifier.get("default_priority", "medium"),
        ),
    )
    check_allocation(config.allocation)
    return config


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "paths": {
            "watch_file": config.watch_file,
            "registry_file": config.registry_file,
            "lock_file": config.lock_file,
            "audit_log": config.audit_log,
            "backup_dir": config.backup_dir,
        },
        "lock": {
            "backend": config.lock.backend,
            "poll_interval": config.lock.poll_interval,
            "timeout": config.lock.timeout,
            "stale_after": config.lock.stale_after,
        },
        "allocation": {
            "first_id": config.allocation.first_id,
            "increment": config.allocation.increment,
            "max_keywords": config.allocation.max_keywords,
            "min_keyword_length": config.allocation.min_keyword_length,
            "key_length": config.allocation.key_length,
        },
        "backup": {
            "max_snapshots": config.backup.max_snapshots,
            "emit_initial": config.backup.emit_initial,
        },
        "classifier": {
            "default_app_type": config.classifier.default_app_type,
            "default_priority": config.classifier.default_priority,
            "app_types": config.classifier.app_types,
            "priorities": config.classifier.priorities,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
