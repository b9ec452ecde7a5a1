"""
Error types and error logging for appid.

Every failure the core can report derives from AppIdError, so callers
can tell "assignment failed" apart from a successful registration.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class AppIdError(Exception):
    """Base class for appid failures."""


class LockTimeout(AppIdError):
    """The registry lock was not acquired within the bounded wait.

    The caller must not mutate shared state and may retry later.
    """

    def __init__(self, lock_path, waited: float):
        self.lock_path = lock_path
        self.waited = waited
        super().__init__(f"Lock not acquired within {waited:.1f}s: {lock_path}")


class CorruptRegistry(AppIdError):
    """The persisted registry could not be parsed as the expected structure."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt registry {path}: {reason}")


class NoBackupAvailable(AppIdError):
    """A restore was attempted with no snapshot to restore from."""


class StorageIOFailure(AppIdError):
    """A read or write failed at the OS level."""

    def __init__(self, path, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"Storage I/O failed for {path}: {cause}")


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """Resolve error log path, respecting APPID_STORE_PATH."""
    if store_path is None:
        env = os.environ.get("APPID_STORE_PATH")
        store_path = Path(env) if env else Path.cwd()
    return Path(store_path) / "appid-errors.log"


def log_exception(exc: Exception, context: str = "", store_path: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_path: Store directory; defaults to APPID_STORE_PATH or cwd

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
