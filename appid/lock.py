"""
Exclusive lock for the category registry.

LockCoordinator gives the bounded-wait contract: poll a backend at a fixed
interval, and raise LockTimeout if the lock is still held when the wait
runs out. Backends decide what "held" means:

- MarkerFileLock: a marker file (filelock.SoftFileLock); presence means
  held. Cooperative: only processes going through a coordinator respect it.
- InProcessLock: a threading.Lock, for single-process use and tests.

Marker contents are JSON ``{"ownerPid": ..., "acquiredAt": ...}``.

Every change to the marker (create, reclaim, release) happens under a
short-lived kernel lock on ``<marker>.guard`` (filelock.FileLock), which
the OS drops if its holder dies. A stale marker therefore can only be
removed while nobody else is creating or removing one.

A marker left behind by a crashed holder is reclaimed when its owner pid
is no longer alive on this host, or when it is older than `stale_after`
seconds. Set stale_after to 0 to disable the age check.
"""

import json
import logging
import math
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from filelock import FileLock, SoftFileLock, Timeout

from .errors import LockTimeout, StorageIOFailure
from .types import LockToken, parse_utc_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_TIMEOUT = 5.0
DEFAULT_STALE_AFTER = 300.0
GUARD_TIMEOUT = 1.0


@runtime_checkable
class LockBackend(Protocol):
    """A non-blocking exclusive lock primitive."""

    def try_acquire(self) -> bool: ...

    def release(self) -> None: ...

    def is_locked(self) -> bool: ...


def _pid_alive(pid: int) -> bool:
    """Check whether a process with this pid exists on this host."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # exists, owned by someone else
    except OSError:
        return True
    return True


class MarkerFileLock:
    """
    Lock backed by the existence of a marker file.

    Usage::

        lock = MarkerFileLock(store / "locks" / "app-id.lock")
        if lock.try_acquire():
            try:
                ...
            finally:
                lock.release()
    """

    def __init__(self, path: Path, *, stale_after: float = DEFAULT_STALE_AFTER):
        self.path = Path(path)
        self.stale_after = stale_after
        self.guard_path = self.path.with_name(f"{self.path.name}.guard")
        self._marker = SoftFileLock(str(self.path), thread_local=False)
        self._guard = FileLock(str(self.guard_path))
        self._state = threading.Lock()
        self._token: Optional[LockToken] = None

    def read_token(self) -> Optional[LockToken]:
        """Current marker contents, or None if free or unreadable."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return LockToken.from_dict(data)
        except (OSError, ValueError):
            return None

    def is_stale(self) -> bool:
        """True if the current marker belongs to a dead or long-gone holder."""
        token = self.read_token()
        if token is None:
            # Unreadable marker: fall back to its mtime
            try:
                age = time.time() - self.path.stat().st_mtime
            except FileNotFoundError:
                return False
            return self.stale_after > 0 and age > self.stale_after
        if not _pid_alive(token.owner_pid):
            return True
        if self.stale_after > 0:
            try:
                acquired = parse_utc_timestamp(token.acquired_at)
            except ValueError:
                return True
            age = (datetime.now(timezone.utc) - acquired).total_seconds()
            return age > self.stale_after
        return False

    def _reclaim_if_stale(self) -> None:
        # Caller holds the guard
        if not self.path.exists() or not self.is_stale():
            return
        token = self.read_token()
        logger.warning(
            "Reclaiming stale lock %s (owner pid=%s, acquired=%s)",
            self.path,
            token.owner_pid if token else "?",
            token.acquired_at if token else "?",
        )
        self.path.unlink(missing_ok=True)

    def _write_token(self) -> LockToken:
        token = LockToken(owner_pid=os.getpid(), acquired_at=utc_now())
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(token.to_dict(), f)
        return token

    def try_acquire(self) -> bool:
        with self._state:
            if self._token is not None:
                return False
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self._guard.acquire(timeout=GUARD_TIMEOUT):
                    self._reclaim_if_stale()
                    try:
                        self._marker.acquire(blocking=False)
                    except Timeout:
                        return False
                    try:
                        self._token = self._write_token()
                    except OSError:
                        self._marker.release(force=True)
                        raise
            except Timeout:
                logger.debug("Lock guard busy: %s", self.guard_path)
                return False
            except OSError as e:
                raise StorageIOFailure(self.path, e) from e
            return True

    def release(self) -> None:
        """Remove our marker. A no-op if this instance does not hold the lock."""
        with self._state:
            token, self._token = self._token, None
            if token is None:
                return
            try:
                with self._guard.acquire(timeout=GUARD_TIMEOUT):
                    if self.read_token() == token:
                        self._marker.release(force=True)
                    else:
                        self._drop_lost_marker()
            except Timeout:
                logger.warning("Lock guard busy on release, removing marker unguarded: %s", self.path)
                self._marker.release(force=True)
            except OSError as e:
                raise StorageIOFailure(self.path, e) from e

    def _drop_lost_marker(self) -> None:
        # Our marker was reclaimed as stale and someone else holds the lock
        # now: close our handle but leave their marker in place.
        logger.warning("Lock %s was reclaimed from this holder", self.path)
        aside = self.path.with_name(f"{self.path.name}.{os.getpid()}.held")
        try:
            os.replace(self.path, aside)
        except FileNotFoundError:
            self._marker.release(force=True)
            return
        try:
            self._marker.release(force=True)
        finally:
            os.replace(aside, self.path)

    def is_locked(self) -> bool:
        return self.path.exists()



class InProcessLock:
    """threading.Lock behind the backend interface. Not visible to other processes."""

    def __init__(self):
        self._lock = threading.Lock()
        self.token: Optional[LockToken] = None

    def try_acquire(self) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self.token = LockToken(owner_pid=os.getpid(), acquired_at=utc_now())
        return True

    def release(self) -> None:
        if self._lock.locked():
            self.token = None
            self._lock.release()

    def is_locked(self) -> bool:
        return self._lock.locked()


def create_backend(kind: str, path: Path, *, stale_after: float = DEFAULT_STALE_AFTER) -> LockBackend:
    """Build a lock backend by name: 'marker' or 'memory'."""
    if kind == "marker":
        return MarkerFileLock(path, stale_after=stale_after)
    if kind == "memory":
        return InProcessLock()
    raise ValueError(f"Unknown lock backend: {kind!r}")


class LockCoordinator:
    """
    Bounded-wait exclusive lock.

    Usage::

        coordinator = LockCoordinator(MarkerFileLock(path))
        with coordinator:
            ...  # registry mutation

    acquire() raises LockTimeout after `timeout` seconds without leaving a
    marker behind; release() is idempotent.
    """

    def __init__(
        self,
        backend: LockBackend,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.backend = backend
        self.poll_interval = poll_interval
        self.timeout = timeout

    @property
    def max_attempts(self) -> int:
        return max(1, math.ceil(self.timeout / self.poll_interval))

    def acquire(self) -> None:
        attempts = 0
        start = time.monotonic()
        while True:
            if self.backend.try_acquire():
                if attempts:
                    logger.debug("Lock acquired after %d attempts", attempts)
                return
            attempts += 1
            if attempts >= self.max_attempts:
                break
            time.sleep(self.poll_interval)
        waited = time.monotonic() - start
        raise LockTimeout(getattr(self.backend, "path", "<in-process>"), waited)

    def release(self) -> None:
        self.backend.release()

    def is_locked(self) -> bool:
        return self.backend.is_locked()

    def __enter__(self) -> "LockCoordinator":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
