"""
Snapshot archive for the watched request document.

Every snapshot is written twice: once as an immutable history file named
after its timestamp (backup_<timestamp>.json), and once over the mutable
latest-backup.json pointer. Both writes are atomic. The archive never
takes the registry lock.

History is kept forever unless max_snapshots is set, in which case the
oldest history files are removed after each snapshot.
"""

import hashlib
import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .classifier import KeywordClassifier
from .config import StoreConfig
from .errors import StorageIOFailure
from .parsing import parse_document
from .storage import atomic_write_text, encode_exact, read_text_exact, readable_text
from .types import BackupSnapshot, utc_now

logger = logging.getLogger(__name__)

LATEST_FILENAME = "latest-backup.json"
SNAPSHOT_PREFIX = "backup_"
_COLLISION_RE = re.compile(r"^(.*Z)-(\d+)$")


def content_hash(content: str) -> str:
    """SHA-256 hex digest of the content's file bytes."""
    return hashlib.sha256(encode_exact(content)).hexdigest()


def _snapshot_stem(timestamp: str) -> str:
    return SNAPSHOT_PREFIX + timestamp.replace(":", "-").replace(".", "-")


def _history_sort_key(path: Path) -> tuple[str, int]:
    # Timestamp names sort chronologically; "-N" marks a same-instant collision
    m = _COLLISION_RE.match(path.stem)
    if m:
        return m.group(1), int(m.group(2))
    return path.stem, 0


class BackupArchive:
    """Timestamped snapshots of one document plus a latest pointer."""

    def __init__(
        self,
        backup_dir: Path,
        classifier: Optional[KeywordClassifier] = None,
        *,
        max_snapshots: int = 0,
    ):
        """
        Args:
            backup_dir: Directory holding snapshot files
            classifier: Keyword tables used by the free-text parse
            max_snapshots: History files to keep; 0 keeps all
        """
        self.backup_dir = Path(backup_dir)
        self.classifier = classifier or KeywordClassifier.from_config()
        self.max_snapshots = max_snapshots

    @classmethod
    def from_config(cls, config: StoreConfig) -> "BackupArchive":
        return cls(
            config.backup_path,
            KeywordClassifier.from_config(config.classifier),
            max_snapshots=config.backup.max_snapshots,
        )

    @property
    def latest_path(self) -> Path:
        return self.backup_dir / LATEST_FILENAME

    def snapshot(self, content: str, event_kind: str) -> BackupSnapshot:
        """
        Record a snapshot of `content`.

        Raises:
            StorageIOFailure: a snapshot file could not be written
        """
        snap = BackupSnapshot(
            timestamp=utc_now(),
            event_kind=event_kind,
            content_hash=content_hash(content),
            raw_content=content,
            parsed_form=parse_document(readable_text(content), self.classifier),
            byte_length=len(encode_exact(content)),
        )
        body = json.dumps(snap.to_dict(), ensure_ascii=False, indent=2)

        history_file = self._claim_history_path(snap.timestamp)
        try:
            atomic_write_text(history_file, body)
        except StorageIOFailure:
            history_file.unlink(missing_ok=True)
            raise
        atomic_write_text(self.latest_path, body)
        logger.info("Backup created: %s (%s, %d bytes)", history_file.name, event_kind, snap.byte_length)

        if self.max_snapshots > 0:
            self.compact()
        return snap

    def snapshot_file(self, path: Path, event_kind: str) -> Optional[BackupSnapshot]:
        """Snapshot the current content of `path`; None if it does not exist."""
        try:
            content = read_text_exact(path)
        except FileNotFoundError:
            logger.warning("Backup skipped, file not found: %s", path)
            return None
        return self.snapshot(content, event_kind)

    def _claim_history_path(self, timestamp: str) -> Path:
        """Reserve a history file name that no existing snapshot uses."""
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            stem = _snapshot_stem(timestamp)
            n = 0
            while True:
                name = f"{stem}.json" if n == 0 else f"{stem}-{n}.json"
                path = self.backup_dir / name
                try:
                    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
                except FileExistsError:
                    n += 1
                    continue
                os.close(fd)
                return path
        except OSError as e:
            raise StorageIOFailure(self.backup_dir, e) from e

    def history(self) -> list[Path]:
        """History snapshot files, oldest first."""
        if not self.backup_dir.exists():
            return []
        files = [
            p for p in self.backup_dir.iterdir()
            if p.name.startswith(SNAPSHOT_PREFIX) and p.suffix == ".json"
        ]
        return sorted(files, key=_history_sort_key)

    @staticmethod
    def read_snapshot(path: Path) -> BackupSnapshot:
        """Load one snapshot file. Raises OSError or ValueError."""
        return BackupSnapshot.from_dict(json.loads(read_text_exact(path)))

    def latest(self) -> Optional[BackupSnapshot]:
        """
        The most recent snapshot.

        Falls back to the newest readable history file when the latest
        pointer is missing or unreadable. None if there is nothing.
        """
        try:
            return self.read_snapshot(self.latest_path)
        except FileNotFoundError:
            pass
        except (OSError, ValueError, StorageIOFailure) as e:
            logger.warning("Latest backup unreadable (%s), checking history", e)

        for path in reversed(self.history()):
            try:
                return self.read_snapshot(path)
            except (OSError, ValueError, StorageIOFailure) as e:
                logger.warning("Skipping unreadable backup %s: %s", path.name, e)
        return None

    @staticmethod
    def verify(snap: BackupSnapshot) -> bool:
        """Check the snapshot's raw content against its recorded hash."""
        data = encode_exact(snap.raw_content)
        if len(snap.content_hash) == 32:
            # Legacy snapshots carry an MD5
            return hashlib.md5(data).hexdigest() == snap.content_hash
        return hashlib.sha256(data).hexdigest() == snap.content_hash

    def compact(self) -> int:
        """Delete the oldest history files beyond max_snapshots. Returns count removed."""
        if self.max_snapshots <= 0:
            return 0
        files = self.history()
        excess = files[:-self.max_snapshots] if len(files) > self.max_snapshots else []
        for path in excess:
            path.unlink(missing_ok=True)
        if excess:
            logger.info("Compacted %d old backups", len(excess))
        return len(excess)

    def stats(self) -> dict:
        latest = self.latest()
        return {
            "total_backups": len(self.history()),
            "backup_directory": str(self.backup_dir),
            "latest_timestamp": latest.timestamp if latest else None,
            "last_check": datetime.now(timezone.utc).isoformat(),
        }
