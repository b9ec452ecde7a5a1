"""
Recovery of the watched document after deletion.

On deletion the document is restored from the latest snapshot. If that is
impossible (no snapshot, unreadable archive, write failure) a fixed
placeholder is written instead, so the document is never left missing or
empty. Either outcome is terminal; nothing is retried automatically.
"""

import enum
import logging
from pathlib import Path

from .backup import BackupArchive
from .config import StoreConfig
from .errors import AppIdError, NoBackupAvailable, StorageIOFailure
from .storage import atomic_write_text
from .types import BackupSnapshot

logger = logging.getLogger(__name__)


EMERGENCY_TEMPLATE = """\
# App request list (emergency recovery)

> This file was generated automatically because the request list was
> deleted and no backup could be restored.

## How to recover
1. Check auto-backup/latest-backup.json (or the newest auto-backup/backup_*.json)
2. Copy the "rawContent" value back into this file, or re-add requests by hand
3. Run `appid restore` once a backup is available

## Current requests
- Re-add your requests here after recovery
"""


class RecoveryOutcome(str, enum.Enum):
    RESTORED = "restored"
    PLACEHOLDER_WRITTEN = "placeholder_written"
    ALREADY_PRESENT = "already_present"


class RecoveryEngine:
    """Restores the watched document from the backup archive."""

    def __init__(self, watch_path: Path, archive: BackupArchive):
        self.watch_path = Path(watch_path)
        self.archive = archive

    @classmethod
    def from_config(cls, config: StoreConfig, archive: BackupArchive = None) -> "RecoveryEngine":
        return cls(config.watch_path, archive or BackupArchive.from_config(config))

    def restore(self) -> BackupSnapshot:
        """
        Overwrite the document with the latest snapshot's raw content.

        Raises:
            NoBackupAvailable: there is no snapshot to restore from
            StorageIOFailure: the document could not be written
        """
        snap = self.archive.latest()
        if snap is None:
            raise NoBackupAvailable(f"No backup found in {self.archive.backup_dir}")
        if not self.archive.verify(snap):
            logger.warning("Backup from %s fails its hash check; restoring it anyway", snap.timestamp)
        atomic_write_text(self.watch_path, snap.raw_content)
        logger.info("Restored %s from backup of %s", self.watch_path, snap.timestamp)
        return snap

    def emergency_placeholder(self) -> None:
        """
        Write the fixed recovery template. Uses no backup or registry state.

        Falls back to a plain in-place write when the atomic write fails;
        raises StorageIOFailure only if the document cannot be written at all.
        """
        try:
            atomic_write_text(self.watch_path, EMERGENCY_TEMPLATE)
        except StorageIOFailure as e:
            logger.warning("Atomic placeholder write failed (%s); writing in place", e)
            try:
                with open(self.watch_path, "w", encoding="utf-8", newline="") as f:
                    f.write(EMERGENCY_TEMPLATE)
            except OSError as e2:
                raise StorageIOFailure(self.watch_path, e2) from e2
        logger.warning("Wrote emergency placeholder to %s", self.watch_path)

    def handle_deletion(self) -> RecoveryOutcome:
        """
        React to the document being deleted.

        Returns ALREADY_PRESENT without touching anything if the document
        has been recreated by the time this runs.
        """
        if self.watch_path.exists():
            logger.info("%s reappeared before recovery; leaving it alone", self.watch_path)
            return RecoveryOutcome.ALREADY_PRESENT

        logger.warning("%s deleted; starting automatic recovery", self.watch_path)
        try:
            self.restore()
            return RecoveryOutcome.RESTORED
        except AppIdError as e:
            logger.error("Automatic recovery failed: %s", e)

        self.emergency_placeholder()
        return RecoveryOutcome.PLACEHOLDER_WRITTEN
