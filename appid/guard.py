"""
Keeps the request document backed up and restores it when deleted.

DocumentGuard is the watcher's event handler: created/modified events
snapshot the document, deleted events run recovery. It is idempotent:
content identical to the latest snapshot is not snapshotted again, which
absorbs duplicate events and the CREATED event caused by a restore.
"""

import logging
from pathlib import Path
from typing import Optional

from .backup import BackupArchive, content_hash
from .config import StoreConfig
from .errors import AppIdError
from .recovery import RecoveryEngine, RecoveryOutcome
from .storage import read_text_exact
from .types import BackupSnapshot
from .watcher import DocumentEvent, DocumentWatcher, EventKind

logger = logging.getLogger(__name__)

_SNAPSHOT_KIND = {
    EventKind.CREATED: "add",
    EventKind.MODIFIED: "change",
}


class DocumentGuard:
    """Routes document events to the backup archive and recovery engine."""

    def __init__(self, watch_path: Path, archive: BackupArchive, recovery: RecoveryEngine):
        self.watch_path = Path(watch_path)
        self.archive = archive
        self.recovery = recovery
        self.last_outcome: Optional[RecoveryOutcome] = None

    @classmethod
    def from_config(cls, config: StoreConfig) -> "DocumentGuard":
        archive = BackupArchive.from_config(config)
        return cls(config.watch_path, archive, RecoveryEngine(config.watch_path, archive))

    def on_event(self, event: DocumentEvent) -> None:
        """Handle one watcher event. Errors are logged, never raised."""
        try:
            if event.kind == EventKind.DELETED:
                self.last_outcome = self.recovery.handle_deletion()
            else:
                self.backup(_SNAPSHOT_KIND[event.kind])
        except (AppIdError, OSError, ValueError) as e:
            logger.error("Failed to handle %s event for %s: %s",
                         event.kind.value, self.watch_path, e)

    def backup(self, event_kind: str) -> Optional[BackupSnapshot]:
        """Snapshot the document unless it is missing or unchanged since the last snapshot."""
        try:
            content = read_text_exact(self.watch_path)
        except FileNotFoundError:
            logger.warning("Target file not found: %s", self.watch_path)
            return None

        latest = self.archive.latest()
        if latest is not None and latest.content_hash == content_hash(content):
            logger.debug("Content unchanged since %s; no new backup", latest.timestamp)
            return None
        return self.archive.snapshot(content, event_kind)

    def watcher(self, *, emit_initial: bool = True, **kwargs) -> DocumentWatcher:
        """A DocumentWatcher for the guarded file with this guard attached."""
        watcher = DocumentWatcher(self.watch_path, emit_initial=emit_initial, **kwargs)
        watcher.add_handler(self.on_event)
        return watcher
