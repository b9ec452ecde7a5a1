"""
Logging configuration for appid.

Three outputs:
- the audit log: one timestamped line per assignment decision
- the ops log: rotating operational log inside the store directory
- stderr, only in debug mode
"""

import logging
import sys
import warnings
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

AUDIT_LOGGER = "appid.audit"


def configure_quiet_mode(quiet: bool = True):
    """
    Keep library output down unless debugging.

    Args:
        quiet: If True, suppress warnings and watchdog/filelock chatter.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        logging.getLogger("watchdog").setLevel(logging.ERROR)
        logging.getLogger("filelock").setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in ("appid", "watchdog"):
        logging.getLogger(name).setLevel(logging.DEBUG)


class _UTCFormatter(logging.Formatter):
    """Formatter producing ISO-8601 UTC timestamps."""

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def configure_audit_log(log_path: Path) -> logging.Handler:
    """Attach an append-only audit file handler to the audit logger.

    Lines look like ``[2026-01-01T00:00:00.000Z] new category: ...``.
    Calling again with the same path returns the existing handler.
    Returns the handler so it can be removed on close.
    """
    log_path = Path(log_path)
    audit_logger = logging.getLogger(AUDIT_LOGGER)
    for h in audit_logger.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path.resolve():
            return h

    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(log_path), mode="a", encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(_UTCFormatter("[%(asctime)s] %(message)s"))
    audit_logger.addHandler(handler)
    if audit_logger.level == logging.NOTSET or audit_logger.level > logging.INFO:
        audit_logger.setLevel(logging.INFO)
    return handler


def configure_ops_log(store_path):
    """Configure a persistent operations log for a store.

    Writes to {store_path}/appid-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / "appid-ops.log"
    appid_logger = logging.getLogger("appid")
    for h in appid_logger.handlers:
        if isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_path.resolve():
            return h

    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    appid_logger.addHandler(handler)
    if appid_logger.level == logging.NOTSET or appid_logger.level > logging.INFO:
        appid_logger.setLevel(logging.INFO)

    return handler


def remove_handler(name: str, handler: logging.Handler) -> None:
    """Detach and close a handler returned by one of the configure_* functions."""
    logging.getLogger(name).removeHandler(handler)
    handler.close()
