"""
Data types for category registration and document backup.
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .storage import encode_exact


def utc_now() -> str:
    """Current UTC timestamp in ISO format with millisecond precision.

    All timestamps written by appid are UTC with a 'Z' suffix, matching
    the format existing registries and snapshots already use.
    """
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_today() -> str:
    """Current UTC date as YYYY-MM-DD."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Accepts the canonical 'Z' suffix, explicit offsets, or naive values
    (treated as UTC).
    """
    ts = ts.replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class Request:
    """An incoming free-form work request."""
    title: str
    description: str = ""
    requirements: list[str] = field(default_factory=list)

    @property
    def matching_description(self) -> str:
        """Description used for matching; falls back to the requirements."""
        if self.description:
            return self.description
        return " ".join(self.requirements)


@dataclass
class CategoryEntry:
    """
    A registered category.

    Keywords are lowercase and deduplicated; the id never changes once
    assigned.
    """
    id: str
    display_name: str
    keywords: list[str]
    created_date: str


@dataclass
class Registry:
    """In-memory registry: category key -> entry, plus the allocation counter.

    Iteration order of `categories` is registration order.
    """
    categories: dict[str, CategoryEntry]
    next_id: str
    last_updated: str = ""

    def find_by_id(self, id: str) -> Optional[CategoryEntry]:
        for entry in self.categories.values():
            if entry.id == id:
                return entry
        return None


@dataclass
class LockToken:
    """Contents of a held lock marker."""
    owner_pid: int
    acquired_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"ownerPid": self.owner_pid, "acquiredAt": self.acquired_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockToken":
        # Legacy markers hold {pid, timestamp}
        pid = data.get("ownerPid", data.get("pid"))
        acquired = data.get("acquiredAt", data.get("timestamp"))
        if not isinstance(pid, int) or not isinstance(acquired, str):
            raise ValueError(f"Invalid lock token: {data!r}")
        return cls(owner_pid=pid, acquired_at=acquired)


@dataclass
class BackupSnapshot:
    """
    An immutable point-in-time copy of the watched document.

    `parsed_form` is the best-effort structural parse; see appid.parsing.
    `raw_content` may hold surrogate-escaped bytes (see appid.storage) when
    the document is not valid UTF-8; its JSON form then carries the exact
    bytes as base64 in "rawBytes" next to a readable "rawContent".
    """
    timestamp: str
    event_kind: str
    content_hash: str
    raw_content: str
    parsed_form: dict[str, Any]
    byte_length: int

    def to_dict(self) -> dict[str, Any]:
        raw = encode_exact(self.raw_content)
        readable = raw.decode("utf-8", errors="replace")
        data = {
            "timestamp": self.timestamp,
            "eventKind": self.event_kind,
            "contentHash": self.content_hash,
            "rawContent": readable,
            "parsedForm": self.parsed_form,
            "byteLength": self.byte_length,
        }
        if readable != self.raw_content:
            data["rawBytes"] = base64.b64encode(raw).decode("ascii")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupSnapshot":
        """Build a snapshot from its JSON form.

        Also reads the legacy field names (backup_timestamp,
        original_content, ...) so older backups stay restorable.
        """
        raw = data.get("rawContent", data.get("original_content"))
        if isinstance(data.get("rawBytes"), str):
            raw = base64.b64decode(data["rawBytes"], validate=True).decode(
                "utf-8", errors="surrogateescape")
        if not isinstance(raw, str):
            raise ValueError("Snapshot has no raw content")
        return cls(
            timestamp=data.get("timestamp", data.get("backup_timestamp", "")),
            event_kind=data.get("eventKind", data.get("event_type", "")),
            content_hash=data.get("contentHash", data.get("original_md5", "")),
            raw_content=raw,
            parsed_form=data.get("parsedForm", data.get("parsed_requests", {})) or {},
            byte_length=data.get("byteLength", data.get("file_size", len(encode_exact(raw)))),
        )
