"""
Persistence for the category registry.

The registry is a single JSON file::

    {
      "version": 1,
      "categories": {
        "<key>": {"id": "001", "displayName": "...",
                  "keywords": ["..."], "createdDate": "YYYY-MM-DD"}
      },
      "nextId": "002",
      "lastUpdated": "2026-01-01T00:00:00.000Z"
    }

Reads are validated against a versioned schema and fail closed with
CorruptRegistry; there is no partial or repaired result. The unversioned
legacy layout ({registry, next_available_id, last_updated}) is read
transparently and written back in the current layout on the next save.

Writes replace the file atomically, so readers never see a torn registry.
"""

import json
import logging
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import CorruptRegistry, StorageIOFailure
from .storage import atomic_write_text
from .types import CategoryEntry, Registry, utc_now

logger = logging.getLogger(__name__)

REGISTRY_VERSION = 1
DEFAULT_FIRST_ID = "001"

_NUMERIC_ID = r"^[0-9]+$"


class _CategoryRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True, populate_by_name=True)

    id: str = Field(pattern=_NUMERIC_ID)
    display_name: str = Field(alias="displayName")
    keywords: list[str]
    created_date: str = Field(alias="createdDate")


class _RegistryDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True, populate_by_name=True)

    version: int = REGISTRY_VERSION
    categories: dict[str, _CategoryRecord]
    next_id: str = Field(alias="nextId", pattern=_NUMERIC_ID)
    last_updated: str = Field(default="", alias="lastUpdated")


class _LegacyCategoryRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True)

    id: str = Field(pattern=_NUMERIC_ID)
    name: str
    keywords: list[str]
    created_date: str = ""


class _LegacyRegistryDocument(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True)

    registry: dict[str, _LegacyCategoryRecord]
    next_available_id: str = Field(pattern=_NUMERIC_ID)
    last_updated: str = ""


def _from_document(doc: _RegistryDocument) -> Registry:
    return Registry(
        categories={
            key: CategoryEntry(
                id=rec.id,
                display_name=rec.display_name,
                keywords=list(rec.keywords),
                created_date=rec.created_date,
            )
            for key, rec in doc.categories.items()
        },
        next_id=doc.next_id,
        last_updated=doc.last_updated,
    )


def _from_legacy(doc: _LegacyRegistryDocument) -> Registry:
    return Registry(
        categories={
            key: CategoryEntry(
                id=rec.id,
                display_name=rec.name,
                keywords=[k.lower() for k in rec.keywords],
                created_date=rec.created_date,
            )
            for key, rec in doc.registry.items()
        },
        next_id=doc.next_available_id,
        last_updated=doc.last_updated,
    )


def registry_to_dict(registry: Registry) -> dict:
    """The on-disk JSON form of a registry."""
    return {
        "version": REGISTRY_VERSION,
        "categories": {
            key: {
                "id": entry.id,
                "displayName": entry.display_name,
                "keywords": list(entry.keywords),
                "createdDate": entry.created_date,
            }
            for key, entry in registry.categories.items()
        },
        "nextId": registry.next_id,
        "lastUpdated": registry.last_updated,
    }


def check_invariants(registry: Registry) -> None:
    """Raise ValueError if ids repeat or next_id does not exceed them all."""
    seen: set[int] = set()
    next_value = int(registry.next_id)
    for key, entry in registry.categories.items():
        value = int(entry.id)
        if value in seen:
            raise ValueError(f"duplicate id {entry.id} (category {key!r})")
        seen.add(value)
        if value >= next_value:
            raise ValueError(
                f"nextId {registry.next_id} does not exceed assigned id {entry.id}"
            )


class RegistryStore:
    """
    Loads and saves the registry file.

    Only IdAllocator should call save(), and only while holding the
    registry lock.
    """

    def __init__(self, path: Path, *, first_id: str = DEFAULT_FIRST_ID):
        """
        Args:
            path: Registry JSON file
            first_id: next_id of a freshly initialized registry
        """
        self.path = Path(path)
        self.first_id = first_id

    def exists(self) -> bool:
        return self.path.exists()

    def empty(self) -> Registry:
        return Registry(categories={}, next_id=self.first_id, last_updated=utc_now())

    def load(self) -> Registry:
        """
        Read the registry.

        Returns an empty registry if the file does not exist.

        Raises:
            CorruptRegistry: content is not a valid registry
            StorageIOFailure: the file exists but cannot be read
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self.empty()
        except OSError as e:
            raise StorageIOFailure(self.path, e) from e
        except UnicodeDecodeError as e:
            raise CorruptRegistry(self.path, f"not UTF-8: {e}") from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptRegistry(self.path, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CorruptRegistry(self.path, "top level is not an object")

        try:
            if "categories" in data:
                version = data.get("version", REGISTRY_VERSION)
                if not isinstance(version, int) or version > REGISTRY_VERSION or version < 1:
                    raise CorruptRegistry(self.path, f"unsupported version {version!r}")
                registry = _from_document(_RegistryDocument.model_validate_json(raw))
            elif "registry" in data:
                logger.info("Reading legacy registry layout from %s", self.path)
                registry = _from_legacy(_LegacyRegistryDocument.model_validate_json(raw))
            else:
                raise CorruptRegistry(self.path, "no categories")
            check_invariants(registry)
        except (ValidationError, ValueError) as e:
            raise CorruptRegistry(self.path, str(e)) from e
        return registry

    def save(self, registry: Registry) -> None:
        """
        Stamp last_updated and write the whole registry atomically.

        Raises:
            StorageIOFailure: the write failed (previous file is intact)
        """
        registry.last_updated = utc_now()
        content = json.dumps(registry_to_dict(registry), ensure_ascii=False, indent=2)
        atomic_write_text(self.path, content + "\n")
