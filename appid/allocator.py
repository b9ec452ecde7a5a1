"""
Category id assignment.

IdAllocator.assign() is the only writer of the registry. Every call runs
load -> match-or-register -> save inside the registry lock, so calls from
any number of processes are totally ordered and never hand out two ids for
one category.

Decisions are written to the audit log (logger "appid.audit").
"""

import logging
from typing import Optional, Union

from .config import AllocationConfig, StoreConfig, check_allocation
from .errors import AppIdError
from .lock import LockCoordinator, create_backend
from .logging_config import AUDIT_LOGGER, configure_audit_log
from .matcher import CategoryMatcher, KeywordMatcher, category_key, extract_keywords
from .registry_store import RegistryStore
from .types import CategoryEntry, Registry, Request, utc_today

logger = logging.getLogger(__name__)
audit = logging.getLogger(AUDIT_LOGGER)


def advance_id(current: str, increment: int = 1) -> str:
    """Next id after `current`, keeping its zero-padded width."""
    return str(int(current) + increment).zfill(len(current))


class IdAllocator:
    """Maps requests to persistent category ids."""

    def __init__(
        self,
        store: RegistryStore,
        lock: LockCoordinator,
        matcher: Optional[CategoryMatcher] = None,
        *,
        allocation: Optional[AllocationConfig] = None,
    ):
        self.store = store
        self.lock = lock
        self.matcher = matcher or KeywordMatcher()
        self.allocation = allocation or AllocationConfig()
        check_allocation(self.allocation)

    @classmethod
    def from_config(
        cls, config: StoreConfig, matcher: Optional[CategoryMatcher] = None,
    ) -> "IdAllocator":
        """Build an allocator for a store, with its audit log attached."""
        configure_audit_log(config.audit_log_path)
        backend = create_backend(
            config.lock.backend, config.lock_path, stale_after=config.lock.stale_after,
        )
        return cls(
            RegistryStore(config.registry_path, first_id=config.allocation.first_id),
            LockCoordinator(
                backend,
                poll_interval=config.lock.poll_interval,
                timeout=config.lock.timeout,
            ),
            matcher,
            allocation=config.allocation,
        )

    def assign(self, request: Union[Request, dict]) -> str:
        """
        Return the category id for a request, registering a new category
        if no existing one matches.

        Raises:
            LockTimeout: the registry lock could not be acquired
            CorruptRegistry: the registry file is unreadable
            StorageIOFailure: the registry could not be written
        """
        if isinstance(request, dict):
            request = Request(
                title=request.get("title", ""),
                description=request.get("description") or "",
                requirements=list(request.get("requirements") or []),
            )
        description = request.matching_description

        try:
            with self.lock:
                registry = self.store.load()

                entry = self.matcher.find_match(request.title, description, registry)
                matched = entry is not None
                if not matched:
                    entry = self._register(request.title, description, registry)
                self.store.save(registry)
        except AppIdError as e:
            audit.info('assignment failed: "%s": %s: %s',
                       request.title, type(e).__name__, e)
            raise

        if matched:
            audit.info('keyword match, existing id reused: "%s" -> %s (%s)',
                       request.title, entry.id, entry.display_name)
        else:
            audit.info('new category registered: "%s" -> %s', request.title, entry.id)
        return entry.id

    def _register(self, title: str, description: str, registry: Registry) -> CategoryEntry:
        """Add a new category to the in-memory registry and advance next_id."""
        new_id = registry.next_id
        entry = CategoryEntry(
            id=new_id,
            display_name=title,
            keywords=extract_keywords(
                title, description,
                limit=self.allocation.max_keywords,
                min_length=self.allocation.min_keyword_length,
            ),
            created_date=utc_today(),
        )
        key = self._unique_key(title, new_id, registry)
        registry.categories[key] = entry
        registry.next_id = advance_id(new_id, self.allocation.increment)
        logger.debug("Registered category %r as %s (keywords=%s)", key, new_id, entry.keywords)
        return entry

    def _unique_key(self, title: str, new_id: str, registry: Registry) -> str:
        key = category_key(title, max_length=self.allocation.key_length) or f"category-{new_id}"
        if key not in registry.categories:
            return key
        n = 2
        while f"{key}-{n}" in registry.categories:
            n += 1
        return f"{key}-{n}"

    def list_categories(self) -> dict[str, CategoryEntry]:
        """Registered categories in registration order. Does not take the lock."""
        return self.store.load().categories

    def stats(self) -> dict:
        registry = self.store.load()
        return {
            "total_types": len(registry.categories),
            "next_id": registry.next_id,
            "last_updated": registry.last_updated,
        }
