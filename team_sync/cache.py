"""
Pagination and memoization over a directory provider.

``accumulate_pages`` drains a continuation-token API into one list, and
``CachingDirectoryProvider`` guarantees at most one upstream fetch per distinct
query for the lifetime of a directory snapshot.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from team_sync.models import DirectoryGroup, DirectoryUser, RawMember
from team_sync.provider import DirectoryProvider, ProviderAuthenticationError

logger = logging.getLogger(__name__)

T = TypeVar('T')

OP_USERS = 'users'
OP_GROUPS = 'groups'
OP_GROUP_MEMBERS = 'group_members'
OP_ORG_USERS = 'org_users'


class ProviderFetchFailed(Exception):
    """Raised when a paginated fetch fails; the snapshot being built is abandoned."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Unable to load {operation}: {cause}")

    @property
    def authentication_failure(self) -> bool:
        return isinstance(self.cause, ProviderAuthenticationError)


class CacheInvariantViolation(Exception):
    """Raised when a key is marked fetched but holds no value. Indicates a bug."""
    pass


def accumulate_pages(operation: str, page: Callable[[str], Tuple[Sequence[T], str]]) -> List[T]:
    """
    Fetch every page of a paginated listing.

    Args:
        operation: Operation label used in logs and errors
        page: Function taking a continuation token and returning (items, next_token)

    Returns:
        All items in page order

    Raises:
        ProviderFetchFailed: If any page fails; nothing is returned in that case
    """
    items = []
    token = ''
    page_count = 0

    while True:
        try:
            page_items, token = page(token)
        except Exception as e:
            logger.error(f"Failed to load {operation} (page {page_count + 1}): {e}")
            raise ProviderFetchFailed(operation, e) from e

        page_count += 1
        items.extend(page_items or [])
        logger.debug(f"Loaded {operation} page {page_count}: {len(page_items or [])} item(s)")

        if not token:
            break

    logger.debug(f"Loaded {operation}: {len(items)} item(s) across {page_count} page(s)")
    return items


@dataclass
class CacheEntry:
    fetched: bool = False
    value: Optional[Tuple] = None


class CachingDirectoryProvider:
    """
    Lazy, write-once cache in front of a ``DirectoryProvider``.

    Each (operation, parameter) pair is fetched from the provider on first use
    and served from memory afterwards. Concurrent first accesses to one key
    wait on a per-key lock so only one of them reaches the provider.
    """

    def __init__(self, provider: DirectoryProvider):
        self.provider = provider
        self.name = getattr(provider, 'name', 'directory')
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        self._key_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()
        self.fetch_counts = Counter()

    def all_users(self) -> Tuple[DirectoryUser, ...]:
        return self._memoized(OP_USERS, '', self.provider.list_users)

    def all_groups(self) -> Tuple[DirectoryGroup, ...]:
        return self._memoized(OP_GROUPS, '', self.provider.list_groups)

    def group_members(self, group_key: str) -> Tuple[RawMember, ...]:
        return self._memoized(
            OP_GROUP_MEMBERS, group_key,
            lambda token: self.provider.list_group_members(group_key, token)
        )

    def org_users(self, org_id: str) -> Tuple[DirectoryUser, ...]:
        return self._memoized(
            OP_ORG_USERS, org_id,
            lambda token: self.provider.list_org_users(org_id, token)
        )

    def _memoized(self, operation: str, parameter: str, page: Callable) -> Tuple:
        key = (operation, parameter)
        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            entry = self._entries.setdefault(key, CacheEntry())
            if not entry.fetched:
                label = f"{self.name} {operation}" + (f"[{parameter}]" if parameter else '')
                entry.value = tuple(accumulate_pages(label, page))
                entry.fetched = True
                self.fetch_counts[operation] += 1

            if entry.value is None:
                logger.critical(f"Inconsistent cache state: {operation}[{parameter}]")
                raise CacheInvariantViolation(f"Cache entry {operation}[{parameter}] marked fetched without a value")

            return entry.value

    def is_cached(self, operation: str, parameter: str = '') -> bool:
        entry = self._entries.get((operation, parameter))
        return bool(entry and entry.fetched)

    def get_cache_stats(self) -> Dict[str, int]:
        """Upstream fetch counts per operation."""
        return dict(self.fetch_counts)
