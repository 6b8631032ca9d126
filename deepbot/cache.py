from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Optional

from deepbot.models import User
from shared.log import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    user: User
    stored_at: float  # time.monotonic() at store time


class UserCache:
    """
    Client-side cache of user snapshots with a staleness window.

    With auto-refresh on, an entry older than `ttl` seconds is treated as
    missing so the caller fetches it again. With auto-refresh off, entries
    stay until they are replaced or invalidated.
    """

    def __init__(self, ttl: float = 60.0, auto_refresh: bool = True):
        """
        Initialize the cache.

        Args:
            ttl: Staleness window in seconds (default 60s)
            auto_refresh: Expire entries after `ttl` when True
        """
        self.ttl = ttl
        self.auto_refresh = auto_refresh
        self._entries: Dict[str, CacheEntry] = {}

    @staticmethod
    def _key(name: str) -> str:
        return name.lower()

    def is_stale(self, entry: CacheEntry) -> bool:
        if not self.auto_refresh:
            return False
        return time.monotonic() - entry.stored_at >= self.ttl

    def get(self, name: str) -> Optional[User]:
        """
        Return the cached snapshot, or None if absent or stale.

        Args:
            name: User name (case-insensitive)
        """
        entry = self._entries.get(self._key(name))
        if entry is None:
            return None
        if self.is_stale(entry):
            logger.debug("Cached snapshot of %s is stale", name)
            return None
        return entry.user

    def put(self, user: User) -> User:
        """
        Store a snapshot, stamping its refresh time.

        Returns:
            The stamped snapshot that was stored
        """
        stamped = replace(user, refreshed_at=datetime.now())
        self._entries[self._key(user.name)] = CacheEntry(stamped, time.monotonic())
        return stamped

    def invalidate(self, name: str) -> bool:
        """Drop one user's snapshot. Returns True if one was cached."""
        return self._entries.pop(self._key(name), None) is not None

    def prune_expired(self) -> int:
        """
        Remove stale entries.

        Returns:
            Number of entries removed
        """
        stale = [k for k, e in self._entries.items() if self.is_stale(e)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Pruned %d stale user snapshots", len(stale))
        return len(stale)

    def clear(self) -> None:
        """Clear all cached snapshots."""
        self._entries.clear()
        logger.debug("Cleared user cache")

    def size(self) -> int:
        """Return the current number of cached snapshots."""
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        """Return cache statistics."""
        stale = sum(1 for e in self._entries.values() if self.is_stale(e))
        return {
            "cached_users": len(self._entries),
            "stale_users": stale,
        }
