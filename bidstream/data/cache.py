"""
Query cache with an invalidation bus.

Two independent triggers mark results stale:
1. The action pipeline, right after a successful commit (optimistic)
2. Stream notifications ("new-bid", "new-auction") from the server

Both go through `mark_stale`, which is idempotent per key: a query that is
already stale is not re-announced, so the triggers compose without
double-counting. Stale results are refetched on the next `get`, not eagerly.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

# Query keys (REST paths, as the UI keyed them)
AUCTIONS = "/api/auctions"
FEATURED_AUCTIONS = "/api/auctions/featured"
ACTIVITY = "/api/activity"
BID_PACKS = "/api/bidpacks"


def auction_key(auction_id) -> str:
    return f"{AUCTIONS}/{auction_id}"


def bid_pack_key(pack_id) -> str:
    return f"{BID_PACKS}/{pack_id}"


@dataclass
class CacheEntry:
    """One cached query result."""
    key: str
    data: Any = None
    stale: bool = True
    fetched_at: float = 0.0
    stale_count: int = 0   # Number of fresh -> stale transitions
    generation: int = 0    # Bumped by every mark, including no-op ones

    @property
    def age_seconds(self) -> float:
        if not self.fetched_at:
            return float('inf')
        return time.time() - self.fetched_at


StaleListener = Callable[[str], None]


class CacheInvalidationBus:
    """
    Holds query results and fans out stale notifications.

    Usage:
        bus = CacheInvalidationBus()
        bus.on_stale(lambda key: print("refetch", key))
        auctions = await bus.get(AUCTIONS, api.get_auctions)
        bus.mark_stale(AUCTIONS)   # next get() refetches
    """

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}
        self._listeners: list[list] = []   # [callback, active]
        self.total_marks: int = 0

    def on_stale(self, callback: StaleListener) -> Callable[[], None]:
        """Register a listener for stale transitions. Returns an unsubscribe."""
        slot = [callback, True]
        self._listeners.append(slot)

        def unsubscribe():
            slot[1] = False
            if slot in self._listeners:
                self._listeners.remove(slot)

        return unsubscribe

    def set(self, key: str, data: Any):
        """Store a fresh result."""
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = CacheEntry(key=key)
        entry.data = data
        entry.stale = False
        entry.fetched_at = time.time()

    def peek(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def is_stale(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.stale

    def mark_stale(self, key: str) -> bool:
        """
        Flag a query for refetch.

        Returns:
            True if the key transitioned to stale, False if it already was
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = CacheEntry(key=key, stale=False)
        entry.generation += 1
        if entry.stale:
            return False

        entry.stale = True
        entry.stale_count += 1
        self.total_marks += 1
        logger.debug(f"Marked stale: {key}")

        for slot in list(self._listeners):
            if not slot[1]:
                continue
            try:
                slot[0](key)
            except Exception:
                logger.exception(f"Stale listener failed for {key}")
        return True

    def mark_many(self, keys: Iterable[str]) -> int:
        """Mark several keys stale. Returns how many transitioned."""
        return sum(1 for key in keys if self.mark_stale(key))

    async def get(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached result, refetching through `loader` if stale."""
        entry = self._entries.get(key)
        if entry is not None and not entry.stale:
            return entry.data

        if entry is None:
            entry = self._entries[key] = CacheEntry(key=key)
        generation = entry.generation

        data = await loader()
        self.set(key, data)

        # A mark that landed during the fetch may describe newer data
        entry = self._entries[key]
        if entry.generation != generation:
            entry.stale = True
            logger.debug(f"Marked during refetch, kept stale: {key}")
        return data

    def clear(self):
        self._entries.clear()

    def status(self) -> dict:
        return {
            'entries': len(self._entries),
            'stale': sum(1 for e in self._entries.values() if e.stale),
            'total_marks': self.total_marks,
        }
