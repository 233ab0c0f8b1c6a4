"""
Followed auctions, persisted locally.

Tracks:
- Which auctions the user follows (a set keyed by auction id)
- Whether notifications are on for each one

Every mutation writes the whole set to local storage before returning, so
a restart always sees the latest state. Corrupt stored data loads as an
empty set.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from bidstream.data.storage import LocalStorage, TRACKED_KEY

logger = logging.getLogger(__name__)


@dataclass
class TrackedEntry:
    """One followed auction."""
    auction_id: int
    notifications_enabled: bool = True

    def to_dict(self) -> dict:
        return {'id': self.auction_id, 'notificationsEnabled': self.notifications_enabled}


def _parse_entries(raw) -> dict[int, TrackedEntry]:
    if not isinstance(raw, list):
        raise ValueError("tracked auctions must be a list")
    entries: dict[int, TrackedEntry] = {}
    for item in raw:
        auction_id = int(item['id'])
        enabled = item.get('notificationsEnabled', True)
        if not isinstance(enabled, bool):
            raise ValueError(f"bad notification flag for auction {auction_id}")
        entries[auction_id] = TrackedEntry(auction_id, enabled)
    return entries


def _auction_id(auction: Union[int, str, dict]) -> int:
    if isinstance(auction, dict):
        return int(auction['id'])
    return int(auction)


class TrackingStore:
    """
    Set of followed auctions.

    Usage:
        store = TrackingStore(storage)
        store.track({"id": 7, ...})
        store.set_notifications(7, False)
        store.untrack(7)
    """

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self._entries: dict[int, TrackedEntry] = storage.load(TRACKED_KEY, {}, parse=_parse_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TrackedEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, auction_id) -> bool:
        return self.is_tracked(auction_id)

    def is_tracked(self, auction_id) -> bool:
        return int(auction_id) in self._entries

    def get(self, auction_id) -> Optional[TrackedEntry]:
        return self._entries.get(int(auction_id))

    def notified_ids(self) -> list[int]:
        """Auctions with notifications on."""
        return [e.auction_id for e in self._entries.values() if e.notifications_enabled]

    def track(self, auction: Union[int, str, dict]) -> TrackedEntry:
        """Follow an auction (notifications on). Already-tracked is a no-op."""
        auction_id = _auction_id(auction)
        entry = self._entries.get(auction_id)
        if entry is not None:
            return entry

        entry = TrackedEntry(auction_id)
        self._entries[auction_id] = entry
        self._persist()
        logger.info(f"Tracking auction #{auction_id}")
        return entry

    def untrack(self, auction_id) -> bool:
        """Stop following. Returns False if it was not tracked."""
        auction_id = int(auction_id)
        if auction_id not in self._entries:
            return False
        del self._entries[auction_id]
        self._persist()
        logger.info(f"Untracked auction #{auction_id}")
        return True

    def toggle(self, auction: Union[int, str, dict]) -> bool:
        """Track if untracked, untrack if tracked. Returns the new membership."""
        auction_id = _auction_id(auction)
        if self.is_tracked(auction_id):
            self.untrack(auction_id)
            return False
        self.track(auction_id)
        return True

    def set_notifications(self, auction_id, enabled: bool) -> bool:
        """Returns False if the auction is not tracked."""
        entry = self._entries.get(int(auction_id))
        if entry is None:
            return False
        if entry.notifications_enabled != enabled:
            entry.notifications_enabled = enabled
            self._persist()
            logger.info(f"Notifications {'enabled' if enabled else 'disabled'} for auction #{entry.auction_id}")
        return True

    def clear(self):
        self._entries.clear()
        self._persist()
        logger.info("Cleared all tracked auctions")

    def _persist(self):
        self.storage.save(TRACKED_KEY, [e.to_dict() for e in self._entries.values()])

    def summary(self) -> dict:
        return {
            'tracked': len(self._entries),
            'notifications_on': len(self.notified_ids()),
            'auctions': [e.to_dict() for e in self._entries.values()],
        }
