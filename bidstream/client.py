"""
Marketplace client service.

Owns the one event stream, the query cache, the wallet session, the action
pipeline, the tracking store and the per-auction countdowns. Construct it
once at startup and pass it to whatever needs these parts.

Stream notifications feed the cache bus:
- new-bid      -> auction list, featured list, the auction itself, activity
- new-auction  -> auction list, featured list
"""

import logging
from typing import Any, Callable, Optional

from config.settings import DRY_RUN, ORIGIN
from bidstream.data.api import FailedLookupCache, MarketplaceApi
from bidstream.data.cache import (
    ACTIVITY,
    AUCTIONS,
    BID_PACKS,
    FEATURED_AUCTIONS,
    CacheInvalidationBus,
    auction_key,
)
from bidstream.data.preferences import CurrencyPreference
from bidstream.data.storage import LocalStorage
from bidstream.data.stream import NEW_AUCTION, NEW_BID, EventStreamClient
from bidstream.execution.bidder import Bidder
from bidstream.execution.pipeline import ActionPipeline
from bidstream.execution.session import SessionManager
from bidstream.execution.signer import Signer, SimulatedSigner
from bidstream.timing.clock import Clock, to_timestamp
from bidstream.timing.countdown import Countdown
from bidstream.tracking.store import TrackingStore

logger = logging.getLogger(__name__)


def _auction_id_from(data: Any) -> Optional[int]:
    """Pull the auction id out of a new-bid payload, whatever its shape."""
    if not isinstance(data, dict):
        return None
    for key in ('auctionId', 'auction_id'):
        if data.get(key) is not None:
            try:
                return int(data[key])
            except (TypeError, ValueError):
                return None
    auction = data.get('auction')
    if isinstance(auction, dict) and auction.get('id') is not None:
        try:
            return int(auction['id'])
        except (TypeError, ValueError):
            return None
    return None


def _end_time_from(data: Any) -> Any:
    if not isinstance(data, dict):
        return None
    if data.get('endTime'):
        return data['endTime']
    auction = data.get('auction')
    if isinstance(auction, dict):
        return auction.get('endTime')
    return None


class MarketplaceClient:
    """
    Everything the UI layer talks to, in one place.

    Usage:
        client = MarketplaceClient(origin="https://bidcoin.example")
        await client.start()
        await client.session.connect("metamask")
        result = await client.bidder.place_bid(42, 1.5, minimum_bid=1.0, balance=2.0)
        await client.stop()
    """

    def __init__(
        self,
        origin: str = ORIGIN,
        storage_path: Optional[str] = None,
        signer: Optional[Signer] = None,
        dry_run: bool = DRY_RUN,
        stream: Optional[EventStreamClient] = None,
        api: Optional[MarketplaceApi] = None,
        clock: Optional[Clock] = None,
    ):
        if signer is None:
            if not dry_run:
                raise ValueError("A wallet signer is required when DRY_RUN is off")
            signer = SimulatedSigner()

        self.origin = origin
        self.dry_run = dry_run
        self.storage = LocalStorage(storage_path)
        self.cache = CacheInvalidationBus()
        self.failed_lookups = FailedLookupCache(self.storage)
        self.currency = CurrencyPreference(self.storage)
        self.api = api or MarketplaceApi(origin, failed_lookups=self.failed_lookups)
        self.stream = stream or EventStreamClient(origin)

        self.signer = signer
        self.session = SessionManager(signer, self.storage)
        self.pipeline = ActionPipeline(self.session, signer, self.api, self.cache)
        self.bidder = Bidder(self.pipeline)
        self.tracking = TrackingStore(self.storage)

        self.clock = clock or Clock()
        self.countdowns: dict[int, Countdown] = {}
        self._end_callbacks: dict[int, Callable[[], None]] = {}
        self._notify_callbacks: list[Callable[[int, Any], None]] = []
        self._unsubscribes = [
            self.stream.subscribe(NEW_BID, self._on_new_bid),
            self.stream.subscribe(NEW_AUCTION, self._on_new_auction),
        ]

    # ================================================================
    # Lifecycle
    # ================================================================

    async def start(self):
        await self.stream.connect()
        logger.info(f"Marketplace client started ({'DRY RUN' if self.dry_run else 'LIVE'})")

    async def stop(self):
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()

        for countdown in self.countdowns.values():
            await countdown.stop()
        self.countdowns.clear()
        self._end_callbacks.clear()

        await self.stream.disconnect()
        await self.api.close()
        logger.info("Marketplace client stopped")

    # ================================================================
    # Cached reads
    # ================================================================

    async def get_auctions(self) -> list:
        return await self.cache.get(AUCTIONS, self.api.get_auctions)

    async def get_featured_auctions(self) -> list:
        return await self.cache.get(FEATURED_AUCTIONS, self.api.get_featured_auctions)

    async def get_auction(self, auction_id: int) -> Optional[dict]:
        return await self.cache.get(auction_key(auction_id), lambda: self.api.get_auction(auction_id))

    async def get_activity(self) -> list:
        return await self.cache.get(ACTIVITY, self.api.get_activity)

    async def get_bid_packs(self) -> list:
        return await self.cache.get(BID_PACKS, self.api.get_bid_packs)

    # ================================================================
    # Countdowns
    # ================================================================

    def watch(self, auction: dict, on_complete: Optional[Callable[[], None]] = None) -> Countdown:
        """Start (or return) the countdown for an auction."""
        auction_id = int(auction['id'])
        countdown = self.countdowns.get(auction_id)
        if countdown is None:
            if on_complete:
                self._end_callbacks[auction_id] = on_complete
            countdown = self._start_countdown(auction_id, auction.get('endTime'))
        return countdown

    def _start_countdown(self, auction_id: int, end_time: Any) -> Countdown:
        def completed():
            logger.info(f"Auction #{auction_id} ended")
            self.cache.mark_many([AUCTIONS, auction_key(auction_id)])
            callback = self._end_callbacks.get(auction_id)
            if callback:
                callback()

        countdown = Countdown(end_time, on_complete=completed, clock=self.clock)
        self.countdowns[auction_id] = countdown
        countdown.start()
        return countdown

    async def unwatch(self, auction_id: int):
        countdown = self.countdowns.pop(int(auction_id), None)
        self._end_callbacks.pop(int(auction_id), None)
        if countdown is not None:
            await countdown.stop()

    # ================================================================
    # Stream handlers
    # ================================================================

    def on_notification(self, callback: Callable[[int, Any], None]):
        """Called with (auction_id, data) for bids on tracked auctions with notifications on."""
        self._notify_callbacks.append(callback)

    def _on_new_bid(self, data: Any):
        auction_id = _auction_id_from(data)
        keys = [AUCTIONS, FEATURED_AUCTIONS, ACTIVITY]
        if auction_id is not None:
            keys.append(auction_key(auction_id))
        self.cache.mark_many(keys)

        if auction_id is None:
            return

        end_time = _end_time_from(data)
        countdown = self.countdowns.get(auction_id)
        if countdown is not None and end_time:
            if not countdown.is_complete:
                countdown.set_target(end_time)
            elif self.clock.remaining(to_timestamp(end_time)) > 0:
                # Ended locally but the server says the auction is still live
                logger.info(f"Auction #{auction_id} extended, restarting countdown")
                self._start_countdown(auction_id, end_time)

        entry = self.tracking.get(auction_id)
        if entry is not None and entry.notifications_enabled:
            logger.info(f"New bid on tracked auction #{auction_id}")
            for cb in self._notify_callbacks:
                try:
                    cb(auction_id, data)
                except Exception:
                    logger.exception("Notification callback failed")

    def _on_new_auction(self, data: Any):
        self.cache.mark_many([AUCTIONS, FEATURED_AUCTIONS])

    def status(self) -> dict:
        return {
            'dry_run': self.dry_run,
            'stream': self.stream.status(),
            'session': self.session.summary(),
            'cache': self.cache.status(),
            'tracking': self.tracking.summary(),
            'bidder': self.bidder.summary(),
            'countdowns': {aid: cd.formatted for aid, cd in self.countdowns.items()},
            'currency_display': self.currency.display,
        }
