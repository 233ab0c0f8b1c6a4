"""
Marketplace REST client.

Commit endpoints (server of record):
- POST /api/bids              {auctionId, amount, bidderAddress}
- POST /api/bidpacks/purchase {packId, address}

Read loaders for the query cache:
- GET /api/auctions, /api/auctions/featured, /api/auctions/{id}
- GET /api/bidpacks, /api/activity
- GET /api/alchemy/nft/{contract}/{token}  (metadata, blacklist-guarded)
"""

import json
import logging
from typing import Any, Optional

import aiohttp

from config.settings import ORIGIN, API_PREFIX, COMMIT_TIMEOUT, READ_TIMEOUT
from bidstream.data.storage import LocalStorage, FAILED_LOOKUPS_KEY
from bidstream.errors import ApiError

logger = logging.getLogger(__name__)


class FailedLookupCache:
    """
    Persistent blacklist of metadata lookups that returned 404.

    Most missing NFT metadata stays missing, so these are never retried
    until the blacklist is cleared.
    """

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self._keys: set[str] = set(storage.load(FAILED_LOOKUPS_KEY, [], parse=self._parse))

    @staticmethod
    def _parse(raw) -> list[str]:
        if not isinstance(raw, list) or not all(isinstance(k, str) for k in raw):
            raise ValueError("failed lookups must be a list of strings")
        return raw

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str):
        if key in self._keys:
            return
        self._keys.add(key)
        self.storage.save(FAILED_LOOKUPS_KEY, sorted(self._keys))

    def clear(self):
        self._keys.clear()
        self.storage.save(FAILED_LOOKUPS_KEY, [])


class MarketplaceApi:
    """
    Async client for the marketplace server.

    Commit calls raise ApiError on any non-2xx response (using the server's
    `message` field when present) and let transport errors propagate, so the
    action pipeline can classify them as commit failures.
    """

    def __init__(
        self,
        origin: str = ORIGIN,
        session: Optional[aiohttp.ClientSession] = None,
        failed_lookups: Optional[FailedLookupCache] = None,
        commit_timeout: Optional[float] = COMMIT_TIMEOUT,
    ):
        self.base_url = origin.rstrip("/") + API_PREFIX
        self.failed_lookups = failed_lookups
        self.commit_timeout = commit_timeout
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    # ============================================================
    # Commit endpoints
    # ============================================================

    async def place_bid(self, auction_id: int, amount: str, bidder_address: str) -> dict:
        """Record an authorized bid. Returns the created bid."""
        return await self._post("/bids", {
            "auctionId": auction_id,
            "amount": amount,
            "bidderAddress": bidder_address,
        })

    async def purchase_bid_pack(self, pack_id: int, address: str) -> dict:
        """Record an authorized bid pack purchase."""
        return await self._post("/bidpacks/purchase", {
            "packId": pack_id,
            "address": address,
        })

    async def _post(self, path: str, payload: dict) -> dict:
        timeout = aiohttp.ClientTimeout(total=self.commit_timeout)
        async with self.session.post(
            f"{self.base_url}{path}",
            json=payload,
            timeout=timeout,
        ) as resp:
            body = await self._read_body(resp)
            if resp.status >= 400:
                message = body.get("message") if isinstance(body, dict) else None
                raise ApiError(message or f"HTTP {resp.status} from {path}", status=resp.status)
            return body if isinstance(body, dict) else {"raw": body}

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> Any:
        text = await resp.text()
        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    # ============================================================
    # Read loaders
    # ============================================================

    async def get_auctions(self) -> list:
        return await self._get("/auctions") or []

    async def get_featured_auctions(self) -> list:
        return await self._get("/auctions/featured") or []

    async def get_auction(self, auction_id: int) -> Optional[dict]:
        return await self._get(f"/auctions/{auction_id}")

    async def get_bid_packs(self) -> list:
        return await self._get("/bidpacks") or []

    async def get_activity(self) -> list:
        return await self._get("/activity") or []

    async def get_token_metadata(self, contract_address: str, token_id: str) -> Optional[dict]:
        """
        Fetch NFT metadata, skipping lookups that previously 404'd.

        Returns None when blacklisted or not found.
        """
        lookup_key = f"{contract_address.lower()}:{token_id}"
        if self.failed_lookups is not None and lookup_key in self.failed_lookups:
            logger.debug(f"Skipping blacklisted metadata lookup {lookup_key}")
            return None

        try:
            return await self._get(f"/alchemy/nft/{contract_address}/{token_id}")
        except ApiError as e:
            if e.status == 404 and self.failed_lookups is not None:
                self.failed_lookups.add(lookup_key)
                logger.info(f"Metadata not found, blacklisted {lookup_key}")
                return None
            raise

    async def _get(self, path: str) -> Any:
        async with self.session.get(
            f"{self.base_url}{path}",
            timeout=aiohttp.ClientTimeout(total=READ_TIMEOUT),
        ) as resp:
            body = await self._read_body(resp)
            if resp.status >= 400:
                message = body.get("message") if isinstance(body, dict) else None
                raise ApiError(message or f"HTTP {resp.status} from {path}", status=resp.status)
            return body
