"""
Monetary actions run through the pipeline: placing a bid and buying a
bid pack. Each action knows how to validate its payload, how much the
signer must approve, how to commit it and which queries it makes stale.
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from config.settings import BID_INCREMENT
from bidstream.data.api import MarketplaceApi
from bidstream.data.cache import ACTIVITY, AUCTIONS, BID_PACKS, auction_key, bid_pack_key
from bidstream.errors import CommitError, ValidationError
from bidstream.execution.session import SessionSnapshot
from bidstream.execution.signer import Authorization


class ActionKind(str, Enum):
    BID = "bid"
    PURCHASE = "purchase"


class Phase(str, Enum):
    """Pipeline phases, in order."""
    VALIDATING = "validating"
    AUTHORIZING = "authorizing"
    COMMITTING = "committing"
    INVALIDATING = "invalidating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PendingAction:
    """One submission moving through the pipeline."""
    kind: ActionKind
    target: Any
    payload: Any
    phase: Phase = Phase.VALIDATING
    authorization: Optional[Authorization] = None
    result: Any = None
    error: str = ""
    started_at: float = field(default_factory=time.time)

    @property
    def key(self) -> tuple:
        return (self.kind, self.target)

    @property
    def age_seconds(self) -> float:
        return time.time() - self.started_at


@dataclass(frozen=True)
class BidRequest:
    amount: float
    minimum_bid: float
    balance: float
    seller_address: Optional[str] = None


@dataclass(frozen=True)
class PurchaseRequest:
    price: float
    quantity: int = 1
    balance: Optional[float] = None
    available: bool = True

    @property
    def total(self) -> float:
        return round(self.price * self.quantity, 6)


def minimum_bid_for(auction: dict) -> float:
    """Next acceptable bid: one increment over the current bid, or the start price."""
    starting = float(auction.get('startingBid') or 0)
    current = auction.get('currentBid')
    if current in (None, ""):
        return round(starting, 6)
    return round(max(starting, float(current) + BID_INCREMENT), 6)


class Action(ABC):
    kind: ActionKind

    @abstractmethod
    def validate(self, session: SessionSnapshot, target: Any, payload: Any):
        """Raise ValidationError if the action must not proceed."""

    @abstractmethod
    def amount(self, payload: Any) -> float:
        """Monetary amount the signer approves."""

    @abstractmethod
    async def commit(self, api: MarketplaceApi, session: SessionSnapshot, target: Any, payload: Any) -> Any:
        """Record the authorized action with the server of record."""

    @abstractmethod
    def stale_queries(self, target: Any) -> list[str]:
        """Cached queries the committed action changes."""


class BidAction(Action):
    kind = ActionKind.BID

    def validate(self, session: SessionSnapshot, target: Any, payload: BidRequest):
        amount = payload.amount
        if amount is None or math.isnan(amount) or amount <= 0:
            raise ValidationError("bid amount must be positive")
        if amount < payload.minimum_bid:
            raise ValidationError(f"minimum bid is {payload.minimum_bid}")
        if amount > payload.balance:
            raise ValidationError(f"insufficient balance: {payload.balance} available, {amount} needed")
        seller = payload.seller_address
        if seller and seller.lower() == session.address.lower():
            raise ValidationError("cannot bid on your own auction")

    def amount(self, payload: BidRequest) -> float:
        return payload.amount

    async def commit(self, api: MarketplaceApi, session: SessionSnapshot, target: Any, payload: BidRequest) -> Any:
        return await api.place_bid(target, str(payload.amount), session.address)

    def stale_queries(self, target: Any) -> list[str]:
        return [AUCTIONS, auction_key(target), ACTIVITY]


class PurchaseAction(Action):
    """
    Bid pack purchase. One authorization covers the whole quantity; the
    server records one purchase per unit.
    """

    kind = ActionKind.PURCHASE

    def validate(self, session: SessionSnapshot, target: Any, payload: PurchaseRequest):
        if not payload.available:
            raise ValidationError("bid pack is not available")
        if payload.quantity < 1:
            raise ValidationError("quantity must be at least 1")
        if payload.price is None or math.isnan(payload.price) or payload.price <= 0:
            raise ValidationError("invalid bid pack price")
        if payload.balance is not None and payload.total > payload.balance:
            raise ValidationError(
                f"insufficient balance: {payload.balance} available, {payload.total} needed"
            )

    def amount(self, payload: PurchaseRequest) -> float:
        return payload.total

    async def commit(self, api: MarketplaceApi, session: SessionSnapshot, target: Any, payload: PurchaseRequest) -> Any:
        records = []
        for i in range(payload.quantity):
            try:
                records.append(await api.purchase_bid_pack(target, session.address))
            except Exception as e:
                raise CommitError(
                    f"purchase {i + 1} of {payload.quantity} failed: {e}",
                    committed=len(records),
                ) from e
        return records

    def stale_queries(self, target: Any) -> list[str]:
        return [BID_PACKS, bid_pack_key(target), ACTIVITY]
