"""
High-level bidding interface.

Wraps the action pipeline with:
- One user-facing message per outcome
- A distinct, stronger warning for unreconciled commits
- Result history for status reporting
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from bidstream.errors import AuthorizationError, Busy, CommitError, ValidationError
from bidstream.execution.actions import (
    ActionKind,
    BidRequest,
    PurchaseRequest,
    minimum_bid_for,
)
from bidstream.execution.pipeline import ActionPipeline

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Outcome of a bid or purchase attempt."""
    success: bool
    kind: str
    target: Any
    amount: float = 0.0
    message: str = ""
    error_type: str = ""
    unreconciled: bool = False
    authorization: str = ""
    response: Any = None
    timestamp: float = 0.0

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.time()


class Bidder:
    """
    Places bids and buys bid packs.

    Validation and authorization failures come back as a plain message;
    commit failures come back with `unreconciled=True` because the wallet
    may already have paid.
    """

    def __init__(self, pipeline: ActionPipeline):
        self.pipeline = pipeline
        self.history: list[ActionResult] = []

    async def place_bid(
        self,
        auction_id: int,
        amount: float,
        minimum_bid: float,
        balance: float,
        seller_address: Optional[str] = None,
    ) -> ActionResult:
        """
        Bid on an auction.

        Args:
            auction_id: Target auction
            amount: Bid amount
            minimum_bid: Lowest acceptable bid right now
            balance: Spendable balance
            seller_address: Auction creator (you cannot bid on your own)
        """
        request = BidRequest(
            amount=amount,
            minimum_bid=minimum_bid,
            balance=balance,
            seller_address=seller_address,
        )
        return await self._execute(
            ActionKind.BID, auction_id, request, amount,
            success=f"Bid of {amount} placed on auction #{auction_id}",
        )

    async def bid_on(self, auction: dict, amount: float, balance: float) -> ActionResult:
        """Bid using the auction's own minimum and seller."""
        return await self.place_bid(
            auction_id=auction['id'],
            amount=amount,
            minimum_bid=minimum_bid_for(auction),
            balance=balance,
            seller_address=auction.get('creatorAddress'),
        )

    async def purchase_pack(
        self,
        pack_id: int,
        price: float,
        quantity: int = 1,
        balance: Optional[float] = None,
        available: bool = True,
        name: str = "",
    ) -> ActionResult:
        """Buy `quantity` units of a bid pack."""
        request = PurchaseRequest(price=price, quantity=quantity, balance=balance, available=available)
        label = name or f"bid pack #{pack_id}"
        return await self._execute(
            ActionKind.PURCHASE, pack_id, request, request.total,
            success=f"Purchased {quantity} x {label}",
        )

    async def _execute(self, kind: ActionKind, target: Any, payload: Any, amount: float, success: str) -> ActionResult:
        try:
            pending = await self.pipeline.submit(kind, target, payload)
            result = ActionResult(
                success=True,
                kind=kind.value,
                target=target,
                amount=amount,
                message=success,
                authorization=pending.authorization.reference if pending.authorization else "",
                response=pending.result,
            )
        except Busy:
            result = ActionResult(
                success=False,
                kind=kind.value,
                target=target,
                amount=amount,
                message=f"Your previous {kind.value} is still processing",
                error_type="Busy",
            )
        except (ValidationError, AuthorizationError) as e:
            result = ActionResult(
                success=False,
                kind=kind.value,
                target=target,
                amount=amount,
                message=str(e),
                error_type=type(e).__name__,
            )
        except CommitError as e:
            result = ActionResult(
                success=False,
                kind=kind.value,
                target=target,
                amount=amount,
                message=str(e),
                error_type="CommitError",
                unreconciled=True,
                authorization=e.authorization,
            )

        if result.success:
            logger.info(result.message)
        elif result.unreconciled:
            logger.error(f"{kind.value} on {target}: {result.message}")
        else:
            logger.info(f"{kind.value} on {target} not placed: {result.message}")

        self.history.append(result)
        return result

    def summary(self) -> dict:
        return {
            'total_actions': len(self.history),
            'successful': sum(1 for r in self.history if r.success),
            'failed': sum(1 for r in self.history if not r.success),
            'unreconciled': sum(1 for r in self.history if r.unreconciled),
            'pipeline': self.pipeline.summary(),
        }
