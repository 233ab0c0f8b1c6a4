"""
Two-phase action pipeline.

Every monetary action runs the same four phases, strictly in order, and
stops at the first failure:

1. Validate   - local checks, no side effects         -> ValidationError
2. Authorize  - external signer approves the amount    -> AuthorizationError
3. Commit     - server of record stores the action     -> CommitError
4. Invalidate - affected cached queries marked stale

A commit failure after a successful authorization is the one genuinely
unreconciled state: the payment may have gone through while the server has
no record. It is reported as CommitError with the authorization reference
and is never retried automatically.

At most one submission per (kind, target) is in flight. A second one is
rejected with Busy, not queued.
"""

import logging
from typing import Any, Iterable, Optional

from bidstream.data.api import MarketplaceApi
from bidstream.data.cache import CacheInvalidationBus
from bidstream.errors import AuthorizationError, Busy, CommitError, ValidationError
from bidstream.execution.actions import (
    Action,
    ActionKind,
    BidAction,
    PendingAction,
    Phase,
    PurchaseAction,
)
from bidstream.execution.session import SessionManager
from bidstream.execution.signer import Authorization, Signer

logger = logging.getLogger(__name__)


class ActionPipeline:
    """
    Generic validate -> authorize -> commit -> invalidate executor.

    The session is read (snapshot per action), never mutated.
    """

    def __init__(
        self,
        session: SessionManager,
        signer: Signer,
        api: MarketplaceApi,
        cache: CacheInvalidationBus,
        actions: Optional[Iterable[Action]] = None,
    ):
        self.session = session
        self.signer = signer
        self.api = api
        self.cache = cache
        self._actions: dict[ActionKind, Action] = {
            a.kind: a for a in (actions if actions is not None else (BidAction(), PurchaseAction()))
        }
        self._in_flight: dict[tuple, PendingAction] = {}

        self.completed: int = 0
        self.failed: int = 0
        self.unreconciled: list[PendingAction] = []

    def is_busy(self, kind, target) -> bool:
        return (ActionKind(kind), target) in self._in_flight

    @property
    def in_flight(self) -> list[PendingAction]:
        return list(self._in_flight.values())

    async def submit(self, kind, target: Any, payload: Any) -> PendingAction:
        """
        Run one action through all phases.

        Returns:
            The PendingAction in phase DONE, with the server response in
            `result`

        Raises:
            Busy, ValidationError, AuthorizationError, CommitError
        """
        kind = ActionKind(kind)
        action = self._actions.get(kind)
        if action is None:
            raise ValidationError(f"unsupported action: {kind.value}")

        key = (kind, target)
        if key in self._in_flight:
            current = self._in_flight[key]
            logger.warning(f"Rejected duplicate {kind.value} on {target} ({current.phase.value})")
            raise Busy(f"a {kind.value} on {target} is already being processed")

        pending = PendingAction(kind=kind, target=target, payload=payload)
        self._in_flight[key] = pending
        try:
            return await self._run(action, pending)
        finally:
            del self._in_flight[key]

    async def _run(self, action: Action, pending: PendingAction) -> PendingAction:
        label = f"{pending.kind.value} on {pending.target}"

        # 1. Validate
        snapshot = self.session.snapshot()
        try:
            if snapshot is None:
                raise ValidationError("wallet not connected")
            action.validate(snapshot, pending.target, pending.payload)
        except ValidationError as e:
            self._fail(pending, e)
            logger.info(f"Rejected {label}: {e}")
            raise

        # 2. Authorize
        pending.phase = Phase.AUTHORIZING
        amount = action.amount(pending.payload)
        try:
            authorization = await self.signer.authorize(
                pending.kind.value, pending.target, amount, snapshot.address
            )
        except AuthorizationError as e:
            self._fail(pending, e)
            logger.warning(f"Authorization declined for {label}: {e}")
            raise
        except Exception as e:
            err = AuthorizationError(str(e) or "signer unavailable")
            self._fail(pending, err)
            logger.warning(f"Authorization failed for {label}: {e}")
            raise err from e
        pending.authorization = authorization

        # 3. Commit
        pending.phase = Phase.COMMITTING
        try:
            pending.result = await action.commit(self.api, snapshot, pending.target, pending.payload)
        except Exception as e:
            committed = e.committed if isinstance(e, CommitError) else 0
            err = CommitError(
                self._unreconciled_message(pending, authorization, e),
                authorization=authorization.reference,
                committed=committed,
            )
            self._fail(pending, err)
            self.unreconciled.append(pending)
            logger.error(
                f"UNRECONCILED {label}: authorized as {authorization.reference} "
                f"for {amount} but commit failed: {e}"
            )
            raise err from e

        # 4. Invalidate
        pending.phase = Phase.INVALIDATING
        marked = self.cache.mark_many(action.stale_queries(pending.target))

        pending.phase = Phase.DONE
        self.completed += 1
        logger.info(f"Committed {label} for {amount} ({marked} queries marked stale)")
        return pending

    def _fail(self, pending: PendingAction, error: Exception):
        pending.phase = Phase.FAILED
        pending.error = str(error)
        self.failed += 1

    @staticmethod
    def _unreconciled_message(pending: PendingAction, authorization: Authorization, error: Exception) -> str:
        noun = "bid" if pending.kind == ActionKind.BID else "purchase"
        return (
            f"Your {noun} was approved in your wallet (ref {authorization.reference}) "
            f"but the server did not record it: {error}. The payment may already "
            f"have gone through. Do not retry; check your activity or contact "
            f"support with this reference."
        )

    def summary(self) -> dict:
        return {
            'in_flight': [
                {'kind': p.kind.value, 'target': p.target, 'phase': p.phase.value}
                for p in self._in_flight.values()
            ],
            'completed': self.completed,
            'failed': self.failed,
            'unreconciled': [
                {
                    'kind': p.kind.value,
                    'target': p.target,
                    'authorization': p.authorization.reference if p.authorization else "",
                    'error': p.error,
                }
                for p in self.unreconciled
            ],
        }
