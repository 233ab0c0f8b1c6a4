"""
Execution module: wallet session, signer, action pipeline and bidding.

Components:
- signer: External signer capability (plus DRY_RUN simulation)
- session: Wallet session state, persisted across restarts
- actions: Bid and bid pack purchase definitions
- pipeline: Validate -> authorize -> commit -> invalidate executor
- bidder: High-level bid/purchase interface with user-facing results
"""

from .signer import Signer, SimulatedSigner, ProviderKind, Authorization, WalletHandle
from .session import SessionManager, SessionStatus, SessionSnapshot, ConnectionState
from .actions import ActionKind, Phase, PendingAction, BidRequest, PurchaseRequest
from .pipeline import ActionPipeline
from .bidder import Bidder, ActionResult

__all__ = [
    'Signer',
    'SimulatedSigner',
    'ProviderKind',
    'Authorization',
    'WalletHandle',
    'SessionManager',
    'SessionStatus',
    'SessionSnapshot',
    'ConnectionState',
    'ActionKind',
    'Phase',
    'PendingAction',
    'BidRequest',
    'PurchaseRequest',
    'ActionPipeline',
    'Bidder',
    'ActionResult',
]
