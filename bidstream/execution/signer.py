"""
External signer capability (wallet extension).

The signer is opaque: it connects an account, switches networks and
approves monetary actions, or refuses. How it signs is not our concern.

SimulatedSigner is the DRY_RUN stand-in. It approves everything (like the
development build of the web client) unless told to decline.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from config.settings import DEFAULT_CHAIN_ID, SIMULATED_ADDRESS, SUPPORTED_CHAINS
from bidstream.errors import AuthorizationError

logger = logging.getLogger(__name__)


class ProviderKind(str, Enum):
    METAMASK = "metamask"
    COINBASE = "coinbase"
    WALLETCONNECT = "walletconnect"


@dataclass
class WalletHandle:
    """Account handed back by a successful handshake."""
    address: str
    chain_id: int
    balance: Optional[float] = None


@dataclass
class Authorization:
    """Proof that the signer approved an action."""
    reference: str
    kind: str
    target: Any
    amount: float
    address: str
    authorized_at: float = field(default_factory=time.time)


class Signer(ABC):
    """Capability interface for wallet providers."""

    @abstractmethod
    async def request_account(self, provider: ProviderKind) -> WalletHandle:
        """Ask the user to connect an account. Raises on refusal/absence."""

    @abstractmethod
    async def switch_network(self, chain_id: int) -> int:
        """Switch the active network. Returns the new chain id."""

    @abstractmethod
    async def authorize(self, kind: str, target: Any, amount: float, address: str) -> Authorization:
        """Approve a monetary action. Raises on refusal."""


class SimulatedSigner(Signer):
    """
    Paper-trading signer.

    Args:
        address: Account returned by every handshake
        chain_id: Initial network
        providers: Provider kinds that "are installed"
        decline: Refuse every authorization (simulates user rejection)
    """

    def __init__(
        self,
        address: str = SIMULATED_ADDRESS,
        chain_id: int = DEFAULT_CHAIN_ID,
        providers: tuple = (ProviderKind.METAMASK,),
        decline: bool = False,
        balance: Optional[float] = None,
    ):
        self.address = address
        self.chain_id = chain_id
        self.providers = tuple(ProviderKind(p) for p in providers)
        self.decline = decline
        self.balance = balance
        self.authorizations: list[Authorization] = []

    async def request_account(self, provider: ProviderKind) -> WalletHandle:
        provider = ProviderKind(provider)
        if provider not in self.providers:
            raise AuthorizationError(f"{provider.value} wallet is not installed")
        logger.info(f"[DRY RUN] {provider.value} connected as {self.address}")
        return WalletHandle(address=self.address, chain_id=self.chain_id, balance=self.balance)

    async def switch_network(self, chain_id: int) -> int:
        if chain_id not in SUPPORTED_CHAINS:
            raise AuthorizationError(f"Unsupported network: {chain_id}")
        self.chain_id = chain_id
        return chain_id

    async def authorize(self, kind: str, target: Any, amount: float, address: str) -> Authorization:
        if self.decline:
            raise AuthorizationError("User rejected the request")

        auth = Authorization(
            reference=f"DRY-{uuid.uuid4().hex[:12]}",
            kind=kind,
            target=target,
            amount=amount,
            address=address,
        )
        self.authorizations.append(auth)
        logger.info(f"[DRY RUN] Authorized {kind} on {target} for {amount} ({auth.reference})")
        return auth
