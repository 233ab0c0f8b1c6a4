"""
Wallet session management.

One SessionManager per process is the single source of truth for "is the
user allowed to act". The account address, network and provider kind are
persisted and restored at startup, but the connection itself never is:
every process starts DISCONNECTED and must connect (or resume) explicitly.

Usage:
    session = SessionManager(signer, storage)
    status = await session.connect("metamask")
    if status.state == ConnectionState.CONNECTED:
        snapshot = session.snapshot()   # immutable, for one action
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bidstream.data.storage import LocalStorage, WALLET_KEY
from bidstream.execution.signer import ProviderKind, Signer

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class SessionStatus:
    """Session state."""
    state: ConnectionState = ConnectionState.DISCONNECTED
    address: str = ""
    chain_id: Optional[int] = None
    provider: Optional[ProviderKind] = None
    balance: Optional[float] = None
    error: str = ""


@dataclass(frozen=True)
class SessionSnapshot:
    """Credentials borrowed by the action pipeline for a single action."""
    address: str
    chain_id: Optional[int]
    provider: Optional[ProviderKind]
    balance: Optional[float] = None


def _parse_wallet_record(raw) -> dict:
    address = raw["address"]
    if not isinstance(address, str) or not address:
        raise ValueError("wallet address missing")
    chain_id = raw.get("chainId")
    provider = raw.get("walletType")
    return {
        "address": address,
        "chain_id": int(chain_id) if chain_id is not None else None,
        "provider": ProviderKind(provider) if provider else None,
    }


class SessionManager:
    """
    Tracks the signing session and persists it across restarts.

    Overlapping connect() calls are not coalesced: whichever finishes last
    decides the final state.
    """

    def __init__(self, signer: Signer, storage: LocalStorage):
        self.signer = signer
        self.storage = storage
        self._status = SessionStatus()
        self.saved_provider: Optional[ProviderKind] = None
        self._restore()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> ConnectionState:
        return self._status.state

    @property
    def address(self) -> str:
        return self._status.address

    @property
    def chain_id(self) -> Optional[int]:
        return self._status.chain_id

    @property
    def is_connected(self) -> bool:
        return self._status.state == ConnectionState.CONNECTED

    def _restore(self):
        record = self.storage.load(WALLET_KEY, None, parse=_parse_wallet_record)
        if record is None:
            return
        self._status.address = record["address"]
        self._status.chain_id = record["chain_id"]
        self.saved_provider = record["provider"]
        logger.info(f"Restored wallet {record['address']} (not connected)")

    async def connect(self, provider) -> SessionStatus:
        """
        Run the signer handshake.

        Returns:
            SessionStatus; on failure state is ERROR with a readable reason
        """
        try:
            provider = ProviderKind(provider)
        except ValueError:
            self._set_error(f"Unsupported wallet type: {provider}")
            return self._status

        self._status.state = ConnectionState.CONNECTING
        self._status.error = ""

        try:
            handle = await self.signer.request_account(provider)
            if not handle or not handle.address:
                raise RuntimeError("No accounts found")
        except Exception as e:
            self._set_error(str(e) or f"Failed to connect {provider.value} wallet")
            return self._status

        self._status = SessionStatus(
            state=ConnectionState.CONNECTED,
            address=handle.address,
            chain_id=handle.chain_id,
            provider=provider,
            balance=handle.balance,
        )
        self.saved_provider = provider
        self._persist()
        logger.info(f"Wallet connected: {handle.address} on chain {handle.chain_id} ({provider.value})")
        return self._status

    async def resume(self) -> Optional[SessionStatus]:
        """Reconnect with the provider saved by a previous run, if any."""
        if self.saved_provider is None:
            return None
        return await self.connect(self.saved_provider)

    def disconnect(self) -> SessionStatus:
        """Forget the account. Synchronous and safe to repeat."""
        was = self._status.address
        self._status = SessionStatus()
        self.saved_provider = None
        self.storage.remove(WALLET_KEY)
        if was:
            logger.info(f"Wallet disconnected: {was}")
        return self._status

    async def switch_network(self, chain_id: int) -> bool:
        """Change network. On failure the previous network stays active."""
        if not self.is_connected:
            logger.warning("Cannot switch network: wallet not connected")
            return False
        if chain_id == self._status.chain_id:
            return True

        try:
            new_chain = await self.signer.switch_network(chain_id)
        except Exception as e:
            logger.error(f"Network switch to {chain_id} failed: {e}")
            return False

        self._status.chain_id = new_chain if new_chain is not None else chain_id
        self._persist()
        logger.info(f"Switched to chain {self._status.chain_id}")
        return True

    def snapshot(self) -> Optional[SessionSnapshot]:
        """Immutable view of the credentials, or None if not connected."""
        if not self.is_connected:
            return None
        return SessionSnapshot(
            address=self._status.address,
            chain_id=self._status.chain_id,
            provider=self._status.provider,
            balance=self._status.balance,
        )

    def _set_error(self, reason: str):
        self._status = SessionStatus(state=ConnectionState.ERROR, error=reason)
        logger.error(f"Wallet connection failed: {reason}")

    def _persist(self):
        self.storage.save(WALLET_KEY, {
            "address": self._status.address,
            "chainId": self._status.chain_id,
            "walletType": self._status.provider.value if self._status.provider else None,
        })

    def summary(self) -> dict:
        return {
            'state': self._status.state.value,
            'address': self._status.address,
            'chain_id': self._status.chain_id,
            'provider': self._status.provider.value if self._status.provider else None,
            'saved_provider': self.saved_provider.value if self.saved_provider else None,
            'error': self._status.error,
        }
