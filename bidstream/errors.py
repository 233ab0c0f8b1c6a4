"""
Error taxonomy for the marketplace client.

ValidationError / AuthorizationError: nothing happened yet, safe to retry.
CommitError: the external payment may have gone through while the server
has no record of it. Must be shown to the user, never retried silently.
StreamConnectionError / StorageError: absorbed internally (reconnect loop,
reset to defaults).
"""

from typing import Optional


class BidstreamError(Exception):
    """Base exception for all client errors."""

    pass


class ValidationError(BidstreamError):
    """A local precondition failed before anything external was touched."""

    pass


class AuthorizationError(BidstreamError):
    """The external signer declined or is unavailable."""

    pass


class CommitError(BidstreamError):
    """
    The server of record rejected or never received an authorized action.

    The action was approved by the signer, so funds or signatures may
    already be spent. `authorization` carries the signer's reference so the
    user can reconcile it with support.
    """

    unreconciled = True

    def __init__(self, message: str, authorization: str = "", committed: int = 0):
        super().__init__(message)
        self.authorization = authorization
        self.committed = committed


class Busy(BidstreamError):
    """An action for the same (kind, target) is already in flight."""

    pass


class StreamConnectionError(BidstreamError):
    """Transport failure on the event stream. Recovered by reconnecting."""

    pass


class StorageError(BidstreamError):
    """Durable storage is corrupt or unavailable. Recovered by resetting."""

    pass


class ApiError(BidstreamError):
    """Non-success response from the marketplace REST API."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
