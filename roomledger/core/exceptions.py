"""
Custom exceptions for RoomLedger.

Provides a hierarchy of exceptions so callers can tell input problems,
transport failures, expired sessions and computation defects apart.
"""

from typing import Any, Dict, List, Optional


class RoomLedgerError(Exception):
    """Base exception for all RoomLedger errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RoomLedgerError):
    """Raised when there are configuration issues."""
    pass


class ValidationError(RoomLedgerError):
    """Client-side input rejection. Raised before any network call and never retried."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field


class DataAccessError(RoomLedgerError):
    """Base class for data access errors."""
    pass


class TransportError(DataAccessError):
    """Network or API failure talking to the ledger backend."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        path: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.path = path


class NetworkUnavailableError(TransportError):
    """The backend could not be reached (timeout or connection failure)."""
    pass


class CircuitBreakerError(TransportError):
    """Circuit breaker is open, preventing calls."""
    pass


class AuthExpiredError(RoomLedgerError):
    """The session credential is missing or expired. Handled by the auth guard, not the core."""
    pass


class ComputationInvariantViolation(RoomLedgerError):
    """
    A derived ledger figure broke one of its invariants.

    Signals a programming or data defect. The raw balances computed before the
    check failed are carried along so a view can still display them.
    """

    def __init__(self, message: str, balances: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.balances = balances or []
