"""
Auth guard collaborator.

The core only asks three questions of the guard (is there a session, has it
expired, what is the bearer credential) and hands expired-session errors back
to it. Token issuance and login flows live outside this package.
"""

from __future__ import annotations

import base64
import json
import time
from typing import Any, Callable, Dict, Optional, Protocol

import structlog

from roomledger.core.exceptions import AuthExpiredError

logger = structlog.get_logger(__name__)


class AuthGuard(Protocol):
    """Interface the core expects from the session owner."""

    def is_authenticated(self) -> bool: ...

    def is_expired(self) -> bool: ...

    def credential(self) -> Optional[str]: ...

    def on_session_expired(self, error: AuthExpiredError) -> None: ...


def decode_jwt_payload(token: str) -> Optional[Dict[str, Any]]:
    """Decode the (unverified) payload segment of a JWT, or None if malformed."""
    try:
        payload = token.split(".")[1]
        padded = payload + "=" * (-len(payload) % 4)
        return json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (IndexError, ValueError, UnicodeDecodeError) as e:
        logger.warning("Could not decode session token", error=str(e))
        return None


class JwtAuthGuard:
    """
    Auth guard backed by a bearer JWT.

    A token without a readable ``exp`` claim is treated as expired. When the
    session expires the token is dropped and ``on_redirect`` is called, which
    is where an application sends the user back to its login screen.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        on_redirect: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._token = token
        self._on_redirect = on_redirect
        self._clock = clock

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def credential(self) -> Optional[str]:
        return self._token

    def is_expired(self) -> bool:
        if not self._token:
            return True
        claims = decode_jwt_payload(self._token)
        if not claims or "exp" not in claims:
            return True
        try:
            return float(claims["exp"]) < self._clock()
        except (TypeError, ValueError):
            return True

    def is_authenticated(self) -> bool:
        return bool(self._token) and not self.is_expired()

    @property
    def user_id(self) -> Optional[str]:
        """The ``nameid`` claim of the current token, if any."""
        if not self._token:
            return None
        claims = decode_jwt_payload(self._token) or {}
        return claims.get("nameid")

    def on_session_expired(self, error: AuthExpiredError) -> None:
        """Clear the session and hand control to the login redirect."""
        logger.warning("Session expired, clearing credential", reason=error.message)
        self._token = None
        if self._on_redirect:
            self._on_redirect()
