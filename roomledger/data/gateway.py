"""
API gateway to the ledger backend.

``ApiGateway`` is the interface the core depends on; ``HttpApiGateway`` is the
httpx implementation. Every call is fallible and awaited. Responses are
returned as raw JSON structures; normalization into ledger models happens in
:mod:`roomledger.data.ledger_reader`.
"""

from typing import Any, Dict, List, Optional, Protocol

import httpx
import structlog
from httpx import HTTPStatusError, TimeoutException

from roomledger.core.config import ApiConfig
from roomledger.core.exceptions import AuthExpiredError, NetworkUnavailableError, TransportError
from roomledger.core.models import ExpenseOperation, NotificationOperation
from roomledger.data.auth import AuthGuard
from roomledger.utils.reliability import CircuitBreaker, call_with_retry, track_performance

logger = structlog.get_logger(__name__)


class ApiGateway(Protocol):
    """Network boundary used by the ledger core."""

    async def fetch_rooms(self) -> List[Dict[str, Any]]: ...

    async def fetch_expenses(self, room_id: int, month: Optional[str] = None) -> Dict[str, Any]: ...

    async def mutate_expense(
        self, op: ExpenseOperation, payload: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def fetch_settlement_preview(
        self, room_id: int, member_id: int, month: Optional[str] = None
    ) -> Dict[str, Any]: ...

    async def confirm_settlement(self, payload: Dict[str, Any]) -> Dict[str, Any]: ...

    async def fetch_room_trend(self, room_id: int) -> List[Dict[str, Any]]: ...

    async def fetch_expense_months(self) -> List[str]: ...

    async def fetch_user_expenses(self, month: str) -> List[Dict[str, Any]]: ...

    async def fetch_notifications(self) -> List[Dict[str, Any]]: ...

    async def mutate_notifications(
        self,
        op: NotificationOperation,
        notification_id: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]: ...


class HttpApiGateway:
    """
    httpx-backed gateway with bearer auth and a circuit breaker.

    Refuses to send anything once the auth guard reports the session expired,
    and maps HTTP 401 to ``AuthExpiredError``. Reads are retried only when
    ``API_READ_RETRY_ATTEMPTS`` is above one; mutations are never retried.
    """

    def __init__(
        self,
        config: ApiConfig,
        auth_guard: AuthGuard,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config
        self.auth_guard = auth_guard
        self.client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
            follow_redirects=True,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "ledger_api",
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=TransportError,
        )

        logger.info(
            "Ledger API gateway initialized",
            base_url=config.base_url,
            read_retry_attempts=config.read_retry_attempts,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpApiGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _headers(self) -> Dict[str, str]:
        token = self.auth_guard.credential()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make one authenticated request.

        Raises:
            AuthExpiredError: Session expired before sending, or backend answered 401
            NetworkUnavailableError: Timeout or connection failure
            TransportError: Any other HTTP or decoding failure
        """
        if self.auth_guard.is_expired():
            raise AuthExpiredError("Session expired", details={"path": path})

        try:
            logger.debug("Ledger API request", method=method, path=path, params=params)
            response = await self.client.request(
                method, path, params=params, json=json_data, headers=self._headers()
            )
            if response.status_code == 401:
                raise AuthExpiredError("Backend rejected the session", details={"path": path})
            response.raise_for_status()
            return response.json() if response.content else {}

        except HTTPStatusError as e:
            message = _error_message(e.response) or f"HTTP {e.response.status_code}"
            logger.error(
                "Ledger API HTTP error",
                status_code=e.response.status_code,
                response_text=e.response.text[:500],
                path=path,
            )
            raise TransportError(message, status_code=e.response.status_code, path=path)

        except (TimeoutException, httpx.TransportError) as e:
            logger.error("Ledger API unreachable", path=path, error=str(e))
            raise NetworkUnavailableError(f"Network error: {e}", path=path)

        except ValueError as e:
            logger.error("Ledger API returned invalid JSON", path=path, error=str(e))
            raise TransportError(f"Invalid response from backend: {e}", path=path)

    async def _read(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.circuit_breaker.call(
            call_with_retry,
            self._send,
            "GET",
            path,
            params=params,
            max_attempts=self.config.read_retry_attempts,
            retry_exceptions=(NetworkUnavailableError,),
        )

    async def _write(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body = await self.circuit_breaker.call(
            self._send, method, path, params=params, json_data=json_data
        )
        if not isinstance(body, dict):
            return {"success": True, "message": "", "data": body}
        return {
            "success": bool(body.get("success", True)),
            "message": body.get("message") or "",
            "data": body.get("data"),
        }

    # Reads

    @track_performance("fetch_rooms")
    async def fetch_rooms(self) -> List[Dict[str, Any]]:
        body = await self._read(self.config.rooms_path)
        return _unwrap(body, self.config.rooms_path) or []

    @track_performance("fetch_expenses")
    async def fetch_expenses(self, room_id: int, month: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"roomId": room_id}
        if month:
            params["month"] = month
        body = await self._read(self.config.room_expenses_path, params)
        return _unwrap(body, self.config.room_expenses_path) or {}

    @track_performance("fetch_settlement_preview")
    async def fetch_settlement_preview(
        self, room_id: int, member_id: int, month: Optional[str] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"roomId": room_id, "memberId": member_id}
        if month:
            params["month"] = month
        body = await self._read(self.config.settlement_preview_path, params)
        return _unwrap(body, self.config.settlement_preview_path) or {}

    @track_performance("fetch_room_trend")
    async def fetch_room_trend(self, room_id: int) -> List[Dict[str, Any]]:
        body = await self._read(self.config.room_trend_path, {"roomId": room_id})
        return _unwrap(body, self.config.room_trend_path) or []

    @track_performance("fetch_expense_months")
    async def fetch_expense_months(self) -> List[str]:
        body = await self._read(self.config.expense_months_path)
        return _unwrap(body, self.config.expense_months_path) or []

    @track_performance("fetch_user_expenses")
    async def fetch_user_expenses(self, month: str) -> List[Dict[str, Any]]:
        body = await self._read(self.config.user_expenses_path, {"month": month})
        return _unwrap(body, self.config.user_expenses_path) or []

    @track_performance("fetch_notifications")
    async def fetch_notifications(self) -> List[Dict[str, Any]]:
        path = f"{self.config.notifications_path}/get-notifications"
        body = await self._read(path)
        if isinstance(body, list):
            return body
        return _unwrap(body, path) or []

    # Writes

    async def mutate_expense(
        self, op: ExpenseOperation, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        if op == ExpenseOperation.ADD:
            return await self._write("POST", self.config.add_expense_path, json_data=payload)
        if op == ExpenseOperation.UPDATE:
            return await self._write("POST", self.config.update_expense_path, json_data=payload)
        if op == ExpenseOperation.DELETE:
            expense_id = payload["expenseId"]
            return await self._write("DELETE", f"{self.config.delete_expense_path}/{expense_id}")
        raise ValueError(f"Unsupported expense operation: {op}")

    async def confirm_settlement(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._write("POST", self.config.settle_path, json_data=payload)

    async def mutate_notifications(
        self,
        op: NotificationOperation,
        notification_id: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        base = self.config.notifications_path
        if op == NotificationOperation.MARK_ALL_READ:
            return await self._write(
                "PUT", f"{base}/mark-all-read", params={"userId": user_id}, json_data={}
            )
        if op == NotificationOperation.CLEAR_ALL:
            return await self._write("DELETE", f"{base}/clear-all", params={"userId": user_id})
        if op == NotificationOperation.DELETE:
            return await self._write(
                "DELETE", f"{base}/delete-notification", params={"notificationId": notification_id}
            )
        raise ValueError(f"Unsupported notification operation: {op}")


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message")
    return None


def _unwrap(body: Any, path: str) -> Any:
    """Return the ``data`` member of a ``{success, message, data}`` envelope."""
    if not isinstance(body, dict) or ("data" not in body and "success" not in body):
        return body
    if body.get("success") is False:
        raise TransportError(body.get("message") or "Request was not successful", path=path)
    return body.get("data")
