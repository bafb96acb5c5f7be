"""Validate the HTTP gateway and auth guard against a mocked backend."""

import asyncio
import base64
import json
import time
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from roomledger.core.config import ApiConfig
from roomledger.core.exceptions import (
    AuthExpiredError,
    CircuitBreakerError,
    NetworkUnavailableError,
    TransportError,
)
from roomledger.core.models import ExpenseOperation, NotificationOperation
from roomledger.data.auth import JwtAuthGuard, decode_jwt_payload
from roomledger.data.gateway import HttpApiGateway
from roomledger.utils.reliability import CircuitBreaker

BASE_URL = "https://ledger.test/api"


def make_token(exp, **claims) -> str:
    body = json.dumps({"exp": exp, **claims}).encode()
    payload = base64.urlsafe_b64encode(body).rstrip(b"=").decode()
    return f"eyJhbGciOiJIUzI1NiJ9.{payload}.signature"


class TestJwtAuthGuard:
    def test_valid_token(self):
        guard = JwtAuthGuard(make_token(time.time() + 3600, nameid="user-7"))

        assert guard.is_authenticated()
        assert not guard.is_expired()
        assert guard.user_id == "user-7"

    def test_expired_token(self):
        guard = JwtAuthGuard(make_token(1000), clock=lambda: 2000)

        assert guard.is_expired()
        assert not guard.is_authenticated()

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.!!!.c"])
    def test_missing_or_malformed_token_counts_as_expired(self, token):
        assert JwtAuthGuard(token).is_expired()

    def test_token_without_exp_counts_as_expired(self):
        payload = base64.urlsafe_b64encode(b'{"nameid": "x"}').rstrip(b"=").decode()

        assert JwtAuthGuard(f"h.{payload}.s").is_expired()

    def test_session_expiry_clears_token_and_redirects(self):
        redirect = Mock()
        guard = JwtAuthGuard(make_token(time.time() + 3600), on_redirect=redirect)

        guard.on_session_expired(AuthExpiredError("Backend rejected the session"))

        assert guard.credential() is None
        redirect.assert_called_once_with()

    def test_decode_jwt_payload(self):
        assert decode_jwt_payload(make_token(42, role="member")) == {"exp": 42, "role": "member"}
        assert decode_jwt_payload("garbage") is None


class TestHttpApiGateway:
    """Request construction and error mapping."""

    def setup_method(self):
        self.requests = []
        self.responses = []
        self.config = ApiConfig(API_BASE_URL=BASE_URL + "/")
        self.guard = JwtAuthGuard(make_token(time.time() + 3600))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def make_gateway(self, config=None, breaker=None) -> HttpApiGateway:
        config = config or self.config
        client = httpx.AsyncClient(
            base_url=config.base_url, transport=httpx.MockTransport(self.handler)
        )
        return HttpApiGateway(config, self.guard, client=client, circuit_breaker=breaker)

    def run(self, coro_factory, **gateway_kwargs):
        async def scenario():
            async with self.make_gateway(**gateway_kwargs) as gateway:
                return await coro_factory(gateway)

        return asyncio.run(scenario())

    def test_fetch_rooms_unwraps_envelope_and_sends_bearer(self):
        rooms = [{"roomId": 1, "name": "General"}]
        self.responses.append(
            httpx.Response(200, json={"success": True, "message": "", "data": rooms})
        )

        result = self.run(lambda g: g.fetch_rooms())

        assert result == rooms
        request = self.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/rooms/get-rooms"
        assert request.headers["Authorization"] == f"Bearer {self.guard.credential()}"

    def test_fetch_expenses_query(self):
        self.responses.append(httpx.Response(200, json={"success": True, "data": {"expenses": []}}))

        result = self.run(lambda g: g.fetch_expenses(7, "2025-10"))

        assert result == {"expenses": []}
        params = self.requests[0].url.params
        assert params["roomId"] == "7"
        assert params["month"] == "2025-10"

    def test_history_reads(self):
        self.responses.append(
            httpx.Response(200, json={"success": True, "data": ["2025-09", "2025-10"]})
        )
        self.responses.append(
            httpx.Response(200, json={"success": True, "data": [{"item": "Cab", "amount": 15}]})
        )

        async def reads(gateway):
            return (
                await gateway.fetch_expense_months(),
                await gateway.fetch_user_expenses("2025-10"),
            )

        months, entries = self.run(reads)

        assert months == ["2025-09", "2025-10"]
        assert entries == [{"item": "Cab", "amount": 15}]
        assert self.requests[0].url.path == "/api/Expenses/get-userexpesne-months"
        assert self.requests[1].url.path == "/api/Expenses/get-user-expenses"
        assert self.requests[1].url.params["month"] == "2025-10"

    def test_unauthorized_maps_to_auth_expired(self):
        self.responses.append(httpx.Response(401, json={"message": "Unauthorized"}))

        with pytest.raises(AuthExpiredError):
            self.run(lambda g: g.fetch_rooms())

    def test_expired_session_never_sends(self):
        self.guard = JwtAuthGuard(make_token(1000), clock=lambda: 2000)

        with pytest.raises(AuthExpiredError):
            self.run(lambda g: g.fetch_rooms())
        assert self.requests == []

    def test_server_error_maps_to_transport_error(self):
        self.responses.append(httpx.Response(500, json={"message": "Database unavailable"}))

        with pytest.raises(TransportError) as exc_info:
            self.run(lambda g: g.fetch_rooms())

        assert exc_info.value.message == "Database unavailable"
        assert exc_info.value.status_code == 500
        assert not isinstance(exc_info.value, NetworkUnavailableError)

    def test_unsuccessful_envelope_is_transport_error(self):
        self.responses.append(httpx.Response(200, json={"success": False, "message": "No room"}))

        with pytest.raises(TransportError, match="No room"):
            self.run(lambda g: g.fetch_expenses(99))

    def test_connection_failure_is_not_retried_by_default(self):
        self.responses.append(httpx.ConnectError("refused"))

        with pytest.raises(NetworkUnavailableError):
            self.run(lambda g: g.fetch_rooms())
        assert len(self.requests) == 1

    @patch("asyncio.sleep", new_callable=AsyncMock)
    def test_reads_retry_when_configured(self, mock_sleep):
        config = ApiConfig(API_BASE_URL=BASE_URL, API_READ_RETRY_ATTEMPTS=3)
        self.responses.extend(
            [
                httpx.ConnectError("refused"),
                httpx.ReadTimeout("slow"),
                httpx.Response(200, json={"success": True, "data": []}),
            ]
        )

        result = self.run(lambda g: g.fetch_rooms(), config=config)

        assert result == []
        assert len(self.requests) == 3

    def test_mutations_are_never_retried(self):
        config = ApiConfig(API_BASE_URL=BASE_URL, API_READ_RETRY_ATTEMPTS=3)
        self.responses.append(httpx.ConnectError("refused"))

        with pytest.raises(NetworkUnavailableError):
            self.run(
                lambda g: g.mutate_expense(ExpenseOperation.ADD, {"item": "Tea"}), config=config
            )
        assert len(self.requests) == 1

    def test_add_expense_posts_payload(self):
        self.responses.append(
            httpx.Response(200, json={"success": True, "message": "Expense added"})
        )
        payload = {"item": "Tea", "amount": "3.50", "date": "2025-10-01", "roomId": 1}

        result = self.run(lambda g: g.mutate_expense(ExpenseOperation.ADD, payload))

        assert result == {"success": True, "message": "Expense added", "data": None}
        request = self.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/Expenses/add-expense"
        assert json.loads(request.content) == payload

    def test_delete_expense_uses_path_id(self):
        self.responses.append(httpx.Response(200, json={"success": True, "message": "Deleted"}))

        self.run(lambda g: g.mutate_expense(ExpenseOperation.DELETE, {"expenseId": 5}))

        request = self.requests[0]
        assert request.method == "DELETE"
        assert request.url.path == "/api/Expenses/delete-expense/5"

    def test_rejected_mutation_is_returned_not_raised(self):
        self.responses.append(
            httpx.Response(200, json={"success": False, "message": "Not your expense"})
        )

        result = self.run(lambda g: g.mutate_expense(ExpenseOperation.DELETE, {"expenseId": 5}))

        assert result["success"] is False
        assert result["message"] == "Not your expense"

    def test_notification_commands(self):
        self.responses.extend(
            [httpx.Response(200, json={}), httpx.Response(204), httpx.Response(200, json={})]
        )

        async def commands(gateway):
            await gateway.mutate_notifications(NotificationOperation.MARK_ALL_READ, user_id="u1")
            await gateway.mutate_notifications(NotificationOperation.CLEAR_ALL, user_id="u1")
            return await gateway.mutate_notifications(
                NotificationOperation.DELETE, notification_id=4
            )

        result = self.run(commands)

        assert result["success"] is True
        mark, clear, delete = self.requests
        assert (mark.method, mark.url.path) == ("PUT", "/api/notifications/mark-all-read")
        assert mark.url.params["userId"] == "u1"
        assert (clear.method, clear.url.path) == ("DELETE", "/api/notifications/clear-all")
        assert delete.url.params["notificationId"] == "4"

    def test_bare_list_notifications(self):
        self.responses.append(httpx.Response(200, json=[{"id": 1, "title": "Hi"}]))

        result = self.run(lambda g: g.fetch_notifications())

        assert result == [{"id": 1, "title": "Hi"}]
        assert self.requests[0].url.path == "/api/notifications/get-notifications"

    def test_circuit_breaker_opens(self):
        breaker = CircuitBreaker("test", failure_threshold=1, expected_exception=TransportError)
        self.responses.append(httpx.Response(503, text="unavailable"))

        async def twice(gateway):
            with pytest.raises(TransportError):
                await gateway.fetch_rooms()
            await gateway.fetch_rooms()

        with pytest.raises(CircuitBreakerError):
            self.run(twice, breaker=breaker)
        assert len(self.requests) == 1
