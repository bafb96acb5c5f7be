"""In-app notification commands and the process-wide unread count."""

from typing import Callable, List, Optional

import structlog

from roomledger.core.exceptions import ValidationError
from roomledger.core.models import MutationResult, Notification, NotificationOperation
from roomledger.data.gateway import ApiGateway
from roomledger.data.ledger_reader import LedgerReader
from roomledger.events.change_bus import ChangeBus

logger = structlog.get_logger(__name__)


class NotificationState:
    """
    Unread notification count shared by every screen.

    Readers only look at ``unread_count``; only :class:`NotificationService`
    changes it.
    """

    def __init__(self):
        self.unread_count = 0

    def set(self, count: int) -> None:
        self.unread_count = max(count, 0)

    def decrement(self) -> None:
        if self.unread_count > 0:
            self.unread_count -= 1

    def reset(self) -> None:
        self.unread_count = 0


_state: Optional[NotificationState] = None


def get_notification_state() -> NotificationState:
    """Get the process-wide notification state, creating it on first use."""
    global _state
    if _state is None:
        _state = NotificationState()
    return _state


def reset_notification_state() -> None:
    global _state
    _state = None


class NotificationService:
    """Fetch notifications and run the mark-read, clear and delete commands."""

    def __init__(
        self,
        gateway: ApiGateway,
        notifications_bus: ChangeBus,
        state: Optional[NotificationState] = None,
        user_id: Optional[Callable[[], Optional[str]]] = None,
    ):
        self.gateway = gateway
        self.notifications_bus = notifications_bus
        self.state = state or get_notification_state()
        self._user_id = user_id or (lambda: None)
        self.reader = LedgerReader(gateway)

    async def fetch_all(self) -> List[Notification]:
        """Fetch every notification and sync the unread count to it."""
        notifications = await self.reader.fetch_notifications()
        self.state.set(sum(1 for n in notifications if not n.is_read))
        return notifications

    def _require_user(self) -> str:
        user_id = self._user_id()
        if not user_id:
            raise ValidationError("No signed-in user for this command.", field="user_id")
        return user_id

    async def _run(
        self, op: NotificationOperation, on_success: Callable[[], None], **kwargs
    ) -> MutationResult:
        response = await self.gateway.mutate_notifications(op, **kwargs)
        result = MutationResult(
            success=bool(response.get("success", True)),
            message=response.get("message") or "",
            data=response.get("data"),
        )
        if not result.success:
            logger.warning(
                "Notification command rejected", operation=op.value, message=result.message
            )
            return result

        on_success()
        logger.info(
            "Notification command confirmed", operation=op.value, unread=self.state.unread_count
        )
        self.notifications_bus.publish()
        return result

    async def mark_all_read(self) -> MutationResult:
        return await self._run(
            NotificationOperation.MARK_ALL_READ, self.state.reset, user_id=self._require_user()
        )

    async def clear_all(self) -> MutationResult:
        return await self._run(
            NotificationOperation.CLEAR_ALL, self.state.reset, user_id=self._require_user()
        )

    async def delete(self, notification_id: int) -> MutationResult:
        return await self._run(
            NotificationOperation.DELETE, self.state.decrement, notification_id=notification_id
        )
