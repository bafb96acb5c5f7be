"""
View coordinator: the refresh protocol every screen follows.

A coordinator owns one projection (the data a screen shows) and keeps it in
step with the change buses it listens to:

    IDLE --enter()--> LOADING --> READY
    READY --signal--> REFRESHING_BACKGROUND --> READY
    any --teardown()--> TORN_DOWN

At most one fetch is in flight per view. Signals that arrive while a fetch
is running set ``refresh_pending`` and cause exactly one more fetch once the
current one finishes. Results that complete after ``teardown()`` are dropped,
and so are results fetched for a selection the user has since changed.
"""

import asyncio
from typing import Any, Callable, Generic, Iterable, List, Optional, Sequence, TypeVar

import structlog

from roomledger.core.exceptions import AuthExpiredError
from roomledger.core.models import ViewState
from roomledger.data.auth import AuthGuard
from roomledger.events.change_bus import ChangeBus, Subscription

logger = structlog.get_logger(__name__)

P = TypeVar("P")
T = TypeVar("T")

ErrorSink = Callable[[Exception], None]


def preserve_selection(
    previous: Optional[Any], candidates: Iterable[T], key: Callable[[T], Any]
) -> Optional[T]:
    """
    Re-find the previously selected item among freshly fetched ``candidates``.

    Falls back to the first candidate when the previous selection is gone,
    and to None when there are no candidates.
    """
    candidates = list(candidates)
    if previous is not None:
        for candidate in candidates:
            if key(candidate) == previous:
                return candidate
    return candidates[0] if candidates else None


def preserve_month(previous: Optional[str], available: Sequence[str]) -> Optional[str]:
    """Keep ``previous`` if still available, else the most recent available month."""
    if previous and previous in available:
        return previous
    return max(available) if available else previous


class ViewCoordinator(Generic[P]):
    """
    Base class for screen coordinators.

    Subclasses implement :meth:`empty_projection` and :meth:`load`, and may
    override :meth:`on_applied` to sync selection state after a projection
    is swapped in.
    """

    name = "view"

    def __init__(
        self,
        buses: Sequence[ChangeBus],
        auth_guard: Optional[AuthGuard] = None,
        error_sink: Optional[ErrorSink] = None,
    ):
        self.buses = list(buses)
        self.auth_guard = auth_guard
        self.error_sink = error_sink

        self.state = ViewState.IDLE
        self.projection: P = self.empty_projection()
        self.last_error: Optional[Exception] = None
        self.refresh_pending = False
        self.fetch_count = 0
        self.selection_version = 0

        self._subscriptions: List[Subscription] = []
        self._token = 0
        self._inflight: Optional[asyncio.Task] = None

    # Hooks

    def empty_projection(self) -> P:
        raise NotImplementedError

    async def load(self, previous: P) -> P:
        """Fetch and project fresh data. ``previous`` is the projection on screen."""
        raise NotImplementedError

    def on_applied(self, projection: P) -> None:
        pass

    # Protocol

    @property
    def is_active(self) -> bool:
        return self.state != ViewState.TORN_DOWN

    @property
    def is_busy(self) -> bool:
        return self.state in (ViewState.LOADING, ViewState.REFRESHING_BACKGROUND)

    async def enter(self) -> None:
        """
        First entry into the view: subscribe, fetch in the foreground, go READY.

        On failure the view still goes READY, with an empty projection, and
        the error goes to the error sink.

        Raises:
            AuthExpiredError: Passed to the caller untouched
        """
        if self.state != ViewState.IDLE:
            logger.debug("View already entered", view=self.name, state=self.state.value)
            return

        self._subscriptions = [bus.subscribe(self.request_refresh) for bus in self.buses]
        self.state = ViewState.LOADING
        token = self._token
        version = self.selection_version
        logger.debug("View loading", view=self.name)

        try:
            self.fetch_count += 1
            projection = await self.load(self.projection)
        except AuthExpiredError:
            if token == self._token:
                self.state = ViewState.READY
            raise
        except Exception as e:
            if token != self._token:
                return
            self._apply(self.empty_projection(), sync_selection=False)
            self.state = ViewState.READY
            self._surface(e)
        else:
            if token != self._token:
                logger.debug("Discarding load result for torn down view", view=self.name)
                return
            # Show the first load even if the selection moved; the rerun replaces it.
            self._apply(projection, sync_selection=version == self.selection_version)
            self.state = ViewState.READY

        if self.refresh_pending:
            self._start_background(token)

    def request_refresh(self) -> None:
        """
        Change-bus handler, also usable for a manual pull-to-refresh.

        Starts a background refresh when READY; otherwise only marks one as
        pending.
        """
        if self.state == ViewState.TORN_DOWN:
            return
        if self.state != ViewState.READY or self._inflight is not None:
            self.refresh_pending = True
            return
        self._start_background(self._token)

    def change_selection(self) -> None:
        """
        Record that the user changed what the view shows, and refetch.

        Call after updating the selection attributes ``load`` reads. A fetch
        already in flight for the old selection is discarded when it lands.
        """
        self.selection_version += 1
        self.request_refresh()

    def _start_background(self, token: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.refresh_pending = True
            logger.warning("No running event loop; refresh deferred", view=self.name)
            return

        self.refresh_pending = False
        self.state = ViewState.REFRESHING_BACKGROUND
        self._inflight = loop.create_task(self._background_refresh(token))

    async def _background_refresh(self, token: int) -> None:
        try:
            while True:
                version = self.selection_version
                try:
                    self.fetch_count += 1
                    projection = await self.load(self.projection)
                except AuthExpiredError as e:
                    if token != self._token:
                        return
                    self.state = ViewState.READY
                    self._forward_auth(e)
                    return
                except Exception as e:
                    if token != self._token:
                        return
                    self._surface(e)
                else:
                    if token != self._token:
                        logger.debug("Discarding refresh for torn down view", view=self.name)
                        return
                    if version == self.selection_version:
                        self._apply(projection)
                    else:
                        logger.debug(
                            "Discarding refresh for a superseded selection", view=self.name
                        )
                        self.refresh_pending = True

                if not self.refresh_pending:
                    self.state = ViewState.READY
                    return
                self.refresh_pending = False
                logger.debug("Running coalesced refresh", view=self.name)
        finally:
            if token == self._token:
                self._inflight = None

    async def wait_idle(self) -> None:
        """Wait until no refresh is in flight for this view."""
        while self._inflight is not None:
            task = self._inflight
            await task
            if self._inflight is task:
                break

    def teardown(self) -> None:
        """Unsubscribe and invalidate in-flight work. Synchronous and idempotent."""
        if self.state == ViewState.TORN_DOWN:
            return
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self._token += 1
        self.refresh_pending = False
        self.state = ViewState.TORN_DOWN
        logger.debug("View torn down", view=self.name)

    # Internals

    def _apply(self, projection: P, sync_selection: bool = True) -> None:
        self.projection = projection
        self.last_error = None
        if sync_selection:
            self.on_applied(projection)

    def _surface(self, error: Exception) -> None:
        self.last_error = error
        logger.error(
            "View refresh failed",
            view=self.name,
            error=str(error),
            error_type=type(error).__name__,
        )
        if self.error_sink:
            self.error_sink(error)

    def _forward_auth(self, error: AuthExpiredError) -> None:
        if self.auth_guard is None:
            logger.error("Session expired with no auth guard attached", view=self.name)
            return
        self.auth_guard.on_session_expired(error)
