"""Debounced, single-flight recalculation for interactive edits."""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, Set, TypeVar

import structlog

from taskintel.errors import StaleResult, TaskIntelError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RecalcState(str, Enum):
    """Lifecycle of the most recent recalculation request."""

    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    APPLIED = "applied"
    STALE = "stale"
    FAILED = "failed"


class RecalculationController(Generic[T]):
    """Coalesces bursts of edits into one recalculation.

    ``notify_edit`` (re)arms a debounce timer. When it fires, ``compute`` runs;
    at most one computation is in flight at a time. An edit arriving while a
    computation is in flight makes its result stale: the result is discarded
    once it arrives (it is not cancelled) and the newer request runs next.
    Only the latest non-stale result is passed to ``apply``.

    On failure the last applied result stays available, ``stale_indicator`` is
    set and nothing is retried automatically; ``retry()`` or a new edit re-arms.

    Must be driven from a running event loop.
    """

    def __init__(
        self,
        compute: Callable[[], Awaitable[T]],
        apply: Optional[Callable[[T], None]] = None,
        debounce_ms: int = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the controller.

        Args:
            compute: Coroutine factory producing a recalculation result
            apply: Publishes a fresh result; may raise TaskIntelError
            debounce_ms: Debounce window in milliseconds
            sleep: Awaitable sleep used for the debounce timer
        """
        self._compute = compute
        self._apply = apply
        self.debounce_seconds = debounce_ms / 1000.0
        self._sleep = sleep

        self.state = RecalcState.IDLE
        self.last_applied: Optional[T] = None
        self.last_error: Optional[TaskIntelError] = None
        self.calls = 0

        self._request_id = 0
        self._flight = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None
        self._runs: Set[asyncio.Task] = set()

    @property
    def stale_indicator(self) -> bool:
        """Whether the displayed result may be out of date after a failure."""
        return self.state == RecalcState.FAILED

    @property
    def in_flight(self) -> bool:
        return self._flight.locked()

    def notify_edit(self) -> None:
        """Record an edit and (re)arm the debounce timer."""
        self._request_id += 1
        if self.in_flight:
            logger.debug("recalculation_superseded", latest_request_id=self._request_id)
        else:
            self.state = RecalcState.PENDING
        self._arm()

    def retry(self) -> None:
        """Re-arm after a failure."""
        logger.info("recalculation_retry", previous_state=self.state.value)
        self.notify_edit()

    async def run_now(self) -> Optional[T]:
        """Run a recalculation immediately, bypassing the debounce window.

        Returns:
            The applied result, or None if it failed or was superseded
        """
        self._request_id += 1
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        applied = await self._run(self._request_id)
        return self.last_applied if applied else None

    async def flush(self) -> None:
        """Wait until no recalculation is pending or in flight."""
        while True:
            pending = {t for t in (self._timer, *self._runs) if t is not None and not t.done()}
            if not pending:
                return
            done, _ = await asyncio.wait(pending)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()

    def _arm(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.ensure_future(self._debounce(self._request_id))

    async def _debounce(self, request_id: int) -> None:
        await self._sleep(self.debounce_seconds)
        # Spawned separately so re-arming the timer never cancels a computation
        run = asyncio.ensure_future(self._run(request_id))
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)

    def _check_current(self, request_id: int) -> None:
        if request_id != self._request_id:
            raise StaleResult(request_id, self._request_id)

    async def _run(self, request_id: int) -> bool:
        async with self._flight:
            if request_id != self._request_id:
                # Superseded while waiting; the newer request has its own timer
                return False

            self.state = RecalcState.IN_FLIGHT
            self.calls += 1
            logger.debug("recalculation_started", request_id=request_id)

            error: Optional[TaskIntelError] = None
            result: Optional[T] = None
            try:
                result = await self._compute()
            except TaskIntelError as e:
                error = e

            try:
                self._check_current(request_id)
            except StaleResult as e:
                self.state = RecalcState.STALE
                logger.debug(
                    "stale_result_discarded",
                    request_id=e.request_id,
                    latest_request_id=e.latest_request_id,
                )
                return False

            if error is None:
                try:
                    if self._apply is not None:
                        self._apply(result)
                except TaskIntelError as e:
                    error = e

            if error is not None:
                self.state = RecalcState.FAILED
                self.last_error = error
                logger.error("recalculation_failed", request_id=request_id, error=str(error))
                return False

            self.state = RecalcState.APPLIED
            self.last_applied = result
            self.last_error = None
            logger.debug("recalculation_applied", request_id=request_id)
            return True
