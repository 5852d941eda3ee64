"""Self-rescheduling poll loop shared by the job tracker and the batch poller.

One loop runs per tracked resource as an ``asyncio.Task``:

1. Fetch the current status (first fetch is immediate).
2. If the handle was cancelled while the request was in flight, drop the
   result.  No callback ever fires after cancellation.
3. Report the update; stop on a terminal status.
4. Stop with a synthetic timeout update once the attempt budget is spent.
5. Sleep ``interval_s`` (or the server's ``retry_after`` after a 429) and
   repeat.  The next request is only issued after the previous one settles,
   so ticks never overlap.

Failures are classified by ``classify_error``.  401, 403 and 404 (including
an unresolved ``AuthError``) end polling with a failure update at once.
Anything else is tolerated until ``max_consecutive_errors`` failures happen
in a row.

Cancellation is cooperative: ``PollHandle.cancel()`` sets a stop event that
wakes a sleeping loop immediately.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from buildable_area.core.classifier import ErrorOutcome, classify_error
from buildable_area.core.constants import DEFAULT_MAX_CONSECUTIVE_ERRORS, FATAL_POLL_STATUSES

logger = logging.getLogger("buildable_area.services.polling")

T = TypeVar("T")

UpdateCallback = Callable[[T], Any]

CONNECTION_LOST_MESSAGE = (
    "Backend connection lost. The analysis may have failed or the server restarted."
)


class PollHandle:
    """Control handle for one running poll loop.

    Calling the handle cancels it, so it can be passed anywhere a plain
    cleanup callback is expected.
    """

    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    def __call__(self) -> bool:
        return self.cancel()

    def cancel(self) -> bool:
        """Stop polling.  Idempotent; returns ``True`` only on the first call."""
        if self._stop.is_set():
            return False
        self._stop.set()
        logger.info("Polling cancelled | id=%s", self.resource_id)
        return True

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> None:
        """Wait until the loop has exited (terminal, timeout, error or cancel)."""
        if self._task is not None:
            await self._task

    async def sleep(self, delay_s: float) -> bool:
        """Sleep *delay_s* seconds.  Returns ``True`` if cancelled meanwhile."""
        if delay_s <= 0:
            await asyncio.sleep(0)
            return self.cancelled
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay_s)
        except TimeoutError:
            return False
        return True

    def attach(self, task: asyncio.Task[None]) -> None:
        self._task = task
        task.add_done_callback(self._log_crash)

    def add_done_callback(self, callback: Callable[[PollHandle], Any]) -> None:
        """Call *callback* with this handle once the loop has exited."""
        if self._task is None:
            msg = f"poll loop for {self.resource_id} has not been started"
            raise RuntimeError(msg)
        self._task.add_done_callback(lambda _task: callback(self))

    def _log_crash(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Poll loop crashed | id=%s | error=%s",
                self.resource_id,
                exc,
                exc_info=exc,
            )


class PollLoop(Generic[T]):
    """Configuration of one poll loop.

    Args:
        handle: Handle used for cancellation checks and sleeping.
        fetch: Coroutine returning the next update.
        deliver: Reports an update to the caller (may be async).
        is_terminal: Whether an update ends polling.
        on_error: Builds the terminal update for a fatal error outcome.
        on_timeout: Builds the terminal update once attempts run out.
        interval_s: Delay between settled requests.
        max_attempts: Attempt budget (>= 1).
        max_consecutive_errors: Transient failures tolerated in a row.
    """

    def __init__(
        self,
        handle: PollHandle,
        *,
        fetch: Callable[[], Awaitable[T]],
        deliver: Callable[[T], Awaitable[None]],
        is_terminal: Callable[[T], bool],
        on_error: Callable[[ErrorOutcome], T],
        on_timeout: Callable[[], T],
        interval_s: float,
        max_attempts: int,
        max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS,
    ) -> None:
        if max_attempts < 1:
            msg = f"max_attempts must be >= 1, got {max_attempts}"
            raise ValueError(msg)
        if interval_s < 0:
            msg = f"interval_s must be >= 0, got {interval_s}"
            raise ValueError(msg)
        self.handle = handle
        self._fetch = fetch
        self._deliver = deliver
        self._is_terminal = is_terminal
        self._on_error = on_error
        self._on_timeout = on_timeout
        self._interval_s = interval_s
        self._max_attempts = max_attempts
        self._max_consecutive_errors = max(1, max_consecutive_errors)

    def start(self) -> PollHandle:
        """Schedule the loop on the running event loop and return its handle."""
        task = asyncio.get_running_loop().create_task(
            self.run(), name=f"poll-{self.handle.resource_id}"
        )
        self.handle.attach(task)
        return self.handle

    async def run(self) -> None:
        handle = self.handle
        attempt = 0
        consecutive_errors = 0

        while not handle.cancelled:
            attempt += 1
            delay = self._interval_s
            logger.debug(
                "poll attempt | id=%s | attempt=%d/%d",
                handle.resource_id,
                attempt,
                self._max_attempts,
            )

            try:
                update = await self._fetch()
            except Exception as exc:
                if handle.cancelled:
                    return
                outcome = classify_error(exc)
                if outcome.status in FATAL_POLL_STATUSES:
                    logger.warning(
                        "Polling stopped on fatal error | id=%s | status=%s | error=%s",
                        handle.resource_id,
                        outcome.status,
                        exc,
                    )
                    await self._finish(self._on_error(outcome))
                    return

                consecutive_errors += 1
                logger.warning(
                    "Transient poll error | id=%s | consecutive=%d | error=%s",
                    handle.resource_id,
                    consecutive_errors,
                    exc,
                )
                if consecutive_errors >= self._max_consecutive_errors:
                    if outcome.retryable:
                        outcome = ErrorOutcome(message=CONNECTION_LOST_MESSAGE, retryable=True)
                    await self._finish(self._on_error(outcome))
                    return
                if outcome.retry_after_s is not None:
                    delay = max(delay, outcome.retry_after_s)
            else:
                if handle.cancelled:
                    return
                consecutive_errors = 0
                await self._deliver(update)
                if self._is_terminal(update):
                    logger.info(
                        "Polling finished | id=%s | attempts=%d", handle.resource_id, attempt
                    )
                    return

            if attempt >= self._max_attempts:
                logger.warning(
                    "Max poll attempts reached | id=%s | attempts=%d",
                    handle.resource_id,
                    attempt,
                )
                await self._finish(self._on_timeout())
                return

            if await handle.sleep(delay):
                return

    async def _finish(self, update: T) -> None:
        if not self.handle.cancelled:
            await self._deliver(update)


async def invoke_callback(callback: Callable[[T], Any], value: T) -> None:
    """Call a sync or async *callback* with *value*."""
    result = callback(value)
    if inspect.isawaitable(result):
        await result


def timeout_message(noun: str, interval_s: float, max_attempts: int) -> str:
    """Describe a poll timeout in minutes, e.g. ``"Analysis timed out after 30 minutes..."``."""
    minutes = round(interval_s * max_attempts / 60, 1)
    return f"{noun} timed out after {minutes:g} minutes. The backend may still be processing."
