"""Single-job status tracking.

``JobStatusTracker.start`` polls ``GET status/{job_id}`` until the job is
terminal, the attempt budget runs out, or the caller cancels.  Every update
is folded into the job's ``AnalysisJob`` record (monotonic progress, no
transitions out of a terminal state) before it reaches the callback.

Completed payloads are written to the ``ResultCache`` before the completion
update is reported, so a caller reacting to completion can read the cache.

A job stops being tracked once its loop exits for any reason, so ``get``
only returns jobs that are still polling.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from buildable_area.core.config import ClientConfig
from buildable_area.core.constants import DEFAULT_MAX_CONSECUTIVE_ERRORS, STATUS_PATH
from buildable_area.models.job import AnalysisJob, JobState, JobUpdate
from buildable_area.services.polling import (
    PollHandle,
    PollLoop,
    UpdateCallback,
    invoke_callback,
    timeout_message,
)

if TYPE_CHECKING:
    from buildable_area.core.classifier import ErrorOutcome
    from buildable_area.storage.result_cache import ResultCache
    from buildable_area.transport.client import AuthenticatedTransport

logger = logging.getLogger("buildable_area.services.tracker")


class JobHandle(PollHandle):
    """Poll handle for one job; cancelling also marks the job ``cancelled``."""

    def __init__(self, job: AnalysisJob) -> None:
        super().__init__(job.job_id)
        self.job = job

    def cancel(self) -> bool:
        changed = super().cancel()
        if changed and self.job.cancel():
            logger.info("Job cancelled locally | job_id=%s", self.job.job_id)
        return changed


class JobStatusTracker:
    """Polls job status and reports ``JobUpdate``s.

    Args:
        transport: Authenticated transport for status requests.
        cache: Optional cache receiving completed payloads.
        config: Polling defaults (``poll_interval_s``, ``poll_max_attempts``).
    """

    def __init__(
        self,
        transport: AuthenticatedTransport,
        cache: ResultCache | None = None,
        *,
        config: ClientConfig | None = None,
    ) -> None:
        self._transport = transport
        self._cache = cache
        self._config = config or ClientConfig()
        self._handles: dict[str, JobHandle] = {}

    def start(
        self,
        job_id: str,
        on_update: UpdateCallback[JobUpdate],
        *,
        interval_s: float | None = None,
        max_attempts: int | None = None,
        max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS,
    ) -> JobHandle:
        """Start polling *job_id*.  Must be called from a running event loop.

        Starting a job that is already tracked cancels the previous loop.

        Returns:
            A ``JobHandle``; calling it (or ``cancel()``) stops polling.
        """
        if not job_id:
            msg = "job_id must not be empty"
            raise ValueError(msg)

        interval = self._config.poll_interval_s if interval_s is None else interval_s
        attempts = self._config.poll_max_attempts if max_attempts is None else max_attempts

        previous = self._handles.pop(job_id, None)
        if previous is not None:
            previous.cancel()

        job = AnalysisJob(job_id=job_id)
        handle = JobHandle(job)

        async def fetch() -> JobUpdate:
            payload = await self._transport.get_json(STATUS_PATH.format(job_id=job_id))
            return _parse_status(job_id, payload)

        async def deliver(update: JobUpdate) -> None:
            if update.status is JobState.COMPLETED:
                self._persist(job_id, update)
            normalised = job.apply(update)
            logger.info(
                "Job update | job_id=%s | status=%s | progress=%.0f",
                job_id,
                normalised.status.value,
                normalised.progress,
            )
            await invoke_callback(on_update, normalised)

        def on_error(outcome: ErrorOutcome) -> JobUpdate:
            return JobUpdate.failure(job_id, outcome.message, progress=job.progress)

        def on_timeout() -> JobUpdate:
            return JobUpdate.failure(
                job_id,
                timeout_message("Analysis", interval, attempts),
                progress=job.progress,
            )

        loop = PollLoop(
            handle,
            fetch=fetch,
            deliver=deliver,
            is_terminal=lambda update: update.is_terminal,
            on_error=on_error,
            on_timeout=on_timeout,
            interval_s=interval,
            max_attempts=attempts,
            max_consecutive_errors=max_consecutive_errors,
        )
        logger.info(
            "Tracking started | job_id=%s | interval_s=%s | max_attempts=%d",
            job_id,
            interval,
            attempts,
        )
        self._handles[job_id] = handle
        loop.start()
        handle.add_done_callback(self._forget)
        return handle

    def cancel(self, job_id: str) -> bool:
        """Stop tracking *job_id*.  Returns ``False`` if it was not tracked."""
        handle = self._handles.pop(job_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for job_id in list(self._handles):
            self.cancel(job_id)

    def get(self, job_id: str) -> JobHandle | None:
        return self._handles.get(job_id)

    def _forget(self, handle: PollHandle) -> None:
        if self._handles.get(handle.resource_id) is handle:
            del self._handles[handle.resource_id]

    def _persist(self, job_id: str, update: JobUpdate) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set(job_id, update.to_dict())
        except ValueError as exc:
            logger.warning("Completed job not cached | job_id=%s | error=%s", job_id, exc)


def _parse_status(job_id: str, payload: Any) -> JobUpdate:
    if not isinstance(payload, dict):
        logger.warning("Unexpected status payload | job_id=%s | type=%s", job_id, type(payload))
        payload = {}
    return JobUpdate.from_payload(job_id, payload)
