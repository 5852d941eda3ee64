"""Batch analysis orchestration.

Validates a list of sites, submits it to ``POST batch-analyze`` and polls
``GET batch-status/{batch_id}`` until the derived overall status is
terminal.  The overall status is always recomputed from the child job
states (see ``derive_overall_status``).

Cancellation stops local polling first and then issues one best-effort
``DELETE batch-status/{batch_id}``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from buildable_area.core.config import ClientConfig
from buildable_area.core.constants import (
    BATCH_ANALYZE_PATH,
    BATCH_STATUS_PATH,
    DEFAULT_MAX_CONSECUTIVE_ERRORS,
    MAX_BATCH_SITES,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
)
from buildable_area.core.exceptions import BuildableAreaError, ContractError, ValidationError
from buildable_area.core.geometry import ValidationResult
from buildable_area.models.batch import BatchStatus, BatchSubmission, SiteRequest
from buildable_area.services.polling import (
    PollHandle,
    PollLoop,
    UpdateCallback,
    invoke_callback,
    timeout_message,
)

if TYPE_CHECKING:
    from buildable_area.core.classifier import ErrorOutcome
    from buildable_area.transport.client import AuthenticatedTransport

logger = logging.getLogger("buildable_area.services.batch")

ACCESS_DENIED_MESSAGE = "Batch not found or access denied"

_ACCESS_DENIED_STATUSES = frozenset({401, 403, 404})

# Cancelled batch ids remembered for idempotent cancel.
_CANCELLED_HISTORY = 256


class BatchOrchestrator:
    """Submits and monitors batch analyses.

    Args:
        transport: Authenticated transport.
        config: Polling defaults (``batch_poll_interval_s``,
            ``poll_max_attempts``).
    """

    def __init__(
        self,
        transport: AuthenticatedTransport,
        *,
        config: ClientConfig | None = None,
    ) -> None:
        self._transport = transport
        self._config = config or ClientConfig()
        self._handles: dict[str, PollHandle] = {}
        self._cancelled: dict[str, None] = {}

    # ------------------------------------------------------------------
    # Validation & submission
    # ------------------------------------------------------------------

    @staticmethod
    def validate(sites: object) -> ValidationResult:
        """Check a batch before submission.  Pure; performs no I/O."""
        if not isinstance(sites, list | tuple):
            return ValidationResult(valid=False, errors=["Sites must be a list"])

        errors: list[str] = []
        if not sites:
            errors.append("At least one site is required")
        if len(sites) > MAX_BATCH_SITES:
            errors.append(f"Maximum {MAX_BATCH_SITES} sites per batch")

        for index, site in enumerate(sites, start=1):
            problems = _site_problems(site)
            if problems:
                errors.append(f"Site {index}: {'; '.join(problems)}")

        return ValidationResult(valid=not errors, errors=errors)

    async def submit(self, sites: Sequence[Mapping[str, Any] | SiteRequest]) -> BatchSubmission:
        """Validate and submit *sites*.

        Raises:
            ValidationError: The batch is invalid; no request is sent.
            ContractError: The response has no ``batch_id``.
        """
        result = self.validate(sites)
        if not result.valid:
            raise ValidationError("; ".join(result.errors), errors=result.errors, stage="batch")

        requests = [s if isinstance(s, SiteRequest) else SiteRequest.from_dict(s) for s in sites]
        payload = {"sites": [r.to_dict() for r in requests]}

        data = await self._transport.post_json(BATCH_ANALYZE_PATH, json=payload)
        batch_id = str(data.get("batch_id") or "") if isinstance(data, dict) else ""
        if not batch_id:
            msg = "batch-analyze response is missing batch_id"
            raise ContractError(msg, stage="batch")

        logger.info("Batch submitted | batch_id=%s | sites=%d", batch_id, len(requests))
        return BatchSubmission(batch_id=batch_id, site_count=len(requests))

    async def status(self, batch_id: str) -> BatchStatus:
        """Fetch the current batch status once."""
        payload = await self._transport.get_json(BATCH_STATUS_PATH.format(batch_id=batch_id))
        if not isinstance(payload, dict):
            msg = f"batch-status response for {batch_id} is not an object"
            raise ContractError(msg, stage="batch", correlation_id=batch_id)
        return BatchStatus.from_payload(batch_id, payload)

    # ------------------------------------------------------------------
    # Polling & cancellation
    # ------------------------------------------------------------------

    def poll(
        self,
        batch_id: str,
        on_update: UpdateCallback[BatchStatus],
        *,
        interval_s: float | None = None,
        max_attempts: int | None = None,
        max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS,
    ) -> PollHandle:
        """Poll *batch_id* until its overall status is terminal.

        Must be called from a running event loop.
        """
        if not batch_id:
            msg = "batch_id must not be empty"
            raise ValueError(msg)

        interval = self._config.batch_poll_interval_s if interval_s is None else interval_s
        attempts = self._config.poll_max_attempts if max_attempts is None else max_attempts

        previous = self._handles.pop(batch_id, None)
        if previous is not None:
            previous.cancel()
        self._cancelled.pop(batch_id, None)

        handle = PollHandle(batch_id)

        async def deliver(update: BatchStatus) -> None:
            logger.info(
                "Batch update | batch_id=%s | overall=%s | completed=%d | failed=%d",
                batch_id,
                update.overall_status.value,
                update.completed_count,
                update.failed_count,
            )
            await invoke_callback(on_update, update)

        def on_error(outcome: ErrorOutcome) -> BatchStatus:
            if outcome.status in _ACCESS_DENIED_STATUSES:
                return BatchStatus.failure(batch_id, ACCESS_DENIED_MESSAGE)
            return BatchStatus.failure(batch_id, outcome.message)

        def on_timeout() -> BatchStatus:
            return BatchStatus.failure(batch_id, timeout_message("Batch", interval, attempts))

        loop = PollLoop(
            handle,
            fetch=lambda: self.status(batch_id),
            deliver=deliver,
            is_terminal=lambda update: update.is_terminal,
            on_error=on_error,
            on_timeout=on_timeout,
            interval_s=interval,
            max_attempts=attempts,
            max_consecutive_errors=max_consecutive_errors,
        )
        logger.info(
            "Batch polling started | batch_id=%s | interval_s=%s | max_attempts=%d",
            batch_id,
            interval,
            attempts,
        )
        self._handles[batch_id] = handle
        loop.start()
        handle.add_done_callback(self._forget)
        return handle

    async def cancel(self, batch_id: str) -> bool:
        """Stop polling and ask the backend to cancel *batch_id*.

        Idempotent: only the first call sends the ``DELETE``.  Returns
        ``True`` if the backend accepted the cancellation; a failed
        ``DELETE`` is logged and returns ``False`` while polling stays
        stopped.
        """
        handle = self._handles.pop(batch_id, None)
        if handle is not None:
            handle.cancel()

        if batch_id in self._cancelled:
            logger.debug("Batch already cancelled | batch_id=%s", batch_id)
            return False
        self._cancelled[batch_id] = None
        while len(self._cancelled) > _CANCELLED_HISTORY:
            del self._cancelled[next(iter(self._cancelled))]

        try:
            await self._transport.delete_json(BATCH_STATUS_PATH.format(batch_id=batch_id))
        except BuildableAreaError as exc:
            logger.warning("Batch cancel request failed | batch_id=%s | error=%s", batch_id, exc)
            return False

        logger.info("Batch cancelled | batch_id=%s", batch_id)
        return True

    def tracked(self, batch_id: str) -> PollHandle | None:
        """Return the running poll handle for *batch_id*, if any."""
        return self._handles.get(batch_id)

    def _forget(self, handle: PollHandle) -> None:
        if self._handles.get(handle.resource_id) is handle:
            del self._handles[handle.resource_id]


def _site_problems(site: object) -> list[str]:
    if isinstance(site, SiteRequest):
        site = site.to_dict()
    if not isinstance(site, Mapping):
        return ["Site must be an object"]

    problems: list[str] = []
    name = site.get("name") or site.get("site_name")
    if not isinstance(name, str) or not name.strip():
        problems.append("Name is required")

    problems.extend(
        _coordinate_problems(site.get("latitude"), "latitude", MIN_LATITUDE, MAX_LATITUDE)
    )
    problems.extend(
        _coordinate_problems(site.get("longitude"), "longitude", MIN_LONGITUDE, MAX_LONGITUDE)
    )
    return problems


def _coordinate_problems(value: object, label: str, low: float, high: float) -> list[str]:
    if (
        isinstance(value, bool)
        or not isinstance(value, int | float)
        or not math.isfinite(value)
    ):
        return [f"Valid {label} required"]
    if not low <= value <= high:
        return [f"{label.capitalize()} must be between {low:g} and {high:g}"]
    return []
