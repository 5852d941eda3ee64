"""Typed models for a single analysis job.

- ``JobState``: Lifecycle state of a job (``pending`` → ``processing`` →
  ``completed`` | ``failed``; ``cancelled`` is client-only)
- ``JobUpdate``: Immutable snapshot delivered to polling callbacks
- ``AnalysisJob``: The tracker-owned record of one job

Design notes:
- Progress is monotonic non-decreasing until the job is terminal.
- No transition leaves a terminal state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger("buildable_area.models.job")


class JobState(enum.Enum):
    """Lifecycle state of an analysis job.

    Values:
        PENDING:    Accepted by the backend, not yet started.
        PROCESSING: Terrain analysis in progress.
        COMPLETED:  Results are available.
        FAILED:     The backend (or the poller) gave up on the job.
        CANCELLED:  Tracking stopped by the client.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are permitted."""
        return self in _TERMINAL_STATES

    @classmethod
    def parse(cls, value: object) -> JobState:
        """Parse a backend status string.

        Unknown values are treated as ``PROCESSING`` so that an unexpected
        intermediate status never stops polling.
        """
        text = str(value or "").strip().lower()
        try:
            return cls(text)
        except ValueError:
            alias = _STATE_ALIASES.get(text)
            if alias is not None:
                return alias
            logger.debug("Unknown job status %r treated as processing", value)
            return cls.PROCESSING


_TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

_STATE_ALIASES: dict[str, JobState] = {
    "queued": JobState.PENDING,
    "running": JobState.PROCESSING,
    "in_progress": JobState.PROCESSING,
    "succeeded": JobState.COMPLETED,
    "success": JobState.COMPLETED,
    "error": JobState.FAILED,
    "canceled": JobState.CANCELLED,
}


@dataclass(frozen=True, slots=True)
class JobUpdate:
    """A single status report for a job.

    Attributes:
        job_id: The job the update belongs to.
        status: Reported state.
        progress: Completion percentage (0-100).
        message: Human-readable status message.
        result: Analysis payload, when the backend includes it.
        error: Failure message for ``failed`` updates.
    """

    job_id: str
    status: JobState
    progress: float = 0.0
    message: str = ""
    result: dict[str, Any] | None = None
    error: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_payload(cls, job_id: str, payload: dict[str, Any]) -> JobUpdate:
        """Build from a ``GET status/{job_id}`` response body."""
        result = payload.get("result")
        return cls(
            job_id=str(payload.get("job_id") or job_id),
            status=JobState.parse(payload.get("status")),
            progress=_clamp_progress(payload.get("progress")),
            message=str(payload.get("message") or ""),
            result=result if isinstance(result, dict) else None,
            error=str(payload.get("error") or ""),
        )

    @classmethod
    def failure(cls, job_id: str, message: str, *, progress: float = 0.0) -> JobUpdate:
        """Synthetic terminal failure (timeout, fatal transport error)."""
        return cls(
            job_id=job_id,
            status=JobState.FAILED,
            progress=progress,
            message=message,
            error=message,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "result": self.result,
            "error": self.error,
        }


@dataclass(slots=True)
class AnalysisJob:
    """Tracker-owned record of one job.

    Attributes:
        job_id: Backend job identifier.
        status: Current lifecycle state.
        progress: Completion percentage, never decreasing before terminal.
        message: Latest status message.
        created_at: When tracking started.
    """

    job_id: str
    status: JobState = JobState.PENDING
    progress: float = 0.0
    message: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def apply(self, update: JobUpdate) -> JobUpdate:
        """Fold *update* into the record and return the normalised update.

        Progress reported below the current value is raised to it.  Updates
        arriving after a terminal state are ignored and the current state is
        returned unchanged.
        """
        if self.status.is_terminal:
            return self.snapshot()

        progress = update.progress
        if not update.is_terminal:
            progress = max(progress, self.progress)

        self.status = update.status
        self.progress = progress
        self.message = update.message or self.message
        if progress == update.progress:
            return update
        return JobUpdate(
            job_id=update.job_id,
            status=update.status,
            progress=progress,
            message=update.message,
            result=update.result,
            error=update.error,
        )

    def cancel(self) -> bool:
        """Move to ``cancelled`` if not yet terminal.  Returns ``True`` on change."""
        if self.status.is_terminal:
            return False
        self.status = JobState.CANCELLED
        return True

    def snapshot(self) -> JobUpdate:
        return JobUpdate(
            job_id=self.job_id,
            status=self.status,
            progress=self.progress,
            message=self.message,
        )


def _clamp_progress(value: object) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        progress = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return min(max(progress, 0.0), 100.0)
