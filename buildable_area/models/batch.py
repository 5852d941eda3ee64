"""Typed models for batch analysis.

- ``SiteRequest``: One site in a batch submission
- ``BatchOverallStatus``: Aggregated batch state
- ``BatchJob``: One child job as reported by ``batch-status``
- ``BatchStatus``: Snapshot delivered to batch polling callbacks

The overall status is always derived from the child job states by
``derive_overall_status``; the backend's own ``overall_status`` is only
used while it reports no jobs.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from buildable_area.core.constants import DEFAULT_BBOX_SIZE_M
from buildable_area.models.job import JobState


class BatchOverallStatus(enum.Enum):
    """Aggregated state of a batch."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_COMPLETED = "partially_completed"

    @property
    def is_terminal(self) -> bool:
        return self is not BatchOverallStatus.PROCESSING


@dataclass(frozen=True, slots=True)
class SiteRequest:
    """A single site submitted as part of a batch.

    Attributes:
        name: Display name of the site.
        latitude: WGS 84 latitude in degrees.
        longitude: WGS 84 longitude in degrees.
        bbox_size_meters: Side length of the analysed square, in metres.
    """

    name: str
    latitude: float
    longitude: float
    bbox_size_meters: float = DEFAULT_BBOX_SIZE_M

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiteRequest:
        """Build from a caller-supplied mapping (``name`` or ``site_name``)."""
        return cls(
            name=str(data.get("name") or data.get("site_name") or ""),
            latitude=data["latitude"],
            longitude=data["longitude"],
            bbox_size_meters=data.get("bbox_size_meters", DEFAULT_BBOX_SIZE_M),
        )

    def to_dict(self) -> dict[str, object]:
        """Serialise to the ``batch-analyze`` wire format."""
        return {
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "bbox_size_meters": self.bbox_size_meters,
        }


@dataclass(frozen=True, slots=True)
class BatchSubmission:
    """Result of a successful batch submission."""

    batch_id: str
    site_count: int


@dataclass(frozen=True, slots=True)
class BatchJob:
    """One child job of a batch."""

    job_id: str
    status: JobState
    site_name: str = ""
    progress: float = 0.0
    message: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BatchJob:
        return cls(
            job_id=str(data.get("job_id") or data.get("id") or ""),
            status=JobState.parse(data.get("status")),
            site_name=str(data.get("site_name") or data.get("name") or ""),
            progress=float(data.get("progress") or 0.0),
            message=str(data.get("message") or ""),
        )


@dataclass(frozen=True, slots=True)
class BatchStatus:
    """Snapshot of a batch.

    Attributes:
        batch_id: Backend batch identifier.
        overall_status: Derived aggregate state.
        jobs: Child jobs in backend order.
        error: Failure message for synthetic ``failed`` snapshots.
        raw: The undecoded response body.
    """

    batch_id: str
    overall_status: BatchOverallStatus
    jobs: tuple[BatchJob, ...] = ()
    error: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.overall_status.is_terminal

    @property
    def completed_count(self) -> int:
        return sum(1 for job in self.jobs if job.status is JobState.COMPLETED)

    @property
    def failed_count(self) -> int:
        return sum(
            1 for job in self.jobs if job.status in (JobState.FAILED, JobState.CANCELLED)
        )

    @classmethod
    def from_payload(cls, batch_id: str, payload: dict[str, Any]) -> BatchStatus:
        """Build from a ``GET batch-status/{batch_id}`` response body."""
        jobs_raw = payload.get("jobs") or []
        jobs = tuple(BatchJob.from_dict(j) for j in jobs_raw if isinstance(j, dict))

        if jobs:
            overall = derive_overall_status(job.status for job in jobs)
        else:
            overall = _parse_overall(payload.get("overall_status"))

        return cls(
            batch_id=str(payload.get("batch_id") or batch_id),
            overall_status=overall,
            jobs=jobs,
            error=str(payload.get("error") or ""),
            raw=dict(payload),
        )

    @classmethod
    def failure(cls, batch_id: str, message: str) -> BatchStatus:
        """Synthetic terminal failure (timeout, access denied)."""
        return cls(batch_id=batch_id, overall_status=BatchOverallStatus.FAILED, error=message)

    def to_dict(self) -> dict[str, object]:
        return {
            "batch_id": self.batch_id,
            "overall_status": self.overall_status.value,
            "jobs": [
                {
                    "job_id": j.job_id,
                    "status": j.status.value,
                    "site_name": j.site_name,
                    "progress": j.progress,
                    "message": j.message,
                }
                for j in self.jobs
            ],
            "error": self.error,
        }


def derive_overall_status(states: Iterable[JobState]) -> BatchOverallStatus:
    """Aggregate child job states.

    - any child not terminal        → ``processing``
    - every child completed         → ``completed``
    - no child completed            → ``failed``
    - otherwise (mixed)             → ``partially_completed``

    ``cancelled`` counts as a non-success.  An empty batch is
    ``processing``.
    """
    states = list(states)
    if not states or any(not s.is_terminal for s in states):
        return BatchOverallStatus.PROCESSING

    succeeded = sum(1 for s in states if s is JobState.COMPLETED)
    if succeeded == len(states):
        return BatchOverallStatus.COMPLETED
    if succeeded == 0:
        return BatchOverallStatus.FAILED
    return BatchOverallStatus.PARTIALLY_COMPLETED


def _parse_overall(value: object) -> BatchOverallStatus:
    try:
        return BatchOverallStatus(str(value or "").strip().lower())
    except ValueError:
        return BatchOverallStatus.PROCESSING
