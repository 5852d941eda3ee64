"""Data models and schemas.

Defines the data structures exchanged with the analysis backend:
- AnalysisJob / JobUpdate: Single-job lifecycle
- SiteRequest / BatchStatus: Batch submission and aggregated status
- Artifact: Downloadable analysis outputs
"""

from buildable_area.models.artifact import Artifact
from buildable_area.models.batch import (
    BatchJob,
    BatchOverallStatus,
    BatchStatus,
    BatchSubmission,
    SiteRequest,
    derive_overall_status,
)
from buildable_area.models.job import AnalysisJob, JobState, JobUpdate

__all__ = [
    "AnalysisJob",
    "Artifact",
    "BatchJob",
    "BatchOverallStatus",
    "BatchStatus",
    "BatchSubmission",
    "JobState",
    "JobUpdate",
    "SiteRequest",
    "derive_overall_status",
]
