"""Services that talk to the analysis backend.

- ``AnalysisService``: Single-site submission, lookup and tracking
- ``JobStatusTracker``: Polls one job until it is terminal
- ``BatchOrchestrator``: Batch validation, submission and polling
- ``ArtifactDiscovery``: Finds generated files for an analysis
"""

from buildable_area.services.analysis import AnalysisService
from buildable_area.services.artifacts import ArtifactDiscovery, ArtifactProbe
from buildable_area.services.batch import BatchOrchestrator
from buildable_area.services.polling import PollHandle
from buildable_area.services.tracker import JobHandle, JobStatusTracker

__all__ = [
    "AnalysisService",
    "ArtifactDiscovery",
    "ArtifactProbe",
    "BatchOrchestrator",
    "JobHandle",
    "JobStatusTracker",
    "PollHandle",
]
