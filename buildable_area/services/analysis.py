"""Single-site buildable-area analysis service.

Wraps the analysis endpoints behind one object:

- ``validate_request`` / ``build_payload``: local pre-flight, no I/O
- ``submit``: ``POST analyze`` → ``job_id``
- ``get_status`` / ``get_results`` / ``cancel``: per-job endpoints
- ``get_analysis``: cache-first lookup of a finished analysis
- ``search``: analysis history listing, empty on failure
- ``track``: status polling through ``JobStatusTracker``
- ``artifacts``: generated files through ``ArtifactDiscovery``
- ``geojson``: map overlay through ``ArtifactDiscovery``

A request is a mapping with ``site_name`` plus either a GeoJSON polygon
(``geojson``) or a point (``latitude`` / ``longitude``, optional
``bbox_size_meters``).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from buildable_area.core.config import ClientConfig
from buildable_area.core.constants import (
    ANALYSIS_PATH,
    ANALYZE_PATH,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    RESULTS_PATH,
    SEARCH_PATH,
    STATUS_PATH,
)
from buildable_area.core.exceptions import BuildableAreaError, ContractError, ValidationError
from buildable_area.core.geometry import (
    Polygon,
    ValidationResult,
    polygon_center,
    validate_polygon,
)
from buildable_area.models.job import JobState, JobUpdate
from buildable_area.services.artifacts import ArtifactDiscovery
from buildable_area.services.tracker import JobHandle, JobStatusTracker

if TYPE_CHECKING:
    from buildable_area.models.artifact import Artifact
    from buildable_area.services.polling import UpdateCallback
    from buildable_area.storage.result_cache import ResultCache
    from buildable_area.transport.client import AuthenticatedTransport

logger = logging.getLogger("buildable_area.services.analysis")

DEFAULT_SITE_NAME = "Untitled Site"
DEFAULT_DATASET = "Digital Elevation Model (DEM) 1 meter"
MAX_SITE_NAME_LENGTH = 255
MIN_BBOX_SIZE_M = 100
MAX_BBOX_SIZE_M = 5000

#: Submission only waits for the job id, not the analysis.
SUBMIT_TIMEOUT_S = 120.0

EMPTY_SEARCH_RESULT: dict[str, Any] = {"count": 0, "analyses": [], "total": 0}


class AnalysisService:
    """Submits, tracks and fetches single-site analyses.

    Args:
        transport: Authenticated transport.
        cache: Optional result cache shared with the tracker.
        config: Client configuration (polling defaults).
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
        self.tracker = JobStatusTracker(transport, cache, config=self._config)
        self.discovery = ArtifactDiscovery(transport)

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    @staticmethod
    def validate_request(request: Mapping[str, Any]) -> ValidationResult:
        """Collect every problem with *request*.  Performs no I/O."""
        errors = _site_name_problems(request.get("site_name"))

        geojson = request.get("geojson")
        if geojson is not None:
            errors.extend(validate_polygon(geojson).errors)
            return ValidationResult(valid=not errors, errors=errors)

        errors.extend(
            _coordinate_problems(request.get("latitude"), "Latitude", MIN_LATITUDE, MAX_LATITUDE)
        )
        errors.extend(
            _coordinate_problems(
                request.get("longitude"), "Longitude", MIN_LONGITUDE, MAX_LONGITUDE
            )
        )

        bbox = request.get("bbox_size_meters")
        if bbox is not None:
            if not _is_number(bbox):
                errors.append("Bounding box size must be a number")
            elif not MIN_BBOX_SIZE_M <= bbox <= MAX_BBOX_SIZE_M:
                errors.append(
                    f"Bounding box size must be between {MIN_BBOX_SIZE_M} "
                    f"and {MAX_BBOX_SIZE_M} meters"
                )

        return ValidationResult(valid=not errors, errors=errors)

    @staticmethod
    def build_payload(request: Mapping[str, Any]) -> dict[str, Any]:
        """Build the ``POST analyze`` body for a validated *request*.

        A polygon is sent as bare GeoJSON geometry together with its
        bounding-box centre; otherwise the point is sent as given.
        """
        site_name = request.get("site_name") or DEFAULT_SITE_NAME
        payload: dict[str, Any] = {
            "site_name": site_name,
            "project_name": request.get("project_name") or site_name,
            "include_dem_analysis": True,
            "include_grid_analysis": True,
            "include_solar_resource": True,
            "dataset_preference": DEFAULT_DATASET,
        }

        geojson = request.get("geojson")
        if geojson is not None:
            polygon = Polygon.from_geojson(geojson)
            payload["geojson"] = polygon.to_geojson()["geometry"]
            center = polygon_center(polygon)
            if center is not None:
                payload["latitude"] = center["lat"]
                payload["longitude"] = center["lng"]
            return payload

        payload["latitude"] = request.get("latitude")
        payload["longitude"] = request.get("longitude")
        if request.get("bbox_size_meters") is not None:
            payload["bbox_size_meters"] = request["bbox_size_meters"]
        return payload

    # ------------------------------------------------------------------
    # Per-job endpoints
    # ------------------------------------------------------------------

    async def submit(self, request: Mapping[str, Any]) -> str:
        """Validate and submit *request*.  Returns the backend ``job_id``.

        Raises:
            ValidationError: The request is invalid; nothing is sent.
            ContractError: The response carries no ``job_id``.
        """
        result = self.validate_request(request)
        if not result.valid:
            raise ValidationError("; ".join(result.errors), errors=result.errors, stage="analysis")

        payload = self.build_payload(request)
        logger.info(
            "Submitting analysis | site_name=%s | polygon=%s",
            payload["site_name"],
            "geojson" in payload,
        )
        data = await self._transport.post_json(
            ANALYZE_PATH, json=payload, timeout_s=SUBMIT_TIMEOUT_S
        )

        job_id = str(data.get("job_id") or "") if isinstance(data, dict) else ""
        if not job_id:
            msg = "analyze response is missing job_id"
            raise ContractError(msg, stage="analysis")

        logger.info("Analysis submitted | job_id=%s", job_id)
        return job_id

    async def get_status(self, job_id: str) -> JobUpdate:
        payload = await self._transport.get_json(STATUS_PATH.format(job_id=job_id))
        return JobUpdate.from_payload(job_id, payload if isinstance(payload, dict) else {})

    async def get_results(self, job_id: str) -> dict[str, Any]:
        """Fetch results, including attachment listings with signed URLs."""
        return await self._transport.get_json(RESULTS_PATH.format(job_id=job_id))

    async def cancel(self, job_id: str) -> dict[str, Any]:
        """Stop local tracking and cancel the job on the backend."""
        self.tracker.cancel(job_id)
        data = await self._transport.delete_json(STATUS_PATH.format(job_id=job_id))
        logger.info("Analysis cancelled | job_id=%s", job_id)
        return data

    async def get_analysis(self, analysis_id: str, *, use_cache: bool = True) -> dict[str, Any]:
        """Return a finished analysis, preferring the cache.

        Lookup order: cache, ``analysis/{id}`` (a full analysis is wrapped
        as a completed status and cached), then ``status/{id}`` (cached
        when it is completed with a result).

        Raises:
            BuildableAreaError: The status endpoint failed too.
        """
        if use_cache and self._cache is not None:
            cached = self._cache.get(analysis_id)
            if cached is not None:
                logger.info("Returning cached analysis | analysis_id=%s", analysis_id)
                return cached

        try:
            data = await self._transport.get_json(ANALYSIS_PATH.format(analysis_id=analysis_id))
        except BuildableAreaError as exc:
            logger.warning(
                "Full analysis endpoint unavailable; trying status | analysis_id=%s | error=%s",
                analysis_id,
                exc,
            )
        else:
            if isinstance(data, dict) and data.get("site_identification"):
                wrapped = _wrap_full_analysis(analysis_id, data)
                self._store(analysis_id, wrapped)
                return wrapped

        status = await self._transport.get_json(STATUS_PATH.format(job_id=analysis_id))
        if not isinstance(status, dict):
            msg = f"status response for {analysis_id} is not an object"
            raise ContractError(msg, stage="analysis", correlation_id=analysis_id)

        if JobState.parse(status.get("status")) is JobState.COMPLETED and status.get("result"):
            self._store(analysis_id, status)
        return status

    async def search(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """List past analyses (``POST search``, e.g. ``{"limit": 20, "offset": 0}``).

        History is optional: any failure is logged and an empty result
        (``count``, ``analyses``, ``total``) is returned instead.
        """
        try:
            data = await self._transport.post_json(
                SEARCH_PATH, json=dict(params or {}), skip_auth=True
            )
        except BuildableAreaError as exc:
            logger.warning("Analysis search failed | params=%s | error=%s", params, exc)
            return dict(EMPTY_SEARCH_RESULT, analyses=[])

        if not isinstance(data, dict) or not isinstance(data.get("analyses", []), list):
            logger.warning("Unexpected search payload | type=%s", type(data).__name__)
            return dict(EMPTY_SEARCH_RESULT, analyses=[])
        return data

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    def track(
        self,
        job_id: str,
        on_update: UpdateCallback[JobUpdate],
        **options: Any,
    ) -> JobHandle:
        """Poll *job_id*; see ``JobStatusTracker.start`` for *options*."""
        return self.tracker.start(job_id, on_update, **options)

    async def artifacts(self, analysis_id: str) -> list[Artifact]:
        return await self.discovery.discover(analysis_id)

    async def geojson(self, analysis_id: str) -> dict[str, Any]:
        return await self.discovery.geojson(analysis_id)

    def _store(self, key: str, value: dict[str, Any]) -> None:
        if self._cache is not None:
            self._cache.set(key, value)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _wrap_full_analysis(analysis_id: str, data: dict[str, Any]) -> dict[str, Any]:
    identification = data.get("site_identification") or {}
    created_at = (
        identification.get("analysis_date") if isinstance(identification, dict) else None
    )
    return {
        "job_id": analysis_id,
        "status": JobState.COMPLETED.value,
        "progress": 100,
        "message": "Analysis complete",
        "result": data,
        "error": None,
        "created_at": created_at or datetime.now(UTC).isoformat(),
    }


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)


def _site_name_problems(name: object) -> list[str]:
    if not isinstance(name, str) or not name:
        return ["Site name is required"]
    if not name.strip():
        return ["Site name cannot be empty"]
    if len(name) > MAX_SITE_NAME_LENGTH:
        return [f"Site name must be less than {MAX_SITE_NAME_LENGTH} characters"]
    return []


def _coordinate_problems(value: object, label: str, low: float, high: float) -> list[str]:
    if not _is_number(value):
        return [f"{label} must be a number"]
    if not low <= value <= high:  # type: ignore[operator]
        return [f"{label} must be between {low:g} and {high:g}"]
    return []
