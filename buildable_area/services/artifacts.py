"""Artifact discovery for completed analyses.

The backend exposes generated files (heatmaps, maps, reports) through
several listing endpoints depending on its version.  ``ArtifactDiscovery``
probes them in order and returns the first non-empty listing, normalised
into ``Artifact`` models.

Normalisation also repairs a backend naming bug: files recorded as
``slope_heatmap.png.png`` are stored as ``slope_heatmap.png``, so the
trailing extension is dropped from both the filename and the signed URL.

``geojson`` fetches the analysis overlay (a GeoJSON ``FeatureCollection``)
used for map rendering.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from buildable_area.core.constants import GEOJSON_PATH
from buildable_area.core.exceptions import BuildableAreaError, ContractError
from buildable_area.models.artifact import Artifact

if TYPE_CHECKING:
    from buildable_area.transport.client import AuthenticatedTransport

logger = logging.getLogger("buildable_area.services.artifacts")

_DOUBLE_EXTENSION = re.compile(r"\.(png|jpg|jpeg)\.png$", re.IGNORECASE)
_TRAILING_EXTENSION = re.compile(r"\.(png|jpg|jpeg)$", re.IGNORECASE)
_IMAGE_SUFFIXES = tuple(
    re.compile(rf"\.{ext}$", re.IGNORECASE) for ext in ("png", "jpg", "jpeg")
)

_GEOJSON_TYPES = frozenset({"FeatureCollection", "Feature"})

# encodeURIComponent leaves these unescaped
_URI_COMPONENT_SAFE = "!~*'()"

#: Keyword → (type, description), checked in order.
_KNOWN_ARTIFACTS: tuple[tuple[str, str, str], ...] = (
    ("slope_heatmap", "slope_heatmap", "Slope Analysis Heatmap"),
    ("suitability_map", "suitability_map", "Solar Suitability Map"),
    ("buildable_area_map", "buildable_area_map", "Buildable Area Map"),
    ("elevation_profile", "elevation_profile", "Elevation Profile"),
)


@dataclass(frozen=True, slots=True)
class ArtifactProbe:
    """One listing endpoint: *path* template and the body key holding the list."""

    name: str
    path: str
    data_key: str


DEFAULT_PROBES: tuple[ArtifactProbe, ...] = (
    ArtifactProbe("files", "analysis/{analysis_id}/files", "files"),
    ArtifactProbe("artifacts", "artifacts/{analysis_id}", "artifacts"),
    ArtifactProbe("attachments", "analysis/{analysis_id}/attachments", "attachments"),
)


class ArtifactDiscovery:
    """Finds the artifacts of an analysis across the listing endpoints."""

    def __init__(
        self,
        transport: AuthenticatedTransport,
        probes: tuple[ArtifactProbe, ...] = DEFAULT_PROBES,
    ) -> None:
        self._transport = transport
        self._probes = probes

    async def discover(self, analysis_id: str) -> list[Artifact]:
        """Return the artifacts from the first probe with a non-empty list.

        Probe failures are logged and the next probe is tried.  Returns an
        empty list when every probe fails or comes back empty.
        """
        for probe in self._probes:
            path = probe.path.format(analysis_id=analysis_id)
            try:
                body = await self._transport.get_json(path, skip_auth=True)
            except (BuildableAreaError, ValueError) as exc:
                logger.warning(
                    "Artifact probe failed | probe=%s | analysis_id=%s | error=%s",
                    probe.name,
                    analysis_id,
                    exc,
                )
                continue

            items = _listing(body, probe.data_key)
            if items:
                logger.info(
                    "Artifacts found | probe=%s | analysis_id=%s | count=%d",
                    probe.name,
                    analysis_id,
                    len(items),
                )
                return [normalise_artifact(item) for item in items]

        logger.warning("No artifacts found on any endpoint | analysis_id=%s", analysis_id)
        return []

    async def find_by_type(self, analysis_id: str, artifact_type: str) -> Artifact | None:
        """Return the first artifact of *artifact_type*, or ``None``."""
        for artifact in await self.discover(analysis_id):
            if artifact.type == artifact_type:
                return artifact
        return None

    async def geojson(self, analysis_id: str) -> dict[str, Any]:
        """Fetch the GeoJSON overlay of *analysis_id*.

        Raises:
            BuildableAreaError: The request failed.
            ContractError: The body is not a GeoJSON object.
        """
        body = await self._transport.get_json(GEOJSON_PATH.format(analysis_id=analysis_id))
        if not isinstance(body, dict) or body.get("type") not in _GEOJSON_TYPES:
            msg = f"geojson response for {analysis_id} is not a GeoJSON object"
            raise ContractError(msg, stage="artifacts", correlation_id=analysis_id)
        logger.info(
            "GeoJSON overlay fetched | analysis_id=%s | features=%d",
            analysis_id,
            len(body.get("features") or []),
        )
        return body


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def correct_double_extension(filename: str, url: str | None) -> tuple[str, str | None]:
    """Drop the trailing extension of ``*.png.png`` style names.

    The same replacement is applied to *url* in both its percent-encoded
    and raw forms.  Other names are returned unchanged.
    """
    if not filename or not _DOUBLE_EXTENSION.search(filename):
        return filename, url

    corrected = _TRAILING_EXTENSION.sub("", filename)
    if url:
        url = url.replace(
            quote(filename, safe=_URI_COMPONENT_SAFE),
            quote(corrected, safe=_URI_COMPONENT_SAFE),
            1,
        )
        url = url.replace(filename, corrected, 1)

    logger.debug("Double extension corrected | %s -> %s", filename, corrected)
    return corrected, url


def artifact_type_for(filename: str) -> str:
    if not filename:
        return "unknown"
    for keyword, artifact_type, _ in _KNOWN_ARTIFACTS:
        if keyword in filename:
            return artifact_type
    return "other"


def artifact_description_for(filename: str) -> str:
    if not filename:
        return "File"
    for keyword, _, description in _KNOWN_ARTIFACTS:
        if keyword in filename:
            return description
    return filename


def normalise_artifact(data: dict[str, Any]) -> Artifact:
    """Build an ``Artifact`` from one raw listing entry."""
    filename, url = correct_double_extension(Artifact.raw_filename(data), Artifact.raw_url(data))

    raw_type = str(data.get("type") or data.get("file_type") or artifact_type_for(filename))
    size = data.get("size") or data.get("file_size")

    return Artifact(
        filename=filename,
        type=_strip_image_suffixes(raw_type),
        description=str(data.get("description") or artifact_description_for(filename)),
        url=url,
        local_path=_optional_str(data.get("local_path") or data.get("path")),
        size=int(size) if isinstance(size, int | float) and not isinstance(size, bool) else None,
        created_at=_optional_str(data.get("created_at")),
    )


def _listing(body: Any, data_key: str) -> list[dict[str, Any]]:
    if isinstance(body, dict):
        body = body.get(data_key) or body
    if not isinstance(body, list):
        return []
    return [item for item in body if isinstance(item, dict)]


def _strip_image_suffixes(value: str) -> str:
    for suffix in _IMAGE_SUFFIXES:
        value = suffix.sub("", value)
    return value


def _optional_str(value: object) -> str | None:
    return str(value) if value else None
