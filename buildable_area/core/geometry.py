"""Polygon validation and measurement helpers.

Pure functions over a single polygon ring of ``(lng, lat)`` pairs in WGS 84.
They validate polygons drawn by the user before submission and derive
display metrics (area, centroid, bounds) from polygons returned by the
backend.

Functions accept a ``Polygon``, a bare ring (sequence of pairs), or a
GeoJSON ``Feature`` / ``Polygon`` dict.

Area:
    ``polygon_area_acres`` uses the spherical-excess approximation on a
    sphere of radius 6 371 km.  It is accurate enough at sub-kilometre
    scales.  ``geodesic_area_acres`` uses ``pyproj.Geod`` on the WGS 84
    ellipsoid when a precise figure is needed.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from buildable_area.core.constants import (
    ACRES_PER_SQ_METRE,
    EARTH_RADIUS_M,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MIN_LATITUDE,
    MIN_LONGITUDE,
    MIN_RING_LENGTH,
)
from buildable_area.core.exceptions import ValidationError

logger = logging.getLogger("buildable_area.core.geometry")

#: Minimum number of points accepted by ``polygon_from_points``.
MIN_POLYGON_POINTS = 3

Ring = Sequence[Sequence[float]]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Polygon:
    """A single-ring polygon.

    Construction performs no validation so that invalid rings can be
    inspected with ``validate_polygon``.

    Attributes:
        ring: Ordered ``(lng, lat)`` pairs; closed when valid.
        properties: Free-form GeoJSON properties.
    """

    ring: tuple[tuple[float, float], ...]
    properties: dict[str, Any] = field(default_factory=dict)

    def to_geojson(self) -> dict[str, Any]:
        """Return a GeoJSON ``Feature`` with ``Polygon`` geometry."""
        return {
            "type": "Feature",
            "geometry": {
                "type": "Polygon",
                "coordinates": [[list(c) for c in self.ring]],
            },
            "properties": dict(self.properties),
        }

    @classmethod
    def from_geojson(cls, data: Mapping[str, Any]) -> Polygon:
        """Build from a GeoJSON ``Feature`` or bare ``Polygon`` geometry.

        Raises:
            ValidationError: If the object is not polygon-shaped.
        """
        properties: dict[str, Any] = {}
        geometry: Any = data
        if data.get("type") == "Feature":
            geometry = data.get("geometry")
            properties = dict(data.get("properties") or {})

        if not isinstance(geometry, Mapping) or geometry.get("type") != "Polygon":
            msg = "Geometry must be a Polygon"
            raise ValidationError(msg)

        coordinates = geometry.get("coordinates")
        if not isinstance(coordinates, list) or not coordinates:
            msg = "Polygon must have coordinates array"
            raise ValidationError(msg)

        exterior = coordinates[0]
        if not isinstance(exterior, list):
            msg = "Polygon must have coordinates array"
            raise ValidationError(msg)

        return cls(ring=_normalise_ring(exterior), properties=properties)

    @property
    def vertex_count(self) -> int:
        """Number of distinct vertices (closing vertex excluded)."""
        return max(len(self.ring) - 1, 0)


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of a collect-all validation pass."""

    valid: bool
    errors: list[str] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        """Raise ``ValidationError`` carrying every violation, if any."""
        if not self.valid:
            raise ValidationError("; ".join(self.errors), errors=self.errors)


PolygonLike = Polygon | Ring | Mapping[str, Any]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_polygon(polygon: PolygonLike) -> ValidationResult:
    """Validate ring length, closure, coordinate types and WGS 84 bounds.

    All violations are collected rather than stopping at the first.
    """
    try:
        ring = _ring_of(polygon)
    except ValidationError as exc:
        return ValidationResult(valid=False, errors=list(exc.errors))

    errors: list[str] = []

    if len(ring) < MIN_RING_LENGTH:
        errors.append(
            "Polygon must have at least 4 coordinate pairs "
            "(3 unique points + closing point)"
        )

    for index, coord in enumerate(ring):
        if not isinstance(coord, Sequence) or isinstance(coord, str) or len(coord) != 2:
            errors.append(f"Invalid coordinate at index {index}")
            continue

        lng, lat = coord
        if not (_is_number(lng) and _is_number(lat)):
            errors.append(f"Coordinate at index {index} must be numbers")
            continue

        if not MIN_LONGITUDE <= lng <= MAX_LONGITUDE:
            errors.append(f"Longitude at index {index} must be between -180 and 180")
        if not MIN_LATITUDE <= lat <= MAX_LATITUDE:
            errors.append(f"Latitude at index {index} must be between -90 and 90")

    if len(ring) >= MIN_RING_LENGTH and ring[0] != ring[-1]:
        errors.append("Polygon must be closed (first and last coordinates must match)")

    return ValidationResult(valid=not errors, errors=errors)


def is_simple(polygon: PolygonLike) -> bool:
    """Return ``True`` if the ring does not self-intersect.

    Uses Shapely's validity test; rings that fail basic validation are
    never simple.
    """
    if not validate_polygon(polygon).valid:
        return False

    from shapely.geometry import Polygon as ShapelyPolygon

    shape = ShapelyPolygon(_ring_of(polygon))
    return bool(shape.is_valid) and not shape.is_empty


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------


def polygon_area_acres(polygon: PolygonLike) -> float:
    """Approximate polygon area in acres (spherical excess).

    Sums ``Δlng · (sin lat₁ + sin lat₂)`` over consecutive ring edges,
    scales by ``R² / 2`` and converts square metres to acres.  Winding
    order does not matter.  Returns ``0.0`` for an empty ring.
    """
    ring = _ring_of(polygon)
    if not ring:
        return 0.0

    total = 0.0
    for (lng1, lat1), (lng2, lat2) in zip(ring, ring[1:], strict=False):
        delta_lng = math.radians(lng2 - lng1)
        total += delta_lng * (math.sin(math.radians(lat1)) + math.sin(math.radians(lat2)))

    area_m2 = abs(total * EARTH_RADIUS_M * EARTH_RADIUS_M / 2)
    return area_m2 * ACRES_PER_SQ_METRE


def geodesic_area_acres(polygon: PolygonLike) -> float:
    """Polygon area in acres on the WGS 84 ellipsoid (``pyproj.Geod``)."""
    ring = _ring_of(polygon)
    if len(ring) < MIN_POLYGON_POINTS:
        return 0.0

    from pyproj import Geod

    geod = Geod(ellps="WGS84")
    lngs = [c[0] for c in ring]
    lats = [c[1] for c in ring]
    area_m2, _perimeter = geod.polygon_area_perimeter(lngs, lats)
    return abs(area_m2) * ACRES_PER_SQ_METRE


def polygon_centroid(polygon: PolygonLike) -> dict[str, float] | None:
    """Arithmetic mean of the ring vertices, closing vertex excluded.

    Returns ``{"lat": ..., "lng": ...}`` or ``None`` for a ring with fewer
    than two pairs.
    """
    ring = _ring_of(polygon)
    vertices = ring[:-1]
    if not vertices:
        return None

    count = len(vertices)
    return {
        "lat": sum(c[1] for c in vertices) / count,
        "lng": sum(c[0] for c in vertices) / count,
    }


def polygon_bounds(polygon: PolygonLike) -> dict[str, float] | None:
    """Return ``{minLat, maxLat, minLng, maxLng}`` or ``None`` if empty."""
    ring = _ring_of(polygon)
    if not ring:
        return None

    lngs = [c[0] for c in ring]
    lats = [c[1] for c in ring]
    return {
        "minLat": min(lats),
        "maxLat": max(lats),
        "minLng": min(lngs),
        "maxLng": max(lngs),
    }


def polygon_center(polygon: PolygonLike, *, precision: int = 6) -> dict[str, float] | None:
    """Bounding-box midpoint, rounded to *precision* decimals.

    This is the point sent alongside a polygon in analysis requests.
    """
    bounds = polygon_bounds(polygon)
    if bounds is None:
        return None
    return {
        "lat": round((bounds["minLat"] + bounds["maxLat"]) / 2, precision),
        "lng": round((bounds["minLng"] + bounds["maxLng"]) / 2, precision),
    }


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def polygon_from_points(
    points: Sequence[Mapping[str, float] | Sequence[float]],
    properties: Mapping[str, Any] | None = None,
) -> Polygon:
    """Build a closed polygon from user-drawn points.

    Args:
        points: ``{"lat", "lng"}`` mappings or ``(lng, lat)`` pairs.
        properties: Optional GeoJSON properties.

    Raises:
        ValidationError: If fewer than 3 points are given.
    """
    if not points or len(points) < MIN_POLYGON_POINTS:
        msg = "At least 3 coordinates required for a polygon"
        raise ValidationError(msg)

    ring = [_as_pair(p) for p in points]
    ring.append(ring[0])
    return Polygon(ring=tuple(ring), properties=dict(properties or {}))


def simplify_polygon(polygon: PolygonLike, tolerance: float = 0.1) -> Polygon:
    """Naively decimate a ring, keeping every ``max(1, ⌊tolerance·10⌋)``-th vertex.

    The closing vertex is always kept.  Lossy and not topology-preserving;
    rings of length 4 or less are returned unchanged.
    """
    source = _as_polygon(polygon)
    ring = source.ring
    if len(ring) <= MIN_RING_LENGTH:
        return source

    step = max(1, math.floor(tolerance * 10))
    simplified = list(ring[: len(ring) - 1 : step])
    simplified.append(ring[-1])

    logger.debug(
        "Polygon simplified | tolerance=%s | vertices=%d -> %d",
        tolerance,
        len(ring),
        len(simplified),
    )
    return Polygon(ring=tuple(simplified), properties=dict(source.properties))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)


def _as_pair(point: Mapping[str, float] | Sequence[float]) -> tuple[float, float]:
    if isinstance(point, Mapping):
        return (point["lng"], point["lat"])
    lng, lat = point
    return (lng, lat)


def _as_polygon(polygon: PolygonLike) -> Polygon:
    if isinstance(polygon, Polygon):
        return polygon
    if isinstance(polygon, Mapping):
        return Polygon.from_geojson(polygon)
    return Polygon(ring=_normalise_ring(polygon))


def _normalise_ring(items: Sequence[Any]) -> tuple[Any, ...]:
    """Convert pairs to tuples; leave malformed entries for validation to report."""
    return tuple(
        tuple(c) if isinstance(c, Sequence) and not isinstance(c, str) else c for c in items
    )


def _ring_of(polygon: PolygonLike) -> tuple[Any, ...]:
    return _as_polygon(polygon).ring
