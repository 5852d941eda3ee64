"""Shared client constants.

Centralises endpoint templates, polling defaults and unit conversions that
are shared by the transport, the pollers and the geometry helpers.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Backend endpoints (relative to ``ClientConfig.api_prefix``)
# ---------------------------------------------------------------------------

DEFAULT_API_PREFIX: str = "/api/v1/buildable-area"

ANALYZE_PATH: str = "analyze"
STATUS_PATH: str = "status/{job_id}"
RESULTS_PATH: str = "results/{job_id}"
ANALYSIS_PATH: str = "analysis/{analysis_id}"
GEOJSON_PATH: str = "analysis/{analysis_id}/geojson"
SEARCH_PATH: str = "search"
BATCH_ANALYZE_PATH: str = "batch-analyze"
BATCH_STATUS_PATH: str = "batch-status/{batch_id}"

# ---------------------------------------------------------------------------
# Polling defaults
# ---------------------------------------------------------------------------

DEFAULT_POLL_INTERVAL_S: float = 3.0
DEFAULT_POLL_MAX_ATTEMPTS: int = 600  # 30 minutes at 3 s
DEFAULT_BATCH_POLL_INTERVAL_S: float = DEFAULT_POLL_INTERVAL_S * 1.5
DEFAULT_MAX_CONSECUTIVE_ERRORS: int = 5

# Statuses that end polling at once; every other failure counts toward
# DEFAULT_MAX_CONSECUTIVE_ERRORS.
FATAL_POLL_STATUSES: frozenset[int] = frozenset({401, 403, 404})

# ---------------------------------------------------------------------------
# Batch limits
# ---------------------------------------------------------------------------

MAX_BATCH_SITES: int = 100
DEFAULT_BBOX_SIZE_M: float = 500.0

# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------

DEFAULT_CACHE_STORAGE_KEY: str = "buildable_area_analysis_cache"
DEFAULT_CACHE_EXPIRY_DAYS: float = 7.0
DEFAULT_CACHE_DIR: str = ".buildable_area_cache"
SECONDS_PER_DAY: int = 24 * 60 * 60

# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

EARTH_RADIUS_M: float = 6_371_000.0
ACRES_PER_SQ_METRE: float = 0.000247105

MIN_LATITUDE: float = -90.0
MAX_LATITUDE: float = 90.0
MIN_LONGITUDE: float = -180.0
MAX_LONGITUDE: float = 180.0

#: Minimum ring length: 3 distinct vertices + closing vertex.
MIN_RING_LENGTH: int = 4
