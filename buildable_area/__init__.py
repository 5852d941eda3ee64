"""Buildable Area analysis job client.

Submits long-running terrain analysis jobs to the buildable-area backend,
tracks them to completion via authenticated polling (single jobs and
batches), caches completed results locally with expiry, and validates the
polygon artifacts those jobs consume and produce.
"""

__version__ = "0.1.0"
