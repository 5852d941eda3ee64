"""Pydantic model for analysis artifacts (maps, heatmaps, reports).

Artifacts are produced by the backend after a job completes and are
served through signed storage URLs.  Field names are normalised here
because the backend's listing endpoints disagree on them
(``filename`` / ``file_name`` / ``name``, ``gcp_url`` / ``signed_url`` /
``url`` / ``gcp_path``).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class Artifact(BaseModel):
    """A downloadable analysis artifact.

    Attributes:
        filename: Corrected file name (single extension).
        type: Artifact type (``"slope_heatmap"``, ``"pdf"``, ...).
        description: Human-readable label.
        url: Signed download URL, with the same filename correction.
        local_path: Backend-local path, when reported.
        size: Size in bytes, when reported.
        created_at: Creation timestamp (ISO 8601), when reported.
    """

    filename: str = ""
    type: str = "other"
    description: str = ""
    url: str | None = None
    local_path: str | None = None
    size: int | None = None
    created_at: str | None = None

    @staticmethod
    def raw_filename(data: dict[str, Any]) -> str:
        """Pick the filename from whichever key the endpoint uses."""
        return str(data.get("filename") or data.get("file_name") or data.get("name") or "")

    @staticmethod
    def raw_url(data: dict[str, Any]) -> str | None:
        """Pick the download URL from whichever key the endpoint uses."""
        value = (
            data.get("gcp_url") or data.get("signed_url") or data.get("url") or data.get("gcp_path")
        )
        return str(value) if value else None
