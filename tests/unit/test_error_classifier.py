"""Tests for error classification into user-facing outcomes."""

from __future__ import annotations

import httpx
import pytest

from buildable_area.core.classifier import (
    AUTH_MESSAGE,
    NETWORK_MESSAGE,
    UNEXPECTED_MESSAGE,
    classify_error,
    format_validation_errors,
    is_retryable,
    retry_delay_s,
)
from buildable_area.core.exceptions import (
    AuthError,
    ContractError,
    HttpError,
    NetworkError,
    RateLimitedError,
)


class TestStatusTable:
    def test_bad_request_uses_detail(self) -> None:
        outcome = classify_error(HttpError(400, payload={"detail": "latitude missing"}))
        assert outcome.message == "Invalid request: latitude missing"
        assert outcome.retryable is False

    def test_bad_request_without_detail(self) -> None:
        outcome = classify_error(HttpError(400))
        assert outcome.message == "Invalid request: Please check your input"

    @pytest.mark.parametrize(
        ("status", "prefix", "retryable"),
        [
            (401, "Authentication required", False),
            (403, "Access denied", False),
            (404, "Resource not found", False),
            (500, "Server error", True),
            (503, "Service temporarily unavailable", True),
        ],
    )
    def test_known_statuses(self, status, prefix, retryable) -> None:
        outcome = classify_error(HttpError(status))
        assert outcome.status == status
        assert outcome.message.startswith(prefix)
        assert outcome.retryable is retryable

    def test_rate_limit_with_retry_after(self) -> None:
        outcome = classify_error(RateLimitedError(30))
        assert outcome.message == "Rate limit exceeded. Please try again in 30 seconds."
        assert outcome.retryable is True
        assert outcome.retry_after_s == 30

    def test_plain_429_defaults_to_sixty(self) -> None:
        outcome = classify_error(HttpError(429))
        assert outcome.retry_after_s == 60
        assert "60 seconds" in outcome.message

    @pytest.mark.parametrize("status", [502, 504, 599])
    def test_every_server_error_is_retryable(self, status) -> None:
        outcome = classify_error(HttpError(status))
        assert outcome.retryable is True
        assert outcome.retryable is HttpError(status).retryable
        assert outcome.message == f"Error {status}: HTTP {status}"

    def test_other_status_prefers_detail_then_message(self) -> None:
        assert classify_error(HttpError(422, payload={"detail": "bad bbox"})).message == "bad bbox"
        assert classify_error(HttpError(409, payload={"message": "dup"})).message == "dup"
        outcome = classify_error(HttpError(418, "teapot"))
        assert outcome.message == "Error 418: teapot"
        assert outcome.retryable is False


class TestNonHttp:
    def test_auth_error(self) -> None:
        outcome = classify_error(AuthError("refresh failed"))
        assert outcome.message == AUTH_MESSAGE
        assert outcome.status == 401
        assert outcome.retryable is False

    def test_network_error(self) -> None:
        outcome = classify_error(NetworkError("reset"))
        assert outcome.message == NETWORK_MESSAGE
        assert outcome.status is None
        assert outcome.retryable is True

    def test_raw_httpx_request_error(self) -> None:
        request = httpx.Request("GET", "http://testserver/status/1")
        outcome = classify_error(httpx.ConnectTimeout("slow", request=request))
        assert outcome.message == NETWORK_MESSAGE
        assert outcome.retryable is True

    def test_raw_httpx_status_error(self) -> None:
        request = httpx.Request("GET", "http://testserver/status/1")
        response = httpx.Response(503, json={"detail": "maintenance"}, request=request)
        exc = httpx.HTTPStatusError("503", request=request, response=response)

        outcome = classify_error(exc)
        assert outcome.status == 503
        assert outcome.retryable is True
        assert outcome.details == {"detail": "maintenance"}

    def test_domain_error_keeps_message(self) -> None:
        outcome = classify_error(ContractError("missing job_id"))
        assert outcome.message == "missing job_id"
        assert outcome.retryable is False

    def test_unknown_exception(self) -> None:
        assert classify_error(RuntimeError()).message == UNEXPECTED_MESSAGE
        assert classify_error(RuntimeError("oops")).message == "oops"


class TestHelpers:
    def test_is_retryable(self) -> None:
        assert is_retryable(HttpError(500)) is True
        assert is_retryable(HttpError(404)) is False

    def test_retry_delay(self) -> None:
        assert retry_delay_s(RateLimitedError(12)) == 12
        assert retry_delay_s(HttpError(503)) == 5

    def test_format_validation_errors(self) -> None:
        text = format_validation_errors(
            {"site_name": ["is required"], "latitude": "out of range"}
        )
        assert text == "Site Name: is required\nLatitude: out of range"

    def test_format_empty(self) -> None:
        assert format_validation_errors(None) == "Validation failed"

    def test_outcome_to_dict(self) -> None:
        data = classify_error(HttpError(404)).to_dict()
        assert set(data) == {"message", "status", "retryable", "retry_after_s", "details"}
