"""Authenticated HTTP transport for the buildable-area backend.

Wraps ``httpx.AsyncClient`` with bearer-token authentication and a single
replay on ``401 Unauthorized``:

1. Every request carries ``Authorization: Bearer <token>`` unless
   ``skip_auth`` is set.
2. The first 401 for a request obtains a refreshed token through the
   injected refresh callback and replays the request once with it.
3. If the refresh fails, returns no token, or no callback is configured,
   the stored token is cleared, the ``on_unauthorized`` hook runs and
   ``AuthError`` is raised.

Refreshes are single-flight: concurrent requests that hit 401 together
share one in-flight refresh task instead of each starting their own.

Non-401 failures are never retried here.  They are raised as
``NetworkError`` (no response), ``RateLimitedError`` (429) or
``HttpError`` and classified by ``buildable_area.core.classifier``.
A successful response whose body is not JSON raises ``ContractError`` from
the ``*_json`` helpers, except ``delete_json``, which tolerates plain text.

The token lives only in this instance's memory; pass the instance to the
services that need it rather than sharing a module-level client.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from buildable_area.core.exceptions import (
    AuthError,
    ContractError,
    HttpError,
    NetworkError,
    RateLimitedError,
)

if TYPE_CHECKING:
    from buildable_area.core.config import ClientConfig

logger = logging.getLogger("buildable_area.transport.client")

RefreshCallback = Callable[[], Awaitable[str | None]]

DEFAULT_TIMEOUT_S = 600.0
DEFAULT_HEADERS = {"Content-Type": "application/json"}
DEFAULT_RATE_LIMIT_RETRY_S = 60.0


class AuthProvider(Protocol):
    """External authentication collaborator (login flow lives elsewhere)."""

    async def get_token(self) -> str | None: ...

    async def refresh_token(self) -> str | None: ...


class AuthenticatedTransport:
    """Bearer-authenticated async HTTP client.

    Args:
        base_url: Backend URL including the API prefix; request paths are
            relative to it.
        timeout_s: Default per-request timeout.
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            with ``httpx.MockTransport``).  An injected client is not closed
            by ``aclose()``.
        refresh_callback: Coroutine function returning a fresh token.
        on_unauthorized: Called after the token is cleared because a 401
            could not be resolved (e.g. to redirect to sign-in).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
        refresh_callback: RefreshCallback | None = None,
        on_unauthorized: Callable[[], None] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/") + "/"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_s,
            headers=DEFAULT_HEADERS,
        )
        self._token: str | None = None
        self._refresh_callback = refresh_callback
        self._on_unauthorized = on_unauthorized
        self._refresh_task: asyncio.Task[str] | None = None

    @classmethod
    def from_config(cls, config: ClientConfig, **kwargs: Any) -> AuthenticatedTransport:
        """Build a transport for ``config.api_base_url + config.api_prefix``."""
        base_url = config.api_base_url.rstrip("/") + "/" + config.api_prefix.strip("/")
        kwargs.setdefault("timeout_s", config.request_timeout_s)
        return cls(base_url, **kwargs)

    async def __aenter__(self) -> AuthenticatedTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Token accessors
    # ------------------------------------------------------------------

    def set_token(self, token: str) -> None:
        self._token = token
        logger.info("Auth token set")

    def clear_token(self) -> None:
        self._token = None
        logger.info("Auth token cleared")

    def is_authenticated(self) -> bool:
        return bool(self._token)

    def set_refresh_callback(self, callback: RefreshCallback | None) -> None:
        self._refresh_callback = callback

    async def bind_auth_provider(self, provider: AuthProvider) -> None:
        """Adopt *provider*'s current token and use it for refreshes."""
        token = await provider.get_token()
        if token:
            self.set_token(token)
        self.set_refresh_callback(provider.refresh_token)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        skip_auth: bool = False,
        timeout_s: float | None = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Raises:
            NetworkError: No response was received.
            AuthError: A 401 could not be resolved with one refresh.
            RateLimitedError: The server answered 429.
            HttpError: Any other status >= 400.
        """
        sent_token = None if skip_auth else self._token
        response = await self._send(method, path, json, params, sent_token, timeout_s)

        if response.status_code == 401:
            logger.info("401 received; refreshing token | %s %s", method.upper(), path)
            token = await self._refreshed_token(sent_token)
            response = await self._send(method, path, json, params, token, timeout_s)
            if response.status_code == 401:
                self._handle_unauthorized()
                msg = f"{method.upper()} {path} rejected after token refresh"
                raise AuthError(msg)

        _raise_for_status(response, method, path)
        return response

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        return _decode(await self.request("GET", path, **kwargs))

    async def post_json(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        return _decode(await self.request("POST", path, json=json, **kwargs))

    async def delete_json(self, path: str, **kwargs: Any) -> Any:
        """DELETE *path*.  A non-JSON success body is returned as ``{"detail": text}``."""
        response = await self.request("DELETE", path, **kwargs)
        if not response.content:
            return {}
        return _error_body(response)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        json: Any,
        params: dict[str, Any] | None,
        token: str | None,
        timeout_s: float | None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        extra: dict[str, Any] = {}
        if timeout_s is not None:
            extra["timeout"] = timeout_s

        logger.debug("request | %s %s", method.upper(), path)
        try:
            response = await self._client.request(
                method,
                path.lstrip("/"),
                json=json,
                params=params,
                headers=headers,
                **extra,
            )
        except httpx.RequestError as exc:
            logger.warning(
                "Network error - no response received | %s %s | error=%s",
                method.upper(),
                path,
                exc,
            )
            msg = f"{method.upper()} {path} failed: {exc}"
            raise NetworkError(msg) from exc

        logger.debug("response | %s %s | status=%d", method.upper(), path, response.status_code)
        return response

    async def _refreshed_token(self, stale_token: str | None) -> str:
        """Return a token newer than *stale_token*, refreshing at most once.

        A request sent with a token that a completed refresh has already
        replaced reuses the current token.
        """
        if stale_token is not None and self._token and self._token != stale_token:
            return self._token

        if self._refresh_callback is None:
            self._handle_unauthorized()
            msg = "Unauthorized and no token refresh callback is configured"
            raise AuthError(msg)

        task = self._refresh_task
        if task is None:
            task = asyncio.ensure_future(self._run_refresh())
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh_task)
        else:
            logger.debug("Joining in-flight token refresh")

        return await asyncio.shield(task)

    async def _run_refresh(self) -> str:
        callback = self._refresh_callback
        if callback is None:
            self._handle_unauthorized()
            msg = "Token refresh callback was removed before the refresh ran"
            raise AuthError(msg)
        try:
            token = await callback()
        except Exception as exc:
            logger.error("Token refresh failed | error=%s", exc)
            self._handle_unauthorized()
            msg = f"Token refresh failed: {exc}"
            raise AuthError(msg) from exc

        if not token:
            logger.error("Token refresh returned no token")
            self._handle_unauthorized()
            msg = "Token refresh returned no token"
            raise AuthError(msg)

        self.set_token(token)
        return token

    def _clear_refresh_task(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None

    def _handle_unauthorized(self) -> None:
        logger.error("Unauthorized access detected")
        self.clear_token()
        if self._on_unauthorized is not None:
            self._on_unauthorized()


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def _raise_for_status(response: httpx.Response, method: str, path: str) -> None:
    status = response.status_code
    if status < 400:
        return

    payload = _error_body(response)
    logger.warning(
        "API error | %s %s | status=%d | body=%s",
        method.upper(),
        path,
        status,
        payload,
    )
    msg = f"{method.upper()} {path} returned {status}"

    if status == 429:
        raise RateLimitedError(_retry_after(response, payload), msg, payload=payload)
    raise HttpError(status, msg, payload=payload)


def _retry_after(response: httpx.Response, payload: dict[str, Any]) -> float:
    for value in (payload.get("retry_after"), response.headers.get("Retry-After")):
        if value is None:
            continue
        try:
            return max(float(value), 0.0)
        except (TypeError, ValueError):
            continue
    return DEFAULT_RATE_LIMIT_RETRY_S


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return {"detail": text} if text else {}
    return body if isinstance(body, dict) else {"detail": body}


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        msg = f"{response.request.method} {response.request.url.path} returned a non-JSON body"
        raise ContractError(msg, stage="transport") from exc
