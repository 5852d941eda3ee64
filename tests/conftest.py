"""Shared pytest fixtures for the buildable-area client test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from buildable_area.storage.result_cache import ResultCache
from buildable_area.storage.stores import MemoryStore
from buildable_area.transport.client import AuthenticatedTransport

BASE_URL = "http://testserver/api/v1/buildable-area/"

#: Closed 0.01 degree square on the equator (about 305.5 acres).
SQUARE_RING = [[0.0, 0.0], [0.01, 0.0], [0.01, 0.01], [0.0, 0.01], [0.0, 0.0]]


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedTransport:
    """Stand-in for ``AuthenticatedTransport`` replaying scripted responses.

    Each method has its own queue.  An item that is an exception instance
    is raised; anything else is returned.  The last item of a queue is
    repeated once the queue is down to one entry.
    """

    def __init__(
        self,
        *,
        get: list[Any] | None = None,
        post: list[Any] | None = None,
        delete: list[Any] | None = None,
    ) -> None:
        self._queues: dict[str, list[Any]] = {
            "GET": list(get or []),
            "POST": list(post or []),
            "DELETE": list(delete or []),
        }
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        #: When set, GET requests block until the event is set.
        self.gate: asyncio.Event | None = None
        self.request_started = asyncio.Event()

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        self.calls.append(("GET", path, kwargs))
        self.request_started.set()
        if self.gate is not None:
            await self.gate.wait()
        return self._next("GET")

    async def post_json(self, path: str, json: Any = None, **kwargs: Any) -> Any:
        self.calls.append(("POST", path, {"json": json, **kwargs}))
        return self._next("POST")

    async def delete_json(self, path: str, **kwargs: Any) -> Any:
        self.calls.append(("DELETE", path, kwargs))
        return self._next("DELETE")

    def paths(self, method: str = "GET") -> list[str]:
        return [path for m, path, _ in self.calls if m == method]

    def _next(self, method: str) -> Any:
        queue = self._queues[method]
        if not queue:
            return {}
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def cache(memory_store: MemoryStore, clock: FakeClock) -> ResultCache:
    """Result cache over an in-memory store with a controllable clock."""
    return ResultCache(memory_store, clock=clock)


@pytest.fixture()
def square_ring() -> list[list[float]]:
    return [list(c) for c in SQUARE_RING]


@pytest.fixture()
def make_transport() -> Callable[..., AuthenticatedTransport]:
    """Factory building a transport whose HTTP layer is ``httpx.MockTransport``."""

    def _make(handler: Callable[[httpx.Request], Any], **kwargs: Any) -> AuthenticatedTransport:
        client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        return AuthenticatedTransport(BASE_URL, client=client, **kwargs)

    return _make


@pytest.fixture()
def make_scripted() -> Callable[..., ScriptedTransport]:
    """Factory for ``ScriptedTransport`` (keyword queues ``get``, ``post``, ``delete``)."""
    return ScriptedTransport
