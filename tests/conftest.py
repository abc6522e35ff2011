"""Shared fixtures for mongo-notify tests."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pymongo.errors import ServerSelectionTimeoutError
from starlette.testclient import TestClient

import mongo_notify.api.app as app_module
from mongo_notify.api.app import app, limiter
from mongo_notify.auth import TIME_PARAM, TOKEN_PARAM, now_ms, sign_timestamp

SECRET = "test-shared-secret"

_END = object()


# ---------------------------------------------------------------------------
# Fake upstream
# ---------------------------------------------------------------------------


class FakeChangeStream:
    """Async-iterable stand-in for a pymongo change stream."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def __aiter__(self) -> FakeChangeStream:
        return self

    async def __anext__(self) -> Any:
        item = await self.queue.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    def push(self, change: Any) -> None:
        self.queue.put_nowait(change)

    def end(self) -> None:
        self.queue.put_nowait(_END)

    async def close(self) -> None:
        self.closed = True


class _FakeAdmin:
    def __init__(self, client: FakeMongoClient) -> None:
        self._client = client

    async def command(self, name: str) -> dict:
        if self._client.unreachable:
            raise ServerSelectionTimeoutError("fake: no servers available")
        return {"ok": 1.0}


class _FakeDatabase:
    def __init__(self, client: FakeMongoClient, name: str) -> None:
        self._client = client
        self.name = name

    async def watch(self, **kwargs: Any) -> FakeChangeStream:
        return self._client._open_stream(self.name, kwargs)


class FakeMongoClient:
    """Records ``watch`` calls and hands out :class:`FakeChangeStream` objects."""

    def __init__(self, unreachable: bool = False) -> None:
        self.unreachable = unreachable
        self.admin = _FakeAdmin(self)
        self.watch_calls: list[tuple[str | None, dict]] = []
        self.streams: list[FakeChangeStream] = []
        self.closed = False

    def __getitem__(self, name: str) -> _FakeDatabase:
        return _FakeDatabase(self, name)

    def _open_stream(self, database: str | None, kwargs: dict) -> FakeChangeStream:
        self.watch_calls.append((database, kwargs))
        stream = FakeChangeStream()
        self.streams.append(stream)
        return stream

    async def watch(self, **kwargs: Any) -> FakeChangeStream:
        return self._open_stream(None, kwargs)

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_credential(secret: str = SECRET, timestamp: int | None = None) -> dict[str, str]:
    ts = str(now_ms() if timestamp is None else timestamp)
    return {TOKEN_PARAM: sign_timestamp(secret.encode(), ts), TIME_PARAM: ts}


def ws_path(params: dict[str, str] | None = None) -> str:
    if not params:
        return "/ws"
    query = "&".join(f"{k}={v}" for k, v in params.items())
    return f"/ws?{query}"


@dataclass
class Gateway:
    """A running app (lifespan entered) wired to a fake MongoDB."""

    client: TestClient
    mongo: FakeMongoClient

    @property
    def registry(self):
        return app.state.registry

    @property
    def change_feed(self):
        return app.state.change_feed

    @property
    def stream(self) -> FakeChangeStream:
        return self.mongo.streams[-1]

    def connect(self, params: dict[str, str] | None = None, headers: dict | None = None):
        if params is None:
            params = make_credential()
        kwargs = {} if headers is None else {"headers": headers}
        return self.client.websocket_connect(ws_path(params), **kwargs)

    def call(self, fn, *args):
        """Run *fn* on the app's event loop thread."""
        return self.client.portal.call(fn, *args)

    def emit(self, change: Any) -> None:
        self.call(self.stream.push, change)

    def wait_for(self, predicate, timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met in time")
            time.sleep(0.01)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway_env(monkeypatch):
    monkeypatch.setenv("MONGODB_URI", "mongodb://fake-host:27017")
    monkeypatch.setenv("TOKEN", SECRET)
    monkeypatch.delenv("CHANGE_FEED_DATABASE", raising=False)
    monkeypatch.delenv("CONNECT_RATE_MAX", raising=False)


@pytest.fixture
def fake_mongo(monkeypatch):
    fake = FakeMongoClient()
    monkeypatch.setattr(app_module, "_create_mongo_client", lambda cfg: fake)
    return fake


@pytest.fixture
def gateway(gateway_env, fake_mongo):
    """TestClient with the lifespan running against a fake change stream."""
    with TestClient(app) as tc:
        yield Gateway(client=tc, mongo=fake_mongo)


@pytest_asyncio.fixture
async def client():
    """HTTP test client without lifespan (diff, plain HTTP routes)."""
    limiter.enabled = False
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
