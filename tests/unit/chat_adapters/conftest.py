"""Shared fakes for chat adapter tests."""

import asyncio
from types import SimpleNamespace
from typing import Any, Callable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import WSMsgType

from livechat.services.chat_adapters.transport import HttpClient, HttpResponse


class FakeWebSocket:
    """In-memory stand-in for ``aiohttp.ClientWebSocketResponse``.

    Frames pushed with ``feed()`` are returned by ``receive()``; everything
    passed to ``send_str()`` is recorded in ``sent`` and forwarded to the
    optional ``on_send(ws, data)`` hook.
    """

    def __init__(self, on_send: Optional[Callable[["FakeWebSocket", str], Any]] = None):
        self.sent: List[str] = []
        self.closed = False
        self.on_send = on_send
        self._queue: "asyncio.Queue[SimpleNamespace]" = asyncio.Queue()

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)
        if self.on_send is not None:
            result = self.on_send(self, data)
            if asyncio.iscoroutine(result):
                await result

    def feed(self, data: str) -> None:
        self._queue.put_nowait(SimpleNamespace(type=WSMsgType.TEXT, data=data, extra=None))

    def feed_error(self) -> None:
        self._queue.put_nowait(SimpleNamespace(type=WSMsgType.ERROR, data=None, extra=None))

    def feed_close(self) -> None:
        self._queue.put_nowait(SimpleNamespace(type=WSMsgType.CLOSED, data=None, extra=None))

    async def receive(self) -> SimpleNamespace:
        return await self._queue.get()

    async def close(self) -> bool:
        if not self.closed:
            self.closed = True
            self.feed_close()
        return True

    def exception(self) -> Optional[BaseException]:
        return None


@pytest.fixture
def fake_ws_class():
    return FakeWebSocket


@pytest.fixture
def settle():
    """Let pending callbacks and tasks run."""
    async def _settle(rounds: int = 10) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle


@pytest.fixture
def wait_for():
    """Poll ``condition`` until it holds or fail after ``timeout`` seconds."""
    async def _wait_for(condition: Callable[[], bool], timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)
    return _wait_for


@pytest.fixture
def mock_http():
    """HttpClient double whose ``request`` is an AsyncMock."""
    http = MagicMock(spec=HttpClient)
    http.request = AsyncMock()
    http.get = AsyncMock()
    http.post = AsyncMock()
    http.close = AsyncMock()
    http.url.side_effect = lambda path: f"https://api.example.com/{path}"
    return http


def ok(data: Any, status: int = 200) -> HttpResponse:
    return HttpResponse(status=status, data=data)


@pytest.fixture
def response():
    return ok


class Recorder:
    """Collects the payloads of emitted events."""

    def __init__(self):
        self.events: List[tuple] = []

    def listen(self, adapter, *event_types):
        for event_type in event_types:
            adapter.on(event_type, lambda data, _e=event_type: self.events.append((_e, data)))
        return self

    def of(self, event_type) -> List[Any]:
        return [data for e, data in self.events if e == event_type]

    def names(self) -> List[str]:
        return [str(getattr(e, "value", e)) for e, _ in self.events]


@pytest.fixture
def recorder():
    return Recorder()
