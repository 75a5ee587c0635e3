"""HTTP and WebSocket transport helpers shared by the chat adapters.

Adapters never talk to aiohttp directly for REST calls; they go through an
``HttpClient`` owned by the adapter instance, which turns non-2xx responses
into ``ApiError`` and connection-level failures into ``TransportError``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

import aiohttp
import backoff
from aiohttp import ClientSession

from livechat.core.config import get_settings

from .exceptions import ApiError, TransportError


logger = logging.getLogger(__name__)

HeadersProvider = Union[Mapping[str, str], Callable[[], Mapping[str, str]], None]
WebSocketFactory = Callable[[str], Awaitable[aiohttp.ClientWebSocketResponse]]


@dataclass
class HttpResponse:
    """Status and decoded body of a successful REST call."""

    status: int
    data: Any


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def build_params(data: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Query parameters from ``data``, dropping unset values."""
    if not data:
        return {}
    return {k: _query_value(v) for k, v in data.items() if v is not None and v != ""}


class HttpClient:
    """Small REST client over an aiohttp session.

    ``request(method, url, data)`` sends ``data`` as query parameters for GET
    and as a JSON body otherwise, and returns an ``HttpResponse``.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[ClientSession] = None,
        headers: HeadersProvider = None,
        timeout: Optional[float] = None,
        max_tries: Optional[int] = None,
    ):
        settings = get_settings()
        self.base_url = base_url.rstrip("/")
        self._headers = headers
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.max_tries = max_tries if max_tries is not None else settings.http_max_tries

        self._session = session
        self._session_owned = session is None

    @property
    def session(self) -> ClientSession:
        """Get the HTTP session, creating one if necessary."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._session_owned = True
        return self._session

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def headers(self) -> Dict[str, str]:
        provider = self._headers
        if callable(provider):
            provider = provider()
        return {k: v for k, v in (provider or {}).items() if v}

    async def request(
        self,
        method: str,
        url: str,
        data: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> HttpResponse:
        """Perform a request.

        Raises:
            ApiError: The server answered with a non-2xx status
            TransportError: The request could not be completed
        """
        method = method.upper()
        # writes are sent at most once
        retrying = backoff.on_exception(
            backoff.expo,
            (aiohttp.ClientConnectionError, asyncio.TimeoutError),
            max_tries=self.max_tries if method == "GET" else 1,
            logger=logger,
        )(self._request_once)

        try:
            return await retrying(method, self.url(url), data, params)
        except ApiError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    async def get(self, url: str, data: Optional[Mapping[str, Any]] = None) -> HttpResponse:
        return await self.request("GET", url, data)

    async def post(
        self,
        url: str,
        data: Optional[Mapping[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> HttpResponse:
        return await self.request("POST", url, data, params)

    async def _request_once(
        self,
        method: str,
        url: str,
        data: Optional[Mapping[str, Any]],
        params: Optional[Mapping[str, Any]],
    ) -> HttpResponse:
        query = build_params(params)
        body = None
        if method == "GET":
            query.update(build_params(data))
        else:
            body = dict(data) if data is not None else None

        async with self.session.request(
            method, url, params=query or None, json=body, headers=self.headers()
        ) as response:
            payload = await self._read_body(response)
            if response.status < 200 or response.status >= 300:
                logger.debug(f"{method} {url} -> {response.status}: {payload}")
                raise ApiError(response.status, payload)
            return HttpResponse(status=response.status, data=payload)

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        try:
            return await response.json(content_type=None)
        except ValueError:
            return await response.text()

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self._session_owned and self._session is not None:
            await self._session.close()
            self._session = None
