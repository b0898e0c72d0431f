"""
Transport used by request contexts to execute a single HTTP exchange.

The transport never follows redirects and never manages cookies: the
context performs both itself so each hop gets cookies for its own origin.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import httpx

from reqdoll.exceptions import InvalidArgument, TransportFailure
from reqdoll.requests.request import EffectiveRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportResponse:
    status: int
    status_text: str
    headers: list[tuple[str, str]]
    body: bytes
    url: str
    http_version: str = 'HTTP/1.1'
    elapsed: float = 0.0

    def header_values(self, name: str) -> list[str]:
        wanted = name.lower()
        return [value for key, value in self.headers if key.lower() == wanted]

    def header(self, name: str) -> Optional[str]:
        values = self.header_values(name)
        return values[0] if values else None


class Transport(Protocol):
    async def send(self, request: EffectiveRequest) -> TransportResponse:
        """
        Execute one exchange without following redirects.

        Raises:
            TransportFailure: On DNS, connection, timeout or protocol errors.
        """
        ...

    async def close(self) -> None: ...


class HttpxTransport:
    """
    ``httpx.AsyncClient`` based transport.

    One client is kept per (proxy, TLS verification) combination so per-call
    proxy and ``ignore_https_errors`` overrides work. When a client is passed
    in it is used for every exchange and left open on ``close``. Its cookie
    jar is left alone: it collects response cookies but the transport never
    sends them, since requests are built without the client's cookies.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._external_client = client
        self._clients: dict[tuple[Optional[str], bool], httpx.AsyncClient] = {}

    async def send(self, request: EffectiveRequest) -> TransportResponse:
        client = self._client_for(request.proxy, not request.ignore_https_errors)
        try:
            http_request = httpx.Request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body.content if request.body else None,
                extensions={'timeout': httpx.Timeout(request.timeout).as_dict()},
            )
        except (httpx.InvalidURL, UnicodeEncodeError) as exc:
            raise InvalidArgument(f'Cannot build request for {request.url}: {exc}') from exc

        logger.debug(f'Sending {request.method} {request.url}')
        started = time.monotonic()
        try:
            response = await client.send(http_request, follow_redirects=False)
        except httpx.TimeoutException as exc:
            raise TransportFailure(
                f'Request timed out: {exc}', url=request.url, method=request.method, cause=exc
            ) from exc
        except httpx.ConnectError as exc:
            raise TransportFailure(
                f'Connection failed: {exc}', url=request.url, method=request.method, cause=exc
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportFailure(
                f'{type(exc).__name__}: {exc}', url=request.url, method=request.method, cause=exc
            ) from exc
        finally:
            # cookies are owned by the context's synchronizer
            if client is not self._external_client:
                client.cookies.clear()

        elapsed = time.monotonic() - started
        logger.debug(
            f'Received {response.status_code} for {request.method} {request.url} '
            f'in {elapsed:.3f}s'
        )
        return TransportResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=list(response.headers.multi_items()),
            body=response.content,
            url=str(response.url),
            http_version=response.http_version,
            elapsed=elapsed,
        )

    async def close(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()
        logger.debug(f'Closed {len(clients)} transport clients')

    def _client_for(self, proxy: Optional[str], verify: bool) -> httpx.AsyncClient:
        if self._external_client is not None:
            return self._external_client
        key = (proxy, verify)
        client = self._clients.get(key)
        if client is None:
            client = httpx.AsyncClient(proxy=proxy, verify=verify, follow_redirects=False)
            self._clients[key] = client
            logger.debug(f'Created transport client: proxy={proxy}, verify={verify}')
        return client


@dataclass(frozen=True)
class Exchange:
    """One hop as observed by a request context, reported to exchange callbacks."""

    request: EffectiveRequest
    started: datetime
    response: Optional[TransportResponse] = None
    error: Optional[str] = None
    scope_id: Optional[str] = None
