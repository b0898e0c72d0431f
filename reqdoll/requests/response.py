from __future__ import annotations

import json
from typing import Any

from reqdoll.protocol.network.types import HeaderEntry
from reqdoll.requests.cache import ResponseCache


class APIResponse:
    """
    Result of a completed API request.

    HTTP error statuses (4xx/5xx) are ordinary responses: inspect ``status``
    or ``ok`` instead of expecting an exception. The body lives in the
    owning context's cache and can be read any number of times until the
    response or its context is disposed, after which reads raise
    ``Disposed``.
    """

    def __init__(
        self,
        cache: ResponseCache,
        handle: str,
        url: str,
        status: int,
        status_text: str,
        headers: list[tuple[str, str]],
    ):
        self._cache = cache
        self._handle = handle
        self._url = url
        self._status = status
        self._status_text = status_text
        self._headers = list(headers)

    @property
    def url(self) -> str:
        """URL reached after following redirects."""
        return self._url

    @property
    def status(self) -> int:
        return self._status

    @property
    def status_text(self) -> str:
        return self._status_text

    @property
    def ok(self) -> bool:
        """True for 2xx statuses."""
        return 200 <= self._status <= 299

    @property
    def handle(self) -> str:
        return self._handle

    @property
    def headers(self) -> dict[str, str]:
        """
        Lower-cased header mapping.

        Repeated headers are joined with ``, `` except ``set-cookie``, whose
        values are joined with newlines.
        """
        merged: dict[str, str] = {}
        for name, value in self._headers:
            key = name.lower()
            if key in merged:
                separator = '\n' if key == 'set-cookie' else ', '
                merged[key] = f'{merged[key]}{separator}{value}'
            else:
                merged[key] = value
        return merged

    @property
    def headers_array(self) -> list[HeaderEntry]:
        """Headers in received order, duplicates preserved."""
        return [HeaderEntry(name=name, value=value) for name, value in self._headers]

    async def body(self) -> bytes:
        return self._cache.body(self._handle)

    async def text(self, encoding: str = 'utf-8') -> str:
        return (await self.body()).decode(encoding, errors='replace')

    async def json(self) -> Any:
        return json.loads(await self.text())

    async def dispose(self) -> None:
        """Release the cached body of this response."""
        self._cache.dispose(self._handle)

    def __repr__(self) -> str:
        return f'<APIResponse status={self._status} url={self._url!r}>'
