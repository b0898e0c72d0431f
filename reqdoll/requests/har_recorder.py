"""HAR recorder for API request context traffic.

This module provides the internal recording engine (HarRecorder) and the
user-facing recording object (HarCapture) that together export every hop
dispatched by an ``APIRequestContext`` as HAR 1.2 entries.
"""

from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timezone
from importlib.metadata import version as _pkg_version
from pathlib import Path
from typing import TYPE_CHECKING, Optional
from urllib.parse import parse_qsl, urlsplit

from reqdoll.protocol.network.har_types import (
    Har,
    HarContent,
    HarCookie,
    HarCreator,
    HarEntry,
    HarLog,
    HarNameValue,
    HarPostData,
    HarRequest,
    HarResponse,
    HarTimings,
)
from reqdoll.requests.cookies import parse_set_cookie
from reqdoll.utils import get_header, parse_cookie_header

if TYPE_CHECKING:
    from reqdoll.requests.context import APIRequestContext
    from reqdoll.requests.request import EffectiveRequest
    from reqdoll.requests.transport import Exchange, TransportResponse

logger = logging.getLogger(__name__)

_CREATOR_NAME = 'reqdoll'
_HTTP_NOT_MODIFIED = 304
_TEXT_MIME_PREFIXES = ('text/', 'application/json', 'application/xml', 'application/javascript')


def _get_version() -> str:
    try:
        return _pkg_version('reqdoll')
    except Exception:
        return 'unknown'


class HarRecorder:
    """Internal engine that turns context exchanges into HAR entries.

    Not intended for direct use; ``context.record()`` wraps it.
    """

    def __init__(self, context: APIRequestContext):
        self._context = context
        self._callback_id: Optional[int] = None
        self._entries: list[HarEntry] = []

    @property
    def recording(self) -> bool:
        return self._callback_id is not None

    async def start(self) -> None:
        self._callback_id = self._context.on_exchange(self._on_exchange)
        logger.info('HAR recorder started')

    async def stop(self) -> None:
        if self._callback_id is not None:
            self._context.remove_callback(self._callback_id)
            self._callback_id = None
        logger.info('HAR recorder stopped, captured %d entries', len(self._entries))

    def _on_exchange(self, exchange: Exchange) -> None:
        entry = self._build_entry(exchange)
        self._entries.append(entry)
        logger.debug(
            'HAR: recorded %s %s status=%s',
            exchange.request.method,
            exchange.request.url,
            entry['response']['status'],
        )

    def _build_entry(self, exchange: Exchange) -> HarEntry:
        request = exchange.request
        response = exchange.response
        protocol = self._normalize_http_version(response.http_version if response else '')

        har_request = self._build_har_request(request, protocol)
        har_response = self._build_har_response(response, protocol, exchange.error)
        elapsed_ms = round(response.elapsed * 1000, 3) if response else 0.0

        entry = HarEntry(
            startedDateTime=exchange.started.isoformat(),
            time=elapsed_ms,
            request=har_request,
            response=har_response,
            cache={},
            timings=self._build_har_timings(elapsed_ms),
        )
        if exchange.scope_id:
            entry['_scope'] = exchange.scope_id
        return entry

    def _build_har_request(self, request: EffectiveRequest, protocol: str) -> HarRequest:
        cookie_header = get_header(request.headers, 'cookie') or ''
        body = request.body
        har_request = HarRequest(
            method=request.method,
            url=request.url,
            httpVersion=protocol,
            cookies=[HarCookie(name=n, value=v) for n, v in parse_cookie_header(cookie_header)],
            headers=[HarNameValue(name=k, value=v) for k, v in request.headers.items()],
            queryString=self._parse_query_string(request.url),
            headersSize=-1,
            bodySize=len(body.content) if body else 0,
        )
        if body is not None:
            mime_type = get_header(request.headers, 'content-type') or body.content_type or ''
            post_data = HarPostData(mimeType=mime_type, text=body.text())
            if mime_type.startswith('application/x-www-form-urlencoded'):
                post_data['params'] = [
                    HarNameValue(name=n, value=v)
                    for n, v in parse_qsl(body.text(), keep_blank_values=True)
                ]
            har_request['postData'] = post_data
        return har_request

    def _build_har_response(
        self,
        response: Optional[TransportResponse],
        protocol: str,
        error: Optional[str],
    ) -> HarResponse:
        if response is None:
            har_response = HarResponse(
                status=0,
                statusText='',
                httpVersion=protocol,
                cookies=[],
                headers=[],
                content=HarContent(size=0, mimeType=''),
                redirectURL='',
                headersSize=-1,
                bodySize=-1,
            )
            if error:
                har_response['_error'] = error
            return har_response

        mime_type = response.header('content-type') or ''
        content = HarContent(size=len(response.body), mimeType=mime_type)
        if response.body:
            text, encoding = self._encode_content(response.body, mime_type)
            content['text'] = text
            if encoding:
                content['encoding'] = encoding

        # HAR reports no body for 304 responses
        body_size = 0 if response.status == _HTTP_NOT_MODIFIED else len(response.body)
        return HarResponse(
            status=response.status,
            statusText=response.status_text,
            httpVersion=protocol,
            cookies=self._parse_response_cookies(response),
            headers=[HarNameValue(name=k, value=v) for k, v in response.headers],
            content=content,
            redirectURL=response.header('location') or '',
            headersSize=-1,
            bodySize=body_size,
        )

    @staticmethod
    def _build_har_timings(elapsed_ms: float) -> HarTimings:
        """The transport only measures the full round trip, reported as wait."""
        return HarTimings(
            blocked=-1,
            dns=-1,
            connect=-1,
            ssl=-1,
            send=0,
            wait=elapsed_ms,
            receive=0,
        )

    @staticmethod
    def _encode_content(body: bytes, mime_type: str) -> tuple[str, Optional[str]]:
        if mime_type.startswith(_TEXT_MIME_PREFIXES) or not mime_type:
            try:
                return body.decode('utf-8'), None
            except UnicodeDecodeError:
                pass
        return base64.b64encode(body).decode('ascii'), 'base64'

    @staticmethod
    def _normalize_http_version(protocol: str) -> str:
        """Normalize httpx versions ('HTTP/1.1', 'HTTP/2') to HAR's format."""
        if not protocol:
            return ''
        lower = protocol.lower()
        if lower in {'http/2', 'http/2.0', 'h2'}:
            return 'h2'
        if lower in {'http/3', 'h3'}:
            return 'h3'
        if lower.startswith('http/'):
            return protocol.upper()
        return ''

    @staticmethod
    def _parse_query_string(url: str) -> list[HarNameValue]:
        query = urlsplit(url).query
        if not query:
            return []
        return [
            HarNameValue(name=name, value=value)
            for name, value in parse_qsl(query, keep_blank_values=True)
        ]

    @staticmethod
    def _parse_response_cookies(response: TransportResponse) -> list[HarCookie]:
        cookies: list[HarCookie] = []
        for header in response.header_values('set-cookie'):
            entry = parse_set_cookie(header, response.url)
            if entry is None:
                continue
            cookie = HarCookie(
                name=entry.name,
                value=entry.value,
                path=entry.path,
                domain=entry.domain,
                httpOnly=entry.http_only,
                secure=entry.secure,
            )
            if entry.expires is not None:
                cookie['expires'] = datetime.fromtimestamp(
                    entry.expires, tz=timezone.utc
                ).isoformat()
            cookies.append(cookie)
        return cookies


class HarCapture:
    """User-facing object returned by ``context.record()``.

    Provides access to recorded HAR entries and methods to export the
    recording as a HAR 1.2 file.
    """

    def __init__(self, recorder: HarRecorder):
        self._recorder = recorder

    @property
    def entries(self) -> list[HarEntry]:
        """Return a copy of the recorded entries in dispatch order."""
        return list(self._recorder._entries)

    def to_dict(self) -> Har:
        """Build a full HAR 1.2 dictionary from the recorded entries."""
        return Har(
            log=HarLog(
                version='1.2',
                creator=HarCreator(name=_CREATOR_NAME, version=_get_version()),
                pages=[],
                entries=self.entries,
            )
        )

    def save(self, path: str | Path) -> None:
        """
        Save the recording as a HAR 1.2 JSON file.

        Args:
            path: File path to write the HAR file to.
        """
        har_dict = self.to_dict()
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(har_dict, f, indent=2, ensure_ascii=False)
        logger.info('HAR recording saved to %s (%d entries)', path, len(self._recorder._entries))
