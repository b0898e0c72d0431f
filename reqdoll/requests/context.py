"""
API request contexts.

An ``APIRequestContext`` issues HTTP requests outside of any page while
sharing cookies with an associated browser session, buffers response bodies
until they are disposed, and exports its cookies and local storage as a
storage state.
"""

from __future__ import annotations

import base64
import inspect
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Optional, Union
from urllib.parse import urljoin

from typing_extensions import NotRequired, TypedDict

from reqdoll.browser.session import BrowserSession
from reqdoll.constants import (
    DEFAULT_USER_AGENT,
    METHOD_CHANGING_REDIRECTS,
    REDIRECT_STATUS_CODES,
)
from reqdoll.exceptions import (
    Disposed,
    InvalidArgument,
    ResponseStatusError,
    TooManyRedirects,
    TransportFailure,
)
from reqdoll.protocol.network.types import RequestMethod
from reqdoll.protocol.storage.types import StorageState
from reqdoll.requests.cache import ResponseCache
from reqdoll.requests.cookies import (
    CookieStore,
    CookieSynchronizer,
    MemoryCookieStore,
    SessionCookieStore,
)
from reqdoll.requests.har_recorder import HarCapture, HarRecorder
from reqdoll.requests.options import RequestOptions
from reqdoll.requests.request import (
    EffectiveRequest,
    RequestTemplate,
    build_effective_request,
)
from reqdoll.requests.response import APIResponse
from reqdoll.requests.storage_state import StorageStateCodec, validate_storage_state
from reqdoll.requests.transport import (
    Exchange,
    HttpxTransport,
    Transport,
    TransportResponse,
)
from reqdoll.utils import drop_headers, get_header, origin_of, resolve_url

logger = logging.getLogger(__name__)

ExchangeCallback = Callable[[Exchange], Any]

_BODY_HEADERS = ('content-type', 'content-length')
_CROSS_ORIGIN_HEADERS = ('authorization', 'cookie')


class HttpCredentials(TypedDict):
    """Basic auth credentials, optionally restricted to one origin."""

    username: str
    password: str
    origin: NotRequired[str]


class APIRequestContext:
    """
    Issues HTTP requests sharing cookie state with a browser session.

    Responses with 4xx/5xx statuses are returned normally; only transport
    failures raise, unless ``fail_on_status_code`` is enabled. Bodies are
    kept in memory until ``APIResponse.dispose()`` or ``dispose()`` is called.
    """

    def __init__(
        self,
        transport: Transport,
        cookie_store: CookieStore,
        defaults: Optional[RequestOptions] = None,
        base_url: Optional[str] = None,
        http_credentials: Optional[HttpCredentials] = None,
        session: Optional[BrowserSession] = None,
        owns_transport: bool = True,
    ):
        self._transport = transport
        self._owns_transport = owns_transport
        self._cookies = CookieSynchronizer(cookie_store)
        self._cache = ResponseCache()
        self._storage = StorageStateCodec(self._cookies, session)
        self._defaults = defaults or RequestOptions()
        self._base_url = base_url
        self._http_credentials = http_credentials
        self._session = session
        self._callbacks: dict[int, ExchangeCallback] = {}
        self._callback_id = 0
        self._disposed = False
        self._dispose_reason: Optional[str] = None
        logger.debug(
            f'APIRequestContext initialized: scope={self._cookies.scope_id}, '
            f'base_url={base_url}, session_bound={session is not None}'
        )

    @property
    def base_url(self) -> Optional[str]:
        return self._base_url

    @property
    def cookies(self) -> CookieSynchronizer:
        return self._cookies

    @property
    def storage(self) -> StorageStateCodec:
        return self._storage

    @property
    def session(self) -> Optional[BrowserSession]:
        return self._session

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def fetch(
        self,
        url_or_request: Union[str, RequestTemplate],
        options: Optional[RequestOptions] = None,
        **overrides: Any,
    ) -> APIResponse:
        """
        Send a request and return its response.

        Args:
            url_or_request: Absolute URL, URL relative to ``base_url`` or a
                ``RequestTemplate``.
            options: Per-call overrides.
            **overrides: Shortcut for ``RequestOptions`` fields, applied on
                top of ``options``.

        Returns:
            APIResponse: The final response, whatever its status code.

        Raises:
            InvalidArgument: For malformed URLs, templates or options.
            TooManyRedirects: If the redirect chain exceeds ``max_redirects``.
            TransportFailure: If the exchange could not be completed.
            ResponseStatusError: For non-2xx/3xx statuses with ``fail_on_status_code``.
            Disposed: If the context has been disposed.
        """
        self._ensure_not_disposed()
        template = self._to_template(url_or_request)
        layer = (options or RequestOptions()).updated(**overrides)
        request = build_effective_request(template, self._defaults, layer, self._base_url)

        response = await self._send_following_redirects(request)

        if request.fail_on_status_code and not 200 <= response.status < 400:
            raise ResponseStatusError(
                response.status, response.status_text, url=response.url, method=request.method
            )

        handle = self._cache.register(response.body)
        logger.debug(f'{request.method} {request.url} -> {response.status} ({response.url})')
        return APIResponse(
            cache=self._cache,
            handle=handle,
            url=response.url,
            status=response.status,
            status_text=response.status_text,
            headers=response.headers,
        )

    async def get(
        self, url: str, options: Optional[RequestOptions] = None, **overrides: Any
    ) -> APIResponse:
        return await self._fetch_with_method(RequestMethod.GET, url, options, overrides)

    async def post(
        self, url: str, options: Optional[RequestOptions] = None, **overrides: Any
    ) -> APIResponse:
        return await self._fetch_with_method(RequestMethod.POST, url, options, overrides)

    async def put(
        self, url: str, options: Optional[RequestOptions] = None, **overrides: Any
    ) -> APIResponse:
        return await self._fetch_with_method(RequestMethod.PUT, url, options, overrides)

    async def patch(
        self, url: str, options: Optional[RequestOptions] = None, **overrides: Any
    ) -> APIResponse:
        return await self._fetch_with_method(RequestMethod.PATCH, url, options, overrides)

    async def delete(
        self, url: str, options: Optional[RequestOptions] = None, **overrides: Any
    ) -> APIResponse:
        return await self._fetch_with_method(RequestMethod.DELETE, url, options, overrides)

    async def head(
        self, url: str, options: Optional[RequestOptions] = None, **overrides: Any
    ) -> APIResponse:
        return await self._fetch_with_method(RequestMethod.HEAD, url, options, overrides)

    async def storage_state(self, path: Optional[Union[str, Path]] = None) -> str:
        """
        Return the serialized cookies and local storage of this context.

        Args:
            path: When given, the snapshot is also written to this file;
                relative paths resolve against the current working directory.
        """
        self._ensure_not_disposed()
        state = await self._storage.snapshot()
        if path is not None:
            await self._storage.persist(state, path)
        return self._storage.serialize(state)

    async def dispose(self, reason: Optional[str] = None) -> None:
        """
        Invalidate every response body and release the transport.

        Further body reads and requests raise ``Disposed``. Calling it again
        is a no-op.
        """
        if self._disposed:
            return
        self._disposed = True
        self._dispose_reason = reason
        self._cache.dispose_all(reason)
        if self._owns_transport:
            await self._transport.close()
        logger.info(f'APIRequestContext disposed: scope={self._cookies.scope_id}')

    def on_exchange(self, callback: ExchangeCallback) -> int:
        """Register a callback invoked after every hop; returns its id."""
        self._callback_id += 1
        self._callbacks[self._callback_id] = callback
        return self._callback_id

    def remove_callback(self, callback_id: int) -> bool:
        return self._callbacks.pop(callback_id, None) is not None

    @asynccontextmanager
    async def record(self) -> AsyncGenerator[HarCapture, None]:
        """
        Record every hop dispatched inside the block as HAR entries.

        Usage:
            async with context.record() as capture:
                await context.get('https://example.com/api')
            capture.save('traffic.har')
        """
        recorder = HarRecorder(self)
        await recorder.start()
        try:
            yield HarCapture(recorder)
        finally:
            await recorder.stop()

    async def __aenter__(self) -> APIRequestContext:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()

    async def _fetch_with_method(
        self,
        method: RequestMethod,
        url: str,
        options: Optional[RequestOptions],
        overrides: dict[str, Any],
    ) -> APIResponse:
        layer = (options or RequestOptions()).updated(**overrides).updated(method=method.value)
        return await self.fetch(url, layer)

    async def _send_following_redirects(self, request: EffectiveRequest) -> TransportResponse:
        first_origin = origin_of(request.url)
        explicit_cookie = get_header(request.headers, 'cookie')
        base_headers = drop_headers(request.headers, ['cookie'])
        hop = request
        redirects = 0

        while True:
            hop = hop.with_headers(
                await self._hop_headers(hop, base_headers, explicit_cookie, first_origin)
            )
            response = await self._send_hop(hop)

            location = response.header('location')
            if not (
                hop.follows_redirects and response.status in REDIRECT_STATUS_CODES and location
            ):
                return response
            if redirects >= hop.max_redirects:
                raise TooManyRedirects(hop.max_redirects, url=request.url, method=request.method)
            redirects += 1

            next_url = self._redirect_target(hop, location)
            method, body = hop.method, hop.body
            if response.status in METHOD_CHANGING_REDIRECTS and (
                response.status == 303 or method not in ('GET', 'HEAD')
            ):
                if method != 'HEAD':
                    method = 'GET'
                body = None
            if body is None:
                base_headers = drop_headers(base_headers, _BODY_HEADERS)
            if origin_of(next_url) != first_origin:
                # caller-supplied credentials stay dropped for the rest of the chain
                base_headers = drop_headers(base_headers, _CROSS_ORIGIN_HEADERS)
                explicit_cookie = None
            logger.debug(f'Following {response.status} redirect #{redirects} to {next_url}')
            hop = hop.next_hop(next_url, method, body, base_headers)

    async def _hop_headers(
        self,
        hop: EffectiveRequest,
        base_headers: dict[str, str],
        explicit_cookie: Optional[str],
        first_origin: str,
    ) -> dict[str, str]:
        headers = dict(base_headers)
        cookie = await self._cookies.cookie_header(hop.url, explicit_cookie)
        if cookie:
            headers['cookie'] = cookie
        credentials = self._http_credentials
        if (
            credentials
            and get_header(headers, 'authorization') is None
            and credentials.get('origin', first_origin) == origin_of(hop.url)
        ):
            token = base64.b64encode(
                f'{credentials["username"]}:{credentials["password"]}'.encode('utf-8')
            ).decode('ascii')
            headers['authorization'] = f'Basic {token}'
        return headers

    async def _send_hop(self, hop: EffectiveRequest) -> TransportResponse:
        started = datetime.now(tz=timezone.utc)
        try:
            response = await self._transport.send(hop)
        except TransportFailure as exc:
            await self._emit(Exchange(hop, started, error=str(exc), scope_id=self._cookies.scope_id))
            raise
        set_cookies = response.header_values('set-cookie')
        if set_cookies:
            await self._cookies.merge(hop.url, set_cookies)
        await self._emit(
            Exchange(hop, started, response=response, scope_id=self._cookies.scope_id)
        )
        return response

    async def _emit(self, exchange: Exchange) -> None:
        for callback_id, callback in list(self._callbacks.items()):
            try:
                result = callback(exchange)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error(f'Exchange callback {callback_id} failed', exc_info=True)

    @staticmethod
    def _redirect_target(hop: EffectiveRequest, location: str) -> str:
        try:
            return resolve_url(urljoin(hop.url, location))
        except InvalidArgument as exc:
            raise TransportFailure(
                f'Invalid redirect location {location!r}: {exc.message}',
                url=hop.url,
                method=hop.method,
            ) from exc

    def _to_template(self, url_or_request: Union[str, RequestTemplate]) -> RequestTemplate:
        if isinstance(url_or_request, RequestTemplate):
            if not url_or_request.method or not url_or_request.url:
                raise InvalidArgument('RequestTemplate requires both method and url')
            return url_or_request
        if isinstance(url_or_request, str):
            return RequestTemplate(url=url_or_request)
        raise InvalidArgument(
            f'Expected a URL or RequestTemplate, got {type(url_or_request).__name__}'
        )

    def _ensure_not_disposed(self) -> None:
        if self._disposed:
            message = 'Request context has been disposed'
            if self._dispose_reason:
                message = f'{message}: {self._dispose_reason}'
            raise Disposed(message)


class APIRequest:
    """Factory for ``APIRequestContext`` instances."""

    def __init__(self, transport_factory: Optional[Callable[[], Transport]] = None):
        self._transport_factory = transport_factory or HttpxTransport

    async def new_context(
        self,
        *,
        base_url: Optional[str] = None,
        extra_http_headers: Optional[dict[str, str]] = None,
        user_agent: Optional[str] = None,
        http_credentials: Optional[HttpCredentials] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        fail_on_status_code: Optional[bool] = None,
        ignore_https_errors: Optional[bool] = None,
        proxy: Optional[str] = None,
        storage_state: Optional[Union[StorageState, str, Path]] = None,
        session: Optional[BrowserSession] = None,
        transport: Optional[Transport] = None,
    ) -> APIRequestContext:
        """
        Create a request context.

        Args:
            base_url: Base for relative request URLs.
            extra_http_headers: Headers sent with every request.
            user_agent: User-Agent header value.
            http_credentials: Basic auth credentials.
            timeout: Default timeout in seconds, 0 disables it.
            max_redirects: Default redirect limit, 0 disables following.
            fail_on_status_code: Raise for non-2xx/3xx responses by default.
            ignore_https_errors: Skip TLS certificate verification.
            proxy: Proxy URL used for every request.
            storage_state: Storage state dict, serialized storage state or
                path to a storage state file, whose cookies seed the jar.
            session: Browser session whose cookie jar is shared.
            transport: Transport to use instead of the factory's default; it
                is not closed when the context is disposed.

        Raises:
            InvalidArgument: If ``base_url`` is malformed.
            CodecFailure: If ``storage_state`` is malformed.
            IOFailure: If the storage state file cannot be read.
        """
        if base_url is not None:
            base_url = resolve_url(base_url)
        headers = {
            'user-agent': user_agent or DEFAULT_USER_AGENT,
            'accept': '*/*',
            'accept-encoding': 'gzip, deflate',
        }
        defaults = RequestOptions(
            headers={**headers, **(extra_http_headers or {})},
            timeout=timeout,
            max_redirects=max_redirects,
            fail_on_status_code=fail_on_status_code,
            ignore_https_errors=ignore_https_errors,
            proxy=proxy,
        )
        store: CookieStore = (
            SessionCookieStore(session) if session is not None else MemoryCookieStore()
        )
        context = APIRequestContext(
            transport=transport or self._transport_factory(),
            cookie_store=store,
            defaults=defaults,
            base_url=base_url,
            http_credentials=http_credentials,
            session=session,
            owns_transport=transport is None,
        )

        if storage_state is not None:
            if isinstance(storage_state, str) and storage_state.lstrip().startswith('{'):
                state = StorageStateCodec.deserialize(storage_state)
            elif isinstance(storage_state, (str, Path)):
                state = await StorageStateCodec.load(storage_state)
            else:
                state = validate_storage_state(storage_state)
            await context.storage.restore(state)

        logger.info(f'Created API request context: scope={context.cookies.scope_id}')
        return context
