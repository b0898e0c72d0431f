"""
Cookie jar storage and synchronization for API request contexts.

A context talks to its jar through a ``CookieStore``: a private in-memory
store when the context is standalone, or a store backed by the cookie jar
of an associated browser session. ``CookieSynchronizer`` sits on top of the
store, selecting the cookies eligible for a request and applying
``Set-Cookie`` headers from responses.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import time
import uuid
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Iterable, Optional, Protocol
from urllib.parse import urlsplit

from reqdoll.browser.session import BrowserSession
from reqdoll.constants import STORAGE_STATE_SESSION_EXPIRES
from reqdoll.protocol.network.types import Cookie, CookieParam, CookieSameSite
from reqdoll.utils import is_secure_url, parse_cookie_header

logger = logging.getLogger(__name__)

CookieKey = tuple[str, str, str]

# second-level labels registries hand out under two-letter country codes
_REGISTRY_SECOND_LEVEL = frozenset({
    'ac', 'co', 'com', 'edu', 'gov', 'int', 'mil', 'net', 'org',
})


@dataclass(frozen=True)
class CookieEntry:
    """
    A single cookie.

    ``domain`` starting with a dot marks a domain cookie that also matches
    subdomains; without the dot the cookie is host-only. ``expires`` is
    seconds since the epoch, ``None`` for session cookies.
    """

    name: str
    value: str
    domain: str
    path: str = '/'
    expires: Optional[float] = None
    http_only: bool = False
    secure: bool = False
    same_site: CookieSameSite = CookieSameSite.LAX

    @property
    def key(self) -> CookieKey:
        return (self.name, self.domain, self.path)

    @property
    def is_session(self) -> bool:
        return self.expires is None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (time.time() if now is None else now)

    def matches(self, url: str, now: Optional[float] = None) -> bool:
        """Whether this cookie should be sent with a request to ``url``."""
        parts = urlsplit(url)
        host = (parts.hostname or '').lower()
        if not domain_matches(host, self.domain):
            return False
        if not path_matches(parts.path or '/', self.path):
            return False
        if self.secure and not is_secure_url(url):
            return False
        return not self.is_expired(now)

    def to_cookie(self) -> Cookie:
        return Cookie(
            name=self.name,
            value=self.value,
            domain=self.domain,
            path=self.path,
            expires=STORAGE_STATE_SESSION_EXPIRES if self.expires is None else self.expires,
            httpOnly=self.http_only,
            secure=self.secure,
            sameSite=self.same_site.value,
        )

    def to_param(self) -> CookieParam:
        param = CookieParam(
            name=self.name,
            value=self.value,
            domain=self.domain,
            path=self.path,
            httpOnly=self.http_only,
            secure=self.secure,
            sameSite=self.same_site.value,
        )
        if self.expires is not None:
            param['expires'] = self.expires
        return param

    @classmethod
    def from_cookie(cls, cookie: Cookie) -> CookieEntry:
        """
        Build an entry from its dictionary form.

        Raises:
            KeyError: If name, value or domain are missing.
            ValueError: If a field has the wrong type or sameSite is unknown.
        """
        name = cookie['name']
        value = cookie['value']
        domain = cookie['domain']
        path = cookie.get('path', '/')
        for field_name, field_value in (('name', name), ('value', value), ('domain', domain)):
            if not isinstance(field_value, str):
                raise ValueError(f'cookie {field_name} must be a string')
        if not isinstance(path, str):
            raise ValueError('cookie path must be a string')

        expires = cookie.get('expires', STORAGE_STATE_SESSION_EXPIRES)
        if isinstance(expires, bool) or not isinstance(expires, (int, float)):
            raise ValueError('cookie expires must be a number')
        http_only = cookie.get('httpOnly', False)
        secure = cookie.get('secure', False)
        if not isinstance(http_only, bool) or not isinstance(secure, bool):
            raise ValueError('cookie httpOnly and secure must be booleans')

        return cls(
            name=name,
            value=value,
            domain=domain,
            path=path or '/',
            expires=None if expires < 0 else expires,
            http_only=http_only,
            secure=secure,
            same_site=CookieSameSite(cookie.get('sameSite', CookieSameSite.LAX.value)),
        )


def domain_matches(host: str, cookie_domain: str) -> bool:
    cookie_domain = cookie_domain.lower()
    if cookie_domain.startswith('.'):
        bare = cookie_domain[1:]
        return host == bare or host.endswith(cookie_domain)
    return host == cookie_domain


def path_matches(request_path: str, cookie_path: str) -> bool:
    if request_path == cookie_path:
        return True
    if not request_path.startswith(cookie_path):
        return False
    return cookie_path.endswith('/') or request_path[len(cookie_path)] == '/'


def default_path(request_path: str) -> str:
    if not request_path.startswith('/') or request_path.count('/') == 1:
        return '/'
    return request_path[: request_path.rfind('/')]


def cookie_domain_for(host: str, domain_attr: str) -> Optional[str]:
    """
    Resolve a ``Domain`` attribute received from ``host``.

    Returns:
        The stored domain: ``.domain`` for a domain cookie, the bare host for
        a host-only cookie, or None when the attribute is not allowed.
        Top-level domains and registry suffixes such as ``co.uk`` only
        yield a host-only cookie when they equal the host itself. IP hosts
        never get domain cookies.
    """
    if host == domain_attr:
        if is_ip_address(host) or _is_registry_suffix(host):
            return host
        return '.' + domain_attr
    if is_ip_address(host) or not host.endswith('.' + domain_attr):
        return None
    if _is_registry_suffix(domain_attr):
        return None
    return '.' + domain_attr


def _is_registry_suffix(domain: str) -> bool:
    labels = domain.split('.')
    if len(labels) == 1:
        return True
    if len(labels) == 2:
        sld, tld = labels
        return len(tld) == 2 and sld in _REGISTRY_SECOND_LEVEL
    return False


def is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def parse_set_cookie(
    header: str,
    url: str,
    now: Optional[float] = None,
) -> Optional[CookieEntry]:
    """
    Parse one ``Set-Cookie`` header value received from ``url``.

    Returns:
        The cookie, or None when the header is malformed or rejected for the
        origin. A cookie whose expiry lies in the past is returned as is so
        the caller can delete the matching jar entry.
    """
    now = time.time() if now is None else now
    parts = urlsplit(url)
    host = (parts.hostname or '').lower()

    name_value, _, attributes = header.partition(';')
    if '=' not in name_value:
        logger.debug(f'Ignoring Set-Cookie without name/value pair from {url}')
        return None
    name, value = name_value.split('=', 1)
    name = name.strip()
    value = value.strip()
    if not name:
        logger.debug(f'Ignoring Set-Cookie with empty name from {url}')
        return None

    domain_attr: Optional[str] = None
    path_attr: Optional[str] = None
    expires: Optional[float] = None
    max_age: Optional[int] = None
    secure = False
    http_only = False
    same_site = CookieSameSite.LAX

    for raw_attr in attributes.split(';'):
        attr_name, _, attr_value = raw_attr.strip().partition('=')
        attr_lower = attr_name.strip().lower()
        attr_value = attr_value.strip()
        if attr_lower == 'domain' and attr_value:
            domain_attr = attr_value.lstrip('.').lower()
        elif attr_lower == 'path':
            path_attr = attr_value if attr_value.startswith('/') else None
        elif attr_lower == 'expires':
            try:
                expires = parsedate_to_datetime(attr_value).timestamp()
            except (TypeError, ValueError, IndexError):
                logger.debug(f'Ignoring unparsable Expires attribute: {attr_value!r}')
        elif attr_lower == 'max-age':
            try:
                max_age = int(attr_value)
            except ValueError:
                logger.debug(f'Ignoring unparsable Max-Age attribute: {attr_value!r}')
        elif attr_lower == 'secure':
            secure = True
        elif attr_lower == 'httponly':
            http_only = True
        elif attr_lower == 'samesite':
            for candidate in CookieSameSite:
                if candidate.value.lower() == attr_value.lower():
                    same_site = candidate

    if max_age is not None:
        expires = 0.0 if max_age <= 0 else now + max_age

    if domain_attr:
        domain = cookie_domain_for(host, domain_attr)
        if domain is None:
            logger.warning(
                f'Rejecting cookie {name!r}: domain {domain_attr} not allowed for {host}'
            )
            return None
    else:
        domain = host

    if secure and not is_secure_url(url):
        logger.warning(f'Rejecting secure cookie {name!r} set over insecure origin {url}')
        return None

    return CookieEntry(
        name=name,
        value=value,
        domain=domain,
        path=path_attr or default_path(parts.path or '/'),
        expires=expires,
        http_only=http_only,
        secure=secure,
        same_site=same_site,
    )


class CookieStore(Protocol):
    """Capability handle over a cookie jar, identified by ``scope_id``."""

    @property
    def scope_id(self) -> str: ...

    async def all(self) -> list[CookieEntry]: ...

    async def put(self, entries: list[CookieEntry]) -> None: ...

    async def remove(self, keys: list[CookieKey]) -> None: ...


class MemoryCookieStore:
    """Private jar of a standalone context, kept in insertion order."""

    def __init__(self, scope_id: Optional[str] = None):
        self._scope_id = scope_id or f'memory-{uuid.uuid4().hex[:12]}'
        self._cookies: dict[CookieKey, CookieEntry] = {}

    @property
    def scope_id(self) -> str:
        return self._scope_id

    async def all(self) -> list[CookieEntry]:
        return list(self._cookies.values())

    async def put(self, entries: list[CookieEntry]) -> None:
        for entry in entries:
            self._cookies[entry.key] = entry

    async def remove(self, keys: list[CookieKey]) -> None:
        for key in keys:
            self._cookies.pop(key, None)

    def __len__(self) -> int:
        return len(self._cookies)


class SessionCookieStore:
    """Jar owned by a browser session; reads and writes go through the session."""

    def __init__(self, session: BrowserSession):
        self._session = session
        context_id = session.browser_context_id
        self._scope_id = f'session-{context_id}' if context_id else f'session-{id(session):x}'

    @property
    def scope_id(self) -> str:
        return self._scope_id

    async def all(self) -> list[CookieEntry]:
        cookies = await self._session.get_cookies()
        entries = []
        for cookie in cookies:
            try:
                entries.append(CookieEntry.from_cookie(cookie))
            except (KeyError, ValueError) as exc:
                logger.warning(f'Skipping malformed session cookie {cookie!r}: {exc}')
        return entries

    async def put(self, entries: list[CookieEntry]) -> None:
        if entries:
            await self._session.set_cookies([entry.to_param() for entry in entries])

    async def remove(self, keys: list[CookieKey]) -> None:
        for name, domain, path in keys:
            await self._session.delete_cookies(name, domain, path)


class CookieSynchronizer:
    """
    Reads eligible cookies before a request and applies ``Set-Cookie`` after it.

    Every jar read and write runs under one lock so concurrent exchanges see
    each other's updates atomically. Network I/O never happens under the lock.
    """

    def __init__(self, store: CookieStore):
        self._store = store
        self._lock = asyncio.Lock()

    @property
    def scope_id(self) -> str:
        return self._store.scope_id

    async def all_cookies(self) -> list[CookieEntry]:
        async with self._lock:
            return await self._store.all()

    async def cookies_for(self, url: str) -> list[CookieEntry]:
        """Return the cookies eligible for ``url``, longest path first."""
        now = time.time()
        async with self._lock:
            cookies = await self._store.all()
        eligible = [cookie for cookie in cookies if cookie.matches(url, now)]
        eligible.sort(key=lambda cookie: len(cookie.path), reverse=True)
        return eligible

    async def cookie_header(self, url: str, explicit: Optional[str] = None) -> Optional[str]:
        """
        Build the ``Cookie`` header for ``url``.

        Values from an explicit caller-supplied header win per cookie name.
        """
        pairs = parse_cookie_header(explicit or '')
        explicit_names = {name for name, _ in pairs}
        for cookie in await self.cookies_for(url):
            if cookie.name not in explicit_names:
                pairs.append((cookie.name, cookie.value))
        if not pairs:
            return None
        return '; '.join(f'{name}={value}' for name, value in pairs)

    async def merge(self, url: str, set_cookie_headers: Iterable[str]) -> list[CookieEntry]:
        """Apply ``Set-Cookie`` header values received from ``url`` in order."""
        now = time.time()
        entries = []
        for header in set_cookie_headers:
            entry = parse_set_cookie(header, url, now)
            if entry is not None:
                entries.append(entry)
        await self.merge_entries(entries, now)
        return entries

    async def merge_entries(
        self, entries: Iterable[CookieEntry], now: Optional[float] = None
    ) -> None:
        """Store ``entries``; expired ones delete the matching cookie instead."""
        now = time.time() if now is None else now
        async with self._lock:
            for entry in entries:
                if entry.is_expired(now):
                    await self._store.remove([entry.key])
                    logger.debug(f'Cookie {entry.name} removed from {self.scope_id}')
                else:
                    await self._store.put([entry])
                    logger.debug(f'Cookie {entry.name} stored in {self.scope_id}')

    async def clear(self) -> None:
        async with self._lock:
            cookies = await self._store.all()
            await self._store.remove([cookie.key for cookie in cookies])
