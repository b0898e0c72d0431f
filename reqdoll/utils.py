"""URL and header helpers shared by the request modules."""

from __future__ import annotations

import ipaddress
from typing import Iterable, Mapping, Optional
from urllib.parse import urljoin, urlsplit

from reqdoll.exceptions import InvalidArgument

_SUPPORTED_SCHEMES = frozenset({'http', 'https'})
_DEFAULT_PORTS = {'http': 80, 'https': 443}


def resolve_url(url: str, base_url: Optional[str] = None) -> str:
    """
    Resolve ``url`` against ``base_url`` and validate the result.

    Args:
        url: Absolute URL, or a URL relative to ``base_url``.
        base_url: Optional base for relative URLs.

    Returns:
        Absolute http(s) URL.

    Raises:
        InvalidArgument: If the URL is empty, relative without a base,
            unparsable or uses an unsupported scheme.
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidArgument(f'Invalid URL: {url!r}')
    candidate = url.strip()
    try:
        parts = urlsplit(candidate)
        if not parts.scheme:
            if not base_url:
                raise InvalidArgument(f'Relative URL without base_url: {candidate}')
            candidate = urljoin(base_url, candidate)
            parts = urlsplit(candidate)
        # .port raises ValueError on malformed ports
        parts.port
    except ValueError as exc:
        raise InvalidArgument(f'Invalid URL: {candidate} ({exc})') from exc

    if parts.scheme.lower() not in _SUPPORTED_SCHEMES:
        raise InvalidArgument(f'Unsupported URL scheme {parts.scheme!r}: {candidate}')
    if not parts.hostname:
        raise InvalidArgument(f'URL has no host: {candidate}')
    return candidate


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for ``url``, omitting default ports."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or '').lower()
    if ':' in host:
        host = f'[{host}]'
    port = parts.port
    if port is None or port == _DEFAULT_PORTS.get(scheme):
        return f'{scheme}://{host}'
    return f'{scheme}://{host}:{port}'


def is_secure_url(url: str) -> bool:
    """Whether ``url`` is a secure context: https, or plain http to a loopback host."""
    parts = urlsplit(url)
    if parts.scheme.lower() == 'https':
        return True
    return parts.scheme.lower() == 'http' and is_loopback_host(parts.hostname or '')


def is_loopback_host(host: str) -> bool:
    host = host.lower().rstrip('.')
    if host == 'localhost' or host.endswith('.localhost'):
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def merge_headers(*layers: Optional[Mapping[str, str]]) -> dict[str, str]:
    """
    Merge header mappings case-insensitively, later layers winning.

    The casing of the winning writer is kept; ordering follows the first
    appearance of each header name.
    """
    merged: dict[str, tuple[str, str]] = {}
    for layer in layers:
        if not layer:
            continue
        for name, value in layer.items():
            key = str(name).lower()
            merged[key] = (str(name), str(value))
    return {name: value for name, value in merged.values()}


def get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def drop_headers(headers: Mapping[str, str], names: Iterable[str]) -> dict[str, str]:
    excluded = {name.lower() for name in names}
    return {key: value for key, value in headers.items() if key.lower() not in excluded}


def parse_cookie_header(cookie_header: str) -> list[tuple[str, str]]:
    """Parse a request ``Cookie`` header into ordered (name, value) pairs."""
    if not cookie_header:
        return []

    pairs: list[tuple[str, str]] = []
    for raw_pair in cookie_header.split(';'):
        stripped = raw_pair.strip()
        if '=' not in stripped:
            continue
        name, value = stripped.split('=', 1)
        name = name.strip()
        if name:
            pairs.append((name, value.strip()))
    return pairs
