from enum import Enum

from typing_extensions import NotRequired, TypedDict


class RequestMethod(str, Enum):
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'
    PATCH = 'PATCH'
    DELETE = 'DELETE'
    HEAD = 'HEAD'
    OPTIONS = 'OPTIONS'


class CookieSameSite(str, Enum):
    STRICT = 'Strict'
    LAX = 'Lax'
    NONE = 'None'


class HeaderEntry(TypedDict):
    """Ordered header pair; names may repeat."""

    name: str
    value: str


class Cookie(TypedDict):
    """Cookie as exchanged with a browser session or stored in a storage state.

    ``expires`` is seconds since the epoch, ``-1`` for session cookies.
    """

    name: str
    value: str
    domain: str
    path: str
    expires: float
    httpOnly: bool
    secure: bool
    sameSite: str


class CookieParam(TypedDict):
    """Cookie accepted by ``BrowserSession.set_cookies``."""

    name: str
    value: str
    domain: str
    path: str
    expires: NotRequired[float]
    httpOnly: NotRequired[bool]
    secure: NotRequired[bool]
    sameSite: NotRequired[str]
