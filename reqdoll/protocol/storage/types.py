from typing_extensions import TypedDict

from reqdoll.protocol.network.types import Cookie


class NameValue(TypedDict):
    name: str
    value: str


class OriginState(TypedDict):
    """Local storage contents of one origin (scheme://host[:port])."""

    origin: str
    localStorage: list[NameValue]


class StorageState(TypedDict):
    """Portable snapshot of a cookie jar and per-origin local storage."""

    cookies: list[Cookie]
    origins: list[OriginState]
