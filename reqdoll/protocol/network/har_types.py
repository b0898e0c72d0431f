"""HAR 1.2 structures produced when recording API request traffic.

Field names follow http://www.softwareishard.com/blog/har-12-spec/; fields
prefixed with an underscore are custom extensions allowed by the format.
"""

from __future__ import annotations

from typing_extensions import NotRequired, TypedDict


class HarNameValue(TypedDict):
    """Header, query parameter or form field pair."""

    name: str
    value: str


class HarCookie(TypedDict):
    name: str
    value: str
    path: NotRequired[str]
    domain: NotRequired[str]
    expires: NotRequired[str]
    httpOnly: NotRequired[bool]
    secure: NotRequired[bool]


class HarPostData(TypedDict):
    mimeType: str
    text: str
    params: NotRequired[list[HarNameValue]]


class HarRequest(TypedDict):
    method: str
    url: str
    httpVersion: str
    cookies: list[HarCookie]
    headers: list[HarNameValue]
    queryString: list[HarNameValue]
    headersSize: int
    bodySize: int
    postData: NotRequired[HarPostData]


class HarContent(TypedDict):
    size: int
    mimeType: str
    text: NotRequired[str]
    encoding: NotRequired[str]


class HarResponse(TypedDict):
    status: int
    statusText: str
    httpVersion: str
    cookies: list[HarCookie]
    headers: list[HarNameValue]
    content: HarContent
    redirectURL: str
    headersSize: int
    bodySize: int
    _error: NotRequired[str]


class HarTimings(TypedDict):
    """Phase durations in milliseconds, -1 where not measured."""

    send: float
    wait: float
    receive: float
    blocked: NotRequired[float]
    dns: NotRequired[float]
    connect: NotRequired[float]
    ssl: NotRequired[float]


class HarEntry(TypedDict):
    startedDateTime: str
    time: float
    request: HarRequest
    response: HarResponse
    cache: dict
    timings: HarTimings
    _scope: NotRequired[str]


class HarCreator(TypedDict):
    name: str
    version: str


class HarLog(TypedDict):
    version: str
    creator: HarCreator
    pages: list[dict]
    entries: list[HarEntry]


class Har(TypedDict):
    log: HarLog
