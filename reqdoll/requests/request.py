"""
Request templates and construction of the effective request.

The effective request sent for a call is built from three layers: the
context defaults, the request template and the per-call overrides. Later
layers win field by field; headers and query parameters are merged by name.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from reqdoll.constants import DEFAULT_MAX_REDIRECTS, DEFAULT_TIMEOUT, RedirectPolicy
from reqdoll.exceptions import InvalidArgument
from reqdoll.requests.options import (
    FilePayload,
    FormInput,
    ParamValue,
    QueryParams,
    RequestOptions,
    form_fields,
    normalize_params,
    stringify_param,
)
from reqdoll.utils import get_header, merge_headers, resolve_url

_METHOD_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")

RequestLayer = Union['RequestTemplate', RequestOptions]


@dataclass(frozen=True)
class RequestTemplate:
    """
    Pre-built request that can be dispatched as is or with overrides.

    Fields left at ``None`` fall back to the context defaults.
    """

    url: str
    method: str = 'GET'
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Optional[QueryParams] = None
    data: Optional[Union[str, bytes, Mapping[str, Any], Sequence[Any]]] = None
    form: Optional[FormInput] = None
    multipart: Optional[FormInput] = None
    timeout: Optional[float] = None
    fail_on_status_code: Optional[bool] = None
    max_redirects: Optional[int] = None
    redirect: Optional[RedirectPolicy] = None
    ignore_https_errors: Optional[bool] = None
    proxy: Optional[str] = None

    def query_params(self) -> list[tuple[str, ParamValue]]:
        return normalize_params(self.params)


@dataclass(frozen=True)
class RequestBody:
    content: bytes
    content_type: Optional[str] = None

    def text(self) -> str:
        return self.content.decode('utf-8', errors='replace')


@dataclass(frozen=True)
class EffectiveRequest:
    """Fully merged request for a single hop, as handed to the transport."""

    method: str
    url: str
    headers: dict[str, str]
    body: Optional[RequestBody] = None
    timeout: Optional[float] = DEFAULT_TIMEOUT
    fail_on_status_code: bool = False
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    redirect: RedirectPolicy = RedirectPolicy.FOLLOW
    ignore_https_errors: bool = False
    proxy: Optional[str] = None

    @property
    def follows_redirects(self) -> bool:
        return self.redirect == RedirectPolicy.FOLLOW and self.max_redirects > 0

    def with_headers(self, headers: dict[str, str]) -> EffectiveRequest:
        return replace(self, headers=headers)

    def next_hop(
        self,
        url: str,
        method: str,
        body: Optional[RequestBody],
        headers: dict[str, str],
    ) -> EffectiveRequest:
        return replace(self, url=url, method=method, body=body, headers=headers)


def build_effective_request(
    template: RequestTemplate,
    defaults: Optional[RequestOptions] = None,
    overrides: Optional[RequestOptions] = None,
    base_url: Optional[str] = None,
) -> EffectiveRequest:
    """
    Merge context defaults, a template and per-call overrides.

    Raises:
        InvalidArgument: If the method, URL, body or numeric options are invalid.
    """
    layers: list[RequestLayer] = [layer for layer in (defaults, template, overrides) if layer]

    method = _pick(layers, 'method') or 'GET'
    method = str(method).upper()
    if not _METHOD_RE.match(method):
        raise InvalidArgument(f'Invalid HTTP method: {method!r}')

    url = resolve_url(template.url, base_url)
    url = _merge_query(url, [layer.query_params() for layer in layers])

    headers = merge_headers(*(layer.headers for layer in layers))
    body = _encode_body(layers, method, url)
    if body is not None and body.content_type and get_header(headers, 'content-type') is None:
        headers['content-type'] = body.content_type

    timeout = _pick(layers, 'timeout')
    if timeout is None:
        timeout = DEFAULT_TIMEOUT
    if timeout < 0:
        raise InvalidArgument(f'timeout must be >= 0, got {timeout}')

    max_redirects = _pick(layers, 'max_redirects')
    if max_redirects is None:
        max_redirects = DEFAULT_MAX_REDIRECTS
    if max_redirects < 0:
        raise InvalidArgument(f'max_redirects must be >= 0, got {max_redirects}')

    redirect = _pick(layers, 'redirect') or RedirectPolicy.FOLLOW
    try:
        redirect = RedirectPolicy(redirect)
    except ValueError as exc:
        raise InvalidArgument(f'Invalid redirect policy: {redirect!r}') from exc

    return EffectiveRequest(
        method=method,
        url=url,
        headers=headers,
        body=body,
        timeout=timeout or None,
        fail_on_status_code=bool(_pick(layers, 'fail_on_status_code')),
        max_redirects=max_redirects,
        redirect=redirect,
        ignore_https_errors=bool(_pick(layers, 'ignore_https_errors')),
        proxy=_pick(layers, 'proxy'),
    )


def _pick(layers: Sequence[RequestLayer], name: str) -> Any:
    value = None
    for layer in layers:
        candidate = getattr(layer, name, None)
        if candidate is not None:
            value = candidate
    return value


def _merge_query(url: str, layered_params: list[list[tuple[str, ParamValue]]]) -> str:
    merged: dict[str, list[str]] = {}
    for params in layered_params:
        if not params:
            continue
        replaced: dict[str, list[str]] = {}
        for name, value in params:
            replaced.setdefault(name, []).append(stringify_param(value))
        merged.update(replaced)
    if not merged:
        return url

    pairs = [(name, value) for name, values in merged.items() for value in values]
    parts = urlsplit(url)
    query = urlencode(pairs)
    if parts.query:
        query = f'{parts.query}&{query}'
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _encode_body(layers: Sequence[RequestLayer], method: str, url: str) -> Optional[RequestBody]:
    source = None
    for layer in layers:
        if any(getattr(layer, name, None) is not None for name in ('data', 'form', 'multipart')):
            source = layer
    if source is None:
        return None

    given = [name for name in ('data', 'form', 'multipart') if getattr(source, name) is not None]
    if len(given) > 1:
        raise InvalidArgument(
            f'Only one of data, form or multipart can be specified, got {", ".join(given)}'
        )

    if source.data is not None:
        return _encode_data(source.data)
    if source.form is not None:
        fields_ = form_fields(source.form)
        if any(isinstance(value, FilePayload) for _, value in fields_):
            raise InvalidArgument('File payloads require multipart, not form')
        pairs = [(name, stringify_param(value)) for name, value in fields_]
        return RequestBody(
            content=urlencode(pairs).encode('utf-8'),
            content_type='application/x-www-form-urlencoded',
        )
    return _encode_multipart(form_fields(source.multipart), method, url)


def _encode_data(data: Any) -> RequestBody:
    if isinstance(data, bytes):
        return RequestBody(content=data, content_type='application/octet-stream')
    if isinstance(data, str):
        return RequestBody(content=data.encode('utf-8'), content_type='text/plain')
    try:
        encoded = json.dumps(data)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f'data is not JSON serializable: {exc}') from exc
    return RequestBody(content=encoded.encode('utf-8'), content_type='application/json')


def _encode_multipart(fields_: list[tuple[str, Any]], method: str, url: str) -> RequestBody:
    # a None filename makes httpx render a plain form field part
    parts: list[tuple[str, tuple[Optional[str], bytes, Optional[str]]]] = []
    for name, value in fields_:
        if isinstance(value, FilePayload):
            parts.append((name, (value.name, value.buffer, value.mime_type)))
        else:
            parts.append((name, (None, stringify_param(value).encode('utf-8'), None)))

    encoded = httpx.Request(method, url, files=parts)
    return RequestBody(content=encoded.read(), content_type=encoded.headers['content-type'])
