"""Per-call request options and form payload builders."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union
from urllib.parse import parse_qsl

from reqdoll.constants import RedirectPolicy

ParamValue = Union[str, int, float, bool]
QueryParams = Union[Mapping[str, ParamValue], Sequence[tuple[str, ParamValue]], str]


@dataclass(frozen=True)
class FilePayload:
    """In-memory file for multipart uploads."""

    name: str
    mime_type: str
    buffer: bytes

    @classmethod
    def from_path(cls, path: Union[str, Path], mime_type: Optional[str] = None) -> FilePayload:
        path = Path(path)
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            mime_type=mime_type or guessed or 'application/octet-stream',
            buffer=path.read_bytes(),
        )


FormValue = Union[str, int, float, bool, FilePayload]


class FormData:
    """
    Ordered form fields for url-encoded or multipart bodies.

    ``set`` replaces every existing field with the same name, ``append`` adds
    another value. Non-file values are stringified when the body is encoded.
    """

    def __init__(self):
        self._fields: list[tuple[str, FormValue]] = []

    @classmethod
    def create(cls) -> FormData:
        return cls()

    def set(self, name: str, value: FormValue) -> FormData:
        self._fields = [(key, current) for key, current in self._fields if key != name]
        self._fields.append((name, value))
        return self

    def append(self, name: str, value: FormValue) -> FormData:
        self._fields.append((name, value))
        return self

    @property
    def fields(self) -> list[tuple[str, FormValue]]:
        return list(self._fields)

    def has_files(self) -> bool:
        return any(isinstance(value, FilePayload) for _, value in self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FormData):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f'FormData({self._fields!r})'


FormInput = Union[FormData, Mapping[str, FormValue]]


@dataclass
class RequestOptions:
    """
    Override layer applied on top of context defaults and request templates.

    Every field left at ``None`` is inherited from the layer below. Headers
    and query parameters merge key-wise instead of replacing the lower layer.
    """

    method: Optional[str] = None
    headers: Optional[dict[str, str]] = None
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
    _query: list[tuple[str, ParamValue]] = field(default_factory=list, repr=False)

    @classmethod
    def create(cls) -> RequestOptions:
        return cls()

    def set_method(self, method: str) -> RequestOptions:
        self.method = method
        return self

    def set_header(self, name: str, value: str) -> RequestOptions:
        if self.headers is None:
            self.headers = {}
        self.headers[name] = value
        return self

    def set_query_param(self, name: str, value: ParamValue) -> RequestOptions:
        self._query.append((name, value))
        return self

    def set_data(self, data: Union[str, bytes, Mapping[str, Any], Sequence[Any]]) -> RequestOptions:
        self.data = data
        return self

    def set_form(self, form: FormInput) -> RequestOptions:
        self.form = form
        return self

    def set_multipart(self, multipart: FormInput) -> RequestOptions:
        self.multipart = multipart
        return self

    def set_timeout(self, timeout: float) -> RequestOptions:
        self.timeout = timeout
        return self

    def set_fail_on_status_code(self, fail: bool) -> RequestOptions:
        self.fail_on_status_code = fail
        return self

    def set_max_redirects(self, max_redirects: int) -> RequestOptions:
        self.max_redirects = max_redirects
        return self

    def set_ignore_https_errors(self, ignore: bool) -> RequestOptions:
        self.ignore_https_errors = ignore
        return self

    def query_params(self) -> list[tuple[str, ParamValue]]:
        """Return ``params`` followed by values added with ``set_query_param``."""
        return normalize_params(self.params) + list(self._query)

    def updated(self, **overrides: Any) -> RequestOptions:
        """Return a copy where every non-None keyword replaces the field."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.name != '_query'}
        for name, value in overrides.items():
            if name not in values:
                raise TypeError(f'Unknown request option: {name}')
            if value is not None:
                values[name] = value
        copy = RequestOptions(**values)
        copy._query = list(self._query)
        return copy


def normalize_params(params: Optional[QueryParams]) -> list[tuple[str, ParamValue]]:
    if params is None:
        return []
    if isinstance(params, str):
        return list(parse_qsl(params.lstrip('?'), keep_blank_values=True))
    if isinstance(params, Mapping):
        return list(params.items())
    return [(str(name), value) for name, value in params]


def form_fields(form: FormInput) -> list[tuple[str, FormValue]]:
    if isinstance(form, FormData):
        return form.fields
    return list(form.items())


def stringify_param(value: ParamValue) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)
