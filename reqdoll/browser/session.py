"""
Browser session collaborator interface.

A request context bound to a browser session reads and writes the session's
cookie jar through this interface and reads local storage from it when a
storage state snapshot is taken. Any object implementing these coroutines
(for example a thin adapter over a CDP tab) can be associated.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from reqdoll.protocol.network.types import Cookie, CookieParam
from reqdoll.protocol.storage.types import NameValue


@runtime_checkable
class BrowserSession(Protocol):
    @property
    def browser_context_id(self) -> Optional[str]:
        """Identifier of the browser context owning the shared cookie jar."""
        ...

    async def get_cookies(self) -> list[Cookie]:
        """Return every cookie in the session jar."""
        ...

    async def set_cookies(self, cookies: list[CookieParam]) -> None:
        """Add or replace cookies in the session jar."""
        ...

    async def delete_cookies(self, name: str, domain: str, path: str) -> None:
        """Remove the cookie identified by (name, domain, path)."""
        ...

    async def local_storage_origins(self) -> list[str]:
        """Return the origins that currently hold local storage."""
        ...

    async def get_local_storage(self, origin: str) -> list[NameValue]:
        """Return the local storage items of ``origin`` in insertion order."""
        ...

    async def set_local_storage(self, origin: str, items: list[NameValue]) -> None:
        """Write ``items`` into the local storage of ``origin``."""
        ...
