"""In-memory store for response bodies of completed exchanges."""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Optional

from reqdoll.exceptions import Disposed

logger = logging.getLogger(__name__)


class ResponseCache:
    """
    Holds response bodies until they are disposed.

    Bodies stay cached after being read; there is no eviction. ``dispose``
    and ``dispose_all`` are the only way to reclaim memory, and every later
    ``body`` call for a disposed handle raises ``Disposed``.
    """

    def __init__(self):
        self._bodies: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._close_reason: Optional[str] = None

    def register(self, body: bytes) -> str:
        """Store ``body`` and return the handle identifying it."""
        handle = uuid.uuid4().hex
        with self._lock:
            if self._closed:
                raise Disposed(self._disposed_message())
            self._bodies[handle] = bytes(body)
        logger.debug(f'Registered response body {handle} ({len(body)} bytes)')
        return handle

    def body(self, handle: str) -> bytes:
        """
        Return the cached body for ``handle``.

        Raises:
            Disposed: If the handle or the whole cache has been disposed.
        """
        with self._lock:
            body = self._bodies.get(handle)
            if body is None:
                raise Disposed(self._disposed_message())
            return body

    def is_disposed(self, handle: str) -> bool:
        with self._lock:
            return handle not in self._bodies

    def dispose(self, handle: str) -> None:
        with self._lock:
            removed = self._bodies.pop(handle, None)
        if removed is not None:
            logger.debug(f'Disposed response body {handle}')

    def dispose_all(self, reason: Optional[str] = None) -> None:
        with self._lock:
            if self._closed:
                return
            count = len(self._bodies)
            self._bodies.clear()
            self._closed = True
            self._close_reason = reason
        logger.debug(f'Disposed {count} cached response bodies')

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._bodies)

    def _disposed_message(self) -> str:
        if self._close_reason:
            return f'Response has been disposed: {self._close_reason}'
        return Disposed.message
