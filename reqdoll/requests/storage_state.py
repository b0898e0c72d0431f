"""
Storage state snapshots: cookie jar plus per-origin local storage.

The JSON layout is ``{"cookies": [...], "origins": [{"origin": ...,
"localStorage": [{"name": ..., "value": ...}]}]}`` with session cookies
written as ``"expires": -1``, so files can seed either a request context or
a browser context.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles

from reqdoll.browser.session import BrowserSession
from reqdoll.exceptions import CodecFailure, IOFailure
from reqdoll.protocol.storage.types import NameValue, OriginState, StorageState
from reqdoll.requests.cookies import CookieEntry, CookieSynchronizer

logger = logging.getLogger(__name__)


class StorageStateCodec:
    """Takes, restores, encodes and persists storage state snapshots."""

    def __init__(
        self,
        cookies: CookieSynchronizer,
        session: Optional[BrowserSession] = None,
    ):
        self._cookies = cookies
        self._session = session

    async def snapshot(self) -> StorageState:
        """
        Capture the current jar and, for session-bound contexts, local storage.

        Standalone contexts always report an empty origin list.
        """
        entries = await self._cookies.all_cookies()
        origins: list[OriginState] = []
        if self._session is not None:
            for origin in await self._session.local_storage_origins():
                items = await self._session.get_local_storage(origin)
                origins.append(
                    OriginState(
                        origin=origin,
                        localStorage=[NameValue(name=i['name'], value=i['value']) for i in items],
                    )
                )
        logger.debug(
            f'Storage state snapshot: {len(entries)} cookies, {len(origins)} origins '
            f'(scope {self._cookies.scope_id})'
        )
        return StorageState(cookies=[entry.to_cookie() for entry in entries], origins=origins)

    async def restore(self, state: StorageState) -> None:
        """Load the cookies of ``state`` into the jar and its origins into the session."""
        entries = [CookieEntry.from_cookie(cookie) for cookie in state['cookies']]
        await self._cookies.merge_entries(entries)
        if self._session is not None:
            for origin_state in state['origins']:
                await self._session.set_local_storage(
                    origin_state['origin'], list(origin_state['localStorage'])
                )
        elif state['origins']:
            logger.debug(
                f'Ignoring local storage of {len(state["origins"])} origins: '
                'no browser session associated'
            )
        logger.info(f'Restored storage state with {len(entries)} cookies')

    @staticmethod
    def serialize(state: StorageState) -> str:
        return json.dumps(
            {'cookies': list(state['cookies']), 'origins': list(state['origins'])},
            indent=2,
            ensure_ascii=False,
        )

    @staticmethod
    def deserialize(text: Union[str, bytes]) -> StorageState:
        """
        Decode storage state text.

        Raises:
            CodecFailure: If the text is not JSON or does not describe a
                valid storage state.
        """
        try:
            raw = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise CodecFailure(f'Storage state is not valid JSON: {exc}') from exc
        return validate_storage_state(raw)

    async def persist(self, state: StorageState, path: Union[str, Path]) -> Path:
        """
        Write ``state`` to ``path``, creating parent directories.

        Relative paths resolve against the current working directory and an
        existing file is overwritten.

        Raises:
            IOFailure: If the file cannot be written.
        """
        target = Path(path).expanduser().absolute()
        text = self.serialize(state)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, 'w', encoding='utf-8') as file:
                await file.write(text)
        except OSError as exc:
            raise IOFailure(f'Cannot write storage state ({exc})', path=str(target)) from exc
        logger.info(f'Storage state saved to {target}')
        return target

    @classmethod
    async def load(cls, path: Union[str, Path]) -> StorageState:
        """
        Read and decode a storage state file.

        Raises:
            IOFailure: If the file cannot be read.
            CodecFailure: If its contents are malformed.
        """
        target = Path(path).expanduser().absolute()
        try:
            async with aiofiles.open(target, 'r', encoding='utf-8') as file:
                text = await file.read()
        except OSError as exc:
            raise IOFailure(f'Cannot read storage state ({exc})', path=str(target)) from exc
        logger.debug(f'Storage state loaded from {target}')
        return cls.deserialize(text)


def validate_storage_state(raw: Any) -> StorageState:
    """
    Check the structure of a decoded storage state and normalize it.

    Raises:
        CodecFailure: If any part of the document is malformed.
    """
    if not isinstance(raw, dict):
        raise CodecFailure('Storage state must be a JSON object')
    raw_cookies = raw.get('cookies', [])
    raw_origins = raw.get('origins', [])
    if not isinstance(raw_cookies, list) or not isinstance(raw_origins, list):
        raise CodecFailure('Storage state cookies and origins must be lists')

    cookies = []
    for index, raw_cookie in enumerate(raw_cookies):
        if not isinstance(raw_cookie, dict):
            raise CodecFailure(f'Cookie #{index} must be an object')
        try:
            cookies.append(CookieEntry.from_cookie(raw_cookie).to_cookie())  # type: ignore[arg-type]
        except KeyError as exc:
            raise CodecFailure(f'Cookie #{index} is missing field {exc}') from exc
        except ValueError as exc:
            raise CodecFailure(f'Cookie #{index} is invalid: {exc}') from exc

    origins: list[OriginState] = []
    for index, raw_origin in enumerate(raw_origins):
        if not isinstance(raw_origin, dict) or not isinstance(raw_origin.get('origin'), str):
            raise CodecFailure(f'Origin #{index} must be an object with an origin string')
        items = raw_origin.get('localStorage', [])
        if not isinstance(items, list):
            raise CodecFailure(f'Origin #{index} localStorage must be a list')
        local_storage: list[NameValue] = []
        for item in items:
            if (
                not isinstance(item, dict)
                or not isinstance(item.get('name'), str)
                or not isinstance(item.get('value'), str)
            ):
                raise CodecFailure(
                    f'Origin #{index} localStorage items need string name and value'
                )
            local_storage.append(NameValue(name=item['name'], value=item['value']))
        origins.append(OriginState(origin=raw_origin['origin'], localStorage=local_storage))

    return StorageState(cookies=cookies, origins=origins)
