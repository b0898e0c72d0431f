"""Shared fixtures: an in-memory browser session and httpx mock transports."""

import httpx
import pytest
import pytest_asyncio

from reqdoll.requests.context import APIRequest
from reqdoll.requests.transport import HttpxTransport


class FakeSession:
    """In-memory stand-in for a browser session sharing its cookie jar."""

    def __init__(self, browser_context_id='ctx-1'):
        self.browser_context_id = browser_context_id
        self.jar = {}
        self.local_storage = {}

    async def get_cookies(self):
        cookies = []
        for param in self.jar.values():
            cookies.append({
                'name': param['name'],
                'value': param['value'],
                'domain': param['domain'],
                'path': param['path'],
                'expires': param.get('expires', -1),
                'httpOnly': param.get('httpOnly', False),
                'secure': param.get('secure', False),
                'sameSite': param.get('sameSite', 'Lax'),
            })
        return cookies

    async def set_cookies(self, cookies):
        for cookie in cookies:
            self.jar[(cookie['name'], cookie['domain'], cookie['path'])] = dict(cookie)

    async def delete_cookies(self, name, domain, path):
        self.jar.pop((name, domain, path), None)

    async def local_storage_origins(self):
        return list(self.local_storage)

    async def get_local_storage(self, origin):
        return list(self.local_storage.get(origin, []))

    async def set_local_storage(self, origin, items):
        self.local_storage[origin] = list(items)


@pytest.fixture
def fake_session():
    return FakeSession()


class RecordingHandler:
    """httpx MockTransport handler dispatching on URL and recording requests.

    Unrouted URLs answer ``200 ok``.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def route(self, url, status=200, headers=None, content=b''):
        self.routes[url] = lambda request: httpx.Response(
            status, headers=headers or [], content=content
        )

    def route_with(self, url, responder):
        """Route ``url`` to ``responder(request)``, which may be a coroutine function."""
        self.routes[url] = responder

    def redirect(self, url, location, status=302, set_cookie=None):
        headers = [('location', location)]
        if set_cookie:
            headers.append(('set-cookie', set_cookie))
        self.route(url, status=status, headers=headers)

    def __call__(self, request):
        self.requests.append(request)
        url = str(request.url).split('?')[0]
        responder = self.routes.get(url)
        if responder is None:
            return httpx.Response(200, content=b'ok')
        return responder(request)

    def cookie_headers(self):
        return [request.headers.get('cookie') for request in self.requests]


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest_asyncio.fixture
async def api_request(handler):
    """APIRequest whose contexts talk to ``handler`` through httpx.MockTransport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    yield APIRequest(transport_factory=lambda: HttpxTransport(client))
    await client.aclose()
