"""Integration tests for API request contexts.

These tests run the real httpx transport against a local HTTP server and
verify cookie handling, redirects and storage state end to end.
"""

import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from reqdoll import APIRequest
from reqdoll.exceptions import TooManyRedirects, TransportFailure


def _find_free_port():
    """Find a free port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class _TestAPIHandler(BaseHTTPRequestHandler):
    """Deterministic HTTP handler for request context integration tests."""

    def do_GET(self):
        if self.path == '/login':
            self._respond(200, 'text/plain', 'welcome', [('Set-Cookie', 'session=abc; Path=/')])
        elif self.path == '/logout':
            self._respond(
                200, 'text/plain', 'bye', [('Set-Cookie', 'session=; Path=/; Max-Age=0')]
            )
        elif self.path == '/echo':
            self._respond(
                200,
                'application/json',
                json.dumps({'cookie': self.headers.get('Cookie')}),
            )
        elif self.path == '/redirect':
            self._respond(302, 'text/plain', '', [('Location', '/echo')])
        elif self.path == '/loop':
            self._respond(302, 'text/plain', '', [('Location', '/loop')])
        else:
            self._respond(404, 'application/json', json.dumps({'error': 'not found'}))

    def do_POST(self):
        content_length = int(self.headers.get('Content-Length', 0))
        body = self.rfile.read(content_length)
        self._respond(
            201,
            'application/json',
            json.dumps({
                'path': self.path,
                'received': json.loads(body.decode()) if body else None,
            }),
        )

    def _respond(self, status, content_type, body, extra_headers=()):
        payload = body.encode()
        self.send_response(status)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(payload)))
        for name, value in extra_headers:
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        pass


@pytest.fixture(scope='module')
def api_server():
    """Start a local HTTP server for the test module."""
    port = _find_free_port()
    server = HTTPServer(('127.0.0.1', port), _TestAPIHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f'http://127.0.0.1:{port}'
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


class TestRequestContextIntegration:
    """End-to-end tests for APIRequestContext with the httpx transport."""

    @pytest.mark.asyncio
    async def test_login_cookie_round_trip(self, api_server):
        async with await APIRequest().new_context(base_url=api_server) as context:
            await context.get('/login')
            response = await context.get('/echo')
            assert await response.json() == {'cookie': 'session=abc'}

            await context.get('/logout')
            response = await context.get('/echo')
            assert await response.json() == {'cookie': None}

    @pytest.mark.asyncio
    async def test_redirect_is_followed(self, api_server):
        async with await APIRequest().new_context(base_url=api_server) as context:
            await context.get('/login')
            response = await context.get('/redirect')

            assert response.status == 200
            assert response.url == f'{api_server}/echo'
            assert await response.json() == {'cookie': 'session=abc'}

    @pytest.mark.asyncio
    async def test_redirect_loop_raises(self, api_server):
        async with await APIRequest().new_context(base_url=api_server) as context:
            with pytest.raises(TooManyRedirects):
                await context.get('/loop', max_redirects=2)

    @pytest.mark.asyncio
    async def test_not_found_is_a_response(self, api_server):
        async with await APIRequest().new_context(base_url=api_server) as context:
            response = await context.get('/nothing-here')

            assert response.status == 404
            assert not response.ok
            assert await response.json() == {'error': 'not found'}

    @pytest.mark.asyncio
    async def test_post_json(self, api_server):
        async with await APIRequest().new_context(base_url=api_server) as context:
            response = await context.post('/submit', data={'name': 'Alice'})

            assert response.status == 201
            assert await response.json() == {'path': '/submit', 'received': {'name': 'Alice'}}

    @pytest.mark.asyncio
    async def test_storage_state_seeds_new_context(self, api_server, tmp_path):
        path = tmp_path / 'state.json'
        async with await APIRequest().new_context(base_url=api_server) as context:
            await context.get('/login')
            await context.storage_state(path=path)

        async with await APIRequest().new_context(
            base_url=api_server, storage_state=path
        ) as restored:
            response = await restored.get('/echo')
            assert await response.json() == {'cookie': 'session=abc'}

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        port = _find_free_port()
        async with await APIRequest().new_context() as context:
            with pytest.raises(TransportFailure):
                await context.get(f'http://127.0.0.1:{port}/', timeout=5)
