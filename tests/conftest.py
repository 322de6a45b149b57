"""
Shared fixtures: an in-process fake Wallix Bastion API.
"""

import asyncio
import base64
import binascii
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

sys.path.insert(0, str(Path(__file__).parent.parent))

from wallix_bastion_exporter.config import ExporterConfig

USERNAME = 'admin'
PASSWORD = 'secret'
SESSION_COOKIE = 'token-1234'


def decode_basic_auth(header: str):
    """(login, password) from a UTF-8 basic auth header, None when malformed"""
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'basic':
        return None
    try:
        decoded = base64.b64decode(token, validate=True).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError):
        return None
    login, sep, password = decoded.partition(':')
    return (login, password) if sep else None


class FakeBastion:
    """Minimal bastion API: cookie login plus the endpoints the exporter reads"""

    def __init__(self):
        self.base_url = None
        self.requests = []
        # path -> (status, body) served instead of the normal response
        self.failures = {}
        # path -> seconds to wait before answering
        self.delays = {}
        self.credentials = (USERNAME, PASSWORD)
        self.collections = {
            '/api/users': [{'user_name': 'alice'}, {'user_name': 'bob'}, {'user_name': 'carol'}],
            '/api/usergroups': [{'id': '1'}, {'id': '2'}],
            '/api/devices': [{'id': str(i)} for i in range(4)],
            '/api/targets/session_accounts': [{'id': str(i)} for i in range(5)],
            '/api/targets/session_account_mappings': [{'id': str(i)} for i in range(6)],
            '/api/targets/session_interactive_logins': [{'id': str(i)} for i in range(7)],
            '/api/targets/session_scenario_accounts': [{'id': str(i)} for i in range(8)],
            '/api/targets/password_retrieval_accounts': [{'id': str(i)} for i in range(9)],
        }
        self.sessions = {
            'current': [{'id': 'a'}, {'id': 'b'}],
            'closed': [{'id': 'c'}],
        }
        self.encryption = {'encryption': 'ready', 'security_level': 'passphrase_defined'}
        self.license = {
            'is_expired': False,
            'primary': 50, 'primary_max': 200,
            'secondary': 1, 'secondary_max': 4,
            'named_user': 10, 'named_user_max': 100,
            'resource': 3, 'resource_max': 12,
            'waapm': 0, 'waapm_max': 5,
            'pm_target': 2, 'pm_target_max': 8,
            'sm_target': 9, 'sm_target_max': 10,
        }

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post('/api', self.login)
        for path in self.collections:
            app.router.add_get(path, self.collection)
        app.router.add_get('/api/sessions', self.sessions_handler)
        app.router.add_get('/api/encryption', self.info)
        app.router.add_get('/api/licenseinfo', self.info)
        return app

    def requests_to(self, path: str):
        return [r for r in self.requests if r['path'] == path]

    async def _receive(self, request: web.Request):
        self.requests.append({
            'method': request.method,
            'path': request.path,
            'query': dict(request.query),
            'headers': dict(request.headers),
            'cookies': dict(request.cookies),
        })
        delay = self.delays.get(request.path)
        if delay:
            await asyncio.sleep(delay)

    def _failure(self, request: web.Request):
        if request.path in self.failures:
            status, body = self.failures[request.path]
            if isinstance(body, (dict, list)):
                return web.json_response(body, status=status)
            return web.Response(status=status, text=body)
        return None

    def _unauthorized(self, request: web.Request):
        if request.cookies.get('session') != SESSION_COOKIE:
            return web.json_response(
                {'error': 'Unauthorized', 'description': 'Authentication required'}, status=401
            )
        return None

    async def login(self, request: web.Request):
        await self._receive(request)
        failure = self._failure(request)
        if failure is not None:
            return failure
        if decode_basic_auth(request.headers.get('Authorization', '')) != self.credentials:
            return web.json_response(
                {'error': 'Unauthorized', 'description': 'Invalid credentials'}, status=401
            )
        response = web.Response(status=204)
        response.set_cookie('session', SESSION_COOKIE)
        return response

    def _respond(self, request: web.Request, payload):
        for response in (self._failure(request), self._unauthorized(request)):
            if response is not None:
                return response
        return web.json_response(payload)

    async def collection(self, request: web.Request):
        await self._receive(request)
        return self._respond(request, self.collections[request.path])

    async def sessions_handler(self, request: web.Request):
        await self._receive(request)
        status = request.query.get('status')
        failure = self.failures.get(f'/api/sessions?status={status}')
        if failure is not None:
            return web.Response(status=failure[0], text=failure[1])
        return self._respond(request, self.sessions[status])

    async def info(self, request: web.Request):
        await self._receive(request)
        payload = self.encryption if request.path.endswith('encryption') else self.license
        return self._respond(request, payload)


@pytest_asyncio.fixture
async def bastion():
    fake = FakeBastion()
    server = TestServer(fake.make_app())
    await server.start_server()
    fake.base_url = str(server.make_url('/api'))
    yield fake
    await server.close()


@pytest.fixture
def make_config():
    def _make(base_url: str, **overrides) -> ExporterConfig:
        values = {
            'wallix_username': USERNAME,
            'wallix_password': PASSWORD,
            'scrape_uri': base_url,
            'timeout': 5,
        }
        values.update(overrides)
        return ExporterConfig(**values)
    return _make
