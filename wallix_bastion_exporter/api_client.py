#!/usr/bin/env python3
"""
Wallix Bastion API client

Thin asyncio client over aiohttp for the bastion REST API. One client owns
one HTTP session and its cookie jar: the login call stores the session cookie
and every later GET on the same client reuses it.
"""

import asyncio
import base64
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import APIStatusError, CredentialsError, DecodeError, TransportError

# Format expected by the API for date filters like "from_date"
TIME_FORMAT = '%Y-%m-%d %H:%M:%S'

USER_AGENT = 'prometheus_exporter_wallix_bastion'

# Disable pagination and only fetch an identifier, we only count records
LIST_PARAMS = {'limit': '-1', 'fields': 'id'}

TARGET_TYPES = (
    'session_accounts',
    'session_account_mappings',
    'session_interactive_logins',
    'session_scenario_accounts',
    'password_retrieval_accounts',
)


def basic_auth_header(username: str, password: str) -> str:
    """HTTP basic auth header value, credentials encoded as UTF-8"""
    if ':' in username:
        raise CredentialsError('a ":" is not allowed in the username')
    token = base64.b64encode(f"{username}:{password}".encode('utf-8')).decode('ascii')
    return f"Basic {token}"


class WallixClient:
    """Async client for the Wallix Bastion REST API"""

    def __init__(self, base_url: str, timeout: float = 10, skip_verify: bool = False,
                 headers: Dict[str, str] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.skip_verify = skip_verify
        self.headers = {'User-Agent': USER_AGENT}
        if headers:
            self.headers.update(headers)
        self.logger = logging.getLogger(__name__)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        """Create the underlying HTTP session"""
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(ssl=not self.skip_verify),
            # Bastions are often reached by IP address
            cookie_jar=aiohttp.CookieJar(unsafe=True),
            headers=self.headers,
        )

    async def close(self):
        """Close the HTTP session"""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def request(self, method: str, path: str = '', params: Dict[str, str] = None,
                      headers: Dict[str, str] = None) -> Optional[bytes]:
        """
        Perform one call against the API.

        Returns:
            The raw body of a 200 response, or None on 204 No Content

        Raises:
            TransportError: connection failure or timeout
            APIStatusError: any other status
        """
        if self._session is None:
            await self.open()

        url = self.base_url + path
        self.logger.debug(f"{method} {url} params={params}")
        try:
            async with self._session.request(method, url, params=params, headers=headers) as response:
                status = response.status
                body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(url, e) from e

        # Authentication successful, stop here
        if status == 204:
            return None

        if status != 200:
            api_error = None
            try:
                decoded = json.loads(body)
                if isinstance(decoded, dict):
                    api_error = {
                        'error': decoded.get('error', ''),
                        'description': decoded.get('description', ''),
                    }
            except ValueError:
                pass
            raise APIStatusError(url, status, api_error=api_error,
                                 text=body.decode('utf-8', errors='replace'))

        return body

    def _decode(self, path: str, body: Optional[bytes]) -> Any:
        url = self.base_url + path
        if body is None:
            raise DecodeError(url, 'empty response', b'')
        try:
            return json.loads(body)
        except ValueError as e:
            raise DecodeError(url, e, body) from e

    async def query_list(self, path: str, params: Dict[str, str] = None) -> List[Dict[str, Any]]:
        """GET a collection endpoint and decode it as a JSON list of objects"""
        body = await self.request('GET', path, params)
        results = self._decode(path, body)
        # A json null is an empty collection
        if results is None:
            return []
        if not isinstance(results, list) or not all(isinstance(r, dict) for r in results):
            raise DecodeError(self.base_url + path, 'expected a json list of objects', body)
        return results

    async def query_object(self, path: str, params: Dict[str, str] = None) -> Dict[str, Any]:
        """GET an info endpoint and decode it as a JSON object"""
        body = await self.request('GET', path, params)
        result = self._decode(path, body)
        if not isinstance(result, dict):
            raise DecodeError(self.base_url + path, 'expected a json object', body)
        return result

    async def authenticate(self, username: str, password: str):
        """
        Log in with basic auth. The bastion answers 204 and sets the session
        cookie used by all subsequent requests of this client.

        This is the only POST request and the only one carrying credentials.
        """
        headers = {'Authorization': basic_auth_header(username, password)}
        body = await self.request('POST', headers=headers)
        if body is not None:
            raise APIStatusError(self.base_url, 200,
                                 text='expected 204 No Content on authentication')

    async def get_users(self) -> List[Dict[str, Any]]:
        return await self.query_list('/users', {'limit': '-1', 'fields': 'user_name'})

    async def get_groups(self) -> List[Dict[str, Any]]:
        return await self.query_list('/usergroups', dict(LIST_PARAMS))

    async def get_devices(self) -> List[Dict[str, Any]]:
        return await self.query_list('/devices', dict(LIST_PARAMS))

    async def get_targets(self, target_type: str) -> List[Dict[str, Any]]:
        return await self.query_list(f'/targets/{target_type}', dict(LIST_PARAMS))

    async def get_current_sessions(self) -> List[Dict[str, Any]]:
        params = dict(LIST_PARAMS)
        params['status'] = 'current'
        return await self.query_list('/sessions', params)

    async def get_closed_sessions(self, minutes: int, now: datetime = None) -> List[Dict[str, Any]]:
        """Sessions whose end date falls within the last `minutes` minutes (local time)"""
        now = now or datetime.now()
        params = dict(LIST_PARAMS)
        params.update({
            'status': 'closed',
            'date_field': 'end',
            'from_date': (now - timedelta(minutes=minutes)).strftime(TIME_FORMAT),
        })
        return await self.query_list('/sessions', params)

    async def get_encryption(self) -> Dict[str, Any]:
        return await self.query_object('/encryption')

    async def get_license(self) -> Dict[str, Any]:
        return await self.query_object('/licenseinfo')

    def __repr__(self):
        return f"WallixClient(base_url={self.base_url!r}, timeout={self.timeout})"
