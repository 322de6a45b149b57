#!/usr/bin/env python3
"""
Error taxonomy for the Wallix Bastion exporter

Upstream failures derive from WallixError and are caught per metric family
during a scrape. ConfigError is raised at startup only.
"""

from typing import Any, Dict, Optional


class WallixError(Exception):
    """Base class for failures while talking to the bastion API"""

    def __init__(self, url: str, message: str):
        super().__init__(f"{message} ({url})" if url else message)
        self.url = url


class CredentialsError(WallixError):
    """Credentials that cannot be sent as an HTTP basic auth header"""

    def __init__(self, message: str, url: str = ''):
        super().__init__(url, message)


class TransportError(WallixError):
    """Connection error or timeout before any response was received"""

    def __init__(self, url: str, cause: BaseException):
        super().__init__(url, f"cannot do request to Wallix bastion: {cause!r}")
        self.cause = cause


class APIStatusError(WallixError):
    """Response status other than 200 or 204"""

    def __init__(self, url: str, status: int,
                 api_error: Optional[Dict[str, Any]] = None, text: str = ''):
        if api_error is not None:
            detail = f"api error response: {api_error}"
        else:
            detail = f"plain text response: {text}"
        super().__init__(url, f"response http status not ok: {status}, {detail}")
        self.status = status
        self.api_error = api_error
        self.text = text


class DecodeError(WallixError):
    """Successful response whose body is not the expected JSON document"""

    def __init__(self, url: str, cause: Any, body: bytes = b''):
        super().__init__(url, f"cannot decode response: {cause}: {body[:200]!r}")
        self.cause = cause
        self.body = body


class ConfigError(Exception):
    """Missing or invalid configuration; the exporter refuses to start"""
