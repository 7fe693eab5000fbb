"""
WebDAV client used to publish backup archives.

Issues authenticated PROPFIND, MKCOL and PUT requests and reports the raw
status code. HTTP error statuses are returned to the caller; only transport
failures (DNS, TLS, refused connections, timeouts) raise.
"""

import os
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import requests
from requests.auth import HTTPBasicAuth, HTTPDigestAuth


logger = logging.getLogger(__name__)

AUTH_SCHEMES = {
    'basic': HTTPBasicAuth,
    'digest': HTTPDigestAuth,
}

DEFAULT_TIMEOUT = 300


class TransportError(Exception):
    """Raised when a request cannot reach the server at all."""
    pass


class RemoteProtocolError(Exception):
    """Raised when the server answers with an unexpected HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HttpResult:
    status_code: int
    body: bytes = b''

    @property
    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')


class WebDAVClient:
    """
    Minimal WebDAV client on top of a requests session.

    Credentials are attached to every request through the configured auth
    scheme; redirects are followed.
    """

    def __init__(self, login: str, password: str, auth_scheme: str = 'basic',
                 timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        """
        Initialize WebDAV client.

        Args:
            login: Account login
            password: Account password
            auth_scheme: 'basic' or 'digest'
            timeout: Per-request timeout in seconds
            session: Optional pre-built requests session
        """
        if auth_scheme not in AUTH_SCHEMES:
            raise ValueError(
                f"Invalid auth scheme: {auth_scheme}. "
                f"Valid options: {list(AUTH_SCHEMES.keys())}"
            )

        self.auth_scheme = auth_scheme
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = AUTH_SCHEMES[auth_scheme](login, password)
        self.session.headers.update({'User-Agent': 'davbackup'})

    def request(self, url: str, headers: Optional[Dict[str, str]] = None,
                method: str = 'GET', body=None) -> HttpResult:
        """
        Execute a request against the WebDAV server.

        Args:
            url: Absolute URL
            headers: Extra request headers
            method: HTTP method (PROPFIND, MKCOL, PUT, ...)
            body: Optional request body (bytes or a file object)

        Returns:
            HttpResult with status code and response body

        Raises:
            TransportError: If the request could not be completed
        """
        logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method,
                url,
                headers=headers or {},
                data=body,
                timeout=self.timeout,
                allow_redirects=True
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        logger.debug(f"{method} {url} -> {response.status_code}")
        return HttpResult(status_code=response.status_code, body=response.content or b'')

    def propfind(self, url: str, depth: int = 0) -> HttpResult:
        return self.request(url, {'Depth': str(depth)}, 'PROPFIND')

    def mkcol(self, url: str) -> HttpResult:
        return self.request(url, {}, 'MKCOL')

    def put_file(self, url: str, local_path: str) -> HttpResult:
        """
        Upload a local file with PUT.

        Args:
            url: Target URL including the file name
            local_path: File to upload

        Returns:
            HttpResult of the PUT request
        """
        if not os.path.exists(local_path):
            raise FileNotFoundError(f"Local file not found: {local_path}")

        with open(local_path, 'rb') as f:
            return self.request(url, {'Content-type': 'application/octet-stream'}, 'PUT', f)

    def test_connection(self, base_url: str) -> bool:
        """
        Test that the server accepts our credentials.

        Returns:
            True if connection is successful

        Raises:
            RemoteProtocolError: If the server rejects the request
        """
        result = self.propfind(base_url, depth=0)

        if result.status_code in (200, 207):
            return True
        elif result.status_code == 401:
            raise RemoteProtocolError(f"Authentication rejected by {base_url}", result.status_code)
        else:
            raise RemoteProtocolError(
                f"WebDAV connection test failed ({result.status_code})", result.status_code
            )
