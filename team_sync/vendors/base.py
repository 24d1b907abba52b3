"""
Base HTTP client for vendor directory APIs.

This module provides the JSON-over-HTTPS plumbing shared by the vendor
integrations: connection reuse, SSL context, bearer token authentication and
the mapping of HTTP failures onto the provider error hierarchy.
"""

import json
import ssl
import base64
import logging
from typing import Any, Dict, Optional, Union
from urllib.parse import urlencode, urljoin, urlparse
from http.client import HTTPConnection, HTTPException, HTTPSConnection

from team_sync.logging_setup import security_logger
from team_sync.provider import ProviderAuthenticationError, ProviderTransportError

logger = logging.getLogger(__name__)


class VendorAPIError(ProviderTransportError):
    """Base exception for vendor API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class VendorAuthenticationError(VendorAPIError, ProviderAuthenticationError):
    """Raised when the vendor API rejects the configured credentials."""
    pass


class VendorAPIBase:
    """
    Shared HTTP client for vendor integrations.

    Subclasses describe endpoints; this class handles connections, headers,
    JSON encoding and error translation.
    """

    DEFAULT_TIMEOUT = 30

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize vendor API client.

        Args:
            config: Directory configuration dictionary (``authority`` or ``target`` section)
        """
        self.config = config
        self.name = config['name']
        self.base_url = config['base_url']
        self.auth_config = config.get('auth', {})
        self.verify_ssl = config.get('verify_ssl', True)
        self.timeout = config.get('timeout', self.DEFAULT_TIMEOUT)

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None
        self.auth_headers = {}

        self._setup_ssl_context()
        self._setup_authentication()

    def _setup_ssl_context(self):
        """Set up SSL context based on configuration."""
        if self.parsed_url.scheme != 'https':
            return

        if not self.verify_ssl:
            self.ssl_context = ssl._create_unverified_context()
            logger.warning(f"SSL verification disabled for {self.name}")
            return

        self.ssl_context = ssl.create_default_context()

        ca_cert_file = self.config.get('ca_cert_file')
        if ca_cert_file:
            try:
                self.ssl_context.load_verify_locations(cafile=ca_cert_file)
                logger.info(f"Loaded CA certificates for {self.name}: {ca_cert_file}")
            except (OSError, ssl.SSLError) as e:
                raise VendorAPIError(f"Failed to load CA certificates {ca_cert_file}: {e}")

    def _setup_authentication(self):
        """Set up authentication headers based on configuration."""
        auth_method = self.auth_config.get('method', '').lower()

        if auth_method in ('token', 'bearer'):
            token = self.auth_config.get('token')
            if token:
                self.auth_headers['Authorization'] = f"Bearer {token}"
                logger.debug(f"Configured Bearer token authentication for {self.name}")
            else:
                logger.error(f"Token auth configured but missing token for {self.name}")

        elif auth_method == 'basic':
            username = self.auth_config.get('username')
            password = self.auth_config.get('password')
            if username and password:
                credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
                self.auth_headers['Authorization'] = f"Basic {credentials}"
                logger.debug(f"Configured Basic authentication for {self.name}")
            else:
                logger.error(f"Basic auth configured but missing username or password for {self.name}")

        elif auth_method:
            logger.warning(f"Unknown authentication method '{auth_method}' for {self.name}")

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def build_path(self, path: str, query: Optional[Dict[str, Any]] = None) -> str:
        full_path = urljoin(self.base_path + '/', path.lstrip('/'))
        params = {key: value for key, value in (query or {}).items() if value not in (None, '')}
        if params:
            full_path += '?' + urlencode(params)
        return full_path

    def request(self, method: str, path: str, body: Optional[Dict] = None,
                query: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make an HTTP request to the vendor API.

        Args:
            method: HTTP method (GET, POST, DELETE)
            path: API endpoint path (relative to base_url)
            body: JSON request body
            query: Query string parameters; empty values are dropped

        Returns:
            Parsed JSON response (empty dict for an empty body)

        Raises:
            VendorAuthenticationError: On HTTP 401
            VendorAPIError: On any other HTTP error, connection error or invalid JSON
        """
        full_path = self.build_path(path, query)

        request_headers = dict(self.auth_headers)
        request_headers['Accept'] = 'application/json'
        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            request_headers['Content-Type'] = 'application/json'

        try:
            conn = self._get_connection()
            logger.debug(f"Making {method} request to {self.host}{full_path}")
            conn.request(method, full_path, request_body, request_headers)

            response = conn.getresponse()
            response_data = response.read().decode('utf-8')
        except (HTTPException, OSError) as e:
            self.close_connection()
            raise VendorAPIError(f"Connection error to {self.name}: {e}")

        logger.debug(f"Response status: {response.status} {response.reason}")

        if response.status == 401:
            security_logger.log_authentication_attempt(
                self.name, self.auth_config.get('username', self.auth_config.get('method', 'none')), False)
            raise VendorAuthenticationError(f"Authentication failed for {self.name}",
                                            status_code=401, body=response_data)
        if response.status >= 400:
            raise VendorAPIError(f"HTTP {response.status}: {response.reason} ({self._error_summary(response_data)})",
                                 status_code=response.status, body=response_data)

        try:
            return json.loads(response_data) if response_data else {}
        except json.JSONDecodeError as e:
            raise VendorAPIError(f"Invalid JSON response from {self.name}: {e}")

    def _error_summary(self, response_data: str) -> str:
        """Short description of an error body, for messages."""
        try:
            payload = json.loads(response_data)
        except (TypeError, ValueError):
            return response_data[:200]
        if isinstance(payload, dict):
            error = payload.get('error_summary') or payload.get('error')
            if isinstance(error, dict):
                error = error.get('message') or error.get('.tag')
            if error:
                return str(error)
        return response_data[:200]

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except OSError as e:
                logger.warning(f"Error closing connection for {self.name}: {e}")
            finally:
                self.connection = None

    def close(self):
        self.close_connection()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
