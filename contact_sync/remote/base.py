"""
Base contact API interface and common HTTP functionality.

This module defines the abstract base class that helpdesk API integrations must
implement, along with the shared HTTP client, SSL and API key handling.
"""

import json
import ssl
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Union
from urllib.parse import urlparse, urljoin, urlencode
from http.client import HTTPSConnection, HTTPConnection

logger = logging.getLogger(__name__)


class ContactAPIError(Exception):
    """Base exception for contact API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ContactAPIAuthenticationError(ContactAPIError):
    """Raised when the API rejects the configured credentials."""
    pass


class ContactAPIBase(ABC):
    """
    Abstract base class for helpdesk contact API integrations.

    Subclasses implement the four remote operations the reconciler needs.
    Provides JSON request handling, TLS setup and static API key authentication.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize contact API client.

        Args:
            config: remote_api configuration dictionary
        """
        self.config = config
        self.name = config.get('name', 'helpdesk')
        self.base_url = config['base_url']
        self.auth_config = config.get('auth') or {}
        self.verify_ssl = config.get('verify_ssl', True)
        self.timeout = config.get('timeout', 30)

        self.parsed_url = urlparse(self.base_url)
        self.host = self.parsed_url.netloc
        self.base_path = self.parsed_url.path.rstrip('/')

        self.connection = None
        self.ssl_context = None

        self.auth_headers = {}
        self.auth_params = {}

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

        truststore_file = self.config.get('truststore_file')
        if truststore_file:
            self._load_truststore(truststore_file)

    def _load_truststore(self, truststore_file: str):
        """Load custom CA certificates from a PEM or PKCS12 bundle."""
        truststore_type = str(self.config.get('truststore_type', 'PEM')).upper()
        truststore_password = self.config.get('truststore_password')

        try:
            if truststore_type == 'PEM':
                self.ssl_context.load_verify_locations(cafile=truststore_file)
                logger.info(f"Loaded PEM truststore: {truststore_file}")

            elif truststore_type == 'PKCS12':
                from cryptography.hazmat.primitives.serialization import Encoding, pkcs12

                with open(truststore_file, 'rb') as f:
                    p12_data = f.read()

                _, certificate, additional_certificates = pkcs12.load_key_and_certificates(
                    p12_data, truststore_password.encode() if truststore_password else None
                )

                ca_certs = []
                if certificate:
                    ca_certs.append(certificate.public_bytes(Encoding.PEM).decode('ascii'))
                for cert in (additional_certificates or []):
                    ca_certs.append(cert.public_bytes(Encoding.PEM).decode('ascii'))

                if ca_certs:
                    self.ssl_context.load_verify_locations(cadata='\n'.join(ca_certs))
                    logger.info(f"Loaded PKCS12 truststore: {truststore_file}")

            else:
                raise ContactAPIError(f"Unsupported truststore type: {truststore_type}")

        except ContactAPIError:
            raise
        except Exception as e:
            logger.error(f"Failed to load truststore {truststore_file}: {e}")
            raise ContactAPIError(f"Truststore loading failed: {e}")

    def _setup_authentication(self):
        """Set up API key header, query parameter or bearer token."""
        auth_method = str(self.auth_config.get('method', '')).lower()

        if auth_method == 'api_key_header':
            header_name = self.auth_config.get('header_name', 'X-API-KEY')
            self.auth_headers[header_name] = self.auth_config.get('api_key', '')
            logger.debug(f"Configured API key header authentication for {self.name}")

        elif auth_method == 'api_key_query':
            param_name = self.auth_config.get('param_name', 'api_key')
            self.auth_params[param_name] = self.auth_config.get('api_key', '')
            logger.debug(f"Configured API key query parameter authentication for {self.name}")

        elif auth_method == 'bearer':
            self.auth_headers['Authorization'] = f"Bearer {self.auth_config.get('token', '')}"
            logger.debug(f"Configured Bearer token authentication for {self.name}")

        elif auth_method:
            logger.warning(f"Unknown authentication method '{auth_method}' for {self.name}")

    def authenticate(self) -> bool:
        """
        Check that credentials are in place for the configured method.

        Returns:
            True if a credential is configured
        """
        credentials = list(self.auth_headers.values()) + list(self.auth_params.values())
        if not credentials or not all(credentials):
            logger.error(f"No API credentials configured for {self.name}")
            return False
        return True

    def _get_connection(self) -> Union[HTTPSConnection, HTTPConnection]:
        """Get or create HTTP connection."""
        if self.connection:
            return self.connection

        if self.parsed_url.scheme == 'https':
            self.connection = HTTPSConnection(self.host, context=self.ssl_context, timeout=self.timeout)
        else:
            self.connection = HTTPConnection(self.host, timeout=self.timeout)

        return self.connection

    def build_path(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Join path onto the base path and append query parameters, auth included."""
        full_path = urljoin(self.base_path + '/', path.lstrip('/'))

        query = dict(params or {})
        query.update(self.auth_params)
        if query:
            full_path += '?' + urlencode(query)
        return full_path

    def request(self, method: str, path: str, body: Optional[Dict] = None,
                params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make HTTP request to the contact API.

        Args:
            method: HTTP method (GET, POST, PUT)
            path: API endpoint path (relative to base_url)
            body: Request body, sent as JSON
            params: Query string parameters

        Returns:
            Decoded JSON response ({} for an empty body)

        Raises:
            ContactAPIError: If the request fails or returns an error status
        """
        full_path = self.build_path(path, params)

        request_headers = {'Accept': 'application/json'}
        request_headers.update(self.auth_headers)

        request_body = None
        if body is not None:
            request_body = json.dumps(body)
            request_headers['Content-Type'] = 'application/json'

        # Logged without the query string so the API key never reaches the log
        logger.debug(f"Making {method} request to {self.host}{full_path.split('?')[0]}")

        try:
            conn = self._get_connection()
            conn.request(method, full_path, request_body, request_headers)
            response = conn.getresponse()
            response_data = response.read().decode('utf-8')
        except (ConnectionError, OSError) as e:
            self.close_connection()
            raise ContactAPIError(f"Connection error to {self.name}: {e}")
        except Exception as e:
            self.close_connection()
            raise ContactAPIError(f"Request failed for {self.name}: {e}")

        logger.debug(f"Response status: {response.status} {response.reason}")

        if response.status in (401, 403):
            raise ContactAPIAuthenticationError(
                f"Authentication failed for {self.name}: HTTP {response.status}", response.status
            )
        if response.status >= 400:
            raise ContactAPIError(f"HTTP {response.status}: {response.reason}", response.status)

        if not response_data:
            return {}
        try:
            return json.loads(response_data)
        except json.JSONDecodeError as e:
            raise ContactAPIError(f"Invalid JSON response from {self.name}: {e}")

    def close_connection(self):
        """Close HTTP connection."""
        if self.connection:
            try:
                self.connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection for {self.name}: {e}")
            finally:
                self.connection = None

    @abstractmethod
    def find_contacts_by_email(self, email: str) -> List[Dict[str, Any]]:
        """
        Look up remote contacts whose email exactly matches.

        Args:
            email: Email address to search for

        Returns:
            List of remote contact dictionaries (may be empty)
        """
        pass

    @abstractmethod
    def create_contact(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a contact in the remote system.

        Args:
            contact: Contact fields including client_id

        Returns:
            The created remote contact
        """
        pass

    @abstractmethod
    def update_contact(self, contact_id: Any, contact: Dict[str, Any]) -> Dict[str, Any]:
        """
        Overwrite an existing remote contact.

        Args:
            contact_id: Remote contact identifier
            contact: Contact fields to submit

        Returns:
            The updated remote contact
        """
        pass

    @abstractmethod
    def list_clients(self) -> List[Dict[str, Any]]:
        """
        List the clients contacts can be assigned to.

        Returns:
            List of {'id', 'name'} dictionaries
        """
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close_connection()
