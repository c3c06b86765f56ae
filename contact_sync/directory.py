"""
Directory client for reading user contact records from LDAP / Active Directory.

This module connects to the directory service and retrieves enabled user
accounts together with the attributes needed to build helpdesk contacts.
"""

import ssl
import logging
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, ALL, Tls
from ldap3.core.exceptions import LDAPException, LDAPBindError

from contact_sync.config import DEFAULT_USER_FILTER, DEFAULT_ATTRIBUTES

logger = logging.getLogger(__name__)


# Directory attribute -> standardized record key
ATTRIBUTE_MAPPING = {
    'displayName': 'display_name',
    'mail': 'email',
    'title': 'title',
    'department': 'department',
    'telephoneNumber': 'phone',
    'mobile': 'mobile',
    'ipPhone': 'extension',
    'distinguishedName': 'dn',
}

RECORD_FIELDS = ['display_name', 'email', 'title', 'department', 'phone', 'mobile', 'extension', 'dn']


class DirectoryConnectionError(Exception):
    """Raised when the directory connection or bind fails."""
    pass


class DirectoryQueryError(Exception):
    """Raised when a directory search fails."""
    pass


class DirectoryClient:
    """
    LDAP client that lists enabled user accounts as directory records.

    Records are plain dictionaries keyed by RECORD_FIELDS.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize directory client with configuration.

        Args:
            config: LDAP configuration dictionary
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.search_base = config.get('search_base', '')
        self.user_filter = config.get('user_filter') or DEFAULT_USER_FILTER
        self.attributes = config.get('attributes') or list(DEFAULT_ATTRIBUTES)

        # SSL/TLS configuration
        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        # Connection settings
        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 1000)

        self.server = None
        self.connection = None
        self._connected = False

    def connect(self) -> bool:
        """
        Open and bind the directory connection.

        Returns:
            True if connection successful

        Raises:
            DirectoryConnectionError: If the server cannot be reached or the bind fails
        """
        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
            logger.debug(f"Created LDAP server object for {self.server_url} (SSL: {self.use_ssl}, StartTLS: {self.start_tls})")
        except DirectoryConnectionError:
            raise
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create LDAP server: {e}")

        try:
            self.connection = Connection(
                self.server,
                user=self.bind_dn,
                password=self.bind_password,
                auto_bind=False,
                receive_timeout=self.receive_timeout
            )

            if not self.connection.open():
                raise DirectoryConnectionError(f"Failed to open connection: {self.connection.result}")

            if self.start_tls and not self.use_ssl:
                if not self.connection.start_tls():
                    raise DirectoryConnectionError(f"Failed to start TLS: {self.connection.result}")
                logger.debug("StartTLS negotiation successful")

            if not self.connection.bind():
                raise LDAPBindError(f"Bind failed: {self.connection.result}")

        except DirectoryConnectionError:
            self._drop_connection()
            raise
        except LDAPException as e:
            self._drop_connection()
            raise DirectoryConnectionError(f"Failed to connect to {self.server_url}: {e}")

        self._connected = True
        logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
        return True

    def _create_tls_config(self) -> Optional[Tls]:
        """Build the ldap3 Tls object, or None for plain connections."""
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        try:
            return Tls(**tls_config)
        except Exception as e:
            raise DirectoryConnectionError(f"Failed to create TLS configuration: {e}")

    def _drop_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except Exception as e:
                logger.debug(f"Ignoring error while unbinding failed connection: {e}")
            self.connection = None

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except Exception as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def get_enabled_users(self) -> List[Dict[str, Any]]:
        """
        Retrieve all enabled user accounts under the search base.

        Returns:
            List of directory records in directory order

        Raises:
            DirectoryQueryError: If the search fails
        """
        if not self._connected:
            raise DirectoryQueryError("Not connected to LDAP server")

        search_base = self.search_base or self._get_domain_base()
        logger.info(f"Searching for enabled users in {search_base}")
        logger.debug(f"Search filter: {self.user_filter}")

        try:
            entries = self.connection.extend.standard.paged_search(
                search_base=search_base,
                search_filter=self.user_filter,
                search_scope=SUBTREE,
                attributes=self.attributes,
                paged_size=self.page_size,
                generator=False
            )
        except LDAPException as e:
            raise DirectoryQueryError(f"LDAP search failed: {e}")
        except Exception as e:
            raise DirectoryQueryError(f"Unexpected error during LDAP search: {e}")

        records = []
        for entry in entries or []:
            # Skip referrals and other non-entry results
            if entry.get('type', 'searchResEntry') != 'searchResEntry':
                continue
            records.append(self._extract_record(entry))

        logger.info(f"Retrieved {len(records)} enabled users from directory")
        return records

    def _extract_record(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        """Map a raw search result entry onto the standardized record keys."""
        attributes = entry.get('attributes') or {}
        record = {field: '' for field in RECORD_FIELDS}

        for ldap_attr, field in ATTRIBUTE_MAPPING.items():
            value = _first_value(attributes.get(ldap_attr))
            if value:
                record[field] = str(value).strip()

        if not record['dn']:
            record['dn'] = str(entry.get('dn', ''))

        return record

    def _get_domain_base(self) -> str:
        """Derive the domain base DN from the bind DN or server info."""
        if 'DC=' in self.bind_dn.upper():
            parts = self.bind_dn.split(',')
            dc_parts = [part.strip() for part in parts if part.strip().upper().startswith('DC=')]
            if dc_parts:
                return ','.join(dc_parts)

        if self.server and self.server.info and self.server.info.naming_contexts:
            return self.server.info.naming_contexts[0]

        raise DirectoryQueryError("Cannot determine search base DN")

    def test_connection(self) -> bool:
        """
        Test LDAP connection without throwing exceptions.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            if not self._connected:
                self.connect()

            return self.connection.search(
                search_base='',
                search_filter='(objectClass=*)',
                search_scope='BASE',
                attributes=['namingContexts'],
                size_limit=1
            )
        except Exception as e:
            logger.debug(f"Connection test failed: {e}")
            return False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


def _first_value(value):
    """ldap3 returns lists for attributes without schema info."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value
