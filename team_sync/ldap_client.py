"""
LDAP directory integration.

This module exposes an LDAP directory (Active Directory, OpenLDAP) as a
``DirectoryProvider`` so it can act as the authority. Listings use the simple
paged results control; the paging cookie is carried as the continuation token.
"""

import base64
import logging
import ssl
import time
from typing import Any, Dict, List, Optional, Tuple

from ldap3 import ALL, BASE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPBindError, LDAPException, LDAPSocketOpenError
from ldap3.utils.conv import escape_filter_chars

from team_sync.logging_setup import security_logger
from team_sync.models import DirectoryGroup, DirectoryUser, MemberType, RawMember
from team_sync.provider import (
    DirectoryProvider, EmailResolver, ProviderAuthenticationError, ProviderTransportError
)

logger = logging.getLogger(__name__)

PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'
GROUP_OBJECT_CLASSES = {'group', 'groupofnames', 'groupofuniquenames'}


class LDAPConnectionError(ProviderTransportError):
    """Raised when LDAP connection fails."""
    pass


class LDAPAuthenticationError(LDAPConnectionError, ProviderAuthenticationError):
    """Raised when the LDAP server rejects the bind credentials."""
    pass


class LDAPQueryError(ProviderTransportError):
    """Raised when LDAP query fails."""
    pass


def encode_cookie(cookie: Optional[bytes]) -> str:
    return base64.b64encode(cookie).decode('ascii') if cookie else ''


def decode_cookie(token: str) -> Optional[bytes]:
    return base64.b64decode(token) if token else None


def _values(entry, attribute: str) -> List[str]:
    if attribute not in entry.entry_attributes:
        return []
    return [str(value) for value in entry[attribute].values if value]


def _first(entry, attribute: str) -> str:
    values = _values(entry, attribute)
    return values[0] if values else ''


class LDAPDirectory(DirectoryProvider):
    """
    LDAP client implementing ``DirectoryProvider``.

    Users are entries under ``user_base_dn`` matching ``user_filter``; groups
    are entries under ``group_base_dn`` matching ``group_filter``. A group's
    ``member`` values are classified as USER or GROUP by object class.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize LDAP client with configuration.

        Args:
            config: Directory configuration dictionary with ``module: ldap``
        """
        self.config = config
        self.name = config.get('name', 'ldap')
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']
        self.user_base_dn = config['user_base_dn']
        self.group_base_dn = config.get('group_base_dn') or self.user_base_dn
        self.user_filter = config.get('user_filter', '(objectClass=person)')
        self.group_filter = config.get('group_filter', '(|(objectClass=group)(objectClass=groupOfNames))')

        self.mail_attribute = config.get('mail_attribute', 'mail')
        self.alias_attribute = config.get('alias_attribute', 'proxyAddresses')

        self.use_ssl = config.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 500)
        self.max_retries = config.get('connect_retries', 3)
        self.retry_wait = config.get('connect_retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False

    @property
    def user_attributes(self) -> List[str]:
        return [self.mail_attribute, 'givenName', 'sn', self.alias_attribute]

    def connect(self) -> bool:
        """
        Establish connection to LDAP server with retry logic.

        Raises:
            LDAPAuthenticationError: If the bind is rejected on every attempt
            LDAPConnectionError: If the connection fails after all retries
        """
        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        last_exception = None
        for attempt in range(self.max_retries):
            try:
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout
                )

                if not self.connection.open():
                    raise LDAPSocketOpenError(f"Failed to open connection: {self.connection.result}")

                if self.start_tls and not self.use_ssl:
                    if not self.connection.start_tls():
                        raise LDAPSocketOpenError(f"Failed to start TLS: {self.connection.result}")
                    logger.debug("StartTLS negotiation successful")

                if not self.connection.bind():
                    raise LDAPBindError(f"Bind failed: {self.connection.result}")

                security_logger.log_authentication_attempt(self.server_url, self.bind_dn, True)
                self._connected = True
                logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
                return True

            except LDAPException as e:
                last_exception = e
                logger.warning(f"LDAP connection attempt {attempt + 1}/{self.max_retries} failed: {e}")
                self._drop_connection()
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_wait)

        error_msg = f"Failed to connect to LDAP after {self.max_retries} attempts: {last_exception}"
        if isinstance(last_exception, LDAPBindError):
            security_logger.log_authentication_attempt(self.server_url, self.bind_dn, False)
            raise LDAPAuthenticationError(error_msg)
        raise LDAPConnectionError(error_msg)

    def _create_tls_config(self) -> Optional[Tls]:
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {'validate': ssl.CERT_REQUIRED if self.verify_ssl else ssl.CERT_NONE}
        if not self.verify_ssl:
            logger.warning("SSL certificate verification disabled")
        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file

        return Tls(**tls_config)

    def _drop_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException:
                pass
            self.connection = None

    def disconnect(self):
        """Close LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
        self._connected = False
        self.connection = None

    def close(self):
        self.disconnect()

    def _ensure_connected(self):
        if not self._connected:
            self.connect()

    def _paged_search(self, search_base: str, search_filter: str, attributes: List[str],
                      page_token: str) -> Tuple[list, str]:
        """Run one page of a paged subtree search and return (entries, next token)."""
        self._ensure_connected()
        try:
            success = self.connection.search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
                paged_size=self.page_size,
                paged_cookie=decode_cookie(page_token)
            )
        except LDAPException as e:
            raise LDAPQueryError(f"LDAP search failed in {search_base}: {e}")

        if not success and self.connection.result.get('result') not in (0, None):
            raise LDAPQueryError(f"LDAP search failed in {search_base}: {self.connection.result}")

        entries = list(self.connection.entries)
        controls = self.connection.result.get('controls') or {}
        cookie = controls.get(PAGED_RESULTS_OID, {}).get('value', {}).get('cookie')
        return entries, encode_cookie(cookie)

    def _base_lookup(self, dn: str, attributes: List[str]):
        try:
            success = self.connection.search(
                search_base=dn,
                search_filter='(objectClass=*)',
                search_scope=BASE,
                attributes=attributes
            )
        except LDAPException as e:
            raise LDAPQueryError(f"LDAP lookup failed for {dn}: {e}")
        if not success or not self.connection.entries:
            return None
        return self.connection.entries[0]

    def _parse_user(self, entry) -> DirectoryUser:
        aliases = []
        for value in _values(entry, self.alias_attribute):
            if value.lower().startswith('smtp:'):
                value = value[5:]
            aliases.append(value)
        primary = _first(entry, self.mail_attribute)
        return DirectoryUser(
            primary_email=primary,
            given_name=_first(entry, 'givenName'),
            surname=_first(entry, 'sn'),
            aliases=tuple(alias for alias in aliases if alias.lower() != primary.lower()),
        )

    def list_users(self, page_token: str) -> Tuple[List[DirectoryUser], str]:
        return self.list_org_users(self.user_base_dn, page_token)

    def list_org_users(self, org_id: str, page_token: str) -> Tuple[List[DirectoryUser], str]:
        search_filter = f"(&{self.user_filter}({self.mail_attribute}=*))"
        entries, next_token = self._paged_search(org_id, search_filter, self.user_attributes, page_token)
        return [self._parse_user(entry) for entry in entries], next_token

    def list_groups(self, page_token: str) -> Tuple[List[DirectoryGroup], str]:
        entries, next_token = self._paged_search(
            self.group_base_dn, self.group_filter, ['cn', self.mail_attribute], page_token
        )
        return [
            DirectoryGroup(
                group_id=str(entry.entry_dn),
                email=_first(entry, self.mail_attribute),
                name=_first(entry, 'cn'),
            )
            for entry in entries
        ], next_token

    def _find_group_dn(self, group_key: str) -> Optional[str]:
        if '=' in group_key:
            return group_key
        search_filter = f"(&{self.group_filter}({self.mail_attribute}={escape_filter_chars(group_key)}))"
        entries, _ = self._paged_search(self.group_base_dn, search_filter, ['cn'], '')
        return str(entries[0].entry_dn) if entries else None

    def list_group_members(self, group_key: str, page_token: str) -> Tuple[List[RawMember], str]:
        """
        Direct members of a group, addressed by DN or group mail.

        The ``member`` attribute is read in one request, so this listing is
        always a single page.
        """
        self._ensure_connected()
        group_dn = self._find_group_dn(group_key)
        if group_dn is None:
            raise LDAPQueryError(f"Group not found: {group_key}")

        group_entry = self._base_lookup(group_dn, ['member'])
        if group_entry is None:
            raise LDAPQueryError(f"Group not found: {group_dn}")

        members = []
        for member_dn in _values(group_entry, 'member'):
            entry = self._base_lookup(member_dn, ['objectClass', self.mail_attribute])
            if entry is None:
                logger.warning(f"Member {member_dn} of {group_dn} not readable; skipped")
                continue

            object_classes = {value.lower() for value in _values(entry, 'objectClass')}
            mail = _first(entry, self.mail_attribute)
            if object_classes & GROUP_OBJECT_CLASSES:
                # DN as member_id keeps mail-less groups addressable
                members.append(RawMember(MemberType.GROUP, email=mail, member_id=member_dn, raw_type='GROUP'))
            elif mail:
                members.append(RawMember(MemberType.USER, email=mail, member_id=member_dn, raw_type='USER'))
            else:
                members.append(RawMember(MemberType.UNKNOWN, member_id=member_dn,
                                         raw_type=','.join(sorted(object_classes))))

        logger.debug(f"Group {group_dn}: {len(members)} direct member(s)")
        return members, ''

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()


class LDAPEmailResolver(LDAPDirectory, EmailResolver):
    """Live lookup of a user by mail or alias."""

    def exists(self, email: str) -> bool:
        self._ensure_connected()
        escaped = escape_filter_chars(email)
        search_filter = (f"(&{self.user_filter}(|({self.mail_attribute}={escaped})"
                         f"({self.alias_attribute}=smtp:{escaped})))")
        entries, _ = self._paged_search(self.user_base_dn, search_filter, [self.mail_attribute], '')
        return bool(entries)
