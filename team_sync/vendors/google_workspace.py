"""
Google Workspace directory integration.

Reads users, groups and group members through the Admin SDK Directory API
(``admin/directory/v1``). Used as the authority directory.
"""

import logging
from typing import Any, Dict, List, Tuple
from urllib.parse import quote

from team_sync.models import DirectoryGroup, DirectoryUser, MemberType, RawMember
from team_sync.provider import DirectoryProvider, EmailResolver
from .base import VendorAPIBase, VendorAPIError

logger = logging.getLogger(__name__)

PAGE_SIZE = 200


def parse_user(user: Dict[str, Any]) -> DirectoryUser:
    """Map an Admin SDK user resource onto a DirectoryUser."""
    name = user.get('name') or {}

    emails = []
    raw_emails = user.get('emails') or []
    if not isinstance(raw_emails, list):
        logger.warning(f"Unexpected emails structure for {user.get('primaryEmail')}: {type(raw_emails).__name__}")
        raw_emails = []
    for entry in raw_emails:
        address = entry.get('address') if isinstance(entry, dict) else None
        if isinstance(address, str) and address:
            emails.append(address)
        else:
            logger.warning(f"Unexpected email entry for {user.get('primaryEmail')}: {entry!r}")

    aliases = [alias for alias in (user.get('aliases') or []) if isinstance(alias, str)]

    return DirectoryUser(
        primary_email=user.get('primaryEmail', ''),
        given_name=name.get('givenName', ''),
        surname=name.get('familyName', ''),
        emails=tuple(emails),
        aliases=tuple(aliases),
    )


def parse_group(group: Dict[str, Any]) -> DirectoryGroup:
    return DirectoryGroup(
        group_id=group.get('id', ''),
        email=group.get('email', ''),
        name=group.get('name', ''),
    )


def parse_member(member: Dict[str, Any]) -> RawMember:
    raw_type = member.get('type', '')
    return RawMember(
        kind=MemberType.parse(raw_type),
        email=member.get('email', ''),
        member_id=member.get('id', ''),
        raw_type=raw_type,
    )


class GoogleWorkspaceDirectory(VendorAPIBase, DirectoryProvider):
    """
    Google Workspace Admin SDK client implementing ``DirectoryProvider``.

    ``customer_id`` selects the account whose users and groups are listed;
    ``my_customer`` refers to the account of the token's principal.
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.customer_id = config.get('customer_id', 'my_customer')
        self.page_size = config.get('page_size', PAGE_SIZE)
        logger.info(f"Initialized Google Workspace directory client for {self.name}")

    def list_users(self, page_token: str) -> Tuple[List[DirectoryUser], str]:
        return self.list_org_users(self.customer_id, page_token)

    def list_org_users(self, org_id: str, page_token: str) -> Tuple[List[DirectoryUser], str]:
        response = self.request('GET', '/users', query={
            'customer': org_id,
            'maxResults': self.page_size,
            'pageToken': page_token,
        })
        users = [parse_user(user) for user in response.get('users', [])]
        return users, response.get('nextPageToken', '')

    def list_groups(self, page_token: str) -> Tuple[List[DirectoryGroup], str]:
        response = self.request('GET', '/groups', query={
            'customer': self.customer_id,
            'maxResults': self.page_size,
            'pageToken': page_token,
        })
        groups = [parse_group(group) for group in response.get('groups', [])]
        return groups, response.get('nextPageToken', '')

    def list_group_members(self, group_key: str, page_token: str) -> Tuple[List[RawMember], str]:
        response = self.request('GET', f"/groups/{quote(group_key, safe='@')}/members", query={
            'maxResults': self.page_size,
            'pageToken': page_token,
        })
        members = [parse_member(member) for member in response.get('members', [])]
        return members, response.get('nextPageToken', '')


class GoogleWorkspaceEmailResolver(VendorAPIBase, EmailResolver):
    """Live user lookup (``users.get``), used to confirm removals."""

    def exists(self, email: str) -> bool:
        try:
            user = self.request('GET', f"/users/{quote(email, safe='@')}")
        except VendorAPIError as e:
            if e.status_code == 404:
                logger.debug(f"User {email} not found in {self.name}")
                return False
            raise
        logger.debug(f"User {email} found in {self.name}: id={user.get('id')}")
        return True
