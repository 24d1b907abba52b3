"""
Dropbox Business team integration.

Lists team members and groups through the Dropbox team API and removes
members. Dropbox paginates with ``cursor``/``has_more``; the cursor is passed
back as the continuation token and ``has_more == False`` ends the listing.
"""

import logging
from typing import Any, Dict, List, Tuple

from team_sync.models import DirectoryGroup, DirectoryUser, MemberType, RawMember
from team_sync.provider import Connector, DirectoryProvider
from .base import VendorAPIBase, VendorAPIError

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def parse_member_profile(profile: Dict[str, Any]) -> DirectoryUser:
    """Map a Dropbox ``MemberProfile`` onto a DirectoryUser."""
    name = profile.get('name') or {}
    secondary = tuple(
        entry['email'] for entry in (profile.get('secondary_emails') or [])
        if isinstance(entry, dict) and entry.get('email')
    )
    return DirectoryUser(
        primary_email=profile.get('email', ''),
        given_name=name.get('given_name', ''),
        surname=name.get('surname', ''),
        emails=secondary,
    )


class DropboxTeamDirectory(VendorAPIBase, DirectoryProvider):
    """
    Dropbox team API client implementing ``DirectoryProvider`` and member removal.

    A Dropbox team is a single organization, so ``list_org_users`` returns the
    whole team regardless of the id passed.
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.page_size = config.get('page_size', PAGE_SIZE)
        logger.info(f"Initialized Dropbox team client for {self.name}")

    def _list(self, endpoint: str, first_args: Dict[str, Any], page_token: str,
              items_key: str) -> Tuple[List[Dict[str, Any]], str]:
        if page_token:
            response = self.request('POST', f'{endpoint}/continue', body={'cursor': page_token})
        else:
            response = self.request('POST', endpoint, body=first_args)

        next_token = response.get('cursor', '') if response.get('has_more') else ''
        return response.get(items_key, []), next_token

    def list_users(self, page_token: str) -> Tuple[List[DirectoryUser], str]:
        members, next_token = self._list('/team/members/list', {'limit': self.page_size},
                                         page_token, 'members')
        return [parse_member_profile(member.get('profile', {})) for member in members], next_token

    def list_org_users(self, org_id: str, page_token: str) -> Tuple[List[DirectoryUser], str]:
        return self.list_users(page_token)

    def list_groups(self, page_token: str) -> Tuple[List[DirectoryGroup], str]:
        groups, next_token = self._list('/team/groups/list', {'limit': self.page_size},
                                        page_token, 'groups')
        return [
            DirectoryGroup(
                group_id=group.get('group_id', ''),
                email='',
                name=group.get('group_name', ''),
                correlation_id=group.get('group_external_id'),
            )
            for group in groups
        ], next_token

    def list_group_members(self, group_key: str, page_token: str) -> Tuple[List[RawMember], str]:
        first_args = {
            'group': {'.tag': 'group_id', 'group_id': group_key},
            'limit': self.page_size,
        }
        members, next_token = self._list('/team/groups/members/list', first_args,
                                         page_token, 'members')
        return [
            RawMember(kind=MemberType.USER, email=member.get('profile', {}).get('email', ''),
                      member_id=member.get('profile', {}).get('team_member_id', ''),
                      raw_type='USER')
            for member in members
        ], next_token


class DropboxTeamConnector(VendorAPIBase, Connector):
    """Member removal through ``team/members/remove``."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.wipe_data = config.get('wipe_data', True)
        self.keep_account = config.get('keep_account', False)

    def remove_member(self, email: str) -> bool:
        """
        Remove a team member by email.

        Returns:
            True if Dropbox accepted the removal

        Raises:
            VendorAPIError: If the API call fails
        """
        body = {
            'user': {'.tag': 'email', 'email': email},
            'wipe_data': self.wipe_data,
            'keep_account': self.keep_account,
        }
        try:
            response = self.request('POST', '/team/members/remove', body=body)
        except VendorAPIError as e:
            logger.error(f"Dropbox member removal failed for {email} in {self.name}: {e}")
            raise

        logger.debug(f"Dropbox accepted removal of {email}: {response.get('.tag', 'complete')}")
        return True
