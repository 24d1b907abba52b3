"""
Directory snapshots and recursive group resolution.

An ``AccountDirectory`` is built once from a cached provider and exposes the
account catalog, email classification and group lookup. ``GroupResolver``
flattens nested groups and organization-wide members into one account map.
"""

import logging
from typing import Dict, Mapping, Optional, Set

from team_sync.cache import CachingDirectoryProvider
from team_sync.models import (
    Account, DirectoryGroup, EmailType, Group, MemberType, email_key
)
from team_sync.provider import DirectoryProvider

logger = logging.getLogger(__name__)


class GroupResolver:
    """
    Expands a group into the accounts it contains, directly or through nesting.

    Cycles are cut with a visited set scoped to a single ``resolve`` call, so
    the same sub-group reached through two paths is expanded once and a group
    containing itself (directly or indirectly) terminates.
    """

    def __init__(self, cache: CachingDirectoryProvider):
        self.cache = cache

    def resolve(self, group: DirectoryGroup) -> Dict[str, Account]:
        """
        Flatten the membership of a group.

        Args:
            group: Group to expand

        Returns:
            Mapping of lower-cased email to Account
        """
        visited = {email_key(group.key)}
        return self._expand(group.key, visited, depth=0)

    def _expand(self, group_key: str, visited: Set[str], depth: int) -> Dict[str, Account]:
        members: Dict[str, Account] = {}

        for member in self.cache.group_members(group_key):
            if member.kind is MemberType.USER:
                logger.debug(f"Group {group_key}: user {member.email} (nest {depth})")
                account = Account(email=member.email)
                members[account.key] = account

            elif member.kind is MemberType.GROUP:
                child_key = member.group_key
                if email_key(child_key) in visited:
                    logger.info(f"Group {group_key}: skipping already visited group {child_key}")
                    continue
                visited.add(email_key(child_key))
                logger.debug(f"Group {group_key}: expanding nested group {child_key} (nest {depth})")
                members.update(self._expand(child_key, visited, depth + 1))

            elif member.kind is MemberType.CUSTOMER:
                logger.debug(f"Group {group_key}: expanding organization {member.member_id}")
                for user in self.cache.org_users(member.member_id):
                    for address in user.all_emails():
                        account = Account(email=address, given_name=user.given_name, surname=user.surname)
                        members[account.key] = account

            else:
                logger.warning(f"UnknownMemberType: group {group_key} member id={member.member_id} "
                               f"email={member.email} type={member.raw_type!r}; skipped")

        return members


class AccountDirectory:
    """
    Read-only snapshot of one directory.

    Users and groups are loaded during construction; a provider failure raises
    ``ProviderFetchFailed`` and no snapshot object is returned.
    """

    def __init__(self, provider: DirectoryProvider):
        self.name = getattr(provider, 'name', 'directory')
        self.cache = CachingDirectoryProvider(provider)
        self.resolver = GroupResolver(self.cache)

        self._email_types: Dict[str, EmailType] = {}
        self._accounts: Dict[str, Account] = {}

        self._load()

    def _load(self):
        self._preload_emails()
        self._accounts = self._create_accounts()
        logger.info(f"Loaded {self.name} directory: {len(self._accounts)} account(s), "
                    f"{len(self.cache.all_groups())} group(s), {len(self._email_types)} address(es)")

    def _preload_emails(self):
        email_types = {}

        for group in self.cache.all_groups():
            if group.email:
                email_types[email_key(group.email)] = EmailType.GROUP

        for user in self.cache.all_users():
            for address in tuple(user.emails) + tuple(user.aliases):
                key = email_key(address)
                if email_types.get(key) is not EmailType.USER:
                    email_types[key] = EmailType.ALIAS
            # primary always wins over an alias recorded for the same address
            email_types[email_key(user.primary_email)] = EmailType.USER

        self._email_types = email_types

    def _create_accounts(self) -> Dict[str, Account]:
        accounts = {}
        for user in self.cache.all_users():
            if not user.primary_email:
                logger.warning(f"{self.name}: user without primary email skipped")
                continue
            account = user.to_account()
            accounts[account.key] = account
        return accounts

    def accounts(self) -> Mapping[str, Account]:
        """Accounts keyed by lower-cased primary email."""
        return dict(self._accounts)

    def email_classification(self, email: str) -> Optional[EmailType]:
        return self._email_types.get(email_key(email))

    def email_exists(self, email: str) -> bool:
        return email_key(email) in self._email_types

    def find_group(self, group_key: str) -> Optional[DirectoryGroup]:
        """First group whose id or email matches ``group_key``."""
        for group in self.cache.all_groups():
            if group.group_id == group_key or (group.email and email_key(group.email) == email_key(group_key)):
                return group
        return None

    def group(self, group_key: str) -> Optional[Group]:
        """
        Look up a group by id or email and resolve its membership.

        Returns:
            Group with flattened members, or None if no group matches
        """
        logger.debug(f"Loading {self.name} group: {group_key}")
        raw_group = self.find_group(group_key)
        if raw_group is None:
            return None

        return Group(
            group_id=raw_group.group_id,
            group_email=raw_group.email,
            group_name=raw_group.name,
            correlation_id=raw_group.correlation_id,
            members=self.resolver.resolve(raw_group),
        )
