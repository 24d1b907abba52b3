"""
Collaborator interfaces consumed by the sync core.

A directory integration implements ``DirectoryProvider`` (paginated reads),
optionally ``EmailResolver`` (live, uncached lookups) and, on the target side,
``Connector`` (member removal).
"""

from abc import ABC, abstractmethod
from typing import List, Tuple

from team_sync.models import DirectoryGroup, DirectoryUser, RawMember


class ProviderError(Exception):
    """Base exception for directory provider failures."""
    pass


class ProviderAuthenticationError(ProviderError):
    """Raised when the directory rejects the configured credentials."""
    pass


class ProviderTransportError(ProviderError):
    """Raised on network, protocol or unexpected response failures."""
    pass


class DirectoryProvider(ABC):
    """
    Raw paginated access to a directory.

    Every method takes a continuation token (``""`` for the first page) and
    returns ``(items, next_token)``; ``next_token`` is ``""`` on the last page.
    """

    name = 'directory'

    @abstractmethod
    def list_users(self, page_token: str) -> Tuple[List[DirectoryUser], str]:
        pass

    @abstractmethod
    def list_groups(self, page_token: str) -> Tuple[List[DirectoryGroup], str]:
        pass

    @abstractmethod
    def list_group_members(self, group_key: str, page_token: str) -> Tuple[List[RawMember], str]:
        pass

    @abstractmethod
    def list_org_users(self, org_id: str, page_token: str) -> Tuple[List[DirectoryUser], str]:
        pass

    def close(self):
        """Release connections held by the provider."""
        pass


class EmailResolver(ABC):
    """Live existence check that bypasses any snapshot cache."""

    @abstractmethod
    def exists(self, email: str) -> bool:
        pass

    def close(self):
        pass


class Connector(ABC):
    """Mutation API of the target directory."""

    @abstractmethod
    def remove_member(self, email: str) -> bool:
        """
        Remove a member from the target team.

        Returns:
            True if the member was removed
        """
        pass

    def close(self):
        pass
