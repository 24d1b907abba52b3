"""
Data types shared by directory providers, snapshots and the sync engine.

Provider implementations translate vendor payloads into these records at the
boundary so the resolver and the sync engine never look at raw JSON or LDAP
entries.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


def email_key(email: str) -> str:
    """Normalize an email address for identity comparison."""
    return (email or '').strip().lower()


class MemberType(Enum):
    """Kind of a raw group member as reported by a directory."""
    USER = 'USER'
    GROUP = 'GROUP'
    CUSTOMER = 'CUSTOMER'
    UNKNOWN = 'UNKNOWN'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'MemberType':
        try:
            return cls((value or '').upper())
        except ValueError:
            return cls.UNKNOWN


class EmailType(Enum):
    """Classification of an address within one directory snapshot."""
    USER = 'USER'
    GROUP = 'GROUP'
    ALIAS = 'ALIAS'


@dataclass(frozen=True)
class Account:
    """A user account. Identity is the email address, case-insensitive."""
    email: str
    given_name: str = ''
    surname: str = ''

    @property
    def key(self) -> str:
        return email_key(self.email)

    def __eq__(self, other):
        if not isinstance(other, Account):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key)


@dataclass
class Group:
    """A group with its flattened, deduplicated membership."""
    group_id: str
    group_email: str
    group_name: str
    correlation_id: Optional[str] = None
    members: Dict[str, Account] = field(default_factory=dict)


@dataclass(frozen=True)
class DirectoryUser:
    """User record as returned by a directory provider."""
    primary_email: str
    given_name: str = ''
    surname: str = ''
    emails: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()

    def all_emails(self) -> Tuple[str, ...]:
        """Primary address followed by secondary addresses and aliases, without duplicates."""
        seen = []
        for address in (self.primary_email,) + tuple(self.emails) + tuple(self.aliases):
            if address and address not in seen:
                seen.append(address)
        return tuple(seen)

    def to_account(self) -> Account:
        return Account(email=self.primary_email, given_name=self.given_name, surname=self.surname)


@dataclass(frozen=True)
class DirectoryGroup:
    """Group record as returned by a directory provider."""
    group_id: str
    email: str
    name: str = ''
    correlation_id: Optional[str] = None

    @property
    def key(self) -> str:
        """Key accepted by ``list_group_members``."""
        return self.email or self.group_id


@dataclass(frozen=True)
class RawMember:
    """
    Direct member of a group before resolution.

    ``raw_type`` keeps the vendor's type string so unknown kinds can be logged.
    """
    kind: MemberType
    email: str = ''
    member_id: str = ''
    raw_type: str = ''

    @property
    def group_key(self) -> str:
        return self.email or self.member_id
