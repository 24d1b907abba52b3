"""
In-memory collaborators shared by the unit tests.
"""

import os
import sys
import threading
import time
from collections import Counter

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from team_sync.models import DirectoryGroup, DirectoryUser, MemberType, RawMember
from team_sync.provider import Connector, DirectoryProvider, EmailResolver


def user(email, *aliases, given_name='', surname='', emails=()):
    return DirectoryUser(primary_email=email, given_name=given_name, surname=surname,
                         emails=tuple(emails), aliases=tuple(aliases))


def group(email, group_id=None, name=''):
    return DirectoryGroup(group_id=group_id or email, email=email, name=name)


def user_member(email):
    return RawMember(MemberType.USER, email=email, raw_type='USER')


def group_member(email):
    return RawMember(MemberType.GROUP, email=email, raw_type='GROUP')


def customer_member(org_id):
    return RawMember(MemberType.CUSTOMER, member_id=org_id, raw_type='CUSTOMER')


class FakeDirectoryProvider(DirectoryProvider):
    """
    Serves fixed data in pages of ``page_size`` items.

    ``failures`` maps a method name to an exception raised on the page whose
    index is given by ``fail_on_page`` (0 = first page).
    """

    def __init__(self, users=(), groups=(), members=None, org_users=None,
                 page_size=2, failures=None, fail_on_page=0, delay=0, name='fake'):
        self.name = name
        self.users = list(users)
        self.groups = list(groups)
        self.members = members or {}
        self.org_user_lists = org_users or {}
        self.page_size = page_size
        self.failures = failures or {}
        self.fail_on_page = fail_on_page
        self.delay = delay
        self.calls = Counter()
        self.requested_tokens = []
        self.closed = False
        self._calls_lock = threading.Lock()

    def _page(self, method, items, page_token):
        with self._calls_lock:
            self.calls[method] += 1
            self.requested_tokens.append((method, page_token))
        if self.delay:
            time.sleep(self.delay)

        start = int(page_token) if page_token else 0
        if method in self.failures and start // self.page_size == self.fail_on_page:
            raise self.failures[method]

        end = start + self.page_size
        next_token = str(end) if end < len(items) else ''
        return list(items[start:end]), next_token

    def list_users(self, page_token):
        return self._page('list_users', self.users, page_token)

    def list_groups(self, page_token):
        return self._page('list_groups', self.groups, page_token)

    def list_group_members(self, group_key, page_token):
        return self._page('list_group_members', self.members.get(group_key, []), page_token)

    def list_org_users(self, org_id, page_token):
        return self._page('list_org_users', self.org_user_lists.get(org_id, []), page_token)

    def close(self):
        self.closed = True


class FakeSnapshot:
    """Anything with ``accounts()``, standing in for an AccountDirectory."""

    def __init__(self, accounts, name='fake'):
        self.name = name
        self._accounts = accounts

    def accounts(self):
        return dict(self._accounts)


class FakeConnector(Connector):
    """
    Records removals. ``errors`` maps an email to the exception (or list of
    exceptions, consumed one per call) raised for it; ``declined`` emails
    return False.
    """

    def __init__(self, errors=None, declined=()):
        self.errors = errors or {}
        self.declined = set(declined)
        self.calls = []

    def remove_member(self, email):
        self.calls.append(email)
        error = self.errors.get(email)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error
        return email not in self.declined


class FakeEmailResolver(EmailResolver):

    def __init__(self, existing=(), errors=None):
        self.existing = {email.lower() for email in existing}
        self.errors = errors or {}
        self.calls = []

    def exists(self, email):
        self.calls.append(email)
        if email in self.errors:
            raise self.errors[email]
        return email.lower() in self.existing
