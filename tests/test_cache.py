#!/usr/bin/env python3
"""
Unit tests for paginated fetching and the memoizing directory cache.
"""

import unittest
import threading
import sys
import os

# Add parent directory to path to import team_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from team_sync.cache import (
    OP_GROUP_MEMBERS, OP_USERS, CacheEntry, CacheInvariantViolation,
    CachingDirectoryProvider, ProviderFetchFailed, accumulate_pages
)
from team_sync.provider import ProviderAuthenticationError, ProviderTransportError

from fakes import FakeDirectoryProvider, group, user, user_member


class TestAccumulatePages(unittest.TestCase):
    """Test cases for accumulate_pages."""

    def test_starts_with_empty_token_and_follows_next_token(self):
        pages = {'': (['a', 'b'], 't1'), 't1': (['c'], 't2'), 't2': (['d', 'e'], '')}
        requested = []

        def page(token):
            requested.append(token)
            return pages[token]

        items = accumulate_pages('letters', page)

        self.assertEqual(items, ['a', 'b', 'c', 'd', 'e'])
        self.assertEqual(requested, ['', 't1', 't2'])

    def test_single_page(self):
        items = accumulate_pages('single', lambda token: (['only'], ''))
        self.assertEqual(items, ['only'])

    def test_empty_listing(self):
        self.assertEqual(accumulate_pages('empty', lambda token: ([], '')), [])

    def test_failure_on_later_page_is_fatal(self):
        cause = ProviderTransportError("connection reset")

        def page(token):
            if token:
                raise cause
            return ['a'], 'next'

        with self.assertRaises(ProviderFetchFailed) as context:
            accumulate_pages('users', page)

        self.assertEqual(context.exception.operation, 'users')
        self.assertIs(context.exception.cause, cause)
        self.assertFalse(context.exception.authentication_failure)

    def test_authentication_failure_flag(self):
        def page(token):
            raise ProviderAuthenticationError("401")

        with self.assertRaises(ProviderFetchFailed) as context:
            accumulate_pages('groups', page)

        self.assertTrue(context.exception.authentication_failure)


class TestCachingDirectoryProvider(unittest.TestCase):
    """Test cases for CachingDirectoryProvider."""

    def setUp(self):
        self.provider = FakeDirectoryProvider(
            users=[user(f'user{i}@example.com') for i in range(5)],
            groups=[group('all@example.com')],
            members={
                'g@example.com': [user_member('a@example.com'), user_member('b@example.com'),
                                  user_member('c@example.com')],
                'h@example.com': [user_member('d@example.com')],
            },
            page_size=2
        )
        self.cache = CachingDirectoryProvider(self.provider)

    def test_all_users_concatenates_pages_in_order(self):
        users = self.cache.all_users()

        self.assertEqual([u.primary_email for u in users],
                         [f'user{i}@example.com' for i in range(5)])
        self.assertEqual(self.provider.calls['list_users'], 3)

    def test_all_users_fetched_once(self):
        first = self.cache.all_users()
        second = self.cache.all_users()

        self.assertIs(first, second)
        self.assertEqual(self.provider.calls['list_users'], 3)
        self.assertEqual(self.cache.get_cache_stats(), {OP_USERS: 1})

    def test_group_members_fetched_once_per_key(self):
        self.cache.group_members('g@example.com')
        self.cache.group_members('g@example.com')

        self.assertEqual(self.provider.calls['list_group_members'], 2)  # two pages, one fetch
        self.assertEqual(self.cache.get_cache_stats()[OP_GROUP_MEMBERS], 1)

    def test_distinct_keys_fetched_separately(self):
        g_members = self.cache.group_members('g@example.com')
        h_members = self.cache.group_members('h@example.com')

        self.assertEqual(len(g_members), 3)
        self.assertEqual(len(h_members), 1)
        self.assertEqual(self.cache.get_cache_stats()[OP_GROUP_MEMBERS], 2)
        self.assertTrue(self.cache.is_cached(OP_GROUP_MEMBERS, 'g@example.com'))
        self.assertFalse(self.cache.is_cached(OP_GROUP_MEMBERS, 'other@example.com'))

    def test_empty_result_is_cached(self):
        self.assertEqual(self.cache.org_users('C123'), ())
        self.assertEqual(self.cache.org_users('C123'), ())
        self.assertEqual(self.provider.calls['list_org_users'], 1)

    def test_failed_fetch_stores_nothing(self):
        provider = FakeDirectoryProvider(
            users=[user(f'user{i}@example.com') for i in range(5)],
            failures={'list_users': ProviderTransportError("timed out")},
            fail_on_page=1
        )
        cache = CachingDirectoryProvider(provider)

        with self.assertRaises(ProviderFetchFailed) as context:
            cache.all_users()

        self.assertIn('users', context.exception.operation)
        self.assertFalse(cache.is_cached(OP_USERS))
        self.assertEqual(cache.get_cache_stats(), {})

    def test_marked_fetched_without_value_is_invariant_violation(self):
        self.cache._entries[(OP_USERS, '')] = CacheEntry(fetched=True, value=None)

        with self.assertRaises(CacheInvariantViolation):
            self.cache.all_users()

        self.assertEqual(self.provider.calls['list_users'], 0)

    def test_concurrent_first_access_coalesces(self):
        provider = FakeDirectoryProvider(
            members={'g@example.com': [user_member('a@example.com')]},
            page_size=10,
            delay=0.05
        )
        cache = CachingDirectoryProvider(provider)
        results = []

        def worker():
            results.append(cache.group_members('g@example.com'))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(provider.calls['list_group_members'], 1)
        self.assertEqual(len(results), 8)
        for result in results:
            self.assertIs(result, results[0])

    def test_snapshots_do_not_share_state(self):
        other = CachingDirectoryProvider(self.provider)

        self.cache.all_users()
        other.all_users()

        self.assertEqual(self.provider.calls['list_users'], 6)


if __name__ == '__main__':
    unittest.main()
