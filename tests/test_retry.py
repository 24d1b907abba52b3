#!/usr/bin/env python3
"""
Unit tests for retry helpers used around connector calls.
"""

import unittest
from unittest.mock import Mock, patch
import sys
import os

# Add parent directory to path to import team_sync modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from team_sync.provider import ProviderAuthenticationError, ProviderTransportError
from team_sync.retry import (
    MaxRetriesExceeded, create_retry_callback, is_retryable_error, retry, retry_call, retry_settings
)
from team_sync.vendors.base import VendorAPIError


class TestRetryCall(unittest.TestCase):
    """Test cases for retry_call."""

    def test_success_first_attempt(self):
        func = Mock(return_value=True)
        self.assertTrue(retry_call(func, args=('a@example.com',), delay=0))
        func.assert_called_once_with('a@example.com')

    def test_retries_transient_errors(self):
        func = Mock(side_effect=[ConnectionError("connection reset"), TimeoutError("timed out"), 'done'])
        on_retry = Mock()

        result = retry_call(func, max_attempts=3, delay=0, on_retry=on_retry)

        self.assertEqual(result, 'done')
        self.assertEqual(func.call_count, 3)
        self.assertEqual([c[0][0] for c in on_retry.call_args_list], [1, 2])

    def test_exhausted_attempts(self):
        error = ProviderTransportError("service unavailable")
        func = Mock(side_effect=error)

        with self.assertRaises(MaxRetriesExceeded) as context:
            retry_call(func, max_attempts=2, delay=0)

        self.assertEqual(func.call_count, 2)
        self.assertEqual(context.exception.attempts, 2)
        self.assertIs(context.exception.last_exception, error)

    def test_non_retryable_error_propagates_immediately(self):
        func = Mock(side_effect=ValueError("bad request"))

        with self.assertRaises(ValueError):
            retry_call(func, max_attempts=5, delay=0)

        func.assert_called_once()

    @patch('team_sync.retry.time.sleep')
    def test_backoff_delays(self, mock_sleep):
        func = Mock(side_effect=[ConnectionError(), ConnectionError(), ConnectionError(), 'ok'])

        retry_call(func, max_attempts=4, delay=1.0, backoff=2.0)

        self.assertEqual([c[0][0] for c in mock_sleep.call_args_list], [1.0, 2.0, 4.0])

    @patch('team_sync.retry.time.sleep')
    def test_zero_delay_does_not_sleep(self, mock_sleep):
        func = Mock(side_effect=[ConnectionError(), 'ok'])
        retry_call(func, max_attempts=2, delay=0)
        mock_sleep.assert_not_called()

    def test_failing_callback_does_not_stop_retries(self):
        func = Mock(side_effect=[ConnectionError(), 'ok'])
        on_retry = Mock(side_effect=RuntimeError("callback broke"))

        self.assertEqual(retry_call(func, max_attempts=2, delay=0, on_retry=on_retry), 'ok')

    def test_decorator(self):
        calls = []

        @retry(max_attempts=3, delay=0)
        def flaky(email):
            calls.append(email)
            if len(calls) < 2:
                raise ConnectionError("connection refused")
            return email

        self.assertEqual(flaky('a@example.com'), 'a@example.com')
        self.assertEqual(len(calls), 2)


class TestRetryHelpers(unittest.TestCase):
    """Test cases for retry configuration and classification."""

    def test_retry_settings(self):
        self.assertEqual(retry_settings({'max_retries': 2, 'retry_wait_seconds': 0}),
                         {'max_attempts': 3, 'delay': 0, 'backoff': 1.0})
        self.assertEqual(retry_settings({}), {'max_attempts': 4, 'delay': 5, 'backoff': 1.0})

    def test_is_retryable_error(self):
        self.assertFalse(is_retryable_error(ProviderAuthenticationError("401")))
        self.assertTrue(is_retryable_error(VendorAPIError("HTTP 429", status_code=429)))
        self.assertTrue(is_retryable_error(VendorAPIError("HTTP 502", status_code=502)))
        self.assertFalse(is_retryable_error(VendorAPIError("HTTP 409", status_code=409)))
        self.assertTrue(is_retryable_error(VendorAPIError("Connection error")))
        self.assertTrue(is_retryable_error(ConnectionError()))
        self.assertTrue(is_retryable_error(RuntimeError("Temporary failure in name resolution")))
        self.assertFalse(is_retryable_error(KeyError('email')))

    def test_retry_callback_logs_warning(self):
        callback = create_retry_callback("Removal of a@example.com")

        with self.assertLogs('team_sync.retry', level='WARNING') as logs:
            callback(1, ConnectionError("reset"))

        self.assertIn('Removal of a@example.com failed on attempt 1', logs.output[0])


if __name__ == '__main__':
    unittest.main()
