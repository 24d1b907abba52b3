#!/usr/bin/env python3
"""
Unit tests for email notifications.
"""

import os
import sys
import smtplib
import unittest
from unittest.mock import patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from team_sync.notifications import (
    send_deprovision_summary, send_directory_fetch_failure, send_email,
    send_failure_notification, send_test_notification
)


class TestSendEmail(unittest.TestCase):
    """Test cases for send_email."""

    def setUp(self):
        self.config = {
            'enable_email': True,
            'smtp_server': 'smtp.example.com',
            'smtp_port': 587,
            'smtp_tls': True,
            'smtp_username': 'alerts@example.com',
            'smtp_password': 'smtp-secret',
            'email_to': 'it@example.com',
        }

    def test_disabled(self):
        self.config['enable_email'] = False
        with patch('team_sync.notifications.smtplib.SMTP') as mock_smtp:
            self.assertFalse(send_email('subject', 'body', self.config))
        mock_smtp.assert_not_called()

    def test_missing_server_or_recipients(self):
        self.assertFalse(send_email('subject', 'body', dict(self.config, smtp_server=None)))
        self.assertFalse(send_email('subject', 'body', dict(self.config, email_to=[])))

    @patch('team_sync.notifications.smtplib.SMTP')
    def test_sends_with_starttls_and_login(self, mock_smtp):
        server = mock_smtp.return_value

        self.assertTrue(send_email('Team User Sync: Fully applied', 'body', self.config))

        mock_smtp.assert_called_once_with('smtp.example.com', 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('alerts@example.com', 'smtp-secret')
        sender, recipients, _ = server.sendmail.call_args[0]
        self.assertEqual(sender, 'alerts@example.com')
        self.assertEqual(recipients, ['it@example.com'])
        server.quit.assert_called_once()

    @patch('team_sync.notifications.smtplib.SMTP_SSL')
    def test_port_465_uses_ssl(self, mock_smtp_ssl):
        self.assertTrue(send_email('subject', 'body', dict(self.config, smtp_port=465)))
        mock_smtp_ssl.assert_called_once_with('smtp.example.com', 465)

    @patch('team_sync.notifications.smtplib.SMTP')
    def test_smtp_failure_is_reported_not_raised(self, mock_smtp):
        mock_smtp.return_value.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})

        self.assertFalse(send_email('subject', 'body', self.config))
        mock_smtp.return_value.quit.assert_called_once()

    @patch('team_sync.notifications.smtplib.SMTP')
    def test_connection_refused(self, mock_smtp):
        mock_smtp.side_effect = ConnectionRefusedError("refused")
        self.assertFalse(send_email('subject', 'body', self.config))

    @patch('team_sync.notifications.send_email', return_value=True)
    def test_send_test_notification(self, mock_send):
        self.assertTrue(send_test_notification(self.config))

        subject, body, _ = mock_send.call_args[0]
        self.assertEqual(subject, 'Team User Sync: Configuration Test')
        self.assertIn('smtp.example.com', body)
        self.assertIn('it@example.com', body)


@patch('team_sync.notifications.send_email', return_value=True)
class TestNotificationContent(unittest.TestCase):
    """Test cases for the notification bodies."""

    def setUp(self):
        self.config = {'enable_email': True, 'email_on_failure': True, 'email_on_success': True}
        self.stats = {
            'authority': 'Google',
            'authority_accounts': 120,
            'target': 'Dropbox',
            'target_accounts': 122,
            'runtime_seconds': 3.5,
        }

    def test_failure_notification(self, mock_send):
        send_failure_notification('Sync Failed', 'boom', self.config, {'Directory': 'Google'})

        subject, body, _ = mock_send.call_args[0]
        self.assertEqual(subject, 'Team User Sync Alert: Sync Failed')
        self.assertIn('Error Message: boom', body)
        self.assertIn('Directory: Google', body)

    def test_failure_notification_disabled(self, mock_send):
        self.config['email_on_failure'] = False
        self.assertFalse(send_failure_notification('Sync Failed', 'boom', self.config))
        mock_send.assert_not_called()

    def test_directory_fetch_failure_workaround(self, mock_send):
        send_directory_fetch_failure('Google', 'Google users', '401', True, self.config)
        body = mock_send.call_args[0][1]
        self.assertIn('renew the token', body)
        self.assertIn('no accounts removed', body)

        send_directory_fetch_failure('Google', 'Google users', 'timed out', False, self.config)
        self.assertIn('Re-run the sync', mock_send.call_args[0][1])

    def test_summary_lists_failures(self, mock_send):
        result = {
            'dry_run': False,
            'planned': ['c@example.com', 'd@example.com'],
            'removed': ['c@example.com'],
            'skipped': [],
            'failed': ['d@example.com'],
        }

        self.assertTrue(send_deprovision_summary(self.stats, result, self.config))

        subject, body, _ = mock_send.call_args[0]
        self.assertEqual(subject, 'Team User Sync: Applied with 1 failure(s)')
        self.assertIn('Authority: Google (120 accounts)', body)
        self.assertIn('Failed accounts:\n    - d@example.com', body)

    def test_summary_success_respects_setting(self, mock_send):
        self.config['email_on_success'] = False
        result = {'dry_run': False, 'planned': [], 'removed': [], 'skipped': [], 'failed': []}

        self.assertFalse(send_deprovision_summary(self.stats, result, self.config))
        mock_send.assert_not_called()

    def test_summary_truncates_long_lists(self, mock_send):
        emails = [f'user{i}@example.com' for i in range(60)]
        result = {'dry_run': True, 'planned': emails, 'removed': [], 'skipped': [], 'failed': []}

        send_deprovision_summary(self.stats, result, self.config)

        subject, body, _ = mock_send.call_args[0]
        self.assertEqual(subject, 'Team User Sync: Dry run')
        self.assertIn('user49@example.com', body)
        self.assertNotIn('user50@example.com', body)
        self.assertIn('... and 10 more', body)


if __name__ == '__main__':
    unittest.main()
