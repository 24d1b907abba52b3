"""
Email notification utilities for Team User Sync.

This module sends SMTP notifications for directory fetch failures, sync
failures and deprovisioning summaries. Sending problems are logged and never
raised to the caller.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

MAX_LISTED_ACCOUNTS = 50


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = config.get('email_to', [])

    if not smtp_server:
        logger.error("SMTP server not configured")
        return False

    if not email_to:
        logger.error("No email recipients configured")
        return False

    if isinstance(email_to, str):
        email_to = [email_to]

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if smtp_tls:
                server.starttls()

        try:
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.sendmail(email_from, email_to, msg.as_string())
        finally:
            server.quit()

        logger.info(f"Email notification sent successfully: {subject}")
        return True

    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for sync failures.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "Team User Sync Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from Team User Sync."
    ])

    return send_email(f"Team User Sync Alert: {title}", '\n'.join(body_lines), config)


def send_directory_fetch_failure(
    directory_name: str,
    operation: str,
    error_message: str,
    authentication_failure: bool,
    config: Dict[str, Any]
) -> bool:
    """
    Send notification when a directory snapshot could not be built.
    """
    if authentication_failure:
        workaround = f"Credentials for {directory_name} were rejected; renew the token or bind password."
    else:
        workaround = "Re-run the sync if this was a network issue."

    additional_info = {
        'Directory': directory_name,
        'Operation': operation,
        'Suggested workaround': workaround,
        'Impact': 'Sync aborted - no accounts removed'
    }

    return send_failure_notification(
        "Directory Fetch Failed",
        error_message,
        config,
        additional_info
    )


def _format_accounts(emails: List[str]) -> List[str]:
    lines = [f"    - {email}" for email in emails[:MAX_LISTED_ACCOUNTS]]
    if len(emails) > MAX_LISTED_ACCOUNTS:
        lines.append(f"    ... and {len(emails) - MAX_LISTED_ACCOUNTS} more")
    return lines


def send_deprovision_summary(
    sync_stats: Dict[str, Any],
    result: Dict[str, Any],
    config: Dict[str, Any]
) -> bool:
    """
    Send a summary of a deprovisioning run.

    Sent when ``email_on_success`` is enabled, or when the run had failures
    and ``email_on_failure`` is enabled.

    Args:
        sync_stats: Orchestrator statistics (runtime, directory names)
        result: ``SyncResult.to_dict()`` output
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    failed = result.get('failed', [])
    if failed:
        if not config.get('email_on_failure', True):
            logger.debug("Failure email notifications disabled")
            return False
        status = f"Applied with {len(failed)} failure(s)"
    else:
        if not config.get('email_on_success', False):
            logger.debug("Success email notifications disabled")
            return False
        status = "Dry run" if result.get('dry_run') else "Fully applied"

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "Team User Sync Deprovision Report",
        f"Timestamp: {timestamp}",
        "",
        f"Status: {status}",
        f"Authority: {sync_stats.get('authority', 'unknown')} "
        f"({sync_stats.get('authority_accounts', 0)} accounts)",
        f"Target: {sync_stats.get('target', 'unknown')} "
        f"({sync_stats.get('target_accounts', 0)} accounts)",
        f"Runtime: {sync_stats.get('runtime_seconds', 0):.2f} seconds",
        "",
        f"  Planned removals: {len(result.get('planned', []))}",
        f"  Removed: {len(result.get('removed', []))}",
        f"  Skipped after live check: {len(result.get('skipped', []))}",
        f"  Failed: {len(failed)}",
        ""
    ]

    for label, key in (('Removed accounts', 'removed'), ('Failed accounts', 'failed'),
                       ('Skipped accounts', 'skipped')):
        emails = result.get(key, [])
        if emails:
            body_lines.append(f"{label}:")
            body_lines.extend(_format_accounts(emails))
            body_lines.append("")

    if result.get('dry_run') and result.get('planned'):
        body_lines.append("Accounts that would be removed:")
        body_lines.extend(_format_accounts(result['planned']))
        body_lines.append("")

    body_lines.append("This is an automated message from Team User Sync.")

    return send_email(f"Team User Sync: {status}", '\n'.join(body_lines), config)


def send_test_notification(config: Dict[str, Any]) -> bool:
    """
    Test email notification configuration by sending a test email.

    Args:
        config: Notification configuration to test

    Returns:
        True if test email sent successfully
    """
    email_to = config.get('email_to', [])
    if isinstance(email_to, str):
        email_to = [email_to]

    test_body = """This is a test email from Team User Sync.

If you receive this message, your email notification configuration is working correctly.

Test details:
- SMTP Server: {}
- SMTP Port: {}
- From Address: {}
- Recipients: {}

This is an automated test message.""".format(
        config.get('smtp_server', 'not configured'),
        config.get('smtp_port', 'not configured'),
        config.get('email_from', 'not configured'),
        ', '.join(email_to)
    )

    result = send_email("Team User Sync: Configuration Test", test_body, config)
    if result:
        logger.info("Test notification sent successfully")
    else:
        logger.error("Test notification failed")
    return result
