"""
Deprovisioning logic.

The engine compares the target directory's accounts with the authority's
accounts and removes, through the target connector, every target account the
authority no longer has. Provisioning is never performed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from team_sync.logging_setup import security_logger
from team_sync.models import Account, email_key
from team_sync.provider import Connector, EmailResolver
from team_sync.retry import MaxRetriesExceeded, create_retry_callback, retry_call, retry_settings

logger = logging.getLogger(__name__)

OPERATION_MEMBERS_REMOVE = 'MembersRemove'


class ConnectorOperationFailed(Exception):
    """A removal call failed for one account. Recorded, never raised out of ``sync``."""

    def __init__(self, email: str, cause: Optional[Exception] = None):
        self.email = email
        self.cause = cause
        reason = cause if cause is not None else 'connector reported failure'
        super().__init__(f"Failed to remove {email}: {reason}")


class DeprovisionLimitExceeded(Exception):
    """Raised when the planned removals exceed the configured safety cap."""

    def __init__(self, planned: int, limit: int):
        self.planned = planned
        self.limit = limit
        super().__init__(f"{planned} account(s) scheduled for removal exceeds max_removals={limit}")


@dataclass(frozen=True)
class OperationLog:
    operation: str
    subject: str
    success: bool = True


@dataclass
class SyncResult:
    """Outcome of one deprovisioning run."""
    planned: List[Account] = field(default_factory=list)
    removed: List[Account] = field(default_factory=list)
    skipped: List[Account] = field(default_factory=list)
    failures: List[ConnectorOperationFailed] = field(default_factory=list)
    operations: List[OperationLog] = field(default_factory=list)
    dry_run: bool = False

    @property
    def fully_applied(self) -> bool:
        return not self.failures

    @property
    def failed_emails(self) -> List[str]:
        return [failure.email for failure in self.failures]

    def summary(self) -> str:
        if self.dry_run:
            return f"Dry run: {len(self.planned)} account(s) would be removed"
        if self.fully_applied:
            return (f"Fully applied: {len(self.removed)} removed, "
                    f"{len(self.skipped)} skipped of {len(self.planned)} planned")
        return (f"Applied with {len(self.failures)} failure(s): {len(self.removed)} removed, "
                f"{len(self.skipped)} skipped of {len(self.planned)} planned; "
                f"failed: {', '.join(self.failed_emails)}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dry_run': self.dry_run,
            'fully_applied': self.fully_applied,
            'planned': [a.email for a in self.planned],
            'removed': [a.email for a in self.removed],
            'skipped': [a.email for a in self.skipped],
            'failed': self.failed_emails,
        }


def compute_deprovision_set(target_accounts: Mapping[str, Account],
                            authority_accounts: Mapping[str, Account]) -> List[Account]:
    """
    Accounts present in the target but absent from the authority.

    Keys are compared case-insensitively. The result follows the iteration
    order of ``target_accounts``. Authority-only accounts are ignored.
    """
    authority_keys = {email_key(key) for key in authority_accounts}
    return [account for key, account in target_accounts.items()
            if email_key(key) not in authority_keys]


class SyncEngine:
    """
    Drives deprovisioning from an authority snapshot onto a target directory.

    Args:
        target: Snapshot of the target directory (anything with ``accounts()``)
        authority: Snapshot of the authority directory
        connector: Target-side mutation API
        confirm_resolver: Optional live resolver consulted before each removal
        error_config: ``error_handling`` configuration (retry counts and waits)
        max_removals: Refuse to remove anything when more are planned (0 disables)
    """

    def __init__(self, target, authority, connector: Connector,
                 confirm_resolver: Optional[EmailResolver] = None,
                 error_config: Optional[Dict[str, Any]] = None,
                 max_removals: int = 0):
        self.target = target
        self.authority = authority
        self.connector = connector
        self.confirm_resolver = confirm_resolver
        self.error_config = error_config or {}
        self.max_removals = max_removals or 0
        self.target_name = getattr(target, 'name', 'target')

    def plan(self) -> List[Account]:
        target_accounts = self.target.accounts()
        authority_accounts = self.authority.accounts()
        planned = compute_deprovision_set(target_accounts, authority_accounts)
        logger.info(f"Target has {len(target_accounts)} account(s), authority has "
                    f"{len(authority_accounts)}; {len(planned)} account(s) not in authority")
        return planned

    def sync(self, dry_run: bool = False) -> SyncResult:
        """
        Remove every target account missing from the authority.

        A failed removal is recorded and the remaining accounts are still
        processed.

        Raises:
            DeprovisionLimitExceeded: If the plan exceeds ``max_removals``
        """
        result = SyncResult(dry_run=dry_run)
        result.planned = self.plan()

        if not result.planned:
            logger.info("No accounts to deprovision")
            return result

        if dry_run:
            for account in result.planned:
                logger.info(f"[dry run] Would remove {account.email} from {self.target_name}")
            return result

        if self.max_removals and len(result.planned) > self.max_removals:
            raise DeprovisionLimitExceeded(len(result.planned), self.max_removals)

        for account in result.planned:
            self._deprovision(account, result)

        logger.info(result.summary())
        return result

    def _deprovision(self, account: Account, result: SyncResult):
        if self.confirm_resolver is not None:
            try:
                still_exists = self.confirm_resolver.exists(account.email)
            except Exception as e:
                logger.error(f"Unable to confirm {account.email} against authority: {e}")
                result.failures.append(ConnectorOperationFailed(account.email, e))
                return
            if still_exists:
                logger.warning(f"{account.email} exists in authority on live check; not removed")
                result.skipped.append(account)
                return

        try:
            removed = self._remove(account.email)
            failure = None if removed else ConnectorOperationFailed(account.email)
        except MaxRetriesExceeded as e:
            failure = ConnectorOperationFailed(account.email, e.last_exception)
        except Exception as e:
            failure = ConnectorOperationFailed(account.email, e)

        result.operations.append(OperationLog(OPERATION_MEMBERS_REMOVE, account.email, failure is None))
        security_logger.log_user_operation(OPERATION_MEMBERS_REMOVE, account.email,
                                           self.target_name, failure is None)

        if failure is None:
            result.removed.append(account)
            logger.info(f"Removed {account.email} from {self.target_name}")
        else:
            result.failures.append(failure)
            logger.error(str(failure))

    def _remove(self, email: str) -> bool:
        return retry_call(
            self.connector.remove_member,
            args=(email,),
            on_retry=create_retry_callback(f"Removal of {email}"),
            **retry_settings(self.error_config)
        )
