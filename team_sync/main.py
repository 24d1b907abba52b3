"""
Main orchestrator for Team User Sync.

This module wires configuration, logging, directory snapshots and the sync
engine together: it builds an authority snapshot and a target snapshot,
removes target accounts the authority no longer has, and reports the outcome.
"""

import sys
import logging
import importlib
from datetime import datetime
from typing import Any, Dict, Optional

from team_sync.cache import CacheInvariantViolation, ProviderFetchFailed
from team_sync.config import ConfigurationError, load_config
from team_sync.directory import AccountDirectory
from team_sync.logging_setup import security_logger, setup_logging
from team_sync.notifications import (
    send_deprovision_summary,
    send_directory_fetch_failure,
    send_failure_notification
)
from team_sync.provider import Connector, DirectoryProvider, EmailResolver
from team_sync.sync_engine import DeprovisionLimitExceeded, SyncEngine

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_FETCH_FAILURE = 3
EXIT_UNEXPECTED_ERROR = 4
EXIT_LIMIT_EXCEEDED = 5

# module -> (import path, {role: class name})
DIRECTORY_COMPONENTS = {
    'google_workspace': ('team_sync.vendors.google_workspace', {
        'directory': 'GoogleWorkspaceDirectory',
        'resolver': 'GoogleWorkspaceEmailResolver',
    }),
    'dropbox_team': ('team_sync.vendors.dropbox_team', {
        'directory': 'DropboxTeamDirectory',
        'connector': 'DropboxTeamConnector',
    }),
    'ldap': ('team_sync.ldap_client', {
        'directory': 'LDAPDirectory',
        'resolver': 'LDAPEmailResolver',
    }),
}

ROLE_BASES = {
    'directory': DirectoryProvider,
    'connector': Connector,
    'resolver': EmailResolver,
}


class SyncError(Exception):
    """Raised when a directory component cannot be created."""
    pass


def load_component(directory_config: Dict[str, Any], role: str):
    """
    Import the integration module for a directory and instantiate one of its components.

    Args:
        directory_config: ``authority`` or ``target`` configuration section
        role: 'directory', 'connector' or 'resolver'

    Returns:
        Component instance

    Raises:
        SyncError: If the module is unknown, lacks the role, or fails to initialize
    """
    module_name = directory_config['module']
    if module_name not in DIRECTORY_COMPONENTS:
        raise SyncError(f"Unknown directory module {module_name}")

    import_path, classes = DIRECTORY_COMPONENTS[module_name]
    class_name = classes.get(role)
    if not class_name:
        raise SyncError(f"Directory module {module_name} does not provide a {role}")

    try:
        module = importlib.import_module(import_path)
    except ImportError as e:
        raise SyncError(f"Failed to import directory module {import_path}: {e}")

    component_class = getattr(module, class_name, None)
    if not (isinstance(component_class, type) and issubclass(component_class, ROLE_BASES[role])):
        raise SyncError(f"{import_path}.{class_name} is not a {ROLE_BASES[role].__name__}")

    try:
        return component_class(directory_config)
    except (KeyError, ValueError, OSError) as e:
        raise SyncError(f"Failed to initialize {role} for {directory_config.get('name', module_name)}: {e}")


class SyncOrchestrator:
    """
    Runs one deprovisioning pass.

    Coordinates configuration, snapshots, the sync engine and notifications,
    and maps failures onto process exit codes.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            dry_run: Report planned removals without calling the target connector
        """
        self.config = None
        self.config_path = config_path
        self.dry_run = dry_run
        self.components = []
        self.result = None
        self.loading = None

        self.sync_stats = {
            'authority': None,
            'target': None,
            'authority_accounts': 0,
            'target_accounts': 0,
            'planned': 0,
            'removed': 0,
            'skipped': 0,
            'failed': 0,
            'api_fetches': {},
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        self.sync_stats['start_time'] = datetime.now()
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))
            security_logger.log_configuration_access(self.config_path or 'default')

            logger.info("Starting Team User Sync")
            self.result = self._sync()

            self._finish_timing()
            self._log_sync_summary()
            self._send_summary_notification()

            if not self.result.fully_applied:
                logger.warning(f"Sync completed with {len(self.result.failures)} failure(s): "
                               f"{', '.join(self.result.failed_emails)}")
                return EXIT_PARTIAL_FAILURE

            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except ProviderFetchFailed as e:
            logger.error(f"Directory fetch failed: {e}")
            if e.authentication_failure:
                logger.error("Suggested workaround: renew the directory credentials and re-run")
            else:
                logger.error("Suggested workaround: re-run the sync if this was a network issue")
            self._send_fetch_failure(e)
            return EXIT_FETCH_FAILURE
        except DeprovisionLimitExceeded as e:
            logger.error(f"Refusing to deprovision: {e}")
            self._send_failure_notification("Removal Limit Exceeded", str(e))
            return EXIT_LIMIT_EXCEEDED
        except CacheInvariantViolation as e:
            logger.critical(f"Internal error, please file an issue: {e}", exc_info=True)
            self._send_failure_notification("Internal Error", str(e))
            return EXIT_UNEXPECTED_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration."""
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _create(self, directory_config: Dict[str, Any], role: str):
        component = load_component(directory_config, role)
        self.components.append(component)
        return component

    def _sync(self):
        authority_config = self.config['authority']
        target_config = self.config['target']
        sync_config = self.config.get('sync', {})

        self.sync_stats['authority'] = authority_config['name']
        self.sync_stats['target'] = target_config['name']

        confirm_resolver = None
        if sync_config.get('confirm_removals'):
            try:
                confirm_resolver = self._create(authority_config, 'resolver')
            except SyncError as e:
                raise ConfigurationError(f"sync.confirm_removals is enabled but unavailable: {e}")

        self.loading = authority_config['name']
        logger.info(f"Loading authority directory: {self.loading}")
        authority = AccountDirectory(self._create(authority_config, 'directory'))

        self.loading = target_config['name']
        logger.info(f"Loading target directory: {self.loading}")
        target = AccountDirectory(self._create(target_config, 'directory'))

        self.sync_stats['authority_accounts'] = len(authority.accounts())
        self.sync_stats['target_accounts'] = len(target.accounts())
        self.sync_stats['api_fetches'] = {
            authority.name: authority.cache.get_cache_stats(),
            target.name: target.cache.get_cache_stats(),
        }

        engine = SyncEngine(
            target=target,
            authority=authority,
            connector=self._create(target_config, 'connector'),
            confirm_resolver=confirm_resolver,
            error_config=self.config.get('error_handling', {}),
            max_removals=sync_config.get('max_removals', 0)
        )
        result = engine.sync(dry_run=self.dry_run or sync_config.get('dry_run', False))

        self.sync_stats['planned'] = len(result.planned)
        self.sync_stats['removed'] = len(result.removed)
        self.sync_stats['skipped'] = len(result.skipped)
        self.sync_stats['failed'] = len(result.failures)
        return result

    def _finish_timing(self):
        self.sync_stats['end_time'] = datetime.now()
        self.sync_stats['runtime_seconds'] = (
            self.sync_stats['end_time'] - self.sync_stats['start_time']
        ).total_seconds()

    def _notifications_config(self) -> Dict[str, Any]:
        return (self.config or {}).get('notifications', {})

    def _send_failure_notification(self, title: str, error_message: str):
        if self.config:
            send_failure_notification(title, error_message, self._notifications_config())

    def _send_fetch_failure(self, error: ProviderFetchFailed):
        if self.config:
            send_directory_fetch_failure(
                self.loading or 'unknown',
                error.operation,
                str(error.cause),
                error.authentication_failure,
                self._notifications_config()
            )

    def _send_summary_notification(self):
        send_deprovision_summary(self.sync_stats, self.result.to_dict(), self._notifications_config())

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats

        runtime_str = f"{stats['runtime_seconds']:.2f} seconds"
        if stats['runtime_seconds'] > 60:
            minutes = int(stats['runtime_seconds'] // 60)
            seconds = stats['runtime_seconds'] % 60
            runtime_str = f"{minutes}m {seconds:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Authority {stats['authority']}: {stats['authority_accounts']} account(s)")
        logger.info(f"Target {stats['target']}: {stats['target_accounts']} account(s)")
        logger.info(f"Planned removals: {stats['planned']}")
        logger.info(f"Removed: {stats['removed']}")
        logger.info(f"Skipped after live check: {stats['skipped']}")
        logger.info(f"Failed: {stats['failed']}")
        for directory_name, fetches in stats['api_fetches'].items():
            logger.info(f"API fetches for {directory_name}: {fetches}")
        logger.info(self.result.summary())

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check: configuration and one listing call per directory.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        for side in ('authority', 'target'):
            directory_config = self.config[side]
            provider = None
            try:
                provider = load_component(directory_config, 'directory')
                users, _ = provider.list_users('')
                health_status['checks'][side] = {
                    'status': 'pass',
                    'message': f"{directory_config['name']} reachable ({len(users)} user(s) on first page)"
                }
            except Exception as e:
                health_status['checks'][side] = {
                    'status': 'fail',
                    'message': f"{directory_config['name']} check failed: {e}"
                }
                health_status['status'] = 'unhealthy'
            finally:
                if provider is not None:
                    provider.close()

        return health_status

    def _cleanup(self):
        """Close connections held by directory components."""
        for component in self.components:
            try:
                component.close()
            except Exception as e:
                logger.warning(f"Error closing {type(component).__name__}: {e}")
        self.components = []


def main():
    """Main entry point for the application."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description='Team User Sync: deprovision accounts missing from the authority directory')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true',
                        help='Report accounts that would be removed without removing them')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config, dry_run=args.dry_run)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        from team_sync.notifications import send_test_notification
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(EXIT_CONFIGURATION_ERROR)

        if send_test_notification(orchestrator.config.get('notifications', {})):
            print("Test email sent successfully")
            sys.exit(0)
        print("Failed to send test email")
        sys.exit(1)

    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
