"""
Configuration loading and management for Team User Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

DIRECTORY_MODULES = ('google_workspace', 'dropbox_team', 'ldap')
TARGET_MODULES = ('dropbox_team',)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    ENV_OVERRIDES = {
        'authority.auth.token': 'AUTHORITY_TOKEN',
        'target.auth.token': 'TARGET_TOKEN',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for secrets."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

        ldap_password = os.getenv('LDAP_BIND_PASSWORD')
        if ldap_password:
            for side in ('authority', 'target'):
                directory = self.config.get(side)
                if isinstance(directory, dict) and directory.get('module') == 'ldap':
                    directory['bind_password'] = ldap_password
                    logger.debug(f"Applied environment override for {side}.bind_password")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        for side in ('authority', 'target'):
            directory = self.config.get(side)
            if not isinstance(directory, dict) or not directory:
                errors.append(f"Missing {side} directory configuration")
                continue
            errors.extend(self._validate_directory(side, directory))

        target_module = (self.config.get('target') or {}).get('module')
        if target_module and target_module not in TARGET_MODULES:
            errors.append(f"target.module '{target_module}' does not support member removal "
                          f"(supported: {', '.join(TARGET_MODULES)})")

        sync_config = self.config.get('sync', {}) or {}
        max_removals = sync_config.get('max_removals', 0)
        if not isinstance(max_removals, int) or max_removals < 0:
            errors.append("sync.max_removals must be a non-negative integer")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _validate_directory(self, side: str, directory: Dict[str, Any]) -> List[str]:
        errors = []

        for field in ('name', 'module'):
            if not directory.get(field):
                errors.append(f"Missing required field {side}.{field}")

        module = directory.get('module')
        if module and module not in DIRECTORY_MODULES:
            errors.append(f"Unknown {side}.module '{module}' (supported: {', '.join(DIRECTORY_MODULES)})")

        if module == 'ldap':
            for field in ('server_url', 'bind_dn', 'bind_password', 'user_base_dn'):
                if not directory.get(field):
                    errors.append(f"Missing required LDAP field {side}.{field}")
        elif module:
            auth = directory.get('auth', {})
            if not auth:
                errors.append(f"Missing required field {side}.auth")
            elif not auth.get('method'):
                errors.append(f"Missing auth method for {side}")
            elif auth.get('method', '').lower() in ('token', 'bearer') and not auth.get('token'):
                errors.append(f"Missing token for {side} (set {side}.auth.token or {side.upper()}_TOKEN)")

        return errors

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        directory_defaults = {
            'google_workspace': {
                'base_url': 'https://admin.googleapis.com/admin/directory/v1',
                'customer_id': 'my_customer',
            },
            'dropbox_team': {
                'base_url': 'https://api.dropboxapi.com/2',
                'wipe_data': True,
            },
            'ldap': {
                'user_filter': '(objectClass=person)',
                'group_filter': '(|(objectClass=group)(objectClass=groupOfNames))',
            },
        }
        for side in ('authority', 'target'):
            directory = self.config[side]
            for key, value in directory_defaults.get(directory['module'], {}).items():
                directory.setdefault(key, value)
            directory.setdefault('verify_ssl', True)

        sync_defaults = {
            'dry_run': False,
            'confirm_removals': False,
            'max_removals': 0
        }
        sync_config = self.config.setdefault('sync', {})
        for key, value in sync_defaults.items():
            sync_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
