"""
Configuration loading and management for Contact Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


DEFAULT_USER_FILTER = (
    '(&(objectCategory=person)(objectClass=user)'
    '(!(userAccountControl:1.2.840.113556.1.4.803:=2)))'
)

DEFAULT_ATTRIBUTES = [
    'displayName', 'mail', 'title', 'department',
    'telephoneNumber', 'mobile', 'ipPhone', 'distinguishedName'
]

AUTH_METHODS = ('api_key_header', 'api_key_query', 'bearer')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'remote_api.auth.api_key': 'CONTACT_API_KEY',
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
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

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

        ldap_config = self.config.get('ldap') or {}
        for field in ['server_url', 'bind_dn', 'bind_password']:
            if not ldap_config.get(field):
                errors.append(f"Missing required LDAP field: {field}")

        api_config = self.config.get('remote_api') or {}
        if not api_config.get('base_url'):
            errors.append("Missing required remote_api field: base_url")

        auth = api_config.get('auth') or {}
        method = str(auth.get('method', '')).lower()
        if not method:
            errors.append("Missing auth method for remote_api")
        elif method not in AUTH_METHODS:
            errors.append(f"Unsupported auth method for remote_api: {method}")
        elif method in ('api_key_header', 'api_key_query') and not auth.get('api_key'):
            errors.append("Missing api_key for remote_api auth")
        elif method == 'bearer' and not auth.get('token'):
            errors.append("Missing token for remote_api auth")

        update_method = str(api_config.get('update_method', 'PUT')).upper()
        if update_method not in ('PUT', 'POST'):
            errors.append(f"remote_api.update_method must be PUT or POST, got {update_method}")

        mapping = self.config.get('client_mapping')
        if mapping is not None:
            if not isinstance(mapping, dict):
                errors.append("client_mapping must be a mapping of DN substring to client id")
            else:
                for pattern, client_id in mapping.items():
                    if not pattern:
                        errors.append("client_mapping contains an empty pattern")
                    if client_id in (None, ''):
                        errors.append(f"client_mapping entry '{pattern}' has no client id")

        phone = self.config.get('phone') or {}
        if phone.get('replacement') and not phone.get('country_prefix'):
            errors.append("phone.replacement requires phone.country_prefix")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_defaults = {
            'search_base': '',
            'user_filter': DEFAULT_USER_FILTER,
            'attributes': list(DEFAULT_ATTRIBUTES)
        }
        ldap_config = self.config.setdefault('ldap', {})
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        api_defaults = {
            'name': 'helpdesk',
            'module': 'helpdesk',
            'verify_ssl': True,
            'timeout': 30,
            'update_method': 'PUT'
        }
        api_config = self.config.setdefault('remote_api', {})
        for key, value in api_defaults.items():
            api_config.setdefault(key, value)
        api_config['update_method'] = str(api_config['update_method']).upper()

        auth = api_config.setdefault('auth', {})
        auth['method'] = str(auth.get('method', '')).lower()
        auth.setdefault('header_name', 'X-API-KEY')
        auth.setdefault('param_name', 'api_key')

        if self.config.get('client_mapping') is None:
            self.config['client_mapping'] = {}

        phone_config = self.config.setdefault('phone', {}) or {}
        self.config['phone'] = phone_config
        phone_config.setdefault('country_prefix', '')
        phone_config.setdefault('replacement', '')

        exclusions_config = self.config.setdefault('exclusions', {}) or {}
        self.config['exclusions'] = exclusions_config
        exclusions_config.setdefault('file', 'excluded_contacts.txt')

        sync_defaults = {
            'interactive': True,
            'dry_run': False
        }
        sync_config = self.config.setdefault('sync', {}) or {}
        self.config['sync'] = sync_config
        for key, value in sync_defaults.items():
            sync_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {}) or {}
        self.config['logging'] = logging_config
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)


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
