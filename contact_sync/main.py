"""
Main orchestrator for Contact Sync.

This module wires configuration, logging, the directory client and the remote
contact API together and runs one reconciliation pass.
"""

import sys
import inspect
import logging
import importlib
from datetime import datetime
from typing import Dict, Any, Optional

from contact_sync.config import load_config, ConfigurationError
from contact_sync.directory import DirectoryClient, DirectoryConnectionError, DirectoryQueryError
from contact_sync.exclusions import ExclusionList
from contact_sync.logging_setup import setup_logging, log_sync_summary, check_log_location
from contact_sync.prompt import ClientPrompt
from contact_sync.reconciler import Reconciler
from contact_sync.remote.base import ContactAPIBase

logger = logging.getLogger(__name__)


EXIT_SUCCESS = 0
EXIT_RECORD_ERRORS = 1
EXIT_CONFIG_ERROR = 2
EXIT_DIRECTORY_ERROR = 3
EXIT_API_MODULE_ERROR = 4
EXIT_UNEXPECTED_ERROR = 5


class SyncError(Exception):
    """Raised when the remote API integration cannot be set up."""
    pass


class SyncOrchestrator:
    """
    Runs a directory to helpdesk contact synchronization.

    Fatal problems (configuration, directory, API module) end the run with a
    distinct exit code; per-record problems are left to the reconciler.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: Optional[bool] = None,
                 interactive: Optional[bool] = None, prompt: Optional[ClientPrompt] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            dry_run: Overrides sync.dry_run when not None
            interactive: Overrides sync.interactive when not None
            prompt: Prompt to use instead of a terminal prompt
        """
        self.config = None
        self.config_path = config_path
        self.dry_run_override = dry_run
        self.interactive_override = interactive
        self.prompt = prompt

        self.directory_client = None
        self.contact_api = None

        self.sync_stats = {
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
            'directory_records': 0
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info("Starting Contact Sync")
            if self._sync_setting('dry_run', self.dry_run_override):
                logger.info("Dry run: no contacts will be created or updated")

            self.contact_api = self._load_api_module(self.config['remote_api'])
            if not self.contact_api.authenticate():
                raise SyncError(f"No usable credentials for {self.contact_api.name}")

            self._connect_directory()
            records = self.directory_client.get_enabled_users()
            self.sync_stats['directory_records'] = len(records)

            reconciler = self._create_reconciler()
            reconciler.reconcile(records)
            self.sync_stats.update(reconciler.stats)

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            log_sync_summary(self.sync_stats)

            if self.sync_stats['errors'] > 0:
                logger.warning(f"Sync completed with {self.sync_stats['errors']} errors")
                return EXIT_RECORD_ERRORS

            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except (DirectoryConnectionError, DirectoryQueryError) as e:
            logger.error(f"Directory error: {e}")
            return EXIT_DIRECTORY_ERROR
        except SyncError as e:
            logger.error(f"Remote API setup failed: {e}")
            return EXIT_API_MODULE_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
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

    def _sync_setting(self, key: str, override: Optional[bool]) -> bool:
        if override is not None:
            return override
        return bool(self.config.get('sync', {}).get(key, False))

    def _connect_directory(self):
        """Establish the directory connection."""
        self.directory_client = DirectoryClient(self.config['ldap'])
        try:
            self.directory_client.connect()
        except DirectoryConnectionError:
            self.directory_client = None
            raise

    def _load_api_module(self, api_config: Dict[str, Any]) -> ContactAPIBase:
        """Import contact_sync.remote.<module> and instantiate its API class."""
        module_name = api_config.get('module', 'helpdesk')

        try:
            api_module = importlib.import_module(f"contact_sync.remote.{module_name}")
        except ImportError as e:
            raise SyncError(f"Failed to import API module {module_name}: {e}")

        api_class = None
        for attr_name in dir(api_module):
            attr = getattr(api_module, attr_name)
            if (isinstance(attr, type) and
                    issubclass(attr, ContactAPIBase) and
                    not inspect.isabstract(attr)):
                api_class = attr
                break

        if not api_class:
            raise SyncError(f"No ContactAPIBase implementation found in module {module_name}")

        try:
            return api_class(api_config)
        except Exception as e:
            raise SyncError(f"Failed to initialize API module {module_name}: {e}")

    def _create_reconciler(self) -> Reconciler:
        dry_run = self._sync_setting('dry_run', self.dry_run_override)

        exclusions = ExclusionList(self.config['exclusions']['file']).load()

        prompt = None
        if self._sync_setting('interactive', self.interactive_override):
            if self.prompt is not None:
                prompt = self.prompt
            elif sys.stdin is not None and sys.stdin.isatty():
                prompt = ClientPrompt()
            else:
                logger.warning("Standard input is not a terminal, unmapped contacts will be skipped")

        return Reconciler(
            api=self.contact_api,
            client_mapping=self.config.get('client_mapping', {}),
            phone_settings=self.config.get('phone', {}),
            exclusions=exclusions,
            prompt=prompt,
            dry_run=dry_run
        )

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

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
        except Exception as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'

        if not self.config:
            return health_status

        try:
            client = DirectoryClient(self.config['ldap'])
            client.connect()
            client.disconnect()
            health_status['checks']['ldap'] = {
                'status': 'pass',
                'message': 'LDAP connection successful'
            }
        except Exception as e:
            health_status['checks']['ldap'] = {
                'status': 'fail',
                'message': f'LDAP connection failed: {e}'
            }
            health_status['status'] = 'unhealthy'

        api = None
        try:
            api = self._load_api_module(self.config['remote_api'])
            clients = api.list_clients()
            health_status['checks']['remote_api'] = {
                'status': 'pass',
                'message': f'API reachable, {len(clients)} clients listed'
            }
        except Exception as e:
            health_status['checks']['remote_api'] = {
                'status': 'fail',
                'message': f'Remote API check failed: {e}'
            }
            health_status['status'] = 'unhealthy'
        finally:
            if api:
                api.close_connection()

        try:
            exclusions = ExclusionList(self.config['exclusions']['file']).load()
            health_status['checks']['exclusions'] = {
                'status': 'pass',
                'message': f'{len(exclusions)} excluded emails'
            }
        except Exception as e:
            health_status['checks']['exclusions'] = {
                'status': 'fail',
                'message': f'Exclusion file unreadable: {e}'
            }
            health_status['status'] = 'unhealthy'

        health_status['checks']['logging'] = check_log_location(self.config.get('logging'))
        if health_status['checks']['logging']['status'] != 'pass':
            health_status['status'] = 'unhealthy'

        return health_status

    def _cleanup(self):
        """Clean up resources."""
        if self.directory_client:
            self.directory_client.disconnect()
        if self.contact_api:
            self.contact_api.close_connection()


def main():
    """Main entry point for the application."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description='Sync directory users to helpdesk contacts')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true', default=None,
                        help='Log planned changes without creating or updating contacts')
    parser.add_argument('--non-interactive', dest='interactive', action='store_false', default=None,
                        help='Skip unmapped new contacts instead of prompting for a client')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(
        config_path=args.config,
        dry_run=args.dry_run,
        interactive=args.interactive
    )

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
