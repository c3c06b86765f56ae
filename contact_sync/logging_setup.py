"""
Logging for Contact Sync runs.

Every run writes a detailed log file, rotated at midnight, for later review,
and a shorter console stream for the operator. The console goes to stderr
because the client prompt writes to stdout. API keys and the bind password
are masked in both.
"""

import os
import re
import sys
import logging
import logging.handlers
from typing import Any, Dict, Optional
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)


DEFAULT_LOG_FILE = 'contact_sync.log'

FILE_FORMAT = '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'

# (stat key, label) in the order the run summary reports them
SUMMARY_LINES = [
    ('directory_records', 'Directory records'),
    ('records_skipped_no_email', 'Skipped (no email)'),
    ('contacts_updated', 'Contacts updated'),
    ('contacts_created', 'Contacts created'),
    ('planned_updates', 'Planned updates (dry run)'),
    ('planned_creates', 'Planned creates (dry run)'),
    ('contacts_excluded', 'Excluded'),
    ('contacts_declined', 'Declined by operator'),
    ('contacts_unresolved', 'Unresolved client'),
    ('contacts_ambiguous', 'Ambiguous email'),
    ('duplicate_emails', 'Duplicate directory email'),
    ('errors', 'Errors'),
]

# Reported only when non-zero
DRY_RUN_KEYS = ('planned_updates', 'planned_creates')


class SensitiveDataFilter(logging.Filter):
    """Filter to scrub sensitive data from log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'api_key', 'apikey', 'x-api-key',
        'token', 'secret', 'authorization', 'bearer', 'access_token'
    ]

    def filter(self, record):
        """Filter out sensitive data from log records."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)

            for keyword in self.SENSITIVE_KEYWORDS:
                escaped = re.escape(keyword)

                # key=value, including query strings
                msg = re.sub(rf'({escaped}\s*=\s*)[^\s,&}}\]]+', r'\1****', msg, flags=re.IGNORECASE)

                # "key": "value" in JSON
                msg = re.sub(rf'("{escaped}"\s*:\s*")[^"]*(")', r'\1****\2', msg, flags=re.IGNORECASE)

                # 'key': 'value' in a repr'd dict
                msg = re.sub(rf"('{escaped}'\s*:\s*')[^']*(')", r'\1****\2', msg, flags=re.IGNORECASE)

            # Header style values
            msg = re.sub(r'(X-API-KEY:\s*)\S+', r'\1****', msg, flags=re.IGNORECASE)
            msg = re.sub(r'(Authorization:\s*Bearer\s+)[^\s,}\]]+', r'\1****', msg, flags=re.IGNORECASE)

            record.msg = msg

        return True


def log_file_path(config: Optional[Dict[str, Any]]) -> str:
    """Path of the run log for a logging configuration section."""
    config = config or {}
    return os.path.join(config.get('log_dir') or 'logs', config.get('file_name') or DEFAULT_LOG_FILE)


def _level(name: Any, default: int) -> int:
    level = logging.getLevelName(str(name or '').upper())
    return level if isinstance(level, int) else default


class LoggingManager:
    """
    Configures the root logger once per process.

    Remembers where the run log is written so the summary can point the
    operator at it.
    """

    def __init__(self):
        self.configured = False
        self.log_file = None

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Attach the file and console handlers to the root logger.

        Args:
            config: 'logging' section of the configuration
        """
        if self.configured:
            return

        config = config or {}
        level = _level(config.get('level'), logging.INFO)
        retention_days = int(config.get('retention_days', 7) or 0)

        self.log_file = log_file_path(config)
        fallback_reason = self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(config.get('rotation', 'daily'), retention_days)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if config.get('console_output', True):
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(_level(config.get('console_level'), logging.INFO))
            console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S'))
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self.configured = True

        if fallback_reason:
            logger.warning(fallback_reason)
        logger.info(f"Writing run log to {self.log_file} "
                    f"(level {logging.getLevelName(level)}, kept {retention_days} days)")

        removed = self._remove_expired_logs(retention_days)
        if removed:
            logger.info(f"Removed {removed} expired log files")

    def _ensure_log_directory(self) -> Optional[str]:
        """Create the log directory; returns a warning if the working directory is used instead."""
        log_dir = os.path.dirname(self.log_file)
        if not log_dir:
            return None

        try:
            os.makedirs(log_dir, exist_ok=True)
        except OSError as e:
            self.log_file = os.path.basename(self.log_file)
            return f"Could not create log directory {log_dir} ({e}), logging to {os.path.abspath(self.log_file)}"

        return None

    def _create_file_handler(self, rotation: str, retention_days: int) -> logging.Handler:
        if str(rotation).lower() in ('daily', 'midnight'):
            # Rotated files get a date suffix: contact_sync.log.2024-05-01
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=self.log_file,
                when='midnight',
                backupCount=retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
            return handler

        return logging.FileHandler(self.log_file, encoding='utf-8')

    def _remove_expired_logs(self, retention_days: int) -> int:
        """
        Delete rotated run logs older than the retention period.

        A run that never crosses midnight never triggers the handler's own
        rollover cleanup, so expired files are also removed here.

        Returns:
            Number of files removed
        """
        if retention_days <= 0:
            return 0

        log_dir = os.path.dirname(self.log_file) or '.'
        prefix = os.path.basename(self.log_file) + '.'
        cutoff = datetime.now() - timedelta(days=retention_days)

        removed = 0
        for name in os.listdir(log_dir):
            if not name.startswith(prefix):
                continue
            path = os.path.join(log_dir, name)
            try:
                if datetime.fromtimestamp(os.path.getmtime(path)) < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError as e:
                logger.warning(f"Could not remove expired log file {path}: {e}")

        return removed


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


def format_runtime(seconds: float) -> str:
    if seconds > 60:
        return f"{int(seconds // 60)}m {seconds % 60:.1f}s"
    return f"{seconds:.2f} seconds"


def log_sync_summary(stats: Dict[str, Any]) -> None:
    """
    Log the end-of-run statistics, one line per counter.

    Args:
        stats: Orchestrator statistics including the reconciler counters
    """
    logger.info("=== Sync Summary ===")
    logger.info(f"Total runtime: {format_runtime(stats.get('runtime_seconds', 0))}")

    for key, label in SUMMARY_LINES:
        value = stats.get(key, 0)
        if key in DRY_RUN_KEYS and not value:
            continue
        logger.info(f"{label}: {value}")

    if _logging_manager.log_file:
        logger.info(f"Full log: {_logging_manager.log_file}")


def check_log_location(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Health check entry for the run log location.

    Passes when the log file (or, before the first run, its directory or the
    nearest existing parent) is writable.
    """
    path = log_file_path(config)

    target = path if os.path.exists(path) else os.path.dirname(os.path.abspath(path))
    while not os.path.exists(target):
        target = os.path.dirname(target)

    if os.access(target, os.W_OK):
        return {'status': 'pass', 'message': f'Run log {path} is writable'}
    return {'status': 'fail', 'message': f'Run log {path} is not writable ({target})'}
