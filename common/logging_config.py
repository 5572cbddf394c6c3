"""Logging setup shared by the gateway modules, with credential masking."""

import logging
import os
import re
import sys
from typing import List, Optional, Pattern, Tuple

MASK = '***MASKED***'

# Names whose ``name=value`` / ``"name": "value"`` values never reach the log.
_SECRET_NAMES = (
    'password',
    r'pass[_-]?hash',
    r'api[_-]?key',
    r'access[_-]?key(?:[_-]?id)?',
    'token',
    'secret',
    'authorization',
)


def _credential_patterns() -> List[Tuple[Pattern, str]]:
    patterns = [
        (re.compile(r'(\b(?:bearer|basic|bot)\s+)([^\s,}\'\"]+)', re.IGNORECASE), r'\1' + MASK),
    ]
    for name in _SECRET_NAMES:
        patterns.append((
            re.compile(r'(' + name + r'["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE),
            r'\1' + MASK,
        ))
    # Telegram embeds the bot token in the URL path: /bot<token>/<method>
    patterns.append((re.compile(r'(/bot)(\d+:[A-Za-z0-9_-]+)'), r'\1' + MASK))
    # Discord webhook URLs carry their token as the last path segment
    patterns.append((re.compile(r'(/webhooks/\d+/)([A-Za-z0-9_-]+)'), r'\1' + MASK))
    return patterns


class SensitiveDataFilter(logging.Filter):
    """Masks credentials in log messages and their arguments."""

    PATTERNS = _credential_patterns()

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask_value(arg) for arg in record.args)

        return True

    def _mask_value(self, value):
        if isinstance(value, str):
            for pattern, replacement in self.PATTERNS:
                value = pattern.sub(replacement, value)
        return value


def setup_logging(
    component_name: str,
    log_level: Optional[str] = None,
    correlation_id: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration for a component.

    Args:
        component_name: Name of the component (e.g., 'gateway')
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO
        correlation_id: Optional correlation ID to include in log format

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

    level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(correlation_id))
    handler.addFilter(SensitiveDataFilter())

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Modules under the ``gateway`` package inherit the handler installed by
    ``setup_logging('gateway')``.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def _build_formatter(correlation_id: Optional[str] = None) -> logging.Formatter:
    if correlation_id:
        fmt = f'%(asctime)s - %(name)s - %(levelname)s - [{correlation_id}] - %(message)s'
    else:
        fmt = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    return logging.Formatter(fmt, datefmt='%Y-%m-%d %H:%M:%S')
