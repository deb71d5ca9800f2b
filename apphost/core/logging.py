"""Logging setup.

Configures loguru sinks, redacts sensitive values and builds the log config
handed to uvicorn so access logs share the application format.
"""
import copy
import os
import re
import sys
from typing import Any, Dict

from loguru import logger
from uvicorn.config import LOGGING_CONFIG

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

SENSITIVE_PATTERNS = [
    (re.compile(r'(api[_-]?key|secret[_-]?key|access[_-]?key)["\']?\s*[:=]\s*["\']?([a-zA-Z0-9_\-]{8,})["\']?', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'(password|passwd|pwd)["\']?\s*[:=]\s*["\']?([^"\'\s,}]{3,})["\']?', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'(token|bearer|jwt)["\']?\s*[:=]\s*["\']?([a-zA-Z0-9_\-\.]{20,})["\']?', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'(Authorization)["\']?\s*[:=]\s*["\']?(Bearer\s+)?([a-zA-Z0-9_\-\.]{20,})["\']?', re.IGNORECASE), r'\1=***REDACTED***'),
    (re.compile(r'(mysql|postgres|postgresql|redis|amqp)://([^:]+):([^@]+)@', re.IGNORECASE), r'\1://\2:***@'),
]

SENSITIVE_KEYS = {
    'password', 'passwd', 'pwd', 'secret', 'token', 'api_key',
    'apikey', 'secret_key', 'access_key', 'authorization', 'cookie',
    'credential', 'credentials',
}


def sanitize_log_message(message: str) -> str:
    """Redact secrets embedded in a log message."""
    if not message:
        return message

    sanitized = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def sanitize_dict(data: Dict[str, Any], sensitive_keys: set = None) -> Dict[str, Any]:
    """Redact values whose key looks sensitive, recursing into nested dicts."""
    if sensitive_keys is None:
        sensitive_keys = SENSITIVE_KEYS

    if not isinstance(data, dict):
        return data

    result = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(sk in key_lower for sk in sensitive_keys):
            result[key] = '***REDACTED***'
        elif isinstance(value, dict):
            result[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            result[key] = sanitize_log_message(value)
        else:
            result[key] = value
    return result


class SanitizingFilter:
    """loguru filter that redacts the message and `extra` fields in place."""

    def __call__(self, record: Dict[str, Any]) -> bool:
        if 'message' in record:
            record['message'] = sanitize_log_message(record['message'])

        if 'extra' in record and isinstance(record['extra'], dict):
            record['extra'].update(sanitize_dict(record['extra']))

        return True


def setup_logging(settings=None) -> None:
    """Replace loguru's default sink with console (and optionally file) sinks."""
    if settings is None:
        from apphost.core.config import settings

    logger.remove()
    sanitizing_filter = SanitizingFilter()

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=settings.LOG_LEVEL,
        colorize=True,
        filter=sanitizing_filter,
    )

    if settings.LOG_TO_FILE:
        log_dir = os.path.dirname(settings.LOG_FILE_PATH)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        logger.add(
            settings.LOG_FILE_PATH,
            format=FILE_FORMAT,
            level=settings.LOG_LEVEL,
            rotation="500 MB",
            retention="30 days",
            compression="zip",
            encoding="utf-8",
            enqueue=True,
            filter=sanitizing_filter,
        )

    logger.info(f"Logging configured: level={settings.LOG_LEVEL}, file={settings.LOG_TO_FILE}, sanitize=True")


def build_uvicorn_log_config(level: str = "INFO") -> dict:
    """Uvicorn's default log config with timestamps added to both formatters."""
    log_config = copy.deepcopy(LOGGING_CONFIG)
    log_config["formatters"]["default"]["fmt"] = "%(asctime)s %(levelprefix)s %(message)s"
    log_config["formatters"]["default"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
    log_config["formatters"]["access"]["fmt"] = '%(asctime)s %(levelprefix)s %(message)s - "%(request_line)s" %(status_code)s'
    log_config["formatters"]["access"]["datefmt"] = "%Y-%m-%d %H:%M:%S"
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        if name in log_config["loggers"]:
            log_config["loggers"][name]["level"] = level.upper()
    return log_config
