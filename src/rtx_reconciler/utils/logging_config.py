"""Logging configuration for rtx-reconciler.

Provides configurable logging with:
- File-based logging with rotation
- Console output for real-time debugging
- Performance timing decorators
- Secret redaction for anything that looks like a credential

Environment Variables:
    RTX_RECONCILER_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    RTX_RECONCILER_LOG_FILE: Path to log file (default: ~/.rtx-reconciler/rtx-reconciler.log)
    RTX_RECONCILER_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    RTX_RECONCILER_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from rtx_reconciler.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("connect")
    async def connect(self):
        ...

    async with timed_section("create", device_id="rtx-edge", domain="dhcp_scope"):
        ...
"""
import asyncio
import functools
import logging
import os
import re
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Callable, Any

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("rtx_reconciler.perf")
main_logger = logging.getLogger("rtx_reconciler")

REDACTED = "[REDACTED]"

# Words after which the next token is a secret, e.g.
#   bgp neighbor 1 65001 10.0.0.1 password=<secret>
#   ipsec ike pre-shared-key 1 text <key>
_SECRET_KEYS = r"password|pre-shared-key|secret|community|token|key|credential"
_SECRET_ASSIGNMENT = re.compile(rf"\b({_SECRET_KEYS})=(\"[^\"]*\"|\S+)", re.IGNORECASE)
_SECRET_ARGUMENT = re.compile(
    rf"\b({_SECRET_KEYS})(\s+(?:\d+\s+)?(?:text\s+)?)(\"[^\"]*\"|[^\s=]+)", re.IGNORECASE
)
_KEEP_AFTER_KEYWORD = {"none", "off", "on"}


def redact_secrets(text: str) -> str:
    """Replace credential values in a command or output with a placeholder."""
    if not text:
        return text

    text = _SECRET_ASSIGNMENT.sub(lambda m: f"{m.group(1)}={REDACTED}", text)

    def _argument(match: re.Match) -> str:
        if match.group(3).lower() in _KEEP_AFTER_KEYWORD or match.group(3) == REDACTED:
            return match.group(0)
        return f"{match.group(1)}{match.group(2)}{REDACTED}"

    return _SECRET_ARGUMENT.sub(_argument, text)


_SECRET_FIELD = re.compile(
    r"(?:^|_)(password|passphrase|secret|pre_shared_key|community|token|credential)$",
    re.IGNORECASE,
)


def redact_state(value: Any) -> Any:
    """Redact credential fields in a JSON-like entity snapshot.

    Dict keys named like a credential (``password``, ``admin_password``,
    ``pre_shared_key``...) have their value replaced; every other string
    goes through redact_secrets.
    """
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_set(v) and _SECRET_FIELD.search(str(k)) else redact_state(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_state(v) for v in value]
    if isinstance(value, str):
        return redact_secrets(value)
    return value


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


class SecretRedactingFilter(logging.Filter):
    """Logging filter that redacts credentials from every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("RTX_RECONCILER_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".rtx-reconciler" / "rtx-reconciler.log"
    path_str = os.environ.get("RTX_RECONCILER_LOG_FILE", str(default_path))
    return Path(path_str)


def setup_logging() -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (respects RTX_RECONCILER_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance logger for timing metrics
    """
    log_level = get_log_level()
    log_file = get_log_file()
    max_size_mb = int(os.environ.get("RTX_RECONCILER_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("RTX_RECONCILER_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-30s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    redactor = SecretRedactingFilter()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)
    console_handler.addFilter(redactor)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)
    file_handler.addFilter(redactor)

    perf_log_file = log_file.parent / "rtx-reconciler-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)
    perf_handler.addFilter(redactor)

    main_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    main_logger.addHandler(console_handler)
    main_logger.addHandler(file_handler)

    # Perf records stay out of the main log file
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False
    perf_logger.addHandler(perf_handler)
    perf_logger.addHandler(console_handler)

    main_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")
    perf_logger.info(f"Performance logging to: {perf_log_file}")


def timed(operation: str, device_id: Optional[str] = None):
    """Decorator to log execution time of sync/async functions.

    Args:
        operation: Name of the operation (e.g., "connect", "run_batch")
        device_id: Optional device identifier (can also be inferred from self.device_id)
    """
    def _resolve(args) -> str:
        if device_id is not None:
            return device_id
        if args and hasattr(args[0], "device_id"):
            return args[0].device_id
        return "N/A"

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            dev_id = _resolve(args)
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000  # ms
                perf_logger.info(f"{operation:20s} | {dev_id:15s} | {elapsed:8.2f}ms | OK")
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(
                    f"{operation:20s} | {dev_id:15s} | {elapsed:8.2f}ms | FAIL: {e}"
                )
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            dev_id = _resolve(args)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.info(f"{operation:20s} | {dev_id:15s} | {elapsed:8.2f}ms | OK")
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(
                    f"{operation:20s} | {dev_id:15s} | {elapsed:8.2f}ms | FAIL: {e}"
                )
                raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, device_id: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Args:
        operation: Name of the operation
        device_id: Device identifier
        **extra: Additional context to log
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:20s} | {device_id or 'N/A':15s} | {elapsed:8.2f}ms | OK"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.info(msg)
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:20s} | {device_id or 'N/A':15s} | {elapsed:8.2f}ms | FAIL: {e}"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise
