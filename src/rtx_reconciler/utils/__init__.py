"""Utility modules for rtx-reconciler."""
from .audit_log import ChangeRecord, ChangeTracker, get_recent_changes, setup_audit_logging
from .connection import RETRYABLE_EXCEPTIONS, with_retry
from .logging_config import (
    SecretRedactingFilter,
    redact_secrets,
    redact_state,
    setup_logging,
    timed,
    timed_section,
)

__all__ = [
    "ChangeRecord",
    "ChangeTracker",
    "get_recent_changes",
    "setup_audit_logging",
    "RETRYABLE_EXCEPTIONS",
    "with_retry",
    "SecretRedactingFilter",
    "redact_secrets",
    "redact_state",
    "setup_logging",
    "timed",
    "timed_section",
]
