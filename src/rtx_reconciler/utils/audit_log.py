"""Audit logging for configuration changes.

Every mutating operation produces one JSON line on the
``rtx_reconciler.audit`` logger with:
- Timestamp, device and domain
- The entity identity and change type
- The commands sent (credentials redacted) and their status
- Before/after state where available (credential fields redacted)
"""
import json
import logging
import os
from datetime import datetime, timezone
from dataclasses import dataclass, asdict, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from .logging_config import SecretRedactingFilter, redact_secrets, redact_state

audit_logger = logging.getLogger("rtx_reconciler.audit")
audit_logger.addHandler(logging.NullHandler())

DEFAULT_AUDIT_DIR = "~/.rtx-reconciler"


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.rtx-reconciler/

    Returns:
        Path of the audit log file
    """
    log_dir = os.path.expanduser(log_dir or DEFAULT_AUDIT_DIR)
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = Path(log_dir) / "audit.log"

    audit_logger.setLevel(logging.INFO)
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    # One JSON document per line
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(SecretRedactingFilter())
    audit_logger.addHandler(handler)
    audit_logger.propagate = False
    return audit_file


@dataclass
class ChangeRecord:
    """Record of a configuration change."""
    timestamp: str
    device_id: str
    domain: str
    operation: str  # create, update, delete, save
    identity: str
    change_type: str
    dry_run: bool
    success: bool
    commands: list = field(default_factory=list)
    results: list = field(default_factory=list)
    before_state: Optional[Any] = None
    after_state: Optional[Any] = None
    persisted: bool = False
    error: Optional[str] = None

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "ChangeRecord":
        """Parse from JSON string."""
        return cls(**json.loads(json_str))


class ChangeTracker:
    """Track and log configuration changes for one device."""

    def __init__(self, device_id: str):
        self.device_id = device_id

    def log_change(
        self,
        domain: str,
        operation: str,
        identity: Any,
        change_type: str,
        success: bool,
        commands: Optional[list[str]] = None,
        results: Optional[list[dict]] = None,
        dry_run: bool = False,
        persisted: bool = False,
        error: Optional[str] = None,
        before_state: Optional[Any] = None,
        after_state: Optional[Any] = None,
    ) -> ChangeRecord:
        """Log a configuration change.

        Args:
            domain: Configuration domain (e.g., "dhcp_scope")
            operation: The operation performed (e.g., "update")
            identity: Identity of the entity that was changed
            change_type: create, modify, delete or no_change
            success: Whether the operation succeeded
            commands: Commands planned or sent
            results: Per-command results as dicts
            dry_run: Whether this was a dry run (nothing sent)
            persisted: Whether the configuration was saved
            error: Error message if failed
            before_state: State before the change
            after_state: State after the change

        Returns:
            The ChangeRecord that was logged
        """
        record = ChangeRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            device_id=self.device_id,
            domain=domain,
            operation=operation,
            identity=str(identity),
            change_type=change_type,
            dry_run=dry_run,
            success=success,
            commands=[redact_secrets(c) for c in commands or []],
            results=[
                {**r, "command": redact_secrets(r.get("command", "")),
                 "output": redact_secrets(r.get("output", ""))[:1000]}
                for r in results or []
            ],
            before_state=redact_state(before_state),
            after_state=redact_state(after_state),
            persisted=persisted,
            error=redact_secrets(error) if error else None,
        )

        audit_logger.info(record.to_json())
        return record


def get_recent_changes(
    log_file: Optional[str] = None,
    device_id: Optional[str] = None,
    domain: Optional[str] = None,
    limit: int = 100,
) -> list[ChangeRecord]:
    """Read recent changes from audit log.

    Args:
        log_file: Path to audit log. Defaults to ~/.rtx-reconciler/audit.log
        device_id: Filter by device ID
        domain: Filter by configuration domain
        limit: Maximum number of records to return

    Returns:
        List of ChangeRecords, most recent first
    """
    if log_file is None:
        log_file = os.path.expanduser(f"{DEFAULT_AUDIT_DIR}/audit.log")

    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = ChangeRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # Skip malformed lines

            if device_id and record.device_id != device_id:
                continue
            if domain and record.domain != domain:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
