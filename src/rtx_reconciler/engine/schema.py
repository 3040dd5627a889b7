"""Result and plan dataclasses shared by the reconciliation engine."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ChangeType(str, Enum):
    """Type of change an operation makes to an entity."""
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    NO_CHANGE = "no_change"


class CommandStatus(str, Enum):
    """Outcome of one command in a batch."""
    APPLIED = "applied"
    REJECTED = "rejected"
    NOT_ATTEMPTED = "not_attempted"


# --- Validation Results ---

@dataclass
class ValidationResult:
    """Result of entity validation."""
    valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.valid = False

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def merge(self, other: "ValidationResult", prefix: str = "") -> None:
        for message in other.errors:
            self.error(f"{prefix}{message}")
        for message in other.warnings:
            self.warn(f"{prefix}{message}")


# --- Command Plan ---

@dataclass
class CommandPlan:
    """Commands for one logical operation.

    ``main_commands`` are sent as one batch; ``post_commands`` hold the
    persist command that runs only after the whole batch succeeded.
    """
    main_commands: list[str] = field(default_factory=list)
    post_commands: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.main_commands


# --- Execution Results ---

@dataclass
class CommandResult:
    """One command of a batch with its raw device text."""
    command: str
    status: CommandStatus
    output: str = ""

    def to_dict(self) -> dict:
        return {
            "command": self.command,
            "status": self.status.value,
            "output": self.output,
        }


@dataclass
class BatchResult:
    """Per-command outcome of a batch, in submission order."""
    results: list[CommandResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.status == CommandStatus.APPLIED for r in self.results)

    @property
    def failed_index(self) -> Optional[int]:
        """1-based position of the rejected command, if any."""
        for position, result in enumerate(self.results, start=1):
            if result.status == CommandStatus.REJECTED:
                return position
        return None

    @property
    def applied(self) -> list[str]:
        return [r.command for r in self.results if r.status == CommandStatus.APPLIED]

    @property
    def not_attempted(self) -> list[str]:
        return [r.command for r in self.results if r.status == CommandStatus.NOT_ATTEMPTED]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "failed_index": self.failed_index,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class OperationResult:
    """Result of one Reconciliation Service call."""
    domain: str
    operation: str
    identity: Any
    change_type: ChangeType
    plan: CommandPlan = field(default_factory=CommandPlan)
    batch: Optional[BatchResult] = None
    persisted: bool = False
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return self.change_type != ChangeType.NO_CHANGE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "domain": self.domain,
            "operation": self.operation,
            "identity": self.identity,
            "change_type": self.change_type.value,
            "commands": self.plan.main_commands,
            "post_commands": self.plan.post_commands,
            "batch": self.batch.to_dict() if self.batch else None,
            "persisted": self.persisted,
            "dry_run": self.dry_run,
        }
