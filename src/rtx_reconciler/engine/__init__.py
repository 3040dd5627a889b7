"""Reconciliation engine.

Parses filtered configuration dumps into entities, diffs them against a
desired state, synthesizes ordered commands and executes them as one batch.
"""
from .diff import CollectionDiff, diff_collection, sort_token
from .domain import Domain
from .executor import ExecutionCoordinator, check_cancelled
from .formats import FormatTable, LineFormat, line_format, unwrap_lines
from .responses import Classified, ResponseKind, classify_output
from .schema import (
    BatchResult,
    ChangeType,
    CommandPlan,
    CommandResult,
    CommandStatus,
    OperationResult,
    ValidationResult,
)
from .service import BoundService, ReconciliationService
from .templates import CommandTemplate

__all__ = [
    "CollectionDiff",
    "diff_collection",
    "sort_token",
    "Domain",
    "ExecutionCoordinator",
    "check_cancelled",
    "FormatTable",
    "LineFormat",
    "line_format",
    "unwrap_lines",
    "Classified",
    "ResponseKind",
    "classify_output",
    "BatchResult",
    "ChangeType",
    "CommandPlan",
    "CommandResult",
    "CommandStatus",
    "OperationResult",
    "ValidationResult",
    "BoundService",
    "ReconciliationService",
    "CommandTemplate",
]
