"""Reconciliation engine for Yamaha RTX routers."""
from .client import RouterClient
from .errors import (
    ChannelError,
    DeviceRejectedError,
    NotFoundError,
    OperationCancelledError,
    ParseFormatError,
    PersistError,
    ReconcileError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "RouterClient",
    "ChannelError",
    "DeviceRejectedError",
    "NotFoundError",
    "OperationCancelledError",
    "ParseFormatError",
    "PersistError",
    "ReconcileError",
    "ValidationError",
]
