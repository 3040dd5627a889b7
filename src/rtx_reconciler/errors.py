"""Error taxonomy for the reconciliation engine.

Every error raised by parsers, builders, the coordinator or the channel
derives from ReconcileError so callers can catch the whole family at once,
while each subclass carries the context needed to decide on remediation.
"""
from typing import Any, Optional

from .utils.logging_config import redact_secrets


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""
    pass


class ParseFormatError(ReconcileError):
    """A line matched a known command prefix but failed structural decoding."""

    def __init__(self, domain: str, line: str, reason: str):
        self.domain = domain
        self.line = line
        self.reason = reason
        super().__init__(f"{domain}: cannot parse '{redact_secrets(line)}': {reason}")


class ValidationError(ReconcileError):
    """A desired entity violates a domain constraint."""

    def __init__(self, domain: str, errors: list[str]):
        self.domain = domain
        self.errors = list(errors)
        super().__init__(f"{domain}: " + "; ".join(self.errors))


class ChannelError(ReconcileError):
    """Transport-level failure reaching the device."""
    pass


class DeviceRejectedError(ReconcileError):
    """The device answered one command of a batch with error text.

    Commands before ``index`` stay applied; the device has no rollback.
    The message is redacted; ``command`` and ``output`` keep the raw text.
    """

    def __init__(self, command: str, index: int, output: str, batch: Any = None):
        self.command = command
        self.index = index
        self.output = output
        self.batch = batch
        super().__init__(
            f"command #{index} rejected by device: "
            f"'{redact_secrets(command)}': {redact_secrets(output.strip())}"
        )


class PersistError(ReconcileError):
    """Commands were applied but the configuration was not saved."""

    def __init__(self, message: str, batch: Any = None, output: str = ""):
        self.batch = batch
        self.output = output
        super().__init__(message)


class NotFoundError(ReconcileError):
    """The requested entity does not exist on the device."""

    def __init__(self, domain: str, identity: Any):
        self.domain = domain
        self.identity = identity
        super().__init__(f"{domain} {identity!r} not found")


class OperationCancelledError(ReconcileError):
    """The caller cancelled the operation before a network step."""

    def __init__(self, stage: str, batch: Optional[Any] = None):
        self.stage = stage
        self.batch = batch
        super().__init__(f"operation cancelled before {stage}")
