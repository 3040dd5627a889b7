"""Execution coordinator for applying command batches to a router.

One logical operation is one batch on one session. The device has no
rollback, so a rejected command leaves earlier commands applied and the
remaining ones unsent; the result records all three states.
"""
import asyncio
import logging
from typing import Iterable, Optional

from ..channel.base import CommandChannel
from ..errors import (
    ChannelError,
    DeviceRejectedError,
    OperationCancelledError,
    PersistError,
    ReconcileError,
)
from ..utils.logging_config import redact_secrets
from .responses import Classified, ResponseKind, classify_output
from .schema import BatchResult, CommandResult, CommandStatus

logger = logging.getLogger(__name__)

DEFAULT_SAVE_COMMAND = "save"


def check_cancelled(cancel: Optional[asyncio.Event], stage: str) -> None:
    """Raise OperationCancelledError if the caller has signalled cancellation."""
    if cancel is not None and cancel.is_set():
        logger.info(f"Operation cancelled before {stage}")
        raise OperationCancelledError(stage)


class ExecutionCoordinator:
    """Send command batches, classify device text and persist."""

    def __init__(
        self,
        save_command: str = DEFAULT_SAVE_COMMAND,
        extra_error_markers: Iterable[str] = (),
    ):
        """
        Initialize coordinator.

        Args:
            save_command: Command that writes the running config to flash
            extra_error_markers: Additional line prefixes treated as device errors
        """
        self.save_command = save_command
        self.extra_error_markers = tuple(extra_error_markers)

    def classify(self, command: str, output: str) -> Classified:
        """Classify one command's output.

        Removing something that is already gone is treated as success, so
        that a repeated delete converges instead of failing.
        """
        classified = classify_output(output, self.extra_error_markers)
        if classified.kind == ResponseKind.NOT_FOUND and command.startswith("no "):
            logger.debug(f"Ignoring not-found response to '{redact_secrets(command)}'")
            return Classified(ResponseKind.OK, classified.message)
        return classified

    def _rejected(self, command: str, output: str) -> bool:
        return not self.classify(command, output).ok

    async def execute(
        self,
        channel: CommandChannel,
        commands: list[str],
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Send ``commands`` as one batch.

        Args:
            channel: Open command channel
            commands: Commands in dependency order
            cancel: Optional cancellation signal, checked before sending

        Returns:
            BatchResult with every command APPLIED

        Raises:
            OperationCancelledError: If cancelled before the batch was sent
            DeviceRejectedError: If the device rejected a command. The
                error carries the BatchResult with APPLIED, REJECTED and
                NOT_ATTEMPTED entries.
            ChannelError: If the transport failed
        """
        if not commands:
            return BatchResult()

        check_cancelled(cancel, "batch")
        logger.info(f"Executing {len(commands)} commands on {channel.device_id}")

        try:
            outputs = await channel.run_batch(commands, stop_on=self._rejected)
        except ReconcileError:
            raise
        except Exception as e:
            raise ChannelError(f"{channel.device_id}: batch failed: {e}") from e

        batch = BatchResult()
        failure: Optional[tuple[int, str, str]] = None
        for position, command in enumerate(commands, start=1):
            if position > len(outputs):
                batch.results.append(CommandResult(command, CommandStatus.NOT_ATTEMPTED))
                continue
            output = outputs[position - 1]
            if failure is None and self._rejected(command, output):
                failure = (position, command, output)
                batch.results.append(CommandResult(command, CommandStatus.REJECTED, output))
            elif failure is None:
                batch.results.append(CommandResult(command, CommandStatus.APPLIED, output))
            else:
                # A channel that ignores stop_on still leaves the tail unaccounted for
                batch.results.append(CommandResult(command, CommandStatus.NOT_ATTEMPTED, output))

        if failure is not None:
            position, command, output = failure
            logger.error(
                f"{channel.device_id}: command #{position} rejected: "
                f"'{redact_secrets(command)}': {redact_secrets(output.strip())}"
            )
            raise DeviceRejectedError(redact_secrets(command), position, output, batch=batch)

        if len(outputs) < len(commands):
            raise ChannelError(
                f"{channel.device_id}: batch stopped after {len(outputs)} of {len(commands)} commands"
            )

        return batch

    async def persist(
        self,
        channel: CommandChannel,
        cancel: Optional[asyncio.Event] = None,
        batch: Optional[BatchResult] = None,
    ) -> str:
        """Write the running configuration to non-volatile storage.

        Returns:
            Raw output of the save command

        Raises:
            PersistError: If cancelled, rejected or the transport failed.
                Applied commands stay applied in every case.
        """
        try:
            check_cancelled(cancel, "persist")
            output = await channel.run_one(self.save_command)
        except OperationCancelledError as e:
            raise PersistError("changes applied but not saved: cancelled", batch=batch) from e
        except Exception as e:
            raise PersistError(f"changes applied but not saved: {e}", batch=batch) from e

        classified = classify_output(output, self.extra_error_markers)
        if not classified.ok:
            logger.error(f"{channel.device_id}: save failed: {classified.message}")
            raise PersistError(
                f"changes applied but not saved: {classified.message}",
                batch=batch,
                output=output,
            )

        logger.info(f"{channel.device_id}: configuration saved")
        return output
