"""Reconciliation service: Get, Reconcile, Synthesize, Execute, Persist.

The service is the only component that sees both directions of data flow.
It holds no session state of its own: the command channel is passed into
every call, and every mutating call re-reads the device first.
"""
import asyncio
import dataclasses
import logging
from typing import Any, Generic, Optional, TypeVar

from ..channel.base import CommandChannel
from ..errors import (
    ChannelError,
    DeviceRejectedError,
    NotFoundError,
    ReconcileError,
)
from ..utils.audit_log import ChangeTracker
from ..utils.logging_config import timed_section
from .domain import Domain
from .executor import ExecutionCoordinator, check_cancelled
from .responses import classify_output
from .schema import BatchResult, ChangeType, CommandPlan, OperationResult

logger = logging.getLogger(__name__)

E = TypeVar("E")


def _state(entity: Any) -> Any:
    """JSON-friendly snapshot of an entity for the audit log."""
    if entity is None:
        return None
    if dataclasses.is_dataclass(entity):
        return dataclasses.asdict(entity)
    return entity


class ReconciliationService(Generic[E]):
    """Create/Get/Update/Delete/List for one domain type."""

    def __init__(
        self,
        domain: Domain[E],
        coordinator: Optional[ExecutionCoordinator] = None,
    ):
        self.domain = domain
        self.coordinator = coordinator or ExecutionCoordinator()

    # === Read path ===

    async def _dump(
        self,
        channel: CommandChannel,
        identity: Optional[Any] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        check_cancelled(cancel, "read")
        command = self.domain.dump_command(identity)
        try:
            output = await channel.run_one(command)
        except ReconcileError:
            raise
        except Exception as e:
            raise ChannelError(f"{channel.device_id}: read failed: {e}") from e

        # Configuration lines are data, whatever words they contain
        reply = "\n".join(
            line for line in output.split("\n")
            if not self.domain.table.starts_command(line.strip())
        )
        classified = classify_output(reply, self.coordinator.extra_error_markers)
        if not classified.ok:
            raise DeviceRejectedError(command, 1, output)
        return output

    async def _read(
        self,
        channel: CommandChannel,
        identity: Any,
        cancel: Optional[asyncio.Event] = None,
    ) -> Optional[E]:
        raw = await self._dump(channel, identity, cancel)
        found = self.domain.parse(raw, identity)
        return found[0] if found else None

    async def get(
        self,
        channel: CommandChannel,
        identity: Any,
        cancel: Optional[asyncio.Event] = None,
    ) -> E:
        """Read one entity from the device.

        Raises:
            NotFoundError: If the device has no such entity
            ParseFormatError: If a line of the dump cannot be decoded
        """
        async with timed_section("get", channel.device_id, domain=self.domain.name):
            entity = await self._read(channel, identity, cancel)
        if entity is None:
            raise NotFoundError(self.domain.name, identity)
        return entity

    async def list(
        self,
        channel: CommandChannel,
        cancel: Optional[asyncio.Event] = None,
    ) -> list[E]:
        """Every entity of this domain, parsed from a single dump."""
        async with timed_section("list", channel.device_id, domain=self.domain.name):
            raw = await self._dump(channel, cancel=cancel)
            entities = self.domain.parse(raw)
        logger.debug(f"{self.domain.name}: {len(entities)} entities on {channel.device_id}")
        return entities

    # === Plans (no commands sent) ===

    def plan_create(self, entity: E) -> CommandPlan:
        """Commands that would create ``entity``.

        Raises:
            ValidationError: Before any command is built
        """
        return CommandPlan(
            main_commands=self.domain.build_create(entity),
            post_commands=[self.coordinator.save_command],
        )

    async def plan_update(
        self,
        channel: CommandChannel,
        desired: E,
        cancel: Optional[asyncio.Event] = None,
    ) -> tuple[E, CommandPlan]:
        """Re-read the current entity and plan the move to ``desired``.

        Returns:
            (current entity, plan). The plan is empty when nothing differs.

        Raises:
            NotFoundError: If the entity does not exist
            ValidationError: If ``desired`` is invalid
        """
        canonical = self.domain.ensure_valid(desired)
        identity = self.domain.identity(canonical)
        current = await self._read(channel, identity, cancel)
        if current is None:
            raise NotFoundError(self.domain.name, identity)

        commands = self.domain.build_update(current, canonical)
        plan = CommandPlan(main_commands=commands)
        if commands:
            plan.post_commands = [self.coordinator.save_command]
        return current, plan

    async def plan_delete(
        self,
        channel: CommandChannel,
        identity: Any,
        cancel: Optional[asyncio.Event] = None,
    ) -> tuple[Optional[E], CommandPlan]:
        """Re-read the entity and plan its removal.

        Returns:
            (current entity or None, plan). An absent entity gives an empty plan.
        """
        current = await self._read(channel, identity, cancel)
        if current is None:
            return None, CommandPlan()
        return current, CommandPlan(
            main_commands=self.domain.build_delete(identity, current),
            post_commands=[self.coordinator.save_command],
        )

    # === Write path ===

    async def _apply(
        self,
        channel: CommandChannel,
        operation: str,
        identity: Any,
        change_type: ChangeType,
        plan: CommandPlan,
        cancel: Optional[asyncio.Event],
        before: Optional[E] = None,
        after: Optional[E] = None,
    ) -> OperationResult:
        """Execute a plan, persist, and write one audit record either way."""
        result = OperationResult(
            domain=self.domain.name,
            operation=operation,
            identity=identity,
            change_type=change_type,
            plan=plan,
        )
        tracker = ChangeTracker(channel.device_id)

        try:
            result.batch = await self.coordinator.execute(channel, plan.main_commands, cancel)
            await self.coordinator.persist(channel, cancel, batch=result.batch)
            result.persisted = True
        except ReconcileError as e:
            batch: Optional[BatchResult] = getattr(e, "batch", None) or result.batch
            tracker.log_change(
                domain=self.domain.name,
                operation=operation,
                identity=identity,
                change_type=change_type.value,
                success=False,
                commands=plan.main_commands,
                results=[r.to_dict() for r in batch.results] if batch else None,
                error=str(e),
                before_state=_state(before),
                after_state=_state(after),
            )
            raise

        tracker.log_change(
            domain=self.domain.name,
            operation=operation,
            identity=identity,
            change_type=change_type.value,
            success=True,
            commands=plan.main_commands,
            results=[r.to_dict() for r in result.batch.results],
            persisted=True,
            before_state=_state(before),
            after_state=_state(after),
        )
        logger.info(
            f"{channel.device_id}: {operation} {self.domain.name} {identity!r} "
            f"({len(plan.main_commands)} commands, saved)"
        )
        return result

    async def create(
        self,
        channel: CommandChannel,
        entity: E,
        cancel: Optional[asyncio.Event] = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """Create an entity and save the configuration.

        Raises:
            ValidationError: Before anything is sent
            DeviceRejectedError: If the device rejected a command
            PersistError: If the commands applied but the save did not
        """
        plan = self.plan_create(entity)
        identity = self.domain.identity(self.domain.canonicalize(entity))
        if dry_run:
            return OperationResult(
                self.domain.name, "create", identity, ChangeType.CREATE, plan, dry_run=True
            )

        check_cancelled(cancel, "session")
        async with timed_section("create", channel.device_id, domain=self.domain.name):
            async with channel.session():
                return await self._apply(
                    channel, "create", identity, ChangeType.CREATE, plan, cancel,
                    after=self.domain.canonicalize(entity),
                )

    async def update(
        self,
        channel: CommandChannel,
        desired: E,
        cancel: Optional[asyncio.Event] = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """Move the device's entity to ``desired`` with minimal commands.

        The current state is always read again first; nothing is sent when
        it already matches.

        Raises:
            NotFoundError: If the entity does not exist
            ValidationError: Before anything is sent
            DeviceRejectedError: If the device rejected a command
            PersistError: If the commands applied but the save did not
        """
        canonical = self.domain.ensure_valid(desired)
        identity = self.domain.identity(canonical)

        check_cancelled(cancel, "session")
        async with timed_section("update", channel.device_id, domain=self.domain.name):
            async with channel.session():
                current, plan = await self.plan_update(channel, canonical, cancel)
                if plan.empty:
                    logger.info(f"{self.domain.name} {identity!r}: already up to date")
                    return OperationResult(
                        self.domain.name, "update", identity, ChangeType.NO_CHANGE, plan,
                        dry_run=dry_run,
                    )
                if dry_run:
                    return OperationResult(
                        self.domain.name, "update", identity, ChangeType.MODIFY, plan, dry_run=True
                    )
                return await self._apply(
                    channel, "update", identity, ChangeType.MODIFY, plan, cancel,
                    before=current, after=canonical,
                )

    async def delete(
        self,
        channel: CommandChannel,
        identity: Any,
        cancel: Optional[asyncio.Event] = None,
        dry_run: bool = False,
    ) -> OperationResult:
        """Delete an entity. Deleting an absent entity succeeds without commands.

        Raises:
            DeviceRejectedError: If the device rejected a command
            PersistError: If the commands applied but the save did not
        """
        key = self.domain.normalize_identity(identity)

        check_cancelled(cancel, "session")
        async with timed_section("delete", channel.device_id, domain=self.domain.name):
            async with channel.session():
                current, plan = await self.plan_delete(channel, key, cancel)
                if current is None:
                    logger.info(f"{self.domain.name} {key!r}: already absent")
                    return OperationResult(
                        self.domain.name, "delete", key, ChangeType.NO_CHANGE, plan,
                        dry_run=dry_run,
                    )
                if dry_run:
                    return OperationResult(
                        self.domain.name, "delete", key, ChangeType.DELETE, plan, dry_run=True
                    )
                return await self._apply(
                    channel, "delete", key, ChangeType.DELETE, plan, cancel, before=current,
                )


class BoundService(Generic[E]):
    """A ReconciliationService bound to one channel session."""

    def __init__(self, service: ReconciliationService[E], channel: CommandChannel):
        self.service = service
        self.channel = channel

    @property
    def domain(self) -> Domain[E]:
        return self.service.domain

    async def get(self, identity: Any, cancel: Optional[asyncio.Event] = None) -> E:
        return await self.service.get(self.channel, identity, cancel)

    async def list(self, cancel: Optional[asyncio.Event] = None) -> list[E]:
        return await self.service.list(self.channel, cancel)

    async def create(
        self, entity: E, cancel: Optional[asyncio.Event] = None, dry_run: bool = False
    ) -> OperationResult:
        return await self.service.create(self.channel, entity, cancel, dry_run)

    async def update(
        self, desired: E, cancel: Optional[asyncio.Event] = None, dry_run: bool = False
    ) -> OperationResult:
        return await self.service.update(self.channel, desired, cancel, dry_run)

    async def delete(
        self, identity: Any, cancel: Optional[asyncio.Event] = None, dry_run: bool = False
    ) -> OperationResult:
        return await self.service.delete(self.channel, identity, cancel, dry_run)
