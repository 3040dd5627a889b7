"""Generic domain engine shared by every configuration domain type.

A domain type plugs into the engine with three tables and a few hooks:

- ``formats()``: ordered format variants used to parse dump text
- ``create_steps()``: ordered (template, fields) pairs that build an entity
- ``validate()``: domain constraints checked before any command is built

Delete commands are derived from the create steps in reverse order, so the
teardown sequence is always the exact mirror of the build sequence.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

from ..errors import ParseFormatError, ValidationError
from .diff import CollectionDiff, sort_token
from .formats import DEFAULT_TERMINAL_WIDTH, FormatTable, LineFormat
from .schema import ValidationResult
from .templates import CommandTemplate

logger = logging.getLogger(__name__)

E = TypeVar("E")
T = TypeVar("T")

Step = tuple[CommandTemplate, dict[str, Any]]


class Domain(ABC, Generic[E]):
    """Parser, validator and synthesizer for one domain type."""

    name: str = ""
    grep_pattern: str = ""
    description: str = ""

    def __init__(self, terminal_width: int = DEFAULT_TERMINAL_WIDTH):
        self.terminal_width = terminal_width
        self.table = FormatTable(self.name, self.formats())

    # --- Tables and hooks ---

    @abstractmethod
    def formats(self) -> list[LineFormat]:
        """Format variants, most specific first."""

    @abstractmethod
    def identity(self, entity: E) -> Hashable:
        """Primary identity of an entity."""

    @abstractmethod
    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[E]:
        """Turn a parse draft into an entity, or None for orphan attribute lines."""

    @abstractmethod
    def validate(self, entity: E) -> ValidationResult:
        """Check domain constraints on a canonical entity."""

    @abstractmethod
    def create_steps(self, entity: E) -> list[Step]:
        """Ordered build steps: declaration, attributes, sub-entries."""

    @abstractmethod
    def update_commands(self, current: E, desired: E) -> list[str]:
        """Commands that move ``current`` to ``desired`` (both canonical)."""

    def canonicalize(self, entity: E) -> E:
        """Return the entity with every field in canonical form."""
        return entity

    def normalize_identity(self, identity: Any) -> Hashable:
        """Coerce a caller-supplied identity to the form ``identity()`` returns."""
        return identity

    def minimal_delete(self, identity: Hashable) -> list[str]:
        """Delete commands when the current entity is not known."""
        raise NotImplementedError(f"{self.name} needs the current entity to delete")

    def dump_command(self, identity: Optional[Hashable] = None) -> str:
        """Filtered configuration dump covering this domain."""
        return f'show config | grep "{self.grep_pattern}"'

    # --- Parser ---

    def parse(self, raw: str, identity: Optional[Any] = None) -> list[E]:
        """Parse dump text into canonical entities sorted by identity.

        Args:
            raw: Output of the dump command, possibly with unrelated lines
            identity: Only return the entity with this identity

        Returns:
            Zero or more entities. Zero means "does not exist", not an error.

        Raises:
            ParseFormatError: If a recognized line cannot be decoded
        """
        wanted = self.normalize_identity(identity) if identity is not None else None
        drafts = self.table.parse(raw, self.terminal_width)

        entities: list[E] = []
        for key, draft in drafts.items():
            if wanted is not None and key != wanted:
                continue
            try:
                entity = self.finalize(key, draft)
                if entity is None:
                    logger.debug(f"{self.name}: skipping attribute lines without declaration for {key!r}")
                    continue
                entities.append(self.canonicalize(entity))
            except (ValueError, KeyError) as e:
                raise ParseFormatError(self.name, str(key), f"incomplete entity: {e}") from e

        return sorted(entities, key=lambda entity: sort_token(self.identity(entity)))

    # --- Synthesizer ---

    def ensure_valid(self, entity: E) -> E:
        """Canonicalize and validate, raising ValidationError on any failure."""
        try:
            canonical = self.canonicalize(entity)
        except ValueError as e:
            raise ValidationError(self.name, [str(e)]) from e

        result = self.validate(canonical)
        for warning in result.warnings:
            logger.warning(f"{self.name} {self.identity(canonical)!r}: {warning}")
        if not result.valid:
            raise ValidationError(self.name, result.errors)
        return canonical

    def build_create(self, entity: E) -> list[str]:
        """Commands that create ``entity`` from nothing.

        Raises:
            ValidationError: Before any command is built
        """
        canonical = self.ensure_valid(entity)
        return [template.render(**fields) for template, fields in self.create_steps(canonical)]

    def build_update(self, current: E, desired: E) -> list[str]:
        """Minimal commands moving the device from ``current`` to ``desired``.

        Raises:
            ValidationError: If ``desired`` is invalid or identities differ
        """
        canonical = self.ensure_valid(desired)
        current = self.canonicalize(current)
        if self.identity(current) != self.identity(canonical):
            raise ValidationError(self.name, [
                f"identity mismatch: {self.identity(current)!r} != {self.identity(canonical)!r}"
            ])
        if current == canonical:
            return []
        return self.update_commands(current, canonical)

    def build_delete(self, identity: Any, current: Optional[E] = None) -> list[str]:
        """Commands that remove an entity, sub-entries before the declaration."""
        if current is None:
            return self.minimal_delete(self.normalize_identity(identity))
        steps = self.create_steps(self.canonicalize(current))
        return [
            template.render_delete(**fields)
            for template, fields in reversed(steps)
            if template.delete != ""
        ]


def split_collection_commands(
    diff: CollectionDiff[T],
    add: Callable[[T], str],
    remove: Callable[[T], str],
    in_place: bool = False,
) -> tuple[list[str], list[str]]:
    """Render a collection diff as (removals, additions).

    Args:
        diff: Result of diff_collection
        add: Renders the command that adds one entry
        remove: Renders the command that removes one entry
        in_place: The device overwrites an entry with the same identity, so
            a replace needs only the add command
    """
    removals = [remove(entry) for entry in diff.to_remove]
    if not in_place:
        removals.extend(remove(old) for old, _ in diff.to_replace)
    additions = [add(new) for _, new in diff.to_replace]
    additions.extend(add(entry) for entry in diff.to_add)
    return removals, additions

