"""Differential reconciler for sub-entry collections.

Computes the minimal add/remove/replace sets between the collection parsed
from the device and the desired one, keyed by a per-domain identity so that
unrelated entries are never touched. Output order is a stable sort over
identity keys, which keeps repeated runs byte-identical.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Callable, Generic, Hashable, Iterable, Optional, TypeVar

from .normalize import address_key, is_ipv4

logger = logging.getLogger(__name__)

T = TypeVar("T")


def sort_token(value: Any) -> tuple:
    """Build a totally ordered token for an identity key.

    IPv4 addresses sort numerically, integers before strings, and tuples or
    dataclasses element-wise, so keys of mixed shape still sort deterministically.
    """
    if value is None:
        return (0,)
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (bool, int)):
        return (1, int(value))
    if isinstance(value, str):
        if is_ipv4(value):
            return (2, address_key(value))
        return (3, value)
    if is_dataclass(value) and not isinstance(value, type):
        return (4, tuple(sort_token(getattr(value, f.name)) for f in fields(value)))
    if isinstance(value, (tuple, list)):
        return (4, tuple(sort_token(v) for v in value))
    return (5, repr(value))


@dataclass
class CollectionDiff(Generic[T]):
    """Changes needed to turn one collection into another."""
    to_add: list[T] = field(default_factory=list)
    to_remove: list[T] = field(default_factory=list)
    to_replace: list[tuple[T, T]] = field(default_factory=list)
    # identity key -> multiplicity, for keys repeated on either side
    duplicates: dict[Any, int] = field(default_factory=dict)

    @property
    def no_change(self) -> bool:
        return not (self.to_add or self.to_remove or self.to_replace)

    @property
    def total_changes(self) -> int:
        return len(self.to_add) + len(self.to_remove) + len(self.to_replace)


def _index(
    entries: Iterable[T],
    key: Callable[[T], Hashable],
    side: str,
    duplicates: dict[Any, int],
) -> dict[Hashable, T]:
    indexed: dict[Hashable, T] = {}
    counts: Counter = Counter()
    for entry in entries:
        k = key(entry)
        counts[k] += 1
        if k in indexed and indexed[k] != entry:
            raise ValueError(f"conflicting {side} entries share identity {k!r}")
        indexed[k] = entry
    for k, count in counts.items():
        if count > 1:
            duplicates[k] = max(duplicates.get(k, 0), count)
            logger.warning(f"{side} collection repeats entry {k!r} {count} times")
    return indexed


def diff_collection(
    current: Iterable[T],
    desired: Iterable[T],
    key: Optional[Callable[[T], Hashable]] = None,
) -> CollectionDiff[T]:
    """Diff two sub-entry collections.

    Args:
        current: Entries parsed from the device
        desired: Entries the caller wants
        key: Identity function. When omitted the whole value is the identity,
            for collections the device keeps without any index.

    Returns:
        CollectionDiff sorted by identity. Repeated identities are reported in
        ``duplicates`` and otherwise handled as one logical entry.

    Raises:
        ValueError: If one side holds two different entries with the same identity
    """
    identity = key or (lambda entry: entry)
    result: CollectionDiff[T] = CollectionDiff()

    current_map = _index(current, identity, "current", result.duplicates)
    desired_map = _index(desired, identity, "desired", result.duplicates)

    for k in sorted(desired_map, key=sort_token):
        if k not in current_map:
            result.to_add.append(desired_map[k])
        elif current_map[k] != desired_map[k]:
            result.to_replace.append((current_map[k], desired_map[k]))

    for k in sorted(current_map, key=sort_token):
        if k not in desired_map:
            result.to_remove.append(current_map[k])

    return result


def summarize_diff(diff: CollectionDiff, label: str = "entry") -> str:
    """Create a human-readable summary of a collection diff."""
    if diff.no_change:
        return f"No {label} changes"

    lines = [f"{label} changes ({diff.total_changes} total):"]
    for entry in diff.to_add:
        lines.append(f"  [+] {entry}")
    for entry in diff.to_remove:
        lines.append(f"  [-] {entry}")
    for old, new in diff.to_replace:
        lines.append(f"  [~] {old} -> {new}")
    for k, count in diff.duplicates.items():
        lines.append(f"  [!] {k} appears {count} times")
    return "\n".join(lines)
