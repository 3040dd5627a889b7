"""Interface filter list domain.

Command reference:
- ip <iface> secure filter <in|out> <n> ... [dynamic <n> ...]

The filter list is ordered: the router evaluates filters left to right, so
the list is never sorted and any change rewrites the whole line.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Hashable, Optional

from ..engine.domain import Domain, Step
from ..engine.formats import LineFormat, ParseDrafts, line_format
from ..engine.normalize import normalize_interface
from ..engine.schema import ValidationResult
from ..engine.templates import CommandTemplate

logger = logging.getLogger(__name__)

DIRECTIONS = ("in", "out")
FILTER_MAX = 2147483647

SECURE_FILTER = CommandTemplate(
    "ip {interface} secure filter {direction} {filters} {dynamic}",
    identity="ip {interface} secure filter {direction}",
)


@dataclass(frozen=True)
class InterfaceFilter:
    """Ordered filter list applied to one interface direction."""
    interface: str
    direction: str
    filters: tuple[int, ...] = ()
    dynamic_filters: tuple[int, ...] = ()


def _numbers(text: Optional[str]) -> list[int]:
    return [int(n) for n in (text or "").split()]


def _extract_list(match: re.Match, drafts: ParseDrafts) -> None:
    key = (normalize_interface(match.group("interface")), match.group("direction").lower())
    draft = drafts.draft(key)
    draft["filters"] = tuple(_numbers(match.group("filters")))
    draft["dynamic_filters"] = tuple(_numbers(match.group("dynamic")))


# "ip pp secure filter" and "ip tunnel secure filter" take their number from a
# preceding "pp select" or "tunnel select" line and are not read
_INTERFACE = r"(?:(?:pp|tunnel)\s+\d+|(?!(?:pp|tunnel)\s)\S+(?:\s+\d+)?)"

FORMATS = [
    line_format(
        "secure filter",
        rf"^ip\s+{_INTERFACE}\s+secure\s+filter\s",
        rf"^ip\s+(?P<interface>{_INTERFACE})\s+secure\s+filter\s+(?P<direction>in|out)"
        r"(?:\s+(?P<filters>\d+(?:\s+\d+)*))?(?:\s+dynamic\s+(?P<dynamic>\d+(?:\s+\d+)*))?\s*$",
        _extract_list,
    ),
]


class InterfaceFilterDomain(Domain[InterfaceFilter]):
    """Secure filter lists keyed by (interface, direction)."""

    name = "interface_filter"
    grep_pattern = "secure filter"
    description = "interface filter list"

    def formats(self) -> list[LineFormat]:
        return FORMATS

    def identity(self, entity: InterfaceFilter) -> Hashable:
        return (entity.interface, entity.direction)

    def normalize_identity(self, identity: Any) -> Hashable:
        if isinstance(identity, str):
            interface, _, direction = identity.strip().rpartition(" ")
        else:
            interface, direction = identity
        return (normalize_interface(interface), direction.strip().lower())

    def dump_command(self, identity: Optional[Hashable] = None) -> str:
        if identity is None:
            return super().dump_command()
        interface, direction = self.normalize_identity(identity)
        return f'show config | grep "ip {interface} secure filter {direction}"'

    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[InterfaceFilter]:
        interface, direction = key
        return InterfaceFilter(interface=interface, direction=direction, **draft)

    def canonicalize(self, entity: InterfaceFilter) -> InterfaceFilter:
        return replace(
            entity,
            interface=normalize_interface(entity.interface),
            direction=entity.direction.strip().lower(),
            filters=tuple(int(n) for n in entity.filters),
            dynamic_filters=tuple(int(n) for n in entity.dynamic_filters),
        )

    def validate(self, entity: InterfaceFilter) -> ValidationResult:
        result = ValidationResult()

        if not entity.interface or " secure" in entity.interface:
            result.error("interface name is required")
        elif entity.interface in ("pp", "tunnel"):
            result.error(f"{entity.interface} interface needs a number, e.g. '{entity.interface} 1'")
        if entity.direction not in DIRECTIONS:
            result.error(f"direction must be in or out, got '{entity.direction}'")
        if not entity.filters and not entity.dynamic_filters:
            result.error("at least one filter number is required")

        for label, numbers in (("filter", entity.filters), ("dynamic filter", entity.dynamic_filters)):
            if len(set(numbers)) != len(numbers):
                result.error(f"{label} list repeats a number")
            for number in numbers:
                if not 1 <= number <= FILTER_MAX:
                    result.error(f"{label} number out of range: {number}")
        return result

    def _fields(self, entity: InterfaceFilter) -> dict[str, Any]:
        dynamic = ""
        if entity.dynamic_filters:
            dynamic = "dynamic " + " ".join(str(n) for n in entity.dynamic_filters)
        return {
            "interface": entity.interface,
            "direction": entity.direction,
            "filters": " ".join(str(n) for n in entity.filters),
            "dynamic": dynamic,
        }

    def create_steps(self, entity: InterfaceFilter) -> list[Step]:
        return [(SECURE_FILTER, self._fields(entity))]

    def update_commands(self, current: InterfaceFilter, desired: InterfaceFilter) -> list[str]:
        return [SECURE_FILTER.render(**self._fields(desired))]

    def minimal_delete(self, identity: Hashable) -> list[str]:
        interface, direction = identity
        return [SECURE_FILTER.render_delete(interface=interface, direction=direction)]
