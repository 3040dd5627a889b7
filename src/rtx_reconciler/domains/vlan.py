"""802.1Q VLAN sub-interface domain.

Command reference:
- vlan lanN/M 802.1q vid=<vid>
- ip lanN/M address <ip>/<len>        (older firmware: <ip> <mask>)
- description lanN/M <text>

The ``lanN/M`` token is a composite identity: physical interface plus slot.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Hashable, Optional

from ..engine.domain import Domain, Step
from ..engine.formats import LineFormat, ParseDrafts, line_format
from ..engine.normalize import (
    normalize_ipv4,
    prefix_from_mask,
    quote_if_needed,
    split_interface_slot,
    unquote,
)
from ..engine.schema import ValidationResult
from ..engine.templates import CommandTemplate

logger = logging.getLogger(__name__)

VID_MIN = 2
VID_MAX = 4094
SLOT_MAX = 32
DESCRIPTION_MAX = 64

DECLARE = CommandTemplate(
    "vlan {name} 802.1q vid={vlan_id}",
    identity="vlan {name}",
)
ADDRESS = CommandTemplate(
    "ip {name} address {address}/{prefix}",
    identity="ip {name} address",
)
DESCRIPTION = CommandTemplate(
    "description {name} {text}",
    identity="description {name}",
)

_INTERFACE = re.compile(r"^lan\d+$")


@dataclass(frozen=True)
class Vlan:
    """A tagged sub-interface on a LAN port."""
    interface: str
    slot: int
    vlan_id: int
    ip_address: Optional[str] = None
    prefix: Optional[int] = None
    description: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.interface}/{self.slot}"


def _extract_declaration(match: re.Match, drafts: ParseDrafts) -> None:
    draft = drafts.draft(split_interface_slot(match.group("name")))
    draft["vlan_id"] = int(match.group("vid"))


def _extract_address(match: re.Match, drafts: ParseDrafts) -> None:
    draft = drafts.draft(split_interface_slot(match.group("name")))
    draft["ip_address"] = normalize_ipv4(match.group("address"))
    groups = match.groupdict()
    draft["prefix"] = prefix_from_mask(groups.get("prefix") or groups["mask"])


def _extract_description(match: re.Match, drafts: ParseDrafts) -> None:
    draft = drafts.draft(split_interface_slot(match.group("name")))
    draft["description"] = unquote(match.group("text"))


_NAME = r"(?P<name>lan\d+/\d+)"

FORMATS = [
    line_format(
        "declaration",
        r"^vlan\s+lan\d+/\d+\s",
        rf"^vlan\s+{_NAME}\s+802\.1q\s+vid=(?P<vid>\d+)(?:\s+\S+)*\s*$",
        _extract_declaration,
    ),
    line_format(
        "address",
        r"^ip\s+lan\d+/\d+\s+address\s+\d",
        rf"^ip\s+{_NAME}\s+address\s+(?P<address>[\d.]+)/(?P<prefix>[\d.]+)\s*$",
        _extract_address,
    ),
    line_format(
        "address",
        r"^ip\s+lan\d+/\d+\s+address\s+\d",
        rf"^ip\s+{_NAME}\s+address\s+(?P<address>[\d.]+)\s+(?P<mask>[\d.]+)\s*$",
        _extract_address,
        variant="legacy",
    ),
    line_format(
        "description",
        r"^description\s+lan\d+/\d+\s",
        rf"^description\s+{_NAME}\s+(?P<text>.*?)\s*$",
        _extract_description,
    ),
]


class VlanDomain(Domain[Vlan]):
    """VLAN sub-interfaces keyed by (interface, slot)."""

    name = "vlan"
    grep_pattern = "lan[0-9]*/[0-9]"
    description = "VLAN sub-interface"

    def formats(self) -> list[LineFormat]:
        return FORMATS

    def identity(self, entity: Vlan) -> Hashable:
        return (entity.interface, entity.slot)

    def normalize_identity(self, identity: Any) -> Hashable:
        if isinstance(identity, str):
            return split_interface_slot(identity)
        interface, slot = identity
        return (str(interface).lower(), int(slot))

    def dump_command(self, identity: Optional[Hashable] = None) -> str:
        if identity is None:
            return super().dump_command()
        interface, slot = self.normalize_identity(identity)
        return f'show config | grep "{interface}/{slot} "'

    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[Vlan]:
        # Address or description lines without a vlan declaration
        if "vlan_id" not in draft:
            return None
        interface, slot = key
        return Vlan(
            interface=interface,
            slot=slot,
            vlan_id=draft["vlan_id"],
            ip_address=draft.get("ip_address"),
            prefix=draft.get("prefix"),
            description=draft.get("description"),
        )

    def canonicalize(self, entity: Vlan) -> Vlan:
        return replace(
            entity,
            interface=entity.interface.strip().lower(),
            slot=int(entity.slot),
            vlan_id=int(entity.vlan_id),
            ip_address=normalize_ipv4(entity.ip_address) if entity.ip_address is not None else None,
            prefix=prefix_from_mask(str(entity.prefix)) if entity.prefix is not None else None,
        )

    def validate(self, entity: Vlan) -> ValidationResult:
        result = ValidationResult()

        if not _INTERFACE.match(entity.interface):
            result.error(f"interface must look like lanN, got '{entity.interface}'")
        if not 1 <= entity.slot <= SLOT_MAX:
            result.error(f"slot must be 1-{SLOT_MAX}, got {entity.slot}")
        if not VID_MIN <= entity.vlan_id <= VID_MAX:
            result.error(f"VLAN id must be {VID_MIN}-{VID_MAX}, got {entity.vlan_id}")

        if (entity.ip_address is None) != (entity.prefix is None):
            result.error("ip_address and prefix must be set together")
        elif entity.prefix is not None and not 1 <= entity.prefix <= 32:
            result.error(f"prefix length must be 1-32, got {entity.prefix}")

        if entity.description is not None and len(entity.description) > DESCRIPTION_MAX:
            result.error(f"description longer than {DESCRIPTION_MAX} characters")
        return result

    def create_steps(self, entity: Vlan) -> list[Step]:
        name = entity.name
        steps: list[Step] = [(DECLARE, {"name": name, "vlan_id": entity.vlan_id})]
        if entity.ip_address is not None:
            steps.append((ADDRESS, {
                "name": name, "address": entity.ip_address, "prefix": entity.prefix,
            }))
        if entity.description is not None:
            steps.append((DESCRIPTION, {"name": name, "text": quote_if_needed(entity.description)}))
        return steps

    def update_commands(self, current: Vlan, desired: Vlan) -> list[str]:
        name = desired.name
        commands = []
        if current.vlan_id != desired.vlan_id:
            commands.append(DECLARE.render(name=name, vlan_id=desired.vlan_id))

        if (current.ip_address, current.prefix) != (desired.ip_address, desired.prefix):
            if desired.ip_address is None:
                commands.append(ADDRESS.render_delete(name=name))
            else:
                commands.append(ADDRESS.render(
                    name=name, address=desired.ip_address, prefix=desired.prefix,
                ))

        if current.description != desired.description:
            if desired.description is None:
                commands.append(DESCRIPTION.render_delete(name=name))
            else:
                commands.append(DESCRIPTION.render(
                    name=name, text=quote_if_needed(desired.description),
                ))
        return commands

    def minimal_delete(self, identity: Hashable) -> list[str]:
        interface, slot = identity
        return [DECLARE.render_delete(name=f"{interface}/{slot}")]
