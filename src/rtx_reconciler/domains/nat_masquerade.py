"""NAT masquerade (IP masquerade / NAPT) descriptor domain.

Command reference:
- nat descriptor type <id> masquerade
- nat descriptor address outer <id> <ipcp|primary|secondary|<ip>|<ip>-<ip>>
- nat descriptor address inner <id> <auto|<ip>-<ip>|<ip>/<len>>
- nat descriptor masquerade static <id> <entry> <inner-ip> <protocol> [[<outer-port>=]<inner-port>]

Older firmware printed static entries as
``<outer-ip>:<port>=<inner-ip>:<port> [protocol]``; that form is still parsed.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Hashable, Optional

from ..engine.diff import diff_collection
from ..engine.domain import Domain, Step, split_collection_commands
from ..engine.formats import LineFormat, ParseDrafts, line_format
from ..engine.normalize import (
    normalize_ipv4,
    normalize_network,
    normalize_protocol,
    split_range,
)
from ..engine.schema import ValidationResult
from ..engine.templates import CommandTemplate

logger = logging.getLogger(__name__)

DESCRIPTOR_ID_MAX = 2147483647
PORT_MIN = 1
PORT_MAX = 65535

# Outer address tokens resolved by the router itself
OUTER_SENTINELS = {"ipcp", "primary", "secondary"}
INNER_SENTINELS = {"auto"}

PORT_PROTOCOLS = {"tcp", "udp"}
PROTOCOL_ONLY = {"esp", "ah", "gre", "icmp"}

TYPE = CommandTemplate(
    "nat descriptor type {descriptor_id} masquerade",
    identity="nat descriptor type {descriptor_id}",
)
OUTER = CommandTemplate(
    "nat descriptor address outer {descriptor_id} {address}",
    identity="nat descriptor address outer {descriptor_id}",
)
INNER = CommandTemplate(
    "nat descriptor address inner {descriptor_id} {address}",
    identity="nat descriptor address inner {descriptor_id}",
)
STATIC = CommandTemplate(
    "nat descriptor masquerade static {descriptor_id} {entry} {ip} {protocol} {ports}",
    identity="nat descriptor masquerade static {descriptor_id} {entry}",
)


@dataclass(frozen=True)
class MasqueradeStaticEntry:
    """Static port mapping through the masquerade descriptor."""
    entry_number: int
    inside_local: str
    protocol: str
    outside_port: Optional[int] = None
    inside_port: Optional[int] = None

    @property
    def has_ports(self) -> bool:
        return self.outside_port is not None or self.inside_port is not None


@dataclass(frozen=True)
class NatMasquerade:
    """A masquerade NAT descriptor."""
    descriptor_id: int
    outer_address: Optional[str] = None
    inner_network: Optional[str] = None
    static_entries: tuple[MasqueradeStaticEntry, ...] = ()


# --- Extractors ---

def _extract_type(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.draft(int(match.group("id")))["declared"] = True


def _extract_outer(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.draft(int(match.group("id")))["outer"] = match.group("address")


def _extract_inner(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.draft(int(match.group("id")))["inner"] = match.group("address")


def _extract_static(match: re.Match, drafts: ParseDrafts) -> None:
    inner = match.group("inner")
    outer = match.group("outer") or inner
    drafts.append(int(match.group("id")), "statics", MasqueradeStaticEntry(
        entry_number=int(match.group("entry")),
        inside_local=normalize_ipv4(match.group("ip")),
        protocol=normalize_protocol(match.group("protocol")),
        outside_port=int(outer) if outer else None,
        inside_port=int(inner) if inner else None,
    ))


def _extract_legacy_static(match: re.Match, drafts: ParseDrafts) -> None:
    # The outer address is owned by the descriptor, only checked here
    normalize_ipv4(match.group("outer_ip"))
    drafts.append(int(match.group("id")), "statics", MasqueradeStaticEntry(
        entry_number=int(match.group("entry")),
        inside_local=normalize_ipv4(match.group("ip")),
        protocol=normalize_protocol(match.group("protocol") or "tcp"),
        outside_port=int(match.group("outer")),
        inside_port=int(match.group("inner")),
    ))


_STATIC_PREFIX = r"^nat\s+descriptor\s+masquerade\s+static\s"

FORMATS = [
    line_format(
        "type",
        r"^nat\s+descriptor\s+type\s+\d+\s+masquerade\b",
        r"^nat\s+descriptor\s+type\s+(?P<id>\d+)\s+masquerade\s*$",
        _extract_type,
    ),
    line_format(
        "outer address",
        r"^nat\s+descriptor\s+address\s+outer\s",
        r"^nat\s+descriptor\s+address\s+outer\s+(?P<id>\d+)\s+(?P<address>\S+)\s*$",
        _extract_outer,
    ),
    line_format(
        "inner address",
        r"^nat\s+descriptor\s+address\s+inner\s",
        r"^nat\s+descriptor\s+address\s+inner\s+(?P<id>\d+)\s+(?P<address>\S+)\s*$",
        _extract_inner,
    ),
    line_format(
        "static entry",
        _STATIC_PREFIX,
        r"^nat\s+descriptor\s+masquerade\s+static\s+(?P<id>\d+)\s+(?P<entry>\d+)\s+"
        r"(?P<ip>[\d.]+)\s+(?P<protocol>[a-z0-9]+)"
        r"(?:\s+(?:(?P<outer>\d+)=)?(?P<inner>\d+))?\s*$",
        _extract_static,
    ),
    line_format(
        "static entry",
        _STATIC_PREFIX,
        r"^nat\s+descriptor\s+masquerade\s+static\s+(?P<id>\d+)\s+(?P<entry>\d+)\s+"
        r"(?P<outer_ip>[^:\s]+):(?P<outer>\d+)=(?P<ip>[^:\s]+):(?P<inner>\d+)"
        r"(?:\s+(?P<protocol>[a-z0-9]+))?\s*$",
        _extract_legacy_static,
        variant="legacy",
    ),
]


def canonical_outer(address: str) -> str:
    value = address.strip().lower()
    if value in OUTER_SENTINELS:
        return value
    if "-" in value:
        return "-".join(split_range(value))
    return normalize_ipv4(value)


def canonical_inner(address: str) -> str:
    value = address.strip().lower()
    if value in INNER_SENTINELS:
        return value
    if "/" in value:
        return normalize_network(value)
    return "-".join(split_range(value))


class NatMasqueradeDomain(Domain[NatMasquerade]):
    """Masquerade descriptors with static port mappings."""

    name = "nat_masquerade"
    grep_pattern = "nat descriptor"
    description = "NAT masquerade descriptor"

    def formats(self) -> list[LineFormat]:
        return FORMATS

    def identity(self, entity: NatMasquerade) -> Hashable:
        return entity.descriptor_id

    def normalize_identity(self, identity: Any) -> Hashable:
        return int(identity)

    def dump_command(self, identity: Optional[Hashable] = None) -> str:
        if identity is None:
            return super().dump_command()
        return f'show config | grep "nat descriptor.* {identity}"'

    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[NatMasquerade]:
        # Outer/inner lines also exist for descriptors of other types
        if not draft.get("declared"):
            return None
        return NatMasquerade(
            descriptor_id=key,
            outer_address=draft.get("outer"),
            inner_network=draft.get("inner"),
            static_entries=tuple(draft.get("statics", [])),
        )

    def canonicalize(self, entity: NatMasquerade) -> NatMasquerade:
        entries = []
        for entry in entity.static_entries:
            outside, inside = entry.outside_port, entry.inside_port
            if outside is None:
                outside = inside
            if inside is None:
                inside = outside
            entries.append(MasqueradeStaticEntry(
                entry_number=int(entry.entry_number),
                inside_local=normalize_ipv4(entry.inside_local),
                protocol=normalize_protocol(entry.protocol or ""),
                outside_port=int(outside) if outside is not None else None,
                inside_port=int(inside) if inside is not None else None,
            ))
        entries.sort(key=lambda e: e.entry_number)

        return replace(
            entity,
            descriptor_id=int(entity.descriptor_id),
            outer_address=(
                canonical_outer(entity.outer_address) if entity.outer_address is not None else None
            ),
            inner_network=(
                canonical_inner(entity.inner_network) if entity.inner_network is not None else None
            ),
            static_entries=tuple(entries),
        )

    def validate(self, entity: NatMasquerade) -> ValidationResult:
        result = ValidationResult()

        if not 1 <= entity.descriptor_id <= DESCRIPTOR_ID_MAX:
            result.error(f"descriptor id must be 1-{DESCRIPTOR_ID_MAX}, got {entity.descriptor_id}")

        seen: dict[int, MasqueradeStaticEntry] = {}
        for entry in entity.static_entries:
            label = f"static entry {entry.entry_number}"
            if entry.entry_number < 1:
                result.error(f"{label}: entry number must be positive")
            previous = seen.setdefault(entry.entry_number, entry)
            if previous != entry:
                result.error(f"{label}: defined twice with different values")
            result.merge(validate_mapping(entry.protocol, entry.outside_port, entry.inside_port), f"{label}: ")

        if entity.static_entries and entity.inner_network in (None, "auto"):
            result.warn("static entries without an explicit inner network")
        return result

    # --- Synthesizer ---

    def _static_fields(self, descriptor_id: int, entry: MasqueradeStaticEntry) -> dict[str, Any]:
        if not entry.has_ports:
            ports = ""
        elif entry.outside_port == entry.inside_port:
            ports = str(entry.inside_port)
        else:
            ports = f"{entry.outside_port}={entry.inside_port}"
        return {
            "descriptor_id": descriptor_id,
            "entry": entry.entry_number,
            "ip": entry.inside_local,
            "protocol": entry.protocol,
            "ports": ports,
        }

    def create_steps(self, entity: NatMasquerade) -> list[Step]:
        descriptor_id = entity.descriptor_id
        steps: list[Step] = [(TYPE, {"descriptor_id": descriptor_id})]
        if entity.outer_address is not None:
            steps.append((OUTER, {"descriptor_id": descriptor_id, "address": entity.outer_address}))
        if entity.inner_network is not None:
            steps.append((INNER, {"descriptor_id": descriptor_id, "address": entity.inner_network}))
        for entry in entity.static_entries:
            steps.append((STATIC, self._static_fields(descriptor_id, entry)))
        return steps

    def update_commands(self, current: NatMasquerade, desired: NatMasquerade) -> list[str]:
        descriptor_id = desired.descriptor_id
        statics = diff_collection(
            current.static_entries, desired.static_entries, key=lambda e: e.entry_number
        )
        removals, additions = split_collection_commands(
            statics,
            add=lambda e: STATIC.render(**self._static_fields(descriptor_id, e)),
            remove=lambda e: STATIC.render_delete(**self._static_fields(descriptor_id, e)),
        )

        commands = list(removals)
        for template, old, new in (
            (OUTER, current.outer_address, desired.outer_address),
            (INNER, current.inner_network, desired.inner_network),
        ):
            if old == new:
                continue
            if new is None:
                commands.append(template.render_delete(descriptor_id=descriptor_id))
            else:
                commands.append(template.render(descriptor_id=descriptor_id, address=new))
        commands.extend(additions)
        return commands

    def minimal_delete(self, identity: Hashable) -> list[str]:
        return [TYPE.render_delete(descriptor_id=identity)]


def validate_mapping(
    protocol: str,
    outside_port: Optional[int],
    inside_port: Optional[int],
) -> ValidationResult:
    """Cross-field checks shared by port-mapping entries."""
    result = ValidationResult()
    has_ports = outside_port is not None or inside_port is not None

    if not protocol:
        if has_ports:
            result.error("a port requires an explicit protocol")
        else:
            result.error("protocol is required")
        return result

    if protocol in PORT_PROTOCOLS:
        if not has_ports:
            result.error(f"protocol {protocol} requires a port")
    elif protocol in PROTOCOL_ONLY or protocol.isdigit():
        if has_ports:
            result.error(f"protocol-only entry ({protocol}) must omit ports")
    else:
        result.error(f"unsupported protocol: {protocol}")

    for port in (outside_port, inside_port):
        if port is not None and not PORT_MIN <= port <= PORT_MAX:
            result.error(f"port must be {PORT_MIN}-{PORT_MAX}, got {port}")
    return result
