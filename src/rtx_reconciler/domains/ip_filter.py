"""Static IP filter rule domain.

Command reference:
- ip filter <n> <action> <src> [<dst> [<protocol> [<src-port> [<dst-port>]]]]
- ip filter <n> <action> <src> <dst> tcp <src-port> <dst-port> established

Omitted trailing fields mean "any" (``*``), so ``ip filter 1 reject *`` and
``ip filter 1 reject * * * * *`` are the same rule. Re-entering a filter
number overwrites the rule.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Hashable, Optional

from ..engine.domain import Domain, Step
from ..engine.formats import LineFormat, ParseDrafts, line_format
from ..engine.normalize import ANY, normalize_ipv4, normalize_protocol, prefix_from_mask
from ..engine.schema import ValidationResult
from ..engine.templates import CommandTemplate

logger = logging.getLogger(__name__)

FILTER_MAX = 2147483647

ACTIONS = {
    "pass", "reject", "restrict",
    "pass-log", "reject-log", "restrict-log",
    "pass-nolog", "reject-nolog", "restrict-nolog",
}
PORT_PROTOCOLS = {"tcp", "udp", "tcpfin", "tcprst", "tcpsyn", "tcpflag"}
OTHER_PROTOCOLS = {"icmp", "icmp-error", "icmp-info", "esp", "ah", "gre", "ipip", "established"}

FILTER = CommandTemplate(
    "ip filter {filter_id} {action} {fields}",
    identity="ip filter {filter_id}",
)

_PORT_ITEM = re.compile(r"^([a-z][a-z0-9-]*|\d+|\d+-\d*|-\d+)$")


@dataclass(frozen=True)
class IpFilter:
    """One numbered packet filter rule."""
    filter_id: int
    action: str
    source: str = ANY
    destination: str = ANY
    protocol: str = ANY
    source_port: str = ANY
    destination_port: str = ANY
    established: bool = False

    @property
    def has_ports(self) -> bool:
        return self.source_port != ANY or self.destination_port != ANY


def canonical_filter_address(text: str) -> str:
    """Canonicalize a filter address list: *, ip, range, net/mask, or wildcard octets."""
    items = []
    for item in text.strip().lower().split(","):
        if not item:
            continue
        if item == ANY or "*" in item:
            items.append(item)
        elif "/" in item:
            address, mask = item.split("/", 1)
            items.append(f"{normalize_ipv4(address)}/{prefix_from_mask(mask)}")
        elif "-" in item:
            start, end = item.split("-", 1)
            items.append(f"{normalize_ipv4(start) if start else ''}-{normalize_ipv4(end) if end else ''}")
        else:
            items.append(normalize_ipv4(item))
    return ",".join(items) or ANY


def canonical_ports(text: str) -> str:
    value = text.strip().lower()
    if value == ANY:
        return value
    items = [item for item in value.split(",") if item]
    for item in items:
        if not _PORT_ITEM.match(item):
            raise ValueError(f"invalid port: {item}")
    return ",".join(items)


def _is_tcp(protocol: str) -> bool:
    return any(p.startswith("tcp") for p in protocol.lower().split(","))


def _extract_filter(match: re.Match, drafts: ParseDrafts) -> None:
    tokens = match.group("fields").split()
    # "* * established" names the protocol; only after a tcp protocol is it a flag
    established = (
        len(tokens) >= 4
        and tokens[-1].lower() == "established"
        and _is_tcp(tokens[2])
    )
    if established:
        tokens = tokens[:-1]
    if not tokens or len(tokens) > 5:
        raise ValueError(f"expected 1-5 filter fields, got {len(tokens)}")
    tokens += [ANY] * (5 - len(tokens))

    draft = drafts.draft(int(match.group("id")))
    draft.update(
        action=match.group("action").lower(),
        source=canonical_filter_address(tokens[0]),
        destination=canonical_filter_address(tokens[1]),
        protocol=normalize_protocol(tokens[2]),
        source_port=canonical_ports(tokens[3]),
        destination_port=canonical_ports(tokens[4]),
        established=established,
    )


FORMATS = [
    line_format(
        "rule",
        r"^ip\s+filter\s+\d+\s",
        r"^ip\s+filter\s+(?P<id>\d+)\s+(?P<action>[a-z-]+)\s+(?P<fields>\S.*?)\s*$",
        _extract_filter,
    ),
]


class IpFilterDomain(Domain[IpFilter]):
    """Numbered static IP filter rules."""

    name = "ip_filter"
    grep_pattern = "ip filter"
    description = "IP filter rule"

    def formats(self) -> list[LineFormat]:
        return FORMATS

    def identity(self, entity: IpFilter) -> Hashable:
        return entity.filter_id

    def normalize_identity(self, identity: Any) -> Hashable:
        return int(identity)

    def dump_command(self, identity: Optional[Hashable] = None) -> str:
        if identity is None:
            return super().dump_command()
        return f'show config | grep "ip filter {identity} "'

    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[IpFilter]:
        return IpFilter(filter_id=key, **draft)

    def canonicalize(self, entity: IpFilter) -> IpFilter:
        return replace(
            entity,
            filter_id=int(entity.filter_id),
            action=entity.action.strip().lower(),
            source=canonical_filter_address(entity.source),
            destination=canonical_filter_address(entity.destination),
            protocol=normalize_protocol(entity.protocol) or ANY,
            source_port=canonical_ports(entity.source_port),
            destination_port=canonical_ports(entity.destination_port),
            established=bool(entity.established),
        )

    def validate(self, entity: IpFilter) -> ValidationResult:
        result = ValidationResult()

        if not 1 <= entity.filter_id <= FILTER_MAX:
            result.error(f"filter number must be 1-{FILTER_MAX}, got {entity.filter_id}")
        if entity.action not in ACTIONS:
            result.error(f"unknown action: {entity.action}")

        protocols = entity.protocol.split(",")
        for protocol in protocols:
            if protocol not in PORT_PROTOCOLS | OTHER_PROTOCOLS | {ANY} and not protocol.isdigit():
                result.error(f"unknown protocol: {protocol}")

        if entity.has_ports:
            if entity.protocol == ANY:
                result.error("a port requires an explicit protocol")
            elif not all(p in PORT_PROTOCOLS for p in protocols):
                result.error(f"ports are only valid for tcp/udp, not {entity.protocol}")

        for ports in (entity.source_port, entity.destination_port):
            for item in ports.split(","):
                for number in item.split("-"):
                    if number.isdigit() and not 0 <= int(number) <= 65535:
                        result.error(f"port out of range: {number}")

        if entity.established and not _is_tcp(entity.protocol):
            result.error("established requires tcp")
        return result

    def create_steps(self, entity: IpFilter) -> list[Step]:
        fields = [
            entity.source, entity.destination, entity.protocol,
            entity.source_port, entity.destination_port,
        ]
        if entity.established:
            fields.append("established")
        else:
            while len(fields) > 1 and fields[-1] == ANY:
                fields.pop()
        return [(FILTER, {
            "filter_id": entity.filter_id,
            "action": entity.action,
            "fields": " ".join(fields),
        })]

    def update_commands(self, current: IpFilter, desired: IpFilter) -> list[str]:
        template, fields = self.create_steps(desired)[0]
        return [template.render(**fields)]

    def minimal_delete(self, identity: Hashable) -> list[str]:
        return [FILTER.render_delete(filter_id=identity)]
