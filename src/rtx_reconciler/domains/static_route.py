"""Static IPv4 route domain.

Command reference:
- ip route <default|net/len|net/mask> gateway <hop> [weight <n>] [filter <n> ...]
  [keepalive <n>] [hide] [gateway <hop> ...]

``<hop>`` is an IP address, ``pp <n>``, ``tunnel <n>``, ``dhcp <iface>``,
``null`` or ``loopback``. All next hops of a destination live on one line and
re-entering the line replaces the route, so updates rewrite the whole line.
Some firmware prints one line per next hop; those lines are merged by
destination.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Hashable, Optional

from ..engine.diff import diff_collection, sort_token, summarize_diff
from ..engine.domain import Domain, Step
from ..engine.formats import LineFormat, ParseDrafts, line_format
from ..engine.normalize import (
    is_ipv4,
    network_has_host_bits,
    normalize_interface,
    normalize_ipv4,
    normalize_network,
)
from ..engine.schema import ValidationResult
from ..engine.templates import CommandTemplate

logger = logging.getLogger(__name__)

FILTER_MAX = 2147483647

ROUTE = CommandTemplate(
    "ip route {destination} {hops}",
    identity="ip route {destination}",
)

# Gateway keywords followed by one argument
_GATEWAY_WITH_ARG = {"pp", "tunnel", "dhcp"}
_GATEWAY_BARE = {"null", "loopback"}
_INTERFACE_GATEWAY = re.compile(r"^(pp \d+|pp anonymous|tunnel \d+|dhcp [a-z]+\d+(/\d+)?|null|loopback)$")


@dataclass(frozen=True)
class NextHop:
    """One gateway of a route."""
    gateway: str
    weight: Optional[int] = None
    filters: tuple[int, ...] = ()
    keepalive: Optional[int] = None
    hide: bool = False


@dataclass(frozen=True)
class StaticRoute:
    """A static route with one or more next hops."""
    destination: str
    next_hops: tuple[NextHop, ...] = ()


def parse_hops(text: str) -> list[NextHop]:
    """Parse the "gateway ... [gateway ...]" part of a route line."""
    tokens = text.split()
    hops: list[NextHop] = []
    i = 0
    while i < len(tokens):
        if tokens[i].lower() != "gateway":
            raise ValueError(f"expected 'gateway', got '{tokens[i]}'")
        if i + 1 >= len(tokens):
            raise ValueError("gateway requires a target")
        target = tokens[i + 1].lower()
        i += 2
        if target in _GATEWAY_WITH_ARG:
            if i >= len(tokens):
                raise ValueError(f"gateway {target} requires an argument")
            target = f"{target} {tokens[i].lower()}"
            i += 1
        elif target not in _GATEWAY_BARE:
            target = normalize_ipv4(target)

        fields: dict[str, Any] = {"gateway": target, "filters": []}
        while i < len(tokens) and tokens[i].lower() != "gateway":
            keyword = tokens[i].lower()
            if keyword == "hide":
                fields["hide"] = True
                i += 1
            elif keyword in ("weight", "keepalive"):
                if i + 1 >= len(tokens) or not tokens[i + 1].isdigit():
                    raise ValueError(f"{keyword} requires a number")
                fields[keyword] = int(tokens[i + 1])
                i += 2
            elif keyword == "filter":
                i += 1
                while i < len(tokens) and tokens[i].isdigit():
                    fields["filters"].append(int(tokens[i]))
                    i += 1
            else:
                logger.debug(f"static_route: ignoring unknown token '{tokens[i]}'")
                i += 1
        fields["filters"] = tuple(fields["filters"])
        hops.append(NextHop(**fields))
    return hops


def _extract_route(match: re.Match, drafts: ParseDrafts) -> None:
    destination = normalize_network(match.group("destination"))
    for hop in parse_hops(match.group("hops")):
        drafts.append(destination, "hops", hop)


FORMATS = [
    line_format(
        "route",
        r"^ip\s+route\s",
        r"^ip\s+route\s+(?P<destination>\S+)\s+(?P<hops>gateway\s+.+)$",
        _extract_route,
    ),
]


def render_hop(hop: NextHop) -> str:
    parts = ["gateway", hop.gateway]
    if hop.weight is not None:
        parts += ["weight", str(hop.weight)]
    if hop.filters:
        parts += ["filter"] + [str(f) for f in hop.filters]
    if hop.keepalive is not None:
        parts += ["keepalive", str(hop.keepalive)]
    if hop.hide:
        parts.append("hide")
    return " ".join(parts)


def canonical_gateway(gateway: str) -> str:
    value = normalize_interface(gateway)
    if is_ipv4(value):
        return normalize_ipv4(value)
    return value


class StaticRouteDomain(Domain[StaticRoute]):
    """Static routes keyed by destination network."""

    name = "static_route"
    grep_pattern = "ip route"
    description = "static route"

    def formats(self) -> list[LineFormat]:
        return FORMATS

    def identity(self, entity: StaticRoute) -> Hashable:
        return entity.destination

    def normalize_identity(self, identity: Any) -> Hashable:
        return normalize_network(str(identity))

    def dump_command(self, identity: Optional[Hashable] = None) -> str:
        if identity is None:
            return super().dump_command()
        return f'show config | grep "ip route {identity} "'

    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[StaticRoute]:
        return StaticRoute(destination=key, next_hops=tuple(draft.get("hops", [])))

    def canonicalize(self, entity: StaticRoute) -> StaticRoute:
        hops = [
            replace(
                hop,
                gateway=canonical_gateway(hop.gateway),
                filters=tuple(int(f) for f in hop.filters),
                hide=bool(hop.hide),
            )
            for hop in entity.next_hops
        ]
        hops.sort(key=lambda hop: sort_token(hop.gateway))
        return StaticRoute(
            destination=normalize_network(entity.destination),
            next_hops=tuple(hops),
        )

    def validate(self, entity: StaticRoute) -> ValidationResult:
        result = ValidationResult()

        if network_has_host_bits(entity.destination):
            result.error(f"destination {entity.destination} has host bits set")
        if not entity.next_hops:
            result.error("at least one gateway is required")

        seen: set[str] = set()
        for hop in entity.next_hops:
            label = f"gateway {hop.gateway}"
            if hop.gateway in seen:
                result.error(f"{label}: listed more than once")
            seen.add(hop.gateway)
            if not is_ipv4(hop.gateway) and not _INTERFACE_GATEWAY.match(hop.gateway):
                result.error(f"{label}: not an address or a known interface")
            if hop.weight is not None and not 1 <= hop.weight <= 255:
                result.error(f"{label}: weight must be 1-255, got {hop.weight}")
            if hop.keepalive is not None and not 1 <= hop.keepalive <= 65535:
                result.error(f"{label}: keepalive must be 1-65535, got {hop.keepalive}")
            for number in hop.filters:
                if not 1 <= number <= FILTER_MAX:
                    result.error(f"{label}: filter number out of range: {number}")

        if len(entity.next_hops) > 1 and any(h.gateway in ("null", "loopback") for h in entity.next_hops):
            result.warn("null or loopback gateway mixed with other gateways")
        return result

    def create_steps(self, entity: StaticRoute) -> list[Step]:
        return [(ROUTE, {
            "destination": entity.destination,
            "hops": " ".join(render_hop(hop) for hop in entity.next_hops),
        })]

    def update_commands(self, current: StaticRoute, desired: StaticRoute) -> list[str]:
        hops = diff_collection(current.next_hops, desired.next_hops, key=lambda hop: hop.gateway)
        logger.debug(summarize_diff(hops, label=f"route {desired.destination} gateway"))
        if hops.no_change:
            return []
        template, fields = self.create_steps(desired)[0]
        return [template.render(**fields)]

    def minimal_delete(self, identity: Hashable) -> list[str]:
        return [ROUTE.render_delete(destination=identity)]
