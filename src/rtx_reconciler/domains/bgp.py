"""BGP domain.

Command reference:
- bgp use on|off
- bgp autonomous-system <asn>
- bgp router id <ip>
- bgp neighbor <id> <as> <ip> [hold-time=<n>] [keepalive=<n>] [local-address=<ip>]
  [passive=on] [multihop=<n>] [password=<secret>]
- bgp import filter <n> include <net>/<len>
- bgp configure refresh

Older firmware used ``bgp neighbor <id> address <ip> as <as>`` with one line
per neighbor attribute; both forms are parsed. BGP is a singleton: there is
one configuration per router. Changes only take effect after
``bgp configure refresh``.
"""
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Hashable, Optional

from ..engine.diff import diff_collection
from ..engine.domain import Domain, Step, split_collection_commands
from ..engine.formats import LineFormat, ParseDrafts, line_format
from ..engine.normalize import network_has_host_bits, normalize_ipv4, normalize_network
from ..engine.schema import ValidationResult
from ..engine.templates import CommandTemplate, optional_kv

logger = logging.getLogger(__name__)

BGP_IDENTITY = "bgp"
ASN_MAX = 4294967295
FILTER_MAX = 2147483647

AUTONOMOUS_SYSTEM = CommandTemplate(
    "bgp autonomous-system {asn}",
    identity="bgp autonomous-system",
)
ROUTER_ID = CommandTemplate(
    "bgp router id {router_id}",
    identity="bgp router id",
)
NEIGHBOR = CommandTemplate(
    "bgp neighbor {neighbor_id} {remote_as} {address} {options}",
    identity="bgp neighbor {neighbor_id}",
)
NETWORK = CommandTemplate(
    "bgp import filter {filter_id} include {network}",
    identity="bgp import filter {filter_id}",
)
USE = CommandTemplate("bgp use {state}", delete="bgp use off")
REFRESH = CommandTemplate("bgp configure refresh", delete="")

_NEIGHBOR_OPTIONS = ("hold-time", "keepalive", "local-address", "passive", "multihop", "password")


@dataclass(frozen=True)
class BgpNeighbor:
    """A BGP peer."""
    neighbor_id: int
    remote_as: int
    address: str
    hold_time: Optional[int] = None
    keepalive: Optional[int] = None
    local_address: Optional[str] = None
    passive: bool = False
    multihop: Optional[int] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class BgpNetwork:
    """A prefix announced through an import filter."""
    filter_id: int
    network: str


@dataclass(frozen=True)
class BgpConfig:
    """Router-wide BGP configuration."""
    enabled: bool = True
    asn: Optional[int] = None
    router_id: Optional[str] = None
    neighbors: tuple[BgpNeighbor, ...] = ()
    networks: tuple[BgpNetwork, ...] = ()


def _neighbor_draft(drafts: ParseDrafts, neighbor_id: str) -> dict[str, Any]:
    neighbors = drafts.draft(BGP_IDENTITY).setdefault("neighbors", {})
    return neighbors.setdefault(int(neighbor_id), {})


def _set_neighbor_option(draft: dict[str, Any], key: str, value: str) -> None:
    key = key.lower()
    if key in ("hold-time", "keepalive", "multihop"):
        draft[key.replace("-", "_")] = int(value)
    elif key == "local-address":
        draft["local_address"] = normalize_ipv4(value)
    elif key == "passive":
        draft["passive"] = value.lower() == "on"
    elif key == "password":
        draft["password"] = value
    else:
        logger.debug(f"bgp: ignoring unknown neighbor option '{key}'")


def _extract_use(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.draft(BGP_IDENTITY)["enabled"] = match.group("state").lower() == "on"


def _extract_asn(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.draft(BGP_IDENTITY)["asn"] = int(match.group("asn"))


def _extract_router_id(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.draft(BGP_IDENTITY)["router_id"] = normalize_ipv4(match.group("router_id"))


def _extract_neighbor(match: re.Match, drafts: ParseDrafts) -> None:
    draft = _neighbor_draft(drafts, match.group("id"))
    draft["remote_as"] = int(match.group("remote_as"))
    draft["address"] = normalize_ipv4(match.group("address"))
    for token in (match.groupdict().get("options") or "").split():
        if "=" not in token:
            raise ValueError(f"expected key=value, got '{token}'")
        key, value = token.split("=", 1)
        _set_neighbor_option(draft, key, value)


def _extract_neighbor_attribute(match: re.Match, drafts: ParseDrafts) -> None:
    draft = _neighbor_draft(drafts, match.group("id"))
    _set_neighbor_option(draft, match.group("key"), match.group("value"))


def _extract_network(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.append(BGP_IDENTITY, "networks", BgpNetwork(
        filter_id=int(match.group("id")),
        network=normalize_network(match.group("network")),
    ))


_NEIGHBOR_PREFIX = r"^bgp\s+neighbor\s+\d+\s"

FORMATS = [
    line_format(
        "use",
        r"^bgp\s+use\b",
        r"^bgp\s+use\s+(?P<state>on|off)\s*$",
        _extract_use,
    ),
    line_format(
        "autonomous-system",
        r"^bgp\s+autonomous-system\b",
        r"^bgp\s+autonomous-system\s+(?P<asn>\d+)\s*$",
        _extract_asn,
    ),
    line_format(
        "router id",
        r"^bgp\s+router\s+id\b",
        r"^bgp\s+router\s+id\s+(?P<router_id>\S+)\s*$",
        _extract_router_id,
    ),
    line_format(
        "neighbor",
        _NEIGHBOR_PREFIX,
        r"^bgp\s+neighbor\s+(?P<id>\d+)\s+(?P<remote_as>\d+)\s+(?P<address>[\d.]+)"
        r"(?P<options>(?:\s+[a-z-]+=\S+)*)\s*$",
        _extract_neighbor,
    ),
    line_format(
        "neighbor",
        _NEIGHBOR_PREFIX,
        r"^bgp\s+neighbor\s+(?P<id>\d+)\s+address\s+(?P<address>[\d.]+)\s+as\s+(?P<remote_as>\d+)\s*$",
        _extract_neighbor,
        variant="legacy",
    ),
    line_format(
        "neighbor attribute",
        _NEIGHBOR_PREFIX,
        r"^bgp\s+neighbor\s+(?P<id>\d+)\s+(?P<key>" + "|".join(_NEIGHBOR_OPTIONS) + r")\s+(?P<value>\S+)\s*$",
        _extract_neighbor_attribute,
        variant="legacy",
    ),
    line_format(
        "import filter",
        r"^bgp\s+import\s+filter\s",
        r"^bgp\s+import\s+filter\s+(?P<id>\d+)\s+include\s+(?P<network>\S+)\s*$",
        _extract_network,
    ),
]


class BgpDomain(Domain[BgpConfig]):
    """Router-wide BGP with neighbors and announced networks."""

    name = "bgp"
    grep_pattern = "bgp"
    description = "BGP configuration"

    def formats(self) -> list[LineFormat]:
        return FORMATS

    def identity(self, entity: BgpConfig) -> Hashable:
        return BGP_IDENTITY

    def normalize_identity(self, identity: Any) -> Hashable:
        return BGP_IDENTITY

    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[BgpConfig]:
        neighbors = []
        for neighbor_id, fields in draft.get("neighbors", {}).items():
            if "address" not in fields:
                raise ValueError(f"neighbor {neighbor_id} has attributes but no address")
            neighbors.append(BgpNeighbor(neighbor_id=neighbor_id, **fields))
        return BgpConfig(
            enabled=draft.get("enabled", False),
            asn=draft.get("asn"),
            router_id=draft.get("router_id"),
            neighbors=tuple(neighbors),
            networks=tuple(draft.get("networks", [])),
        )

    def canonicalize(self, entity: BgpConfig) -> BgpConfig:
        neighbors = sorted(
            (
                replace(
                    n,
                    neighbor_id=int(n.neighbor_id),
                    remote_as=int(n.remote_as),
                    address=normalize_ipv4(n.address),
                    local_address=normalize_ipv4(n.local_address) if n.local_address else None,
                    passive=bool(n.passive),
                )
                for n in entity.neighbors
            ),
            key=lambda n: n.neighbor_id,
        )
        networks = sorted(
            (BgpNetwork(int(n.filter_id), normalize_network(n.network)) for n in entity.networks),
            key=lambda n: n.filter_id,
        )
        return replace(
            entity,
            enabled=bool(entity.enabled),
            asn=int(entity.asn) if entity.asn is not None else None,
            router_id=normalize_ipv4(entity.router_id) if entity.router_id is not None else None,
            neighbors=tuple(neighbors),
            networks=tuple(networks),
        )

    def validate(self, entity: BgpConfig) -> ValidationResult:
        result = ValidationResult()

        if entity.asn is None:
            if entity.enabled or entity.neighbors:
                result.error("autonomous system number is required")
        elif not 1 <= entity.asn <= ASN_MAX:
            result.error(f"AS number must be 1-{ASN_MAX}, got {entity.asn}")
        if entity.enabled and entity.router_id is None:
            result.warn("no router id, the router will pick one")

        seen: dict[int, BgpNeighbor] = {}
        for neighbor in entity.neighbors:
            label = f"neighbor {neighbor.neighbor_id}"
            if neighbor.neighbor_id < 1:
                result.error(f"{label}: id must be positive")
            if seen.setdefault(neighbor.neighbor_id, neighbor) != neighbor:
                result.error(f"{label}: defined twice with different values")
            if not 1 <= neighbor.remote_as <= ASN_MAX:
                result.error(f"{label}: AS number must be 1-{ASN_MAX}, got {neighbor.remote_as}")
            if neighbor.hold_time is not None and not (
                neighbor.hold_time == 0 or 3 <= neighbor.hold_time <= 28800
            ):
                result.error(f"{label}: hold time must be 0 or 3-28800, got {neighbor.hold_time}")
            if neighbor.keepalive is not None and not 1 <= neighbor.keepalive <= 21845:
                result.error(f"{label}: keepalive must be 1-21845, got {neighbor.keepalive}")
            if (
                neighbor.keepalive is not None
                and neighbor.hold_time
                and neighbor.keepalive >= neighbor.hold_time
            ):
                result.error(f"{label}: keepalive must be shorter than hold time")
            if neighbor.multihop is not None and not 1 <= neighbor.multihop <= 255:
                result.error(f"{label}: multihop must be 1-255, got {neighbor.multihop}")
            if neighbor.password is not None and (not neighbor.password or " " in neighbor.password):
                result.error(f"{label}: password must be non-empty without spaces")

        filter_ids: set[int] = set()
        for network in entity.networks:
            label = f"import filter {network.filter_id}"
            if not 1 <= network.filter_id <= FILTER_MAX:
                result.error(f"{label}: filter number out of range")
            if network.filter_id in filter_ids:
                result.error(f"{label}: defined twice")
            filter_ids.add(network.filter_id)
            if network_has_host_bits(network.network):
                result.error(f"{label}: {network.network} has host bits set")
        return result

    # --- Synthesizer ---

    def _neighbor_fields(self, neighbor: BgpNeighbor) -> dict[str, Any]:
        options = [
            optional_kv("hold-time", neighbor.hold_time),
            optional_kv("keepalive", neighbor.keepalive),
            optional_kv("local-address", neighbor.local_address),
            "passive=on" if neighbor.passive else "",
            optional_kv("multihop", neighbor.multihop),
            optional_kv("password", neighbor.password),
        ]
        return {
            "neighbor_id": neighbor.neighbor_id,
            "remote_as": neighbor.remote_as,
            "address": neighbor.address,
            "options": " ".join(o for o in options if o),
        }

    def _network_fields(self, network: BgpNetwork) -> dict[str, Any]:
        return {"filter_id": network.filter_id, "network": network.network}

    def create_steps(self, entity: BgpConfig) -> list[Step]:
        steps: list[Step] = []
        if entity.asn is not None:
            steps.append((AUTONOMOUS_SYSTEM, {"asn": entity.asn}))
        if entity.router_id is not None:
            steps.append((ROUTER_ID, {"router_id": entity.router_id}))
        for neighbor in entity.neighbors:
            steps.append((NEIGHBOR, self._neighbor_fields(neighbor)))
        for network in entity.networks:
            steps.append((NETWORK, self._network_fields(network)))
        steps.append((USE, {"state": "on" if entity.enabled else "off"}))
        steps.append((REFRESH, {}))
        return steps

    def update_commands(self, current: BgpConfig, desired: BgpConfig) -> list[str]:
        neighbors = diff_collection(current.neighbors, desired.neighbors, key=lambda n: n.neighbor_id)
        networks = diff_collection(current.networks, desired.networks, key=lambda n: n.filter_id)

        # Re-entering a neighbor or filter with the same number overwrites it
        neighbor_removals, neighbor_additions = split_collection_commands(
            neighbors,
            add=lambda n: NEIGHBOR.render(**self._neighbor_fields(n)),
            remove=lambda n: NEIGHBOR.render_delete(**self._neighbor_fields(n)),
            in_place=True,
        )
        network_removals, network_additions = split_collection_commands(
            networks,
            add=lambda n: NETWORK.render(**self._network_fields(n)),
            remove=lambda n: NETWORK.render_delete(**self._network_fields(n)),
            in_place=True,
        )

        commands = network_removals + neighbor_removals
        if current.asn != desired.asn:
            if desired.asn is None:
                commands.append(AUTONOMOUS_SYSTEM.render_delete())
            else:
                commands.append(AUTONOMOUS_SYSTEM.render(asn=desired.asn))
        if current.router_id != desired.router_id:
            if desired.router_id is None:
                commands.append(ROUTER_ID.render_delete())
            else:
                commands.append(ROUTER_ID.render(router_id=desired.router_id))
        commands += neighbor_additions + network_additions
        if current.enabled != desired.enabled:
            commands.append(USE.render(state="on" if desired.enabled else "off"))

        if commands:
            commands.append(REFRESH.render())
        return commands

    def minimal_delete(self, identity: Hashable) -> list[str]:
        return [
            USE.render_delete(),
            ROUTER_ID.render_delete(),
            AUTONOMOUS_SYSTEM.render_delete(),
        ]
