"""DHCP scope domain.

Command reference (RTX830 / RTX12xx):
- dhcp scope <id> <start>-<end>/<mask> [except <ip>[-<ip>] ...] [gateway <ip>]
  [expire <time>] [maxexpire <time>]
- dhcp scope <id> <network>/<mask> ...          (whole-network form)
- dhcp scope option <id> dns=<ip>[,<ip>] router=<ip> domain=<name>
- dhcp scope bind <id> <ip> [ethernet|01] <mac>

Exclusion ranges live on the declaration line and have no index of their own;
they are compared by value. Re-issuing the declaration overwrites the scope in
place, so any exclusion change is applied by sending the declaration again.
"""
import ipaddress
import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Hashable, Optional

from ..engine.diff import diff_collection, summarize_diff
from ..engine.domain import Domain, Step, split_collection_commands
from ..engine.formats import LineFormat, ParseDrafts, line_format
from ..engine.normalize import (
    INFINITY,
    address_key,
    normalize_ipv4,
    normalize_lease_time,
    normalize_mac,
    parse_address_list,
    parse_key_values,
    prefix_from_mask,
    split_range,
)
from ..engine.schema import ValidationResult
from ..engine.templates import CommandTemplate, optional_kv, optional_segment

logger = logging.getLogger(__name__)

SCOPE_ID_MIN = 1
SCOPE_ID_MAX = 255

DECLARE = CommandTemplate(
    "dhcp scope {scope_id} {start}-{end}/{prefix} {tail}",
    identity="dhcp scope {scope_id}",
)
OPTION = CommandTemplate(
    "dhcp scope option {scope_id} {values}",
    identity="dhcp scope option {scope_id}",
)
BIND = CommandTemplate(
    "dhcp scope bind {scope_id} {ip} {kind} {mac}",
    identity="dhcp scope bind {scope_id} {ip}",
)

_TAIL_KEYWORDS = {"except", "gateway", "expire", "maxexpire"}


@dataclass(frozen=True)
class ExcludeRange:
    """Addresses inside the scope range that are never leased."""
    start: str
    end: str

    def __str__(self) -> str:
        return self.start if self.start == self.end else f"{self.start}-{self.end}"


@dataclass(frozen=True)
class DhcpBinding:
    """Static lease of one address to one client."""
    ip_address: str
    mac_address: str
    client_identifier: bool = False


@dataclass(frozen=True)
class DhcpScopeOptions:
    """Options handed to clients. ``()`` means explicitly none."""
    dns_servers: Optional[tuple[str, ...]] = None
    routers: Optional[tuple[str, ...]] = None
    domain_name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.dns_servers is None and self.routers is None and self.domain_name is None


@dataclass(frozen=True)
class DhcpScope:
    """An address-range scope served by the router's DHCP server."""
    scope_id: int
    range_start: str
    range_end: str
    prefix: int
    gateway: Optional[str] = None
    expire: Optional[str] = None
    max_expire: Optional[str] = None
    exclusions: tuple[ExcludeRange, ...] = ()
    options: Optional[DhcpScopeOptions] = None
    bindings: tuple[DhcpBinding, ...] = ()


# --- Extractors ---

def _parse_tail(tail: str, draft: dict[str, Any]) -> None:
    tokens = tail.split()
    i = 0
    while i < len(tokens):
        keyword = tokens[i].lower()
        if keyword == "except":
            i += 1
            while i < len(tokens) and tokens[i].lower() not in _TAIL_KEYWORDS:
                draft.setdefault("exclusions", []).append(ExcludeRange(*split_range(tokens[i])))
                i += 1
            continue
        if keyword in ("gateway", "expire", "maxexpire"):
            if i + 1 >= len(tokens):
                raise ValueError(f"{keyword} requires a value")
            draft[keyword] = tokens[i + 1]
            i += 2
            continue
        logger.debug(f"dhcp_scope: ignoring unknown token '{tokens[i]}'")
        i += 1


def _extract_declaration(match: re.Match, drafts: ParseDrafts) -> None:
    draft = drafts.draft(int(match.group("id")))
    draft["declared"] = True
    draft["start"] = match.group("start")
    draft["end"] = match.group("end")
    draft["prefix"] = prefix_from_mask(match.group("mask"))
    _parse_tail(match.group("tail") or "", draft)


def _extract_network_declaration(match: re.Match, drafts: ParseDrafts) -> None:
    network = ipaddress.IPv4Network(
        f"{match.group('network')}/{prefix_from_mask(match.group('mask'))}", strict=False
    )
    hosts = list(network.hosts()) if network.prefixlen < 31 else [network[0], network[-1]]
    draft = drafts.draft(int(match.group("id")))
    draft["declared"] = True
    draft["start"] = str(hosts[0])
    draft["end"] = str(hosts[-1])
    draft["prefix"] = network.prefixlen
    _parse_tail(match.group("tail") or "", draft)


def _extract_option(match: re.Match, drafts: ParseDrafts) -> None:
    values = parse_key_values(match.group("values"))
    draft = drafts.draft(int(match.group("id")))
    options = draft.setdefault("options", {})
    if "dns" in values:
        options["dns_servers"] = parse_address_list(values["dns"])
    if "router" in values:
        options["routers"] = parse_address_list(values["router"])
    if "domain" in values:
        domain = values["domain"]
        options["domain_name"] = "" if domain.lower() == "none" else domain


def _extract_binding(match: re.Match, drafts: ParseDrafts) -> None:
    drafts.append(int(match.group("id")), "bindings", DhcpBinding(
        ip_address=normalize_ipv4(match.group("ip")),
        mac_address=normalize_mac(match.group("mac")),
        client_identifier=match.group("kind") is not None,
    ))


_RANGE = r"(?P<start>[\d.]+)-(?P<end>[\d.]+)/(?P<mask>[\d.]+)"
_NETWORK = r"(?P<network>[\d.]+)/(?P<mask>[\d.]+)"

FORMATS = [
    line_format(
        "binding",
        r"^dhcp\s+scope\s+bind\s",
        r"^dhcp\s+scope\s+bind\s+(?P<id>\d+)\s+(?P<ip>[\d.]+)\s+"
        r"(?:(?P<kind>ethernet|01)\s+)?(?P<mac>[0-9a-f][0-9a-f:\-. ]+[0-9a-f])\s*$",
        _extract_binding,
    ),
    line_format(
        "option",
        r"^dhcp\s+scope\s+option\s",
        r"^dhcp\s+scope\s+option\s+(?P<id>\d+)\s+(?P<values>\S+=\S*(?:\s+\S+=\S*)*)\s*$",
        _extract_option,
    ),
    line_format(
        "declaration",
        r"^dhcp\s+scope\s+\d+\s",
        rf"^dhcp\s+scope\s+(?P<id>\d+)\s+{_RANGE}(?:\s+(?P<tail>.*))?$",
        _extract_declaration,
    ),
    line_format(
        "network declaration",
        r"^dhcp\s+scope\s+\d+\s",
        rf"^dhcp\s+scope\s+(?P<id>\d+)\s+{_NETWORK}(?:\s+(?P<tail>.*))?$",
        _extract_network_declaration,
    ),
    # Section-filtered dumps drop the leading "dhcp" keyword
    line_format(
        "declaration",
        r"^scope\s+\d+\s",
        rf"^scope\s+(?P<id>\d+)\s+{_RANGE}(?:\s+(?P<tail>.*))?$",
        _extract_declaration,
        variant="section",
    ),
]


class DhcpScopeDomain(Domain[DhcpScope]):
    """DHCP scopes with options, exclusions and static bindings."""

    name = "dhcp_scope"
    grep_pattern = "dhcp scope"
    description = "DHCP address scope"

    def formats(self) -> list[LineFormat]:
        return FORMATS

    def identity(self, entity: DhcpScope) -> Hashable:
        return entity.scope_id

    def normalize_identity(self, identity: Any) -> Hashable:
        return int(identity)

    def finalize(self, key: Hashable, draft: dict[str, Any]) -> Optional[DhcpScope]:
        if not draft.get("declared"):
            return None
        options = draft.get("options")
        return DhcpScope(
            scope_id=key,
            range_start=draft["start"],
            range_end=draft["end"],
            prefix=draft["prefix"],
            gateway=draft.get("gateway"),
            expire=draft.get("expire"),
            max_expire=draft.get("maxexpire"),
            exclusions=tuple(draft.get("exclusions", [])),
            options=DhcpScopeOptions(**options) if options else None,
            bindings=tuple(draft.get("bindings", [])),
        )

    def canonicalize(self, entity: DhcpScope) -> DhcpScope:
        options = entity.options
        if options is not None:
            options = DhcpScopeOptions(
                dns_servers=_canonical_list(options.dns_servers),
                routers=_canonical_list(options.routers),
                domain_name=options.domain_name,
            )
            if options.is_empty:
                options = None

        exclusions = sorted(
            (ExcludeRange(*split_range(f"{r.start}-{r.end}")) for r in entity.exclusions),
            key=lambda r: (address_key(r.start), address_key(r.end)),
        )
        bindings = sorted(
            (
                DhcpBinding(
                    ip_address=normalize_ipv4(b.ip_address),
                    mac_address=normalize_mac(b.mac_address),
                    client_identifier=bool(b.client_identifier),
                )
                for b in entity.bindings
            ),
            key=lambda b: address_key(b.ip_address),
        )
        return replace(
            entity,
            scope_id=int(entity.scope_id),
            range_start=normalize_ipv4(entity.range_start),
            range_end=normalize_ipv4(entity.range_end),
            prefix=prefix_from_mask(str(entity.prefix)),
            gateway=normalize_ipv4(entity.gateway) if entity.gateway is not None else None,
            expire=normalize_lease_time(entity.expire) if entity.expire is not None else None,
            max_expire=(
                normalize_lease_time(entity.max_expire) if entity.max_expire is not None else None
            ),
            exclusions=tuple(exclusions),
            options=options,
            bindings=tuple(bindings),
        )

    def validate(self, entity: DhcpScope) -> ValidationResult:
        result = ValidationResult()

        if not SCOPE_ID_MIN <= entity.scope_id <= SCOPE_ID_MAX:
            result.error(f"scope id must be {SCOPE_ID_MIN}-{SCOPE_ID_MAX}, got {entity.scope_id}")
        if not 1 <= entity.prefix <= 30:
            result.error(f"prefix length must be 1-30, got {entity.prefix}")
            return result

        network = ipaddress.IPv4Network(f"{entity.range_start}/{entity.prefix}", strict=False)
        start = ipaddress.IPv4Address(entity.range_start)
        end = ipaddress.IPv4Address(entity.range_end)
        if end not in network:
            result.error(f"range end {end} is outside {network}")
        if start > end:
            result.error(f"range start {start} is after range end {end}")
        if entity.gateway is not None and ipaddress.IPv4Address(entity.gateway) not in network:
            result.warn(f"gateway {entity.gateway} is outside {network}")

        if (
            entity.expire not in (None, INFINITY)
            and entity.max_expire not in (None, INFINITY)
            and _minutes(entity.max_expire) < _minutes(entity.expire)
        ):
            result.error(f"maxexpire {entity.max_expire} is shorter than expire {entity.expire}")
        if entity.expire == INFINITY and entity.max_expire not in (None, INFINITY):
            result.error("maxexpire must be infinity when expire is infinity")

        for excluded in entity.exclusions:
            low, high = ipaddress.IPv4Address(excluded.start), ipaddress.IPv4Address(excluded.end)
            if low > high:
                result.error(f"exclusion {excluded} has start after end")
            elif low < start or high > end:
                result.error(f"exclusion {excluded} is outside the scope range")

        seen: dict[str, str] = {}
        for binding in entity.bindings:
            if ipaddress.IPv4Address(binding.ip_address) not in network:
                result.error(f"binding {binding.ip_address} is outside {network}")
            previous = seen.setdefault(binding.ip_address, binding.mac_address)
            if previous != binding.mac_address:
                result.error(f"binding {binding.ip_address} is bound to two MAC addresses")

        return result

    # --- Synthesizer ---

    def _declare_fields(self, entity: DhcpScope) -> dict[str, Any]:
        tail = []
        if entity.exclusions:
            tail.append("except " + " ".join(str(r) for r in entity.exclusions))
        tail.append(optional_segment("gateway", entity.gateway))
        tail.append(optional_segment("expire", entity.expire))
        tail.append(optional_segment("maxexpire", entity.max_expire))
        return {
            "scope_id": entity.scope_id,
            "start": entity.range_start,
            "end": entity.range_end,
            "prefix": entity.prefix,
            "tail": " ".join(tail),
        }

    def _option_fields(self, entity: DhcpScope) -> dict[str, Any]:
        options = entity.options or DhcpScopeOptions()
        values = [
            optional_kv("dns", _render_list(options.dns_servers)),
            optional_kv("router", _render_list(options.routers)),
            optional_kv("domain", _render_domain(options.domain_name)),
        ]
        return {"scope_id": entity.scope_id, "values": " ".join(v for v in values if v)}

    def _bind_fields(self, scope_id: int, binding: DhcpBinding) -> dict[str, Any]:
        return {
            "scope_id": scope_id,
            "ip": binding.ip_address,
            "kind": "ethernet" if binding.client_identifier else "",
            "mac": binding.mac_address,
        }

    def create_steps(self, entity: DhcpScope) -> list[Step]:
        steps: list[Step] = [(DECLARE, self._declare_fields(entity))]
        if entity.options is not None:
            steps.append((OPTION, self._option_fields(entity)))
        for binding in entity.bindings:
            steps.append((BIND, self._bind_fields(entity.scope_id, binding)))
        return steps

    def update_commands(self, current: DhcpScope, desired: DhcpScope) -> list[str]:
        scope_id = desired.scope_id
        bindings = diff_collection(current.bindings, desired.bindings, key=lambda b: b.ip_address)
        exclusions = diff_collection(current.exclusions, desired.exclusions)

        removals, additions = split_collection_commands(
            bindings,
            add=lambda b: BIND.render(**self._bind_fields(scope_id, b)),
            remove=lambda b: BIND.render_delete(**self._bind_fields(scope_id, b)),
        )

        commands = list(removals)
        if not exclusions.no_change:
            logger.debug(summarize_diff(exclusions, label=f"scope {scope_id} exclusion"))
        if not exclusions.no_change or _declaration(current) != _declaration(desired):
            commands.append(DECLARE.render(**self._declare_fields(desired)))

        if desired.options != current.options:
            # Re-sending the option line keeps keys it does not mention
            if current.options is not None and (
                desired.options is None or _dropped_options(current.options, desired.options)
            ):
                commands.append(OPTION.render_delete(scope_id=scope_id))
            if desired.options is not None:
                commands.append(OPTION.render(**self._option_fields(desired)))
        commands.extend(additions)
        return commands

    def minimal_delete(self, identity: Hashable) -> list[str]:
        return [DECLARE.render_delete(scope_id=identity)]


def _declaration(scope: DhcpScope) -> tuple:
    return (
        scope.range_start, scope.range_end, scope.prefix, scope.gateway,
        scope.expire, scope.max_expire,
    )


def _dropped_options(current: DhcpScopeOptions, desired: DhcpScopeOptions) -> bool:
    """True when a key set in ``current`` is unset in ``desired``."""
    return any(
        getattr(current, name) is not None and getattr(desired, name) is None
        for name in ("dns_servers", "routers", "domain_name")
    )


def _canonical_list(values: Optional[tuple[str, ...]]) -> Optional[tuple[str, ...]]:
    if values is None:
        return None
    return tuple(normalize_ipv4(v) for v in values)


def _render_list(values: Optional[tuple[str, ...]]) -> Optional[str]:
    if values is None:
        return None
    return ",".join(values) if values else "none"


def _minutes(lease: str) -> int:
    hours, minutes = lease.split(":")
    return int(hours) * 60 + int(minutes)


def _render_domain(domain: Optional[str]) -> Optional[str]:
    if domain is None:
        return None
    return domain or "none"
