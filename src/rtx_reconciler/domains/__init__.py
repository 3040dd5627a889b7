"""Configuration domain types supported by the reconciliation engine."""
from ..engine.domain import Domain
from ..engine.formats import DEFAULT_TERMINAL_WIDTH
from .bgp import BgpConfig, BgpDomain, BgpNeighbor, BgpNetwork
from .dhcp_scope import DhcpBinding, DhcpScope, DhcpScopeDomain, DhcpScopeOptions, ExcludeRange
from .interface_filter import InterfaceFilter, InterfaceFilterDomain
from .ip_filter import IpFilter, IpFilterDomain
from .nat_masquerade import MasqueradeStaticEntry, NatMasquerade, NatMasqueradeDomain
from .static_route import NextHop, StaticRoute, StaticRouteDomain
from .vlan import Vlan, VlanDomain

__all__ = [
    "Domain",
    "BgpConfig",
    "BgpDomain",
    "BgpNeighbor",
    "BgpNetwork",
    "DhcpBinding",
    "DhcpScope",
    "DhcpScopeDomain",
    "DhcpScopeOptions",
    "ExcludeRange",
    "InterfaceFilter",
    "InterfaceFilterDomain",
    "IpFilter",
    "IpFilterDomain",
    "MasqueradeStaticEntry",
    "NatMasquerade",
    "NatMasqueradeDomain",
    "NextHop",
    "StaticRoute",
    "StaticRouteDomain",
    "Vlan",
    "VlanDomain",
]

# Domain type registry
DOMAIN_TYPES: dict[str, type[Domain]] = {
    "dhcp_scope": DhcpScopeDomain,
    "nat_masquerade": NatMasqueradeDomain,
    "static_route": StaticRouteDomain,
    "vlan": VlanDomain,
    "bgp": BgpDomain,
    "ip_filter": IpFilterDomain,
    "interface_filter": InterfaceFilterDomain,
}


def create_domain(name: str, terminal_width: int = DEFAULT_TERMINAL_WIDTH) -> Domain:
    """Factory function to create domain instances."""
    key = name.lower().replace("-", "_")
    if key not in DOMAIN_TYPES:
        raise ValueError(f"Unknown domain type: {name}")
    return DOMAIN_TYPES[key](terminal_width=terminal_width)
