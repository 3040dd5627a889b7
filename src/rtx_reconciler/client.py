"""Router client: every domain service bound to one command channel."""
import asyncio
import logging
from typing import Optional

from .channel.base import CommandChannel
from .config.settings import EngineSettings
from .domains import (
    BgpDomain,
    DhcpScopeDomain,
    InterfaceFilterDomain,
    IpFilterDomain,
    NatMasqueradeDomain,
    StaticRouteDomain,
    VlanDomain,
)
from .engine.service import BoundService, ReconciliationService

logger = logging.getLogger(__name__)


class RouterClient:
    """Session-scoped handle to one RTX router.

    Usage:
        async with RouterClient(channel) as router:
            scope = await router.dhcp_scopes.get(1)
            await router.dhcp_scopes.update(replace(scope, expire="24:00"))
    """

    def __init__(self, channel: CommandChannel, settings: Optional[EngineSettings] = None):
        self.channel = channel
        self.settings = settings or EngineSettings.from_env()
        self.coordinator = self.settings.create_coordinator()

        width = self.settings.terminal_width
        self.dhcp_scopes = self._bind(DhcpScopeDomain(width))
        self.nat_masquerades = self._bind(NatMasqueradeDomain(width))
        self.static_routes = self._bind(StaticRouteDomain(width))
        self.vlans = self._bind(VlanDomain(width))
        self.bgp = self._bind(BgpDomain(width))
        self.ip_filters = self._bind(IpFilterDomain(width))
        self.interface_filters = self._bind(InterfaceFilterDomain(width))

    def _bind(self, domain) -> BoundService:
        return BoundService(ReconciliationService(domain, self.coordinator), self.channel)

    @property
    def device_id(self) -> str:
        return self.channel.device_id

    @property
    def services(self) -> dict[str, BoundService]:
        """Bound services keyed by domain name."""
        return {
            bound.domain.name: bound
            for bound in (
                self.dhcp_scopes,
                self.nat_masquerades,
                self.static_routes,
                self.vlans,
                self.bgp,
                self.ip_filters,
                self.interface_filters,
            )
        }

    async def save(self, cancel: Optional[asyncio.Event] = None) -> str:
        """Run the persist command on its own, e.g. after a PersistError."""
        return await self.coordinator.persist(self.channel, cancel)

    async def close(self) -> None:
        await self.channel.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
