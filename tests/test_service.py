"""Tests for the reconciliation service and router client."""
import asyncio
import logging

import pytest

from rtx_reconciler.client import RouterClient
from rtx_reconciler.config.settings import EngineSettings
from rtx_reconciler.domains import (
    DOMAIN_TYPES,
    BgpConfig,
    BgpDomain,
    BgpNeighbor,
    IpFilter,
    IpFilterDomain,
    Vlan,
    VlanDomain,
    create_domain,
)
from rtx_reconciler.engine.schema import ChangeType, CommandStatus
from rtx_reconciler.engine.service import ReconciliationService
from rtx_reconciler.errors import (
    DeviceRejectedError,
    NotFoundError,
    OperationCancelledError,
    ParseFormatError,
    ValidationError,
)
from rtx_reconciler.utils.audit_log import audit_logger, get_recent_changes, setup_audit_logging

DUMP = """\
ip filter 1 reject *
ip filter 2 pass * * tcp * www
"""


@pytest.fixture
def service():
    return ReconciliationService(IpFilterDomain())


@pytest.fixture
def audit_file(tmp_path):
    """Send audit records to a temporary file for the duration of a test."""
    path = setup_audit_logging(str(tmp_path))
    yield str(path)
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()
    audit_logger.addHandler(logging.NullHandler())
    audit_logger.propagate = True


class TestRead:
    """Tests for Get and List."""

    @pytest.mark.asyncio
    async def test_get(self, service, make_channel):
        """Get reads the filtered dump and returns the one entity."""
        channel = make_channel(dump=DUMP)
        assert await service.get(channel, 2) == IpFilter(
            2, "pass", protocol="tcp", destination_port="www"
        )
        assert channel.sent == ['show config | grep "ip filter 2 "']

    @pytest.mark.asyncio
    async def test_get_missing(self, service, make_channel):
        """An absent entity is NotFoundError."""
        with pytest.raises(NotFoundError):
            await service.get(make_channel(dump=DUMP), 3)

    @pytest.mark.asyncio
    async def test_list_single_dump(self, service, make_channel):
        """List parses every entity from one read."""
        channel = make_channel(dump=DUMP)
        assert [f.filter_id for f in await service.list(channel)] == [1, 2]
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_list_empty(self, service, channel):
        """An empty dump is an empty list, not an error."""
        assert await service.list(channel) == []

    @pytest.mark.asyncio
    async def test_config_text_is_not_an_error(self, make_channel):
        """Marker words inside dumped configuration lines are data."""
        dump = (
            "vlan lan1/1 802.1q vid=10\n"
            "description lan1/1 \"dns not found fallback\"\n"
        )
        vlans = ReconciliationService(VlanDomain())
        vlan = await vlans.get(make_channel(dump=dump), "lan1/1")
        assert vlan == Vlan("lan1", 1, 10, description="dns not found fallback")

    @pytest.mark.asyncio
    async def test_read_error_output(self, service, make_channel):
        """An error answer to the dump command is DeviceRejectedError."""
        with pytest.raises(DeviceRejectedError):
            await service.list(make_channel(dump="Error: Invalid parameter"))

    @pytest.mark.asyncio
    async def test_parse_error_propagates(self, service, make_channel):
        """A malformed line aborts the read."""
        with pytest.raises(ParseFormatError):
            await service.list(make_channel(dump="ip filter 1 reject * * * * * * *"))


class TestCreate:
    """Tests for Create."""

    @pytest.mark.asyncio
    async def test_create_sends_batch_then_save(self, service, channel):
        """Create sends the commands as one batch and then saves."""
        result = await service.create(channel, IpFilter(5, "pass", protocol="tcp", destination_port="www"))

        assert channel.batches == [["ip filter 5 pass * * tcp * www"]]
        assert channel.sent == ["ip filter 5 pass * * tcp * www", "save"]
        assert channel.sessions == 1
        assert result.change_type == ChangeType.CREATE
        assert result.identity == 5
        assert result.persisted
        assert result.batch.success

    @pytest.mark.asyncio
    async def test_invalid_sends_nothing(self, service, channel):
        """Validation fails before anything is sent."""
        with pytest.raises(ValidationError):
            await service.create(channel, IpFilter(5, "pass", destination_port="80"))
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_dry_run(self, service, channel):
        """A dry run returns the plan without touching the device."""
        result = await service.create(channel, IpFilter(5, "reject"), dry_run=True)
        assert result.dry_run
        assert result.plan.main_commands == ["ip filter 5 reject *"]
        assert result.plan.post_commands == ["save"]
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_rejected_not_saved(self, service, make_channel):
        """A rejected command propagates and the configuration is not saved."""
        channel = make_channel(responses={"ip filter 5 reject *": "Error: Invalid parameter"})
        with pytest.raises(DeviceRejectedError) as exc_info:
            await service.create(channel, IpFilter(5, "reject"))
        assert exc_info.value.index == 1
        assert exc_info.value.batch.results[0].status == CommandStatus.REJECTED
        assert "save" not in channel.sent

    @pytest.mark.asyncio
    async def test_cancelled_before_session(self, service, channel):
        """A set cancel signal stops the call before any session is opened."""
        cancel = asyncio.Event()
        cancel.set()
        with pytest.raises(OperationCancelledError) as exc_info:
            await service.create(channel, IpFilter(5, "reject"), cancel=cancel)
        assert exc_info.value.stage == "session"
        assert channel.sessions == 0
        assert channel.sent == []


class TestUpdate:
    """Tests for Update."""

    @pytest.mark.asyncio
    async def test_no_change(self, service, make_channel):
        """An update to the current state sends no configuration commands."""
        channel = make_channel(dump=DUMP)
        result = await service.update(channel, IpFilter(1, "reject"))
        assert result.change_type == ChangeType.NO_CHANGE
        assert not result.changed
        assert channel.config_commands == []

    @pytest.mark.asyncio
    async def test_update_reads_first(self, service, make_channel):
        """Update re-reads the device, then sends the change and saves."""
        channel = make_channel(dump=DUMP)
        result = await service.update(channel, IpFilter(1, "pass"))
        assert channel.sent[0].startswith("show config")
        assert channel.config_commands == ["ip filter 1 pass *", "save"]
        assert result.change_type == ChangeType.MODIFY

    @pytest.mark.asyncio
    async def test_update_missing(self, service, make_channel):
        """Updating an absent entity is NotFoundError."""
        channel = make_channel(dump=DUMP)
        with pytest.raises(NotFoundError):
            await service.update(channel, IpFilter(9, "pass"))
        assert channel.config_commands == []

    @pytest.mark.asyncio
    async def test_update_dry_run(self, service, make_channel):
        """A dry-run update reads but does not write."""
        channel = make_channel(dump=DUMP)
        result = await service.update(channel, IpFilter(1, "pass"), dry_run=True)
        assert result.plan.main_commands == ["ip filter 1 pass *"]
        assert channel.config_commands == []


class TestDelete:
    """Tests for Delete."""

    @pytest.mark.asyncio
    async def test_delete_present(self, service, make_channel):
        """Delete removes the entity and saves."""
        channel = make_channel(dump=DUMP)
        result = await service.delete(channel, "1")
        assert channel.config_commands == ["no ip filter 1", "save"]
        assert result.change_type == ChangeType.DELETE
        assert result.identity == 1

    @pytest.mark.asyncio
    async def test_delete_absent_is_idempotent(self, service, make_channel):
        """Deleting something that is not there succeeds without commands."""
        channel = make_channel(dump=DUMP)
        result = await service.delete(channel, 9)
        assert result.change_type == ChangeType.NO_CHANGE
        assert channel.config_commands == []


class TestAudit:
    """Tests for audit records written by mutating calls."""

    @pytest.mark.asyncio
    async def test_success_record(self, service, channel, audit_file):
        """A successful create writes one record with redacted commands."""
        await service.create(channel, IpFilter(5, "reject"))

        records = get_recent_changes(audit_file)
        assert len(records) == 1
        record = records[0]
        assert record.device_id == "rtx-test"
        assert record.domain == "ip_filter"
        assert record.operation == "create"
        assert record.success
        assert record.persisted
        assert record.commands == ["ip filter 5 reject *"]

    @pytest.mark.asyncio
    async def test_failure_record(self, service, make_channel, audit_file):
        """A rejected batch is audited as a failure with per-command status."""
        channel = make_channel(dump=DUMP, responses={"no ip filter 1": "Error: Invalid parameter"})
        with pytest.raises(DeviceRejectedError):
            await service.delete(channel, 1)

        record = get_recent_changes(audit_file)[0]
        assert not record.success
        assert not record.persisted
        assert record.results[0]["status"] == "rejected"
        assert "rejected" in record.error

    @pytest.mark.asyncio
    async def test_state_secrets_redacted(self, channel, audit_file):
        """Neighbor passwords are redacted in the before/after snapshots."""
        bgp = ReconciliationService(BgpDomain())
        config = BgpConfig(
            enabled=True,
            asn=65001,
            neighbors=(BgpNeighbor(1, 65002, "203.0.113.2", password="s3cr3tPW"),),
        )
        await bgp.create(channel, config)

        with open(audit_file, encoding="utf-8") as f:
            assert "s3cr3tPW" not in f.read()
        record = get_recent_changes(audit_file)[0]
        assert record.after_state["neighbors"][0]["password"] == "[REDACTED]"
        assert record.after_state["asn"] == 65001

    @pytest.mark.asyncio
    async def test_rejection_message_redacted(self, make_channel):
        """The error message does not repeat a credential the device echoed."""
        bgp = ReconciliationService(BgpDomain())
        config = BgpConfig(
            enabled=True,
            asn=65001,
            neighbors=(BgpNeighbor(1, 65002, "203.0.113.2", password="s3cr3tPW"),),
        )
        channel = make_channel()
        channel.responses = {
            command: "Error: Invalid parameter password=s3cr3tPW"
            for command in bgp.domain.build_create(config)
            if "password" in command
        }
        with pytest.raises(DeviceRejectedError) as exc_info:
            await bgp.create(channel, config)
        assert "s3cr3tPW" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_change_not_audited(self, service, make_channel, audit_file):
        """Calls that send nothing leave no record."""
        await service.delete(make_channel(dump=DUMP), 9)
        assert get_recent_changes(audit_file) == []


class TestRouterClient:
    """Tests for the per-router client."""

    def test_services(self, channel):
        """Every domain is bound under its name."""
        client = RouterClient(channel, EngineSettings())
        assert set(client.services) == {
            "dhcp_scope", "nat_masquerade", "static_route", "vlan",
            "bgp", "ip_filter", "interface_filter",
        }
        assert client.device_id == "rtx-test"

    @pytest.mark.asyncio
    async def test_bound_service(self, make_channel):
        """Bound services use the client's channel."""
        channel = make_channel(dump=DUMP)
        client = RouterClient(channel, EngineSettings())
        assert await client.ip_filters.get(1) == IpFilter(1, "reject")

    @pytest.mark.asyncio
    async def test_settings_apply(self, channel):
        """The configured save command is used by every service."""
        client = RouterClient(channel, EngineSettings(save_command="save 2"))
        await client.ip_filters.create(IpFilter(5, "reject"))
        assert channel.sent[-1] == "save 2"

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, channel):
        """Leaving the context closes the channel."""
        async with RouterClient(channel, EngineSettings()) as client:
            await client.save()
        assert channel.sent == ["save"]
        assert channel.closed


class TestDomainRegistry:
    """Tests for the domain type factory."""

    def test_create_domain(self):
        """Domains are created by name with the terminal width applied."""
        domain = create_domain("ip-filter", terminal_width=120)
        assert isinstance(domain, IpFilterDomain)
        assert domain.terminal_width == 120

    def test_every_registered_domain(self):
        """Every registered name builds a domain with the same name."""
        for name in DOMAIN_TYPES:
            assert create_domain(name).name == name

    def test_unknown_domain(self):
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError):
            create_domain("ospf")
