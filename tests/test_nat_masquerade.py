"""Tests for the NAT masquerade domain."""
from dataclasses import replace

import pytest

from rtx_reconciler.domains import MasqueradeStaticEntry, NatMasquerade, NatMasqueradeDomain
from rtx_reconciler.domains.nat_masquerade import validate_mapping
from rtx_reconciler.errors import ValidationError

DUMP = """\
nat descriptor type 1000 masquerade
nat descriptor address outer 1000 ipcp
nat descriptor address inner 1000 192.168.100.1-192.168.100.254
nat descriptor masquerade static 1000 1 192.168.100.10 tcp 443
nat descriptor masquerade static 1000 2 192.168.100.11 tcp 8080=80
nat descriptor masquerade static 1000 3 192.168.100.12 esp
nat descriptor type 2000 nat
nat descriptor address outer 2000 203.0.113.10
"""


@pytest.fixture
def domain():
    return NatMasqueradeDomain()


@pytest.fixture
def descriptor():
    return NatMasquerade(
        descriptor_id=1000,
        outer_address="ipcp",
        inner_network="192.168.100.1-192.168.100.254",
        static_entries=(
            MasqueradeStaticEntry(1, "192.168.100.10", "tcp", 443, 443),
            MasqueradeStaticEntry(2, "192.168.100.11", "tcp", 8080, 80),
            MasqueradeStaticEntry(3, "192.168.100.12", "esp"),
        ),
    )


class TestNatMasqueradeParser:
    """Tests for parsing masquerade descriptors."""

    def test_parse_descriptor(self, domain, descriptor):
        """Type, addresses and static entries merge into one descriptor."""
        assert domain.parse(DUMP) == [descriptor]

    def test_other_descriptor_types_ignored(self, domain):
        """Descriptors of other NAT types are not masquerades."""
        assert domain.parse(DUMP, 2000) == []

    def test_protocol_only_entry(self, domain):
        """An esp entry parses with no ports."""
        entry = domain.parse(DUMP)[0].static_entries[2]
        assert entry.protocol == "esp"
        assert entry.outside_port is None
        assert entry.inside_port is None

    def test_legacy_static_format(self, domain):
        """The outer:port=inner:port form parses to the same entry shape."""
        dump = (
            "nat descriptor type 1 masquerade\n"
            "nat descriptor masquerade static 1 1 203.0.113.1:8080=192.168.1.10:80 tcp"
        )
        entry = domain.parse(dump)[0].static_entries[0]
        assert entry == MasqueradeStaticEntry(1, "192.168.1.10", "tcp", 8080, 80)

    def test_dump_command_filters_by_id(self, domain):
        """A single-descriptor read greps for its id."""
        assert domain.dump_command(1000) == 'show config | grep "nat descriptor.* 1000"'
        assert domain.dump_command() == 'show config | grep "nat descriptor"'


class TestNatMasqueradeBuilder:
    """Tests for masquerade command synthesis."""

    def test_build_create(self, domain, descriptor):
        """Type first, addresses next, static entries last."""
        assert domain.build_create(descriptor) == [
            "nat descriptor type 1000 masquerade",
            "nat descriptor address outer 1000 ipcp",
            "nat descriptor address inner 1000 192.168.100.1-192.168.100.254",
            "nat descriptor masquerade static 1000 1 192.168.100.10 tcp 443",
            "nat descriptor masquerade static 1000 2 192.168.100.11 tcp 8080=80",
            "nat descriptor masquerade static 1000 3 192.168.100.12 esp",
        ]

    def test_build_delete_is_reverse(self, domain, descriptor):
        """Delete mirrors create."""
        create = domain.build_create(descriptor)
        delete = domain.build_delete(1000, descriptor)
        assert len(delete) == len(create)
        assert delete[0] == "no nat descriptor masquerade static 1000 3"
        assert delete[-1] == "no nat descriptor type 1000"

    def test_round_trip(self, domain, descriptor):
        """Create commands parse back to the same descriptor."""
        assert domain.parse("\n".join(domain.build_create(descriptor))) == [descriptor]

    def test_single_port_fills_the_other(self, domain, descriptor):
        """Giving only the inside port maps the same outside port."""
        entity = replace(descriptor, static_entries=(
            MasqueradeStaticEntry(1, "192.168.100.10", "udp", inside_port=500),
        ))
        assert domain.build_create(entity)[-1] == "nat descriptor masquerade static 1000 1 192.168.100.10 udp 500"

    def test_update_replaces_changed_entry(self, domain, descriptor):
        """A changed entry is removed then re-added, others untouched."""
        entries = list(descriptor.static_entries)
        entries[1] = MasqueradeStaticEntry(2, "192.168.100.20", "tcp", 8080, 80)
        desired = replace(descriptor, static_entries=tuple(entries))
        assert domain.build_update(descriptor, desired) == [
            "no nat descriptor masquerade static 1000 2",
            "nat descriptor masquerade static 1000 2 192.168.100.20 tcp 8080=80",
        ]

    def test_update_outer_address(self, domain, descriptor):
        """Changing the outer address re-issues only that command."""
        desired = replace(descriptor, outer_address="primary")
        assert domain.build_update(descriptor, desired) == [
            "nat descriptor address outer 1000 primary",
        ]


class TestNatMasqueradeValidation:
    """Tests for port/protocol cross-field rules."""

    def test_port_without_protocol(self, domain, descriptor):
        """A port with no protocol is rejected before any command is built."""
        entity = replace(descriptor, static_entries=(
            MasqueradeStaticEntry(1, "192.168.100.10", "", 80, 80),
        ))
        with pytest.raises(ValidationError) as exc_info:
            domain.build_create(entity)
        assert "a port requires an explicit protocol" in str(exc_info.value)

    def test_esp_with_port(self):
        """Protocol-only entries must omit ports."""
        result = validate_mapping("esp", 500, 500)
        assert not result.valid
        assert "protocol-only entry (esp) must omit ports" in result.errors

    def test_tcp_without_port(self):
        """tcp needs a port."""
        assert not validate_mapping("tcp", None, None).valid

    def test_port_range(self):
        """Ports above 65535 are rejected."""
        assert not validate_mapping("tcp", 70000, 80).valid

    def test_esp_without_port_valid(self):
        """A bare esp entry is valid."""
        assert validate_mapping("esp", None, None).valid
