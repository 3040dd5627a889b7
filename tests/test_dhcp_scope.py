"""Tests for the DHCP scope domain."""
from dataclasses import replace

import pytest

from rtx_reconciler.domains import (
    DhcpBinding,
    DhcpScope,
    DhcpScopeDomain,
    DhcpScopeOptions,
    ExcludeRange,
)
from rtx_reconciler.errors import ParseFormatError, ValidationError

DUMP = """\
# RTX1210 Rev.14.01.38 (Fri Jul 10 10:00:00 2020)
dhcp service server
dhcp server rfc2131 compliant except remain-silent
dhcp scope 1 192.168.100.2-192.168.100.191/24 except 192.168.100.10-192.168.100.20 gateway 192.168.100.1 expire 24:00 maxexpire 72:00
dhcp scope bind 1 192.168.100.5 00:A0:DE:01:02:03
dhcp scope bind 1 192.168.100.6 ethernet 00-a0-de-04-05-06
dhcp scope option 1 dns=192.168.100.1,8.8.8.8 domain=home.example
dhcp scope 2 10.0.0.0/24 expire 1:00
"""


@pytest.fixture
def domain():
    return DhcpScopeDomain()


@pytest.fixture
def scope():
    return DhcpScope(
        scope_id=1,
        range_start="192.168.100.2",
        range_end="192.168.100.191",
        prefix=24,
        gateway="192.168.100.1",
        expire="24:00",
        max_expire="72:00",
        exclusions=(ExcludeRange("192.168.100.10", "192.168.100.20"),),
        options=DhcpScopeOptions(dns_servers=("192.168.100.1", "8.8.8.8"), domain_name="home.example"),
        bindings=(
            DhcpBinding("192.168.100.5", "00:a0:de:01:02:03"),
            DhcpBinding("192.168.100.6", "00:a0:de:04:05:06", client_identifier=True),
        ),
    )


class TestDhcpScopeParser:
    """Tests for parsing DHCP scope configuration."""

    def test_parse_full_scope(self, domain, scope):
        """Declaration, options and bindings merge into one entity."""
        assert domain.parse(DUMP, 1) == [scope]

    def test_parse_section_variant(self, domain):
        """Section-filtered output without the dhcp keyword is understood."""
        scopes = domain.parse(
            "scope 1 192.168.1.20-192.168.1.99/16 gateway 192.168.1.253 expire 12:00"
        )
        assert len(scopes) == 1
        parsed = scopes[0]
        assert parsed.range_start == "192.168.1.20"
        assert parsed.range_end == "192.168.1.99"
        assert parsed.prefix == 16
        assert parsed.gateway == "192.168.1.253"
        assert parsed.expire == "12:00"

    def test_parse_network_form(self, domain):
        """A whole-network declaration expands to the usable host range."""
        parsed = domain.parse(DUMP, 2)[0]
        assert (parsed.range_start, parsed.range_end, parsed.prefix) == ("10.0.0.1", "10.0.0.254", 24)
        assert parsed.expire == "1:00"
        assert parsed.options is None

    def test_dotted_mask(self, domain):
        """A dotted netmask is read as a prefix length."""
        parsed = domain.parse("dhcp scope 3 172.16.0.10-172.16.0.50/255.255.0.0")[0]
        assert parsed.prefix == 16

    def test_list_sorted_by_id(self, domain):
        """List output is sorted by scope id."""
        assert [s.scope_id for s in domain.parse(DUMP)] == [1, 2]

    def test_absent_is_empty(self, domain):
        """A missing scope parses to zero entities, not an error."""
        assert domain.parse(DUMP, 9) == []

    def test_explicit_none_option(self, domain):
        """dns=none is present-but-empty, distinct from absent."""
        dump = "dhcp scope 1 192.168.1.2-192.168.1.100/24\ndhcp scope option 1 dns=none"
        parsed = domain.parse(dump)[0]
        assert parsed.options.dns_servers == ()
        assert parsed.options.routers is None

    def test_orphan_bindings_ignored(self, domain):
        """Bindings without a declaration do not produce a scope."""
        assert domain.parse("dhcp scope bind 7 192.168.7.5 00:a0:de:01:02:03") == []

    def test_malformed_line(self, domain):
        """A dhcp scope line with a broken range is a parse error."""
        with pytest.raises(ParseFormatError):
            domain.parse("dhcp scope 1 192.168.1.2-192.168.1.100")

    def test_wrapped_option_line(self, domain):
        """An option line wrapped at a comma is joined before parsing."""
        dump = (
            "dhcp scope 1 192.168.1.2-192.168.1.100/24\n"
            "dhcp scope option 1 dns=192.168.1.1\n"
            ",8.8.8.8"
        )
        parsed = domain.parse(dump)[0]
        assert parsed.options.dns_servers == ("192.168.1.1", "8.8.8.8")


class TestDhcpScopeBuilder:
    """Tests for DHCP scope command synthesis."""

    def test_build_create(self, domain, scope):
        """Declaration first, then options, then bindings."""
        assert domain.build_create(scope) == [
            "dhcp scope 1 192.168.100.2-192.168.100.191/24 except 192.168.100.10-192.168.100.20 "
            "gateway 192.168.100.1 expire 24:00 maxexpire 72:00",
            "dhcp scope option 1 dns=192.168.100.1,8.8.8.8 domain=home.example",
            "dhcp scope bind 1 192.168.100.5 00:a0:de:01:02:03",
            "dhcp scope bind 1 192.168.100.6 ethernet 00:a0:de:04:05:06",
        ]

    def test_round_trip(self, domain, scope):
        """Create commands parse back to the same entity."""
        assert domain.parse("\n".join(domain.build_create(scope))) == [scope]

    def test_build_delete_is_reverse(self, domain, scope):
        """Delete removes bindings, then options, then the scope."""
        assert domain.build_delete(1, scope) == [
            "no dhcp scope bind 1 192.168.100.6",
            "no dhcp scope bind 1 192.168.100.5",
            "no dhcp scope option 1",
            "no dhcp scope 1",
        ]

    def test_update_no_change(self, domain, scope):
        """Equal entities need no commands."""
        assert domain.build_update(scope, scope) == []

    def test_update_expire_only(self, domain, scope):
        """Changing a declaration attribute re-issues only the declaration."""
        desired = replace(scope, expire="12:00")
        commands = domain.build_update(scope, desired)
        assert len(commands) == 1
        assert commands[0].startswith("dhcp scope 1 ")
        assert "expire 12:00" in commands[0]

    def test_update_added_exclusion(self, domain, scope):
        """A new exclusion range re-issues the declaration with both ranges."""
        desired = replace(scope, exclusions=scope.exclusions + (ExcludeRange("192.168.100.150", "192.168.100.160"),))
        commands = domain.build_update(scope, desired)
        assert commands == [
            "dhcp scope 1 192.168.100.2-192.168.100.191/24 except 192.168.100.10-192.168.100.20 "
            "192.168.100.150-192.168.100.160 gateway 192.168.100.1 expire 24:00 maxexpire 72:00",
        ]

    def test_update_bindings(self, domain, scope):
        """Binding changes remove before they add and leave the rest alone."""
        desired = replace(scope, bindings=(
            DhcpBinding("192.168.100.5", "00:a0:de:99:99:99"),
            DhcpBinding("192.168.100.6", "00:a0:de:04:05:06", client_identifier=True),
        ))
        assert domain.build_update(scope, desired) == [
            "no dhcp scope bind 1 192.168.100.5",
            "dhcp scope bind 1 192.168.100.5 00:a0:de:99:99:99",
        ]

    def test_update_remove_options(self, domain, scope):
        """Dropping all options deletes the option line."""
        assert domain.build_update(scope, replace(scope, options=None)) == ["no dhcp scope option 1"]

    def test_update_dropped_option_key(self, domain, scope):
        """Removing one option key clears the line before setting the rest."""
        desired = replace(scope, options=DhcpScopeOptions(dns_servers=("192.168.100.1", "8.8.8.8")))
        assert domain.build_update(scope, desired) == [
            "no dhcp scope option 1",
            "dhcp scope option 1 dns=192.168.100.1,8.8.8.8",
        ]

    def test_update_added_option_key(self, domain, scope):
        """Adding an option key only re-sends the option line."""
        desired = replace(scope, options=replace(scope.options, routers=("192.168.100.1",)))
        assert domain.build_update(scope, desired) == [
            "dhcp scope option 1 dns=192.168.100.1,8.8.8.8 router=192.168.100.1 domain=home.example",
        ]

    def test_update_exclusion_removed(self, domain, scope):
        """Dropping the only exclusion re-issues the declaration without it."""
        commands = domain.build_update(scope, replace(scope, exclusions=()))
        assert commands == [
            "dhcp scope 1 192.168.100.2-192.168.100.191/24 "
            "gateway 192.168.100.1 expire 24:00 maxexpire 72:00",
        ]

    def test_identity_mismatch(self, domain, scope):
        """Updating across identities is rejected."""
        with pytest.raises(ValidationError):
            domain.build_update(scope, replace(scope, scope_id=2))


class TestDhcpScopeValidation:
    """Tests for DHCP scope validation gating."""

    def test_range_outside_network(self, domain, scope):
        """End address outside the prefix is rejected with no commands."""
        with pytest.raises(ValidationError) as exc_info:
            domain.build_create(replace(scope, range_end="192.168.101.10"))
        assert "outside" in str(exc_info.value)

    def test_exclusion_outside_range(self, domain, scope):
        """Exclusions must fall inside the scope range."""
        with pytest.raises(ValidationError):
            domain.build_create(replace(scope, exclusions=(ExcludeRange("192.168.100.200", "192.168.100.210"),)))

    def test_maxexpire_shorter_than_expire(self, domain, scope):
        """maxexpire below expire is rejected."""
        with pytest.raises(ValidationError):
            domain.build_create(replace(scope, max_expire="1:00"))

    def test_invalid_mac(self, domain, scope):
        """A malformed MAC is a validation error, not a crash."""
        with pytest.raises(ValidationError):
            domain.build_create(replace(scope, bindings=(DhcpBinding("192.168.100.5", "zz"),)))

    def test_scope_id_range(self, domain, scope):
        """Scope id must be 1-255."""
        with pytest.raises(ValidationError):
            domain.build_create(replace(scope, scope_id=0))
