"""Tests for logging helpers and secret redaction."""
import logging

import pytest

from rtx_reconciler.utils.logging_config import (
    REDACTED,
    SecretRedactingFilter,
    redact_secrets,
    redact_state,
    timed,
    timed_section,
)


class TestRedactSecrets:
    """Tests for credential redaction."""

    def test_key_value(self):
        """key=value secrets are replaced."""
        assert redact_secrets("bgp neighbor 1 65002 10.0.0.2 password=hunter2") == (
            f"bgp neighbor 1 65002 10.0.0.2 password={REDACTED}"
        )

    def test_keyword_argument(self):
        """A secret following its keyword, number and 'text' is replaced."""
        assert redact_secrets("ipsec ike pre-shared-key 1 text s3cret") == (
            f"ipsec ike pre-shared-key 1 text {REDACTED}"
        )

    def test_login_password(self):
        """login password <secret> is replaced."""
        assert "topsecret" not in redact_secrets("login password topsecret")

    def test_switch_keywords_kept(self):
        """on/off/none after a secret keyword are not secrets."""
        assert redact_secrets("snmp community off") == "snmp community off"

    def test_plain_commands_untouched(self):
        """Commands without credentials are unchanged."""
        command = "ip filter 100 pass 192.168.1.0/24 * tcp * www"
        assert redact_secrets(command) == command

    def test_empty(self):
        """Empty text passes through."""
        assert redact_secrets("") == ""


class TestRedactState:
    """Tests for redacting entity snapshots."""

    def test_nested_password_fields(self):
        """Credential-named keys are redacted at any depth."""
        state = {
            "asn": 65001,
            "neighbors": [
                {"neighbor_id": 1, "password": "s3cr3tPW"},
                {"neighbor_id": 2, "password": None},
            ],
            "admin_password": "admin",
        }
        assert redact_state(state) == {
            "asn": 65001,
            "neighbors": [
                {"neighbor_id": 1, "password": REDACTED},
                {"neighbor_id": 2, "password": None},
            ],
            "admin_password": REDACTED,
        }

    def test_strings_and_scalars(self):
        """Free text goes through command redaction and scalars pass through."""
        assert redact_state("pre-shared-key 1 text abc") == f"pre-shared-key 1 text {REDACTED}"
        assert redact_state(None) is None
        assert redact_state(("a", 1)) == ["a", 1]


class TestSecretRedactingFilter:
    """Tests for the logging filter."""

    def test_formats_and_redacts(self):
        """Arguments are merged before redaction so nothing leaks."""
        record = logging.LogRecord(
            "rtx_reconciler", logging.INFO, __file__, 1,
            "sending %s", ("password=hunter2",), None,
        )
        assert SecretRedactingFilter().filter(record)
        assert record.getMessage() == f"sending password={REDACTED}"

    def test_clean_record_unchanged(self):
        """Records without secrets keep their arguments."""
        record = logging.LogRecord(
            "rtx_reconciler", logging.INFO, __file__, 1, "read %d lines", (3,), None,
        )
        SecretRedactingFilter().filter(record)
        assert record.args == (3,)


class _Device:
    device_id = "rtx-edge"

    @timed("refresh")
    async def refresh(self, fail: bool = False):
        if fail:
            raise RuntimeError("boom")
        return "ok"


class TestTimed:
    """Tests for timing decorators."""

    @pytest.mark.asyncio
    async def test_success_logged(self, caplog):
        """Successful calls log OK with the device id."""
        with caplog.at_level(logging.INFO, logger="rtx_reconciler.perf"):
            assert await _Device().refresh() == "ok"
        assert "refresh" in caplog.text
        assert "rtx-edge" in caplog.text
        assert "OK" in caplog.text

    @pytest.mark.asyncio
    async def test_failure_logged_and_raised(self, caplog):
        """Failures log FAIL and propagate."""
        with caplog.at_level(logging.INFO, logger="rtx_reconciler.perf"):
            with pytest.raises(RuntimeError):
                await _Device().refresh(fail=True)
        assert "FAIL: boom" in caplog.text

    def test_sync_function(self, caplog):
        """Sync functions are timed too."""
        @timed("parse", device_id="rtx-test")
        def parse():
            return 42

        with caplog.at_level(logging.INFO, logger="rtx_reconciler.perf"):
            assert parse() == 42
        assert "rtx-test" in caplog.text

    @pytest.mark.asyncio
    async def test_timed_section_extra(self, caplog):
        """Sections log their extra context."""
        with caplog.at_level(logging.INFO, logger="rtx_reconciler.perf"):
            async with timed_section("list", "rtx-edge", domain="vlan"):
                pass
        assert "domain=vlan" in caplog.text
