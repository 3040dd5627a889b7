"""Tests for command output classification."""
import pytest

from rtx_reconciler.engine.responses import ResponseKind, classify_output, is_failure


class TestClassifyOutput:
    """Tests for classify_output."""

    @pytest.mark.parametrize("output", [
        "",
        "dhcp scope 1 192.168.1.20-192.168.1.99/24",
        "Saving ... CONFIG0 Done.",
        "LAN1: 0 input errors, 0 output errors",
    ])
    def test_ok_outputs(self, output):
        """Normal and statistics output is OK."""
        assert classify_output(output).ok

    @pytest.mark.parametrize("output", [
        "Error: Invalid parameter",
        "% Error: Incomplete command",
        "エラー: パラメータの数が不適当です",
        "入力エラー",
        "Invalid interface name",
        "Unknown command",
    ])
    def test_device_errors(self, output):
        """Known error markers at line start are device errors."""
        result = classify_output(output)
        assert result.kind == ResponseKind.DEVICE_ERROR
        assert result.message == output.strip()

    def test_error_marker_not_at_line_start(self):
        """Error words in the middle of a line are not errors."""
        assert classify_output("description lan1 Error handling VLAN").ok

    def test_not_found(self):
        """Missing-entry text is classified separately."""
        result = classify_output("Error: Specified entry not found")
        assert result.kind == ResponseKind.NOT_FOUND

    def test_not_found_after_label_and_words(self):
        """A not-found answer may name the entry before the marker."""
        assert classify_output("Error: ip filter 5 not found").kind == ResponseKind.NOT_FOUND
        assert classify_output("filter 5 not found").kind == ResponseKind.NOT_FOUND

    def test_marker_inside_quoted_text(self):
        """Marker words inside a quoted description are not a device answer."""
        assert classify_output('description lan1/1 "dns not found fallback"').ok
        assert classify_output('description lan1/1 "ip route already exists"').ok

    def test_extra_markers(self):
        """Configured extra prefixes count as errors."""
        assert classify_output("FAILED to apply", ["FAILED"]).kind == ResponseKind.DEVICE_ERROR
        assert classify_output("FAILED to apply").ok

    def test_is_failure(self):
        """is_failure is the negation of OK."""
        assert is_failure("Error: foo")
        assert not is_failure("")
