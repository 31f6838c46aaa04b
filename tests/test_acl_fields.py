"""
Tests for the field decoders and the MAC address sequencer.
"""
import pytest

from acl_fields import (
    IPV6_EXACT_MASK,
    U32_MAX,
    ParseError,
    format_mac_dotted,
    increment_mac,
    ipv4_prefix_mask,
    ipv6_prefix_mask,
    parse_interface,
    parse_ipv4,
    parse_ipv4_prefix,
    parse_ipv6,
    parse_ipv6_prefix,
    parse_mac,
    parse_uint,
)


def _leading_ones(mask: int, width: int) -> int:
    return width - (~mask & ((1 << width) - 1)).bit_length()


class TestParseUint:
    """Integer fields in decimal or hex."""

    def test_decimal_and_hex(self):
        assert parse_uint("42", "priority") == 42
        assert parse_uint("0x2A", "priority") == 42
        assert parse_uint(" 7 ", "priority") == 7

    def test_upper_bound_is_inclusive(self):
        assert parse_uint("4095", "VLAN ID", 4095) == 4095
        with pytest.raises(ParseError):
            parse_uint("4096", "VLAN ID", 4095)

    @pytest.mark.parametrize("text", ["", "-1", "12abc", "0x", "1.5", "1_000", None])
    def test_rejects_malformed(self, text):
        with pytest.raises(ParseError):
            parse_uint(text, "count")

    def test_error_names_field_and_text(self):
        with pytest.raises(ParseError) as exc:
            parse_uint("bogus", "DSCP", 63)
        assert exc.value.field == "DSCP"
        assert exc.value.text == "bogus"
        assert 'Invalid DSCP "bogus"' in str(exc.value)

    def test_interface_all(self):
        assert parse_interface("all") == (0, 0)
        assert parse_interface("ALL") == (0, 0)
        assert parse_interface("3") == (3, U32_MAX)


class TestMacAddress:
    """The three textual MAC layouts."""

    @pytest.mark.parametrize("text", [
        "01:02:03:04:05:06",
        "01-02-03-04-05-06",
        "0102.0304.0506",
    ])
    def test_layouts_decode_to_same_bytes(self, text):
        assert parse_mac(text) == bytes([1, 2, 3, 4, 5, 6])

    def test_dotted_groups_are_network_order(self):
        assert parse_mac("aabb.ccdd.eeff") == bytes.fromhex("aabbccddeeff")
        assert parse_mac("1.2.3") == bytes([0, 1, 0, 2, 0, 3])

    @pytest.mark.parametrize("text", [
        "01:02:03:04:05",
        "01:02:03:04:05:06:07",
        "01:02-03:04:05:06",
        "0102.0304",
        "zz:02:03:04:05:06",
        "",
    ])
    def test_rejects_malformed(self, text):
        with pytest.raises(ParseError):
            parse_mac(text, "source MAC address")

    def test_dotted_format(self):
        assert format_mac_dotted(bytes.fromhex("000907050301")) == "0009.0705.0301"


class TestIncrementMac:
    """Big-endian 48-bit counter."""

    def test_simple_increment(self):
        assert increment_mac(bytes.fromhex("000103050709")) == bytes.fromhex("00010305070a")

    def test_carry(self):
        assert increment_mac(bytes.fromhex("0000000000ff")) == bytes.fromhex("000000000100")
        assert increment_mac(bytes.fromhex("00ffffffffff")) == bytes.fromhex("010000000000")

    def test_wraparound(self):
        assert increment_mac(b"\xff" * 6) == bytes(6)

    def test_does_not_modify_input(self):
        mac = bytes.fromhex("0000000000ff")
        increment_mac(mac)
        assert mac == bytes.fromhex("0000000000ff")


class TestIpAddresses:
    """IPv4 and IPv6 address decoding."""

    @pytest.mark.parametrize("text", ["10.0.0.1", "0x0a000001", "167772161"])
    def test_ipv4_dotted_or_numeric(self, text):
        assert parse_ipv4(text) == 0x0A000001

    def test_ipv4_zero(self):
        assert parse_ipv4("0.0.0.0") == 0
        assert parse_ipv4("0") == 0

    @pytest.mark.parametrize("text", ["10.0.0", "4294967296", "host.example", ""])
    def test_ipv4_rejects_malformed(self, text):
        with pytest.raises(ParseError):
            parse_ipv4(text, "source IPv4 address")

    def test_ipv6(self):
        assert parse_ipv6("2001:db8::1") == 0x20010DB8000000000000000000000001
        assert parse_ipv6("::") == 0

    @pytest.mark.parametrize("text", ["2001:db8::1::2", "10.0.0.1", "gggg::", "1"])
    def test_ipv6_rejects_malformed(self, text):
        with pytest.raises(ParseError):
            parse_ipv6(text)


class TestPrefixMasks:
    """CIDR prefix length to mask."""

    @pytest.mark.parametrize("prefix", range(0, 33))
    def test_ipv4_leading_ones(self, prefix):
        mask = ipv4_prefix_mask(prefix)
        assert _leading_ones(mask, 32) == prefix
        assert mask == ((1 << prefix) - 1) << (32 - prefix)

    def test_ipv4_bounds(self):
        assert ipv4_prefix_mask(0) == 0
        assert ipv4_prefix_mask(32) == 0xFFFFFFFF
        assert ipv4_prefix_mask(24) == 0xFFFFFF00

    @pytest.mark.parametrize("prefix", range(0, 129))
    def test_ipv6_leading_ones(self, prefix):
        mask = ipv6_prefix_mask(prefix)
        assert _leading_ones(mask, 128) == prefix
        assert mask == ((1 << prefix) - 1) << (128 - prefix)

    def test_ipv6_bounds(self):
        assert ipv6_prefix_mask(0) == 0
        assert ipv6_prefix_mask(128) == IPV6_EXACT_MASK
        assert ipv6_prefix_mask(33) == (0xFFFFFFFF8 << 92)

    def test_prefix_text(self):
        assert parse_ipv4_prefix("16") == 0xFFFF0000
        assert parse_ipv6_prefix("0x40") == ((1 << 64) - 1) << 64

    @pytest.mark.parametrize("text", ["33", "-1", "abc", ""])
    def test_ipv4_prefix_rejects(self, text):
        with pytest.raises(ParseError):
            parse_ipv4_prefix(text, "source IPv4 prefix length")

    @pytest.mark.parametrize("text", ["129", "x"])
    def test_ipv6_prefix_rejects(self, text):
        with pytest.raises(ParseError):
            parse_ipv6_prefix(text)
