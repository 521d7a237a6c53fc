"""Tests for address parsing."""

import ipaddress

import pytest
from geoip_tree.address import (
    IPV4_SUBTREE_BITS,
    address_bits,
    network_bits,
    parse_address,
    parse_network,
)
from geoip_tree.errors import AddressLookupError


class TestParseAddress:
    """Tests for parse_address()."""

    def test_ipv4(self):
        """Test parsing an IPv4 address."""
        assert parse_address("81.2.69.160") == ipaddress.IPv4Address("81.2.69.160")

    def test_ipv6(self):
        """Test parsing an IPv6 address."""
        assert parse_address("2001:218::1") == ipaddress.IPv6Address("2001:218::1")

    def test_whitespace_stripped(self):
        """Test that surrounding whitespace is ignored."""
        assert parse_address("  1.2.3.4\n") == ipaddress.IPv4Address("1.2.3.4")

    def test_address_object_passthrough(self):
        """Test that address objects are returned unchanged."""
        address = ipaddress.ip_address("::1")
        assert parse_address(address) is address

    @pytest.mark.parametrize("text", ["", "not-an-ip", "256.1.1.1", "example.com", "1.2.3"])
    def test_invalid(self, text):
        """Test that non-numeric or malformed addresses are rejected."""
        with pytest.raises(AddressLookupError):
            parse_address(text)

    def test_error_is_value_error(self):
        """Test that address errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            parse_address("bogus")


class TestBits:
    """Tests for address_bits() and network_bits()."""

    def test_address_bits(self):
        """Test integer value and width of addresses."""
        assert address_bits(ipaddress.ip_address("1.2.3.4")) == (0x01020304, 32)
        assert address_bits(ipaddress.ip_address("::1")) == (1, 128)

    def test_network_bits_same_version(self):
        """Test prefix bits for a network in a tree of its own version."""
        network = parse_network("81.2.69.0/24")
        assert network_bits(network, 4) == (int(network.network_address), 24)

    def test_ipv4_network_in_ipv6_tree(self):
        """Test that IPv4 networks are placed below ::/96."""
        network = parse_network("81.2.69.0/24")
        value, prefix_len = network_bits(network, 6)
        assert prefix_len == IPV4_SUBTREE_BITS + 24
        assert value == int(network.network_address)

    def test_ipv6_network_in_ipv4_tree(self):
        """Test that IPv6 networks cannot go into an IPv4 tree."""
        with pytest.raises(ValueError):
            network_bits(parse_network("2001:218::/32"), 4)

    def test_parse_network_masks_host_bits(self):
        """Test that host bits are masked off."""
        assert parse_network("81.2.69.160/24") == ipaddress.ip_network("81.2.69.0/24")
