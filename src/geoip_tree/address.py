"""
Address parsing for search tree lookups.

Addresses are numeric only; host names are never resolved. An address
is turned into an integer and a bit count, and the search tree is walked
from the most significant bit down.
"""

from typing import Tuple, Union
import ipaddress

from .errors import AddressLookupError


IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

# IPv4 addresses live under ::/96 in an IPv6 tree
IPV4_SUBTREE_BITS = 96


def parse_address(text: Union[str, IPAddress]) -> IPAddress:
    """
    Parse a numeric IPv4 or IPv6 address.

    Args:
        text: Address string such as "81.2.69.160" or "2001:db8::1"

    Returns:
        The parsed address

    Raises:
        AddressLookupError: The string is not a numeric address
    """
    if isinstance(text, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return text
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError as e:
        raise AddressLookupError(f"Invalid IP address {text!r}") from e


def parse_network(text: Union[str, IPNetwork]) -> IPNetwork:
    """
    Parse a network in CIDR notation. Host bits are masked off.

    Raises:
        ValueError: The string is not a network
    """
    if isinstance(text, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return text
    return ipaddress.ip_network(text.strip(), strict=False)


def address_bits(address: IPAddress) -> Tuple[int, int]:
    """
    Get the integer form of an address and its width in bits.

    Returns:
        Tuple of (integer value, 32 or 128)
    """
    return int(address), address.max_prefixlen


def network_bits(network: IPNetwork, ip_version: int) -> Tuple[int, int]:
    """
    Get the leading bits that select a network in a tree of `ip_version`.

    IPv4 networks in an IPv6 tree are placed below ::/96.

    Returns:
        Tuple of (integer prefix value left-aligned to the tree width,
        number of significant bits)

    Raises:
        ValueError: An IPv6 network was given for an IPv4 tree
    """
    value = int(network.network_address)
    prefix_len = network.prefixlen
    if network.version == 6 and ip_version == 4:
        raise ValueError(f"Cannot insert IPv6 network {network} into an IPv4 tree")
    if network.version == 4 and ip_version == 6:
        prefix_len += IPV4_SUBTREE_BITS
    return value, prefix_len
