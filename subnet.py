# subnet.py
"""IPv4 subnet arithmetic.

Every function here is pure. Addresses and masks may be passed either as
dotted-quad strings or as ``ipaddress.IPv4Address`` objects; anything that is
not IPv4 raises :class:`exceptions.ValidationError`.
"""
import ipaddress
from typing import Iterator, Optional, Tuple, Union

from exceptions import ValidationError

AddressLike = Union[str, ipaddress.IPv4Address]

MAX_PREFIX = 32


def to_ipv4(value: AddressLike, name: str = "address") -> ipaddress.IPv4Address:
    """Coerces ``value`` into an IPv4Address, rejecting everything else."""
    if isinstance(value, ipaddress.IPv4Address):
        return value
    if isinstance(value, ipaddress.IPv6Address):
        raise ValidationError(f"Only IPv4 addresses are supported ({name}={value})")
    try:
        return ipaddress.IPv4Address(str(value).strip())
    except ValueError as err:
        raise ValidationError(f"Invalid IPv4 {name}: {value!r}") from err


def network_address(ip: AddressLike, mask: AddressLike) -> ipaddress.IPv4Address:
    """Bitwise AND of address and mask, octet by octet."""
    ip_bytes = to_ipv4(ip, "ip").packed
    mask_bytes = to_ipv4(mask, "mask").packed
    return ipaddress.IPv4Address(bytes(a & m for a, m in zip(ip_bytes, mask_bytes)))


def broadcast_address(ip: AddressLike, mask: AddressLike) -> ipaddress.IPv4Address:
    """Address OR inverted mask, octet by octet."""
    ip_bytes = to_ipv4(ip, "ip").packed
    mask_bytes = to_ipv4(mask, "mask").packed
    return ipaddress.IPv4Address(bytes(a | (~m & 0xFF) for a, m in zip(ip_bytes, mask_bytes)))


class HostAddresses:
    """Lazy, restartable sequence of the usable hosts of a subnet.

    Network and broadcast addresses are excluded, so a /31 or /32 yields
    nothing. Iterating twice walks the range twice; nothing is materialised.
    """

    def __init__(self, network: ipaddress.IPv4Address, broadcast: ipaddress.IPv4Address):
        self.network = network
        self.broadcast = broadcast
        self._first = int(network) + 1
        self._last = int(broadcast) - 1

    def __iter__(self) -> Iterator[ipaddress.IPv4Address]:
        for value in range(self._first, self._last + 1):
            yield ipaddress.IPv4Address(value)

    def __len__(self) -> int:
        return max(0, self._last - self._first + 1)

    def __contains__(self, item) -> bool:
        try:
            value = int(to_ipv4(item))
        except ValidationError:
            return False
        return self._first <= value <= self._last

    def __repr__(self) -> str:
        return f"HostAddresses({self.network}..{self.broadcast}, {len(self)} hosts)"


def host_addresses(ip: AddressLike, mask: AddressLike) -> HostAddresses:
    return HostAddresses(network_address(ip, mask), broadcast_address(ip, mask))


def prefix_length(mask: AddressLike) -> int:
    """Counts the leading one-bits of ``mask``.

    Counting stops at the first zero bit, so a non-contiguous mask such as
    255.0.255.0 reports 8.
    """
    count = 0
    for octet in to_ipv4(mask, "mask").packed:
        for bit in range(7, -1, -1):
            if not octet & (1 << bit):
                return count
            count += 1
    return count


def mask_from_prefix(prefix: int) -> ipaddress.IPv4Address:
    if isinstance(prefix, bool) or not isinstance(prefix, int):
        raise ValidationError(f"Prefix length must be an integer, got {prefix!r}")
    if prefix < 0 or prefix > MAX_PREFIX:
        raise ValidationError("Prefix length must be between 0 and 32")
    return ipaddress.IPv4Address((0xFFFFFFFF << (MAX_PREFIX - prefix)) & 0xFFFFFFFF)


def host_count(mask: AddressLike) -> int:
    """Usable hosts behind ``mask``; 0 for /31 and /32."""
    host_bits = MAX_PREFIX - prefix_length(mask)
    if host_bits <= 1:
        return 0
    return (1 << host_bits) - 2


def parse_cidr(text: Optional[str]) -> Optional[Tuple[ipaddress.IPv4Address, int]]:
    """Parses ``a.b.c.d/n`` into ``(network, prefix)``.

    The returned network is always the true network of the given address,
    e.g. ``192.168.1.100/24`` gives ``(192.168.1.0, 24)``. Malformed input
    returns None.
    """
    if not text or not text.strip():
        return None

    parts = text.strip().split("/")
    if len(parts) != 2:
        return None

    try:
        ip = to_ipv4(parts[0])
        prefix = int(parts[1])
    except (ValidationError, ValueError):
        return None

    if prefix < 0 or prefix > MAX_PREFIX:
        return None

    return network_address(ip, mask_from_prefix(prefix)), prefix


def cidr_notation(ip: AddressLike, mask: AddressLike) -> str:
    return f"{network_address(ip, mask)}/{prefix_length(mask)}"
