# utils.py
import logging
import re
import socket
import subprocess
from pathlib import Path
from typing import Optional

from mac_vendor_lookup import MacLookup
from ping3 import ping

logger = logging.getLogger(__name__)

PROC_ARP_TABLE = Path("/proc/net/arp")
MAC_PATTERN = re.compile(r"\b([0-9a-fA-F]{1,2}(?:[:-][0-9a-fA-F]{1,2}){5})\b")
EMPTY_MAC = "00:00:00:00:00:00"

_mac_lookup: Optional[MacLookup] = None


def format_mac(mac: str) -> str:
    """Formats a MAC address to lowercase with colons and two digits per octet."""
    octets = mac.strip().lower().replace("-", ":").split(":")
    return ":".join(octet.zfill(2) for octet in octets)


def is_valid_ipv4(ip: str) -> bool:
    """Checks if a string is a valid IPv4 address."""
    pattern = r"^(\d{1,3}\.){3}\d{1,3}$"
    if re.match(pattern, ip):
        parts = ip.split('.')
        return all(0 <= int(part) <= 255 for part in parts)
    return False


def ping_host(address: str, timeout_ms: int) -> Optional[float]:
    """Sends one ICMP echo request.

    Returns the round-trip time in milliseconds, or None when the host did not
    answer within ``timeout_ms``.
    """
    delay = ping(address, timeout=timeout_ms / 1000.0, unit="ms")
    if delay is None or delay is False:
        return None
    return float(delay)


def reverse_lookup(address: str) -> Optional[str]:
    """Resolves the PTR name of ``address``; None when there is none."""
    try:
        hostname, _, _ = socket.gethostbyaddr(address)
    except (socket.herror, socket.gaierror, OSError) as err:
        logger.debug(f"Reverse lookup failed for {address}: {err}")
        return None
    return hostname or None


def _mac_from_proc(address: str) -> Optional[str]:
    with PROC_ARP_TABLE.open("r", encoding="utf-8") as table:
        next(table, None)  # header
        for line in table:
            parts = line.split()
            if len(parts) < 4 or parts[0] != address:
                continue
            if parts[2] == "0x0":
                return None  # incomplete entry
            mac = format_mac(parts[3])
            return None if mac == EMPTY_MAC else mac
    return None


def _mac_from_arp_command(address: str) -> Optional[str]:
    try:
        output = subprocess.run(
            ["arp", "-a", address], capture_output=True, text=True, timeout=2, check=False
        ).stdout
    except (OSError, subprocess.SubprocessError) as err:
        logger.debug(f"arp lookup failed for {address}: {err}")
        return None
    for line in output.splitlines():
        if address not in line:
            continue
        match = MAC_PATTERN.search(line)
        if match:
            mac = format_mac(match.group(1))
            return None if mac == EMPTY_MAC else mac
    return None


def lookup_neighbor_mac(address: str) -> Optional[str]:
    """Reads the MAC of ``address`` from the OS neighbour (ARP) cache."""
    if PROC_ARP_TABLE.exists():
        try:
            return _mac_from_proc(address)
        except OSError as err:
            logger.debug(f"Could not read {PROC_ARP_TABLE}: {err}")
    return _mac_from_arp_command(address)


def lookup_vendor(mac: str) -> Optional[str]:
    """Maps a MAC address to its manufacturer using the OUI database."""
    global _mac_lookup
    if _mac_lookup is None:
        _mac_lookup = MacLookup()
    try:
        return _mac_lookup.lookup(mac)
    except Exception as e:  # pylint: disable=broad-except
        logger.debug(f"Could not determine vendor for MAC {mac}: {e}")
        return None


def update_vendor_database() -> None:
    """Downloads a fresh copy of the OUI vendor list."""
    MacLookup().update_vendors()
