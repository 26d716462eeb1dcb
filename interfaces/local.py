# interfaces/local.py
import ipaddress
import logging
import platform
import socket
import struct
import subprocess
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import psutil

from .base import BaseInterfaceProvider, InterfaceType, NetworkInterface
from utils import format_mac

logger = logging.getLogger(__name__)

PROC_ROUTE_TABLE = Path("/proc/net/route")

# Matched as substrings of the lower-cased interface name. Best effort only.
DEFAULT_VPN_PATTERNS = [
    "tailscale", "wireguard", "wg", "openvpn", "tap-windows", "tap0901", "tun",
    "utun", "vpn", "pptp", "l2tp", "ipsec", "anyconnect", "globalprotect",
    "fortinet", "zerotier", "hamachi", "nordlynx", "virtual private",
]

WIRELESS_PREFIXES = ("wl", "wifi", "ath")
WIRELESS_MARKERS = ("wi-fi", "wireless", "wlan")
VIRTUAL_PREFIXES = ("docker", "veth", "br-", "virbr", "vmnet", "vboxnet", "lxc", "lxd",
                    "cni", "flannel", "podman", "vethernet")
ETHERNET_PREFIXES = ("en", "eth", "em")


class LocalInterfaceProvider(BaseInterfaceProvider):
    """Enumerates this host's interfaces through psutil."""

    def __init__(self, vpn_patterns: Optional[Iterable[str]] = None):
        patterns = DEFAULT_VPN_PATTERNS if vpn_patterns is None else vpn_patterns
        self.vpn_patterns = [p.lower() for p in patterns if p]

    def list_interfaces(self) -> List[NetworkInterface]:
        try:
            addresses = psutil.net_if_addrs()
            stats = psutil.net_if_stats()
        except OSError as e:
            logger.error(f"Failed to enumerate network interfaces: {e}")
            return []

        gateways = self._default_gateways()
        interfaces = []
        for name, addrs in addresses.items():
            ipv4 = next((a for a in addrs if a.family == socket.AF_INET and a.address), None)
            link = next((a for a in addrs if a.family == psutil.AF_LINK and a.address), None)
            stat = stats.get(name)
            ip_address = ipv4.address if ipv4 else ""
            interfaces.append(NetworkInterface(
                id=name,
                name=name,
                interface_type=self.classify(name, ip_address),
                ip_address=ip_address,
                subnet_mask=(ipv4.netmask or "") if ipv4 else "",
                gateway=gateways.get(name) or (gateways.get(ip_address) if ip_address else None),
                mac_address=format_mac(link.address) if link else "",
                is_up=bool(stat and stat.isup),
                speed=(stat.speed * 1_000_000) if stat and stat.speed else 0,
            ))
        return interfaces

    def is_vpn(self, name: str) -> bool:
        lowered = name.lower()
        return any(pattern in lowered for pattern in self.vpn_patterns)

    def classify(self, name: str, ip_address: str = "") -> InterfaceType:
        lowered = name.lower()
        if lowered == "lo" or lowered.startswith("loopback") or (
                ip_address and ipaddress.IPv4Address(ip_address).is_loopback):
            return InterfaceType.LOOPBACK
        if self.is_vpn(lowered):
            return InterfaceType.VPN
        if lowered.startswith(WIRELESS_PREFIXES) or any(m in lowered for m in WIRELESS_MARKERS):
            return InterfaceType.WIRELESS
        if lowered.startswith(VIRTUAL_PREFIXES):
            return InterfaceType.VIRTUAL
        if lowered.startswith(ETHERNET_PREFIXES) or "ethernet" in lowered:
            return InterfaceType.ETHERNET
        return InterfaceType.OTHER

    def _default_gateways(self) -> Dict[str, str]:
        """Maps interface name (or interface IP on Windows) to its default gateway."""
        if PROC_ROUTE_TABLE.exists():
            try:
                return self._gateways_from_proc()
            except OSError as e:
                logger.debug(f"Could not read {PROC_ROUTE_TABLE}: {e}")
        return self._gateways_from_netstat()

    def _gateways_from_proc(self) -> Dict[str, str]:
        gateways: Dict[str, str] = {}
        with PROC_ROUTE_TABLE.open("r", encoding="utf-8") as table:
            next(table, None)  # header
            for line in table:
                parts = line.split()
                if len(parts) < 4 or parts[1] != "00000000":
                    continue
                gateway = socket.inet_ntoa(struct.pack("<L", int(parts[2], 16)))
                if gateway != "0.0.0.0":
                    gateways.setdefault(parts[0], gateway)
        return gateways

    def _gateways_from_netstat(self) -> Dict[str, str]:
        try:
            output = subprocess.run(["netstat", "-rn"], capture_output=True, text=True,
                                    timeout=2, check=False).stdout
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"netstat failed on {platform.system()}: {e}")
            return {}

        gateways: Dict[str, str] = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 4 and parts[0] == "default" and parts[1].count(".") == 3:
                gateways.setdefault(parts[3], parts[1])
            elif len(parts) >= 4 and parts[0] == "0.0.0.0" and parts[1] == "0.0.0.0":
                gateways.setdefault(parts[3], parts[2])
        return gateways
