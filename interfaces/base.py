# interfaces/base.py
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from exceptions import NoInterfaceFound

logger = logging.getLogger(__name__)


class InterfaceType(str, Enum):
    ETHERNET = "ethernet"
    WIRELESS = "wireless"
    LOOPBACK = "loopback"
    VIRTUAL = "virtual"
    VPN = "vpn"
    OTHER = "other"


@dataclass
class NetworkInterface:
    id: str
    name: str
    interface_type: InterfaceType = InterfaceType.OTHER
    ip_address: str = ""
    subnet_mask: str = ""
    gateway: Optional[str] = None
    mac_address: str = ""
    is_up: bool = False
    speed: int = 0  # bits per second, 0 when unknown
    description: str = ""

    @property
    def is_vpn(self) -> bool:
        return self.interface_type == InterfaceType.VPN


class BaseInterfaceProvider(ABC):
    """Abstract base class for enumerating the host's network interfaces.

    Subclasses only enumerate; the selection policy used to pick the interface
    for a scan lives here.
    """

    @abstractmethod
    def list_interfaces(self) -> List[NetworkInterface]:
        """Returns every interface the host reports, up or down."""
        pass

    def get_by_id(self, interface_id: Optional[str]) -> Optional[NetworkInterface]:
        if not interface_id or not interface_id.strip():
            return None
        return next((i for i in self.list_interfaces() if i.id == interface_id), None)

    def active_interfaces(self) -> List[NetworkInterface]:
        """Up interfaces with an IPv4 address, excluding loopback and VPNs."""
        return [
            i for i in self.list_interfaces()
            if i.is_up
            and i.ip_address
            and i.interface_type not in (InterfaceType.LOOPBACK, InterfaceType.VPN)
        ]

    def default_interface(self) -> NetworkInterface:
        """Picks the interface most likely to face the local network.

        Interfaces with a gateway win, Ethernet before Wireless before anything
        else; then Ethernet without a gateway; then any active interface.

        Raises:
            NoInterfaceFound: Nothing usable is up.
        """
        active = self.active_interfaces()
        with_gateway = [i for i in active if i.gateway]

        for wanted in (InterfaceType.ETHERNET, InterfaceType.WIRELESS):
            for interface in with_gateway:
                if interface.interface_type == wanted:
                    logger.info(f"Selected default interface: {interface.name} "
                                f"({wanted.value} with gateway {interface.gateway})")
                    return interface

        if with_gateway:
            interface = with_gateway[0]
            logger.info(f"Selected default interface: {interface.name} "
                        f"({interface.interface_type.value} with gateway {interface.gateway})")
            return interface

        for interface in active:
            if interface.interface_type == InterfaceType.ETHERNET:
                logger.warning(f"Selected default interface: {interface.name} (ethernet but no gateway configured)")
                return interface

        if active:
            interface = active[0]
            logger.warning(f"Selected default interface: {interface.name} "
                           f"({interface.interface_type.value} - no gateway found)")
            return interface

        logger.error("No suitable network interface found")
        raise NoInterfaceFound()

    def preferred_interface(self, preferred_id: Optional[str]) -> NetworkInterface:
        """Returns the preferred interface if it is up, else the default one."""
        if preferred_id and preferred_id.strip():
            preferred = self.get_by_id(preferred_id)
            if preferred is not None and preferred.is_up:
                logger.debug(f"Using preferred interface: {preferred.name}")
                return preferred
            logger.warning(f"Preferred interface {preferred_id} not found or not active, falling back to default")
        return self.default_interface()

    def resolve(self, interface_id: Optional[str], preferred_id: Optional[str] = None) -> NetworkInterface:
        """An explicit id wins outright; otherwise fall back to the preference.

        Raises:
            NoInterfaceFound: The explicit id is unknown, or nothing usable is up.
        """
        if interface_id and interface_id.strip():
            interface = self.get_by_id(interface_id)
            if interface is None:
                logger.error(f"Network interface {interface_id} not found")
                raise NoInterfaceFound()
            return interface
        return self.preferred_interface(preferred_id)
