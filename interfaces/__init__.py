# interfaces/__init__.py
from dynaconf import Dynaconf

from .base import BaseInterfaceProvider, InterfaceType, NetworkInterface
from .local import DEFAULT_VPN_PATTERNS, LocalInterfaceProvider

__all__ = [
    "BaseInterfaceProvider",
    "InterfaceType",
    "LocalInterfaceProvider",
    "NetworkInterface",
    "get_interface_provider",
]


def get_interface_provider(config: Dynaconf) -> BaseInterfaceProvider:
    """Interface provider factory: returns the provider named in the settings."""

    provider = config.get("interfaces.provider", "local")

    if provider == "local":
        return LocalInterfaceProvider(config.get("interfaces.vpn_patterns", DEFAULT_VPN_PATTERNS))
    else:
        raise ValueError(f"Unsupported interface provider: {provider}")
