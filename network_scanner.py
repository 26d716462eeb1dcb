# network_scanner.py
import argparse
import logging
import signal
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from data import JsonDeviceRepository
from device import Device
from device_manager import DeviceManager
from events import ScanCompleted, ScanObserver, ScanProgress, ScanStarted
from exceptions import IPScanError
from interfaces import get_interface_provider
from scanner import NetworkScanner
from settings import DEFAULT_SETTINGS_FILE, SETTINGS_KEYS, DynaconfSettingsProvider
from utils import is_valid_ipv4, lookup_neighbor_mac, update_vendor_database

logger = logging.getLogger(__name__)


class ConsoleObserver(ScanObserver):
    """Prints scan lifecycle events for the command line."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last_percent = -1

    def on_scan_started(self, event: ScanStarted) -> None:
        print(f"Scanning {event.subnet} on {event.interface_name} ({event.total_addresses} addresses)...")

    def on_scan_progress(self, event: ScanProgress) -> None:
        with self._lock:
            if event.percent >= self._last_percent + 10 or event.scanned_count == event.total_count:
                self._last_percent = event.percent
                logger.info(f"Progress: {event.percent}% ({event.scanned_count}/{event.total_count}), "
                            f"{event.devices_found} found")

    def on_device_discovered(self, device: Device) -> None:
        print(f"  + {device.ip_address:<15} {device.display_name}")

    def on_device_removed(self, device: Device) -> None:
        print(f"  - {device.ip_address:<15} {device.display_name}")

    def on_scan_completed(self, event: ScanCompleted) -> None:
        result = event.result
        if not result.success:
            print(f"Scan failed: {result.error}")
            return
        print(f"Scan completed in {result.duration.total_seconds():.1f}s: "
              f"{result.devices_found} responding, {event.new_devices_found} new, "
              f"{event.devices_updated} updated, {event.devices_auto_removed} removed")
        if result.storage_error:
            print(f"Warning: devices could not be saved: {result.storage_error}")


def build_manager(settings_provider: DynaconfSettingsProvider) -> DeviceManager:
    settings = settings_provider.get_settings()
    scanner = NetworkScanner(
        resolve_mac=lookup_neighbor_mac if settings.resolve_mac else None,
        dns_timeout_ms=settings.dns_timeout_ms,
    )
    repository = JsonDeviceRepository(Path(settings.devices_file), memory_only=settings.memory_only)
    return DeviceManager(
        scanner,
        get_interface_provider(settings_provider.get_config()),
        repository,
        settings_provider,
    )


def find_device(devices: List[Device], query: str) -> Optional[Device]:
    """Looks a device up by id, IP address or (case-insensitive) name."""
    lowered = query.strip().lower()
    for device in devices:
        if device.id == query or device.ip_address.lower() == lowered:
            return device
    for device in devices:
        if device.display_name.lower() == lowered:
            return device
    return None


def run_scan(manager: DeviceManager, interface_id: Optional[str], subnet: Optional[str]) -> int:
    cancel_event = threading.Event()

    def _cancel(signum, frame):
        print("\nCancelling scan...")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        result = manager.scan(interface_id=interface_id, cancel_event=cancel_event, custom_subnet=subnet)
    finally:
        signal.signal(signal.SIGINT, previous)
    return 0 if result.persisted else 1


def list_devices(manager: DeviceManager, include_offline: bool) -> int:
    devices = manager.get_devices(online_only=None if include_offline else True)
    inventory = manager.get_inventory()
    print(f"{'IP ADDRESS':<16}{'NAME':<32}{'MAC':<19}{'STATUS':<8}")
    for device in sorted(devices, key=lambda d: tuple(int(p) for p in d.ip_address.split("."))):
        status = "online" if device.is_online else f"offline ({device.consecutive_missed_scans})"
        print(f"{device.ip_address:<16}{device.display_name[:31]:<32}{device.mac_address or '':<19}{status}")
    last_scan = inventory.last_scan_time.isoformat() if inventory.last_scan_time else "never"
    print(f"{len(devices)} devices, {inventory.total_scans} scans, last scan: {last_scan}")
    return 0


def show_device(manager: DeviceManager, query: str) -> int:
    device = find_device(manager.get_all_devices(), query)
    if device is None:
        kind = "IP" if is_valid_ipv4(query) else "name or id"
        print(f"No device matches {kind} {query!r}")
        return 1
    for key, value in device.to_dict().items():
        print(f"{key:<26}{'' if value is None else value}")
    return 0


def remove_missing(manager: DeviceManager) -> int:
    removed = manager.remove_missing_devices()
    for device in removed:
        print(f"Removed {device.display_name} ({device.ip_address}), "
              f"missed {device.consecutive_missed_scans} scans")
    print(f"{len(removed)} devices removed")
    return 0


def show_interfaces(settings_provider: DynaconfSettingsProvider) -> int:
    settings = settings_provider.get_settings()
    provider = get_interface_provider(settings_provider.get_config())
    for interface in provider.list_interfaces():
        state = "up" if interface.is_up else "down"
        print(f"{interface.id:<20}{interface.interface_type.value:<10}{state:<6}"
              f"{interface.ip_address or '-':<16}{interface.subnet_mask or '-':<16}"
              f"gw {interface.gateway or '-'}")
    try:
        selected = provider.preferred_interface(settings.preferred_interface_id)
        print(f"Selected for scanning: {selected.name}")
    except IPScanError as err:
        print(str(err))
    return 0


def handle_settings(provider: DynaconfSettingsProvider, args: argparse.Namespace) -> int:
    if args.settings_command == "set":
        provider.set_value(args.key, args.value)
        print(f"{args.key} = {getattr(provider.get_settings(), args.key)}")
        return 0
    if args.settings_command == "reset":
        provider.reset_to_defaults()
        print("Settings reset to defaults")
        return 0

    values = asdict(provider.get_settings())
    key = getattr(args, "key", None)
    if key:
        if key not in SETTINGS_KEYS:
            print(f"Unknown setting: {key}")
            return 1
        print(f"{key} = {values[key]}")
        return 0
    for name, value in values.items():
        print(f"{name} = {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Network device scanner")
    parser.add_argument("--config", default=DEFAULT_SETTINGS_FILE, help="Path to the settings TOML file")
    parser.add_argument("--update-mac-db", action="store_true", help="Force update of the MAC vendor database")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command")

    scan = commands.add_parser("scan", help="Scan the network for devices")
    scan.add_argument("--interface", "-i", help="Interface id to scan on")
    scan.add_argument("--subnet", "-s", help="Subnet to scan, e.g. 192.168.1.0/24")

    listing = commands.add_parser("list", help="List discovered devices")
    listing.add_argument("--offline", "-o", action="store_true", help="Include offline devices")

    show = commands.add_parser("show", help="Show device details")
    show.add_argument("device", help="Device id, IP address or name")

    commands.add_parser("remove-missing", help="Remove devices that missed too many scans")
    commands.add_parser("interfaces", help="List network interfaces")

    settings = commands.add_parser("settings", help="View or modify settings")
    settings_commands = settings.add_subparsers(dest="settings_command")
    get = settings_commands.add_parser("get", help="Show one or all settings")
    get.add_argument("key", nargs="?")
    set_ = settings_commands.add_parser("set", help="Change a setting")
    set_.add_argument("key", choices=sorted(SETTINGS_KEYS))
    set_.add_argument("value")
    settings_commands.add_parser("reset", help="Restore default settings")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    if args.update_mac_db:
        # Update the database if requested.
        update_vendor_database()

    settings_provider = DynaconfSettingsProvider(args.config)
    try:
        if args.command == "settings":
            return handle_settings(settings_provider, args)
        if args.command == "interfaces":
            return show_interfaces(settings_provider)

        manager = build_manager(settings_provider)
        if args.command == "list":
            include_offline = args.offline or settings_provider.get_settings().show_offline_devices
            return list_devices(manager, include_offline)
        if args.command == "show":
            return show_device(manager, args.device)
        if args.command == "remove-missing":
            return remove_missing(manager)

        manager.add_observer(ConsoleObserver())
        return run_scan(manager, getattr(args, "interface", None), getattr(args, "subnet", None))
    except IPScanError as err:
        logger.error(str(err))
        return 1


if __name__ == "__main__":
    sys.exit(main())
