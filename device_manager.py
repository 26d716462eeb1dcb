# device_manager.py
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import subnet
from data import BaseDeviceRepository
from device import Device, DeviceInventory, utcnow
from events import ObserverRegistry, ScanCompleted, ScanObserver, ScanProgress, ScanStarted
from exceptions import NoInterfaceFound, StorageError, ValidationError
from interfaces.base import BaseInterfaceProvider, NetworkInterface
from scanner import DEFAULT_MASK, NetworkScanner, ProbeResult, ScanResult
from settings import Settings
from utils import lookup_vendor

logger = logging.getLogger(__name__)

PendingEvent = Tuple[str, Device]


class _ProgressForwarder(ScanObserver):
    """Relays scanner progress to the manager's own observers unchanged."""

    def __init__(self, registry: ObserverRegistry):
        self._registry = registry

    def on_scan_progress(self, event: ScanProgress) -> None:
        self._registry.emit("on_scan_progress", event)


class DeviceManager:
    """Runs scan cycles and keeps the device inventory in step with them.

    Each cycle resolves an interface, sweeps its subnet, then reconciles the
    responders against the stored devices: seen devices come (back) online,
    unseen ones go offline with one more missed scan, and, when enabled,
    devices that missed too many scans in a row are dropped.
    """

    def __init__(self,
                 scanner: NetworkScanner,
                 interface_provider: BaseInterfaceProvider,
                 repository: BaseDeviceRepository,
                 settings_provider,
                 vendor_lookup: Optional[Callable[[str], Optional[str]]] = lookup_vendor):
        self._scanner = scanner
        self._interfaces = interface_provider
        self._repository = repository
        self._settings = settings_provider
        self._vendor_lookup = vendor_lookup
        self._observers = ObserverRegistry()
        self._scanner.add_observer(_ProgressForwarder(self._observers))

    def add_observer(self, observer: ScanObserver) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: ScanObserver) -> None:
        self._observers.remove(observer)

    # --- Queries ---

    def get_all_devices(self) -> List[Device]:
        return list(self._repository.load_all().devices)

    def get_devices(self, online_only: Optional[bool] = None) -> List[Device]:
        devices = self.get_all_devices()
        if online_only is None:
            return devices
        return [d for d in devices if d.is_online == online_only]

    def get_device_by_id(self, device_id: str) -> Optional[Device]:
        return self._repository.find_by_id(device_id)

    def get_inventory(self) -> DeviceInventory:
        return self._repository.load_all()

    # --- Scan cycle ---

    def scan(self,
             interface_id: Optional[str] = None,
             cancel_event: Optional[threading.Event] = None,
             custom_subnet: Optional[str] = None) -> ScanResult:
        """Runs one full scan cycle.

        Args:
            interface_id: Interface to scan on; the preferred or default one when omitted.
            cancel_event: Set it to stop the sweep. A cancelled scan is not reconciled.
            custom_subnet: CIDR whose prefix overrides the subnet settings for this scan.

        Returns:
            ScanResult: ``success`` reports the sweep; ``storage_error`` is set
            when the reconciled inventory could not be saved.
        """
        settings = self._settings.get_settings()

        try:
            interface = self._interfaces.resolve(interface_id, settings.preferred_interface_id)
        except NoInterfaceFound as e:
            return self._finish(ScanResult.failed(str(e)))

        try:
            mask = self._effective_mask(settings, interface, custom_subnet)
            cidr = subnet.cidr_notation(interface.ip_address, mask) if interface.ip_address else ""
            total = subnet.host_count(mask)
        except ValidationError as e:
            logger.error(f"Cannot derive subnet for interface {interface.name}: {e}")
            return self._finish(ScanResult.failed(str(e), interface_id=interface.id))

        self._observers.emit("on_scan_started", ScanStarted(
            subnet=cidr,
            interface_name=interface.name,
            total_addresses=total,
        ))

        result = self._scanner.scan(
            interface,
            mask,
            settings.scan_timeout_ms,
            settings.max_concurrent_scans,
            cancel_event,
        )
        if not result.success:
            return self._finish(result)

        return self._reconcile(result, settings)

    def _effective_mask(self, settings: Settings, interface: NetworkInterface,
                        custom_subnet: Optional[str]) -> str:
        custom = custom_subnet or (settings.custom_subnet if settings.uses_custom_subnet else None)
        if custom:
            parsed = subnet.parse_cidr(custom)
            if parsed is not None:
                return str(subnet.mask_from_prefix(parsed[1]))
            logger.warning(f"Ignoring invalid custom subnet {custom!r}")
        mask = interface.subnet_mask or DEFAULT_MASK
        subnet.to_ipv4(mask, "mask")
        return mask

    def _reconcile(self, result: ScanResult, settings: Settings) -> ScanResult:
        now = utcnow()
        pending: List[PendingEvent] = []
        removed: List[Device] = []
        new_count = updated_count = 0
        vendors = self._lookup_vendors(result.discovered_devices, settings)

        try:
            with self._repository.transaction() as inventory:
                new_count, updated_count = self._merge_discovered(
                    inventory, result.discovered_devices, now, vendors, pending)
                self._mark_offline(inventory, result.discovered_devices, pending)
                if settings.auto_remove_missing_devices:
                    removed = self._take_missing(inventory, settings.missed_scans_before_removal)
                inventory.last_scan_time = now
                inventory.total_scans += 1
        except StorageError as e:
            result.storage_error = str(e)
            logger.error(f"Scan results kept in memory only: {e}")

        # A device removed in this cycle reports its removal, not its offline transition.
        removed_ids = {d.id for d in removed}
        for callback, device in pending:
            if device.id not in removed_ids:
                self._observers.emit(callback, device)
        for device in removed:
            self._observers.emit("on_device_removed", device)

        return self._finish(result, new_count, updated_count, len(removed))

    def _lookup_vendors(self, discovered: List[ProbeResult], settings: Settings) -> Dict[str, Optional[str]]:
        """Vendors of responders not yet in the inventory, looked up outside the repository lock."""
        if not settings.lookup_vendors or self._vendor_lookup is None:
            return {}
        inventory = self._repository.load_all()
        vendors: Dict[str, Optional[str]] = {}
        for probe in discovered:
            mac = probe.mac_address
            if mac and mac not in vendors and inventory.find_by_ip(probe.ip_address) is None:
                vendors[mac] = self._vendor_lookup(mac)
        return vendors

    def _merge_discovered(self, inventory: DeviceInventory, discovered: List[ProbeResult],
                          now: datetime, vendors: Dict[str, Optional[str]],
                          pending: List[PendingEvent]) -> Tuple[int, int]:
        new_count = updated_count = 0
        by_ip: Dict[str, Device] = {}
        for device in inventory.devices:
            by_ip.setdefault(device.ip_address.strip().lower(), device)
        merged = set()

        for probe in discovered:
            key = probe.ip_address.lower()
            if key in merged:
                continue
            merged.add(key)

            existing = by_ip.get(key)
            if existing is not None:
                existing.mark_online(now)
                if probe.hostname and not (existing.hostname and existing.hostname.strip()):
                    existing.hostname = probe.hostname
                if probe.mac_address and not existing.mac_address:
                    existing.mac_address = probe.mac_address
                pending.append(("on_device_updated", existing))
                updated_count += 1
                continue

            device = Device(
                ip_address=probe.ip_address,
                name=probe.hostname or "",
                hostname=probe.hostname,
                mac_address=probe.mac_address,
                is_online=True,
                first_discovered=now,
                last_seen=now,
            )
            if device.mac_address:
                device.vendor = vendors.get(device.mac_address)
            inventory.devices.append(device)
            by_ip[key] = device
            pending.append(("on_device_discovered", device))
            new_count += 1
            logger.info(f"New device discovered: {device.display_name} ({device.ip_address})")

        return new_count, updated_count

    def _mark_offline(self, inventory: DeviceInventory, discovered: List[ProbeResult],
                      pending: List[PendingEvent]) -> None:
        seen = {probe.ip_address.lower() for probe in discovered}
        for device in inventory.devices:
            if device.ip_address.lower() in seen:
                continue
            was_online = device.is_online
            device.mark_missed()
            pending.append(("on_device_updated", device))
            if was_online:
                logger.info(f"Device went offline: {device.display_name} ({device.ip_address})")

    @staticmethod
    def _missing(inventory: DeviceInventory, threshold: int) -> List[Device]:
        return [d for d in inventory.devices
                if not d.is_online and d.consecutive_missed_scans >= threshold]

    def _take_missing(self, inventory: DeviceInventory, threshold: int) -> List[Device]:
        removed = self._missing(inventory, threshold)
        if removed:
            removed_ids = {d.id for d in removed}
            inventory.devices[:] = [d for d in inventory.devices if d.id not in removed_ids]
            for device in removed:
                logger.info(f"Auto-removed device {device.display_name} ({device.ip_address}) "
                            f"after {device.consecutive_missed_scans} missed scans")
        return removed

    def _finish(self, result: ScanResult, new_count: int = 0, updated_count: int = 0,
                removed_count: int = 0) -> ScanResult:
        self._observers.emit("on_scan_completed", ScanCompleted(
            result=result,
            new_devices_found=new_count,
            devices_updated=updated_count,
            devices_auto_removed=removed_count,
        ))
        return result

    # --- Inventory maintenance ---

    def get_missing_device_candidates(self) -> List[Device]:
        """Offline devices whose missed-scan count has reached the removal threshold."""
        threshold = self._settings.get_settings().missed_scans_before_removal
        return self._missing(self._repository.load_all(), threshold)

    def remove_missing_devices(self) -> List[Device]:
        """Removes every missing-device candidate, whatever the auto-removal setting.

        Raises:
            StorageError: The inventory could not be saved. The devices are
            already gone from memory and their removal is still reported.
        """
        threshold = self._settings.get_settings().missed_scans_before_removal
        removed: List[Device] = []
        try:
            with self._repository.transaction() as inventory:
                removed = self._take_missing(inventory, threshold)
        finally:
            for device in removed:
                self._observers.emit("on_device_removed", device)
        return removed

    def add_device(self, device: Device) -> Device:
        """Stores a new device. Raises ValidationError if its IP address is already taken."""
        if device.is_online:
            device.consecutive_missed_scans = 0
        result = self._repository.upsert(device)
        self._observers.emit("on_device_discovered", result)
        return result

    def update_device(self, device: Device) -> Device:
        if device.is_online:
            device.consecutive_missed_scans = 0
        result = self._repository.upsert(device)
        self._observers.emit("on_device_updated", result)
        return result

    def remove_device(self, device_id: str) -> bool:
        device = self._repository.find_by_id(device_id)
        if device is None:
            return False
        removed = self._repository.remove(device_id)
        if removed:
            self._observers.emit("on_device_removed", device)
        return removed
