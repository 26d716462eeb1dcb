# events.py
"""Scan and device lifecycle notifications.

Consumers subclass :class:`ScanObserver` and override the callbacks they care
about, then register the instance with the scanner or the device manager.
Callbacks may be invoked concurrently from scanner worker threads; an observer
that touches non-thread-safe state has to serialise access itself.
"""
import logging
import threading
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from device import Device
    from scanner import ProbeResult, ScanResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanStarted:
    subnet: str
    interface_name: str
    total_addresses: int


@dataclass(frozen=True)
class ScanProgress:
    current_address: Optional[IPv4Address]
    scanned_count: int
    total_count: int
    devices_found: int

    @property
    def percent(self) -> int:
        if self.total_count == 0:
            return 0
        return self.scanned_count * 100 // self.total_count


@dataclass(frozen=True)
class ScanCompleted:
    result: "ScanResult"
    new_devices_found: int = 0
    devices_updated: int = 0
    devices_auto_removed: int = 0


class ScanObserver:
    """No-op base; override what you need."""

    def on_scan_started(self, event: ScanStarted) -> None:
        pass

    def on_scan_progress(self, event: ScanProgress) -> None:
        pass

    def on_probe_succeeded(self, probe: "ProbeResult") -> None:
        pass

    def on_scan_completed(self, event: ScanCompleted) -> None:
        pass

    def on_device_discovered(self, device: "Device") -> None:
        pass

    def on_device_updated(self, device: "Device") -> None:
        pass

    def on_device_removed(self, device: "Device") -> None:
        pass


class ObserverRegistry:
    """Fans a notification out to every registered observer.

    A failing observer is logged and skipped so it cannot interrupt a sweep.
    """

    def __init__(self, observers: Optional[List[ScanObserver]] = None):
        self._lock = threading.Lock()
        self._observers: List[ScanObserver] = list(observers or [])

    def add(self, observer: ScanObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove(self, observer: ScanObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)

    def emit(self, callback: str, payload) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                getattr(observer, callback)(payload)
            except Exception:  # pylint: disable=broad-except
                logger.exception(f"Observer {observer!r} failed in {callback}")
