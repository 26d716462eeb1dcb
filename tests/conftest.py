import threading
from typing import List, Optional

import pytest

from data import JsonDeviceRepository
from device_manager import DeviceManager
from events import ScanObserver
from interfaces.base import BaseInterfaceProvider, InterfaceType, NetworkInterface
from scanner import NetworkScanner
from settings import Settings


class FakeInterfaceProvider(BaseInterfaceProvider):
    def __init__(self, interfaces: Optional[List[NetworkInterface]] = None):
        self.interfaces = list(interfaces or [])

    def list_interfaces(self) -> List[NetworkInterface]:
        return list(self.interfaces)


class FakeSettingsProvider:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings(lookup_vendors=False)

    def get_settings(self) -> Settings:
        return self.settings


class FakePing:
    """Answers for the addresses in ``alive`` and records every call."""

    def __init__(self, alive=(), rtt: float = 1.5):
        self.alive = set(alive)
        self.rtt = rtt
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, address: str, timeout_ms: int) -> Optional[float]:
        with self._lock:
            self.calls.append(address)
        return self.rtt if address in self.alive else None


class RecordingObserver(ScanObserver):
    def __init__(self):
        self._lock = threading.Lock()
        self.events = []

    def _record(self, name, payload):
        with self._lock:
            self.events.append((name, payload))

    def on_scan_started(self, event):
        self._record("started", event)

    def on_scan_progress(self, event):
        self._record("progress", event)

    def on_probe_succeeded(self, probe):
        self._record("probe", probe)

    def on_scan_completed(self, event):
        self._record("completed", event)

    def on_device_discovered(self, device):
        self._record("discovered", device)

    def on_device_updated(self, device):
        self._record("updated", device)

    def on_device_removed(self, device):
        self._record("removed", device)

    def named(self, name):
        return [payload for event, payload in self.events if event == name]

    def clear(self):
        with self._lock:
            self.events.clear()


def make_interface(**overrides) -> NetworkInterface:
    values = dict(
        id="eth0",
        name="eth0",
        interface_type=InterfaceType.ETHERNET,
        ip_address="192.168.1.10",
        subnet_mask="255.255.255.0",
        gateway="192.168.1.1",
        mac_address="aa:bb:cc:dd:ee:01",
        is_up=True,
    )
    values.update(overrides)
    return NetworkInterface(**values)


@pytest.fixture
def interface():
    return make_interface()


@pytest.fixture
def interface_provider(interface):
    return FakeInterfaceProvider([interface])


@pytest.fixture
def settings():
    return Settings(lookup_vendors=False, max_concurrent_scans=16)


@pytest.fixture
def settings_provider(settings):
    return FakeSettingsProvider(settings)


@pytest.fixture
def repository(tmp_path):
    return JsonDeviceRepository(tmp_path / "devices.json")


@pytest.fixture
def fake_ping():
    return FakePing()


@pytest.fixture
def scanner(fake_ping):
    return NetworkScanner(ping=fake_ping, resolve_hostname=lambda address: None, resolve_mac=None)


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def manager(scanner, interface_provider, repository, settings_provider, observer):
    manager = DeviceManager(scanner, interface_provider, repository, settings_provider, vendor_lookup=None)
    manager.add_observer(observer)
    return manager
