from datetime import datetime, timedelta, timezone

import pytest

from device import Device, DeviceInventory, utcnow
from events import ScanProgress
from scanner import ProbeResult, ScanResult


class TestDevice:
    def test_defaults(self):
        before = utcnow()
        device = Device(ip_address="192.168.1.5")
        after = utcnow()

        assert device.id
        assert device.name == ""
        assert device.hostname is None
        assert device.mac_address is None
        assert device.is_online is False
        assert device.consecutive_missed_scans == 0
        assert device.notes == ""
        assert before <= device.first_discovered <= after
        assert before <= device.last_seen <= after

    def test_ids_are_unique(self):
        assert Device(ip_address="10.0.0.1").id != Device(ip_address="10.0.0.1").id

    def test_display_name_prefers_name(self):
        device = Device(ip_address="10.0.0.1", name="NAS", hostname="nas.lan")
        assert device.display_name == "NAS"

    def test_display_name_falls_back_to_hostname(self):
        device = Device(ip_address="10.0.0.1", name="  ", hostname="nas.lan")
        assert device.display_name == "nas.lan"

    def test_display_name_falls_back_to_ip(self):
        assert Device(ip_address="10.0.0.1").display_name == "10.0.0.1"

    def test_mark_missed_then_online(self):
        device = Device(ip_address="10.0.0.1", is_online=True)
        device.mark_missed()
        device.mark_missed()
        assert device.is_online is False
        assert device.consecutive_missed_scans == 2

        seen = utcnow()
        device.mark_online(seen)
        assert device.is_online is True
        assert device.consecutive_missed_scans == 0
        assert device.last_seen == seen

    def test_dict_round_trip_keeps_fields(self):
        device = Device(
            ip_address="10.0.0.7",
            name="printer",
            hostname="printer.lan",
            mac_address="aa:bb:cc:00:11:22",
            vendor="Acme",
            notes="second floor",
            consecutive_missed_scans=3,
        )
        restored = Device.from_dict(device.to_dict())
        assert restored == device

    def test_from_dict_enforces_online_invariant(self):
        data = Device(ip_address="10.0.0.7").to_dict()
        data.update(is_online=True, consecutive_missed_scans=4)
        assert Device.from_dict(data).consecutive_missed_scans == 0

    def test_from_dict_treats_naive_times_as_utc(self):
        data = Device(ip_address="10.0.0.7").to_dict()
        data["last_seen"] = "2024-05-01T12:00:00"
        assert Device.from_dict(data).last_seen == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


class TestDeviceInventory:
    def test_find_by_ip_is_case_insensitive(self):
        device = Device(ip_address="FE80.example")
        inventory = DeviceInventory(devices=[device])
        assert inventory.find_by_ip("fe80.EXAMPLE") is device
        assert inventory.find_by_ip("10.0.0.1") is None

    def test_from_dict_drops_duplicate_ids(self):
        device = Device(ip_address="10.0.0.1")
        data = {"devices": [device.to_dict(), device.to_dict()], "total_scans": 2}
        inventory = DeviceInventory.from_dict(data)
        assert len(inventory.devices) == 1
        assert inventory.total_scans == 2
        assert inventory.last_scan_time is None


class TestScanResult:
    def test_duration(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = ScanResult(start_time=start, end_time=start + timedelta(seconds=30))
        assert result.duration == timedelta(seconds=30)

    def test_devices_found(self):
        result = ScanResult(discovered_devices=[ProbeResult("10.0.0.1"), ProbeResult("10.0.0.2")])
        assert result.devices_found == 2
        assert ScanResult().devices_found == 0

    def test_persisted_requires_success_and_no_storage_error(self):
        assert ScanResult(success=True).persisted
        assert not ScanResult(success=True, storage_error="disk full").persisted
        assert not ScanResult(success=False).persisted

    def test_failed_has_zero_duration(self):
        result = ScanResult.failed("nope")
        assert result.success is False
        assert result.error == "nope"
        assert result.duration == timedelta(0)


@pytest.mark.parametrize("scanned,total,expected", [
    (0, 100, 0),
    (50, 100, 50),
    (100, 100, 100),
    (25, 200, 12),
    (0, 0, 0),
])
def test_progress_percent(scanned, total, expected):
    progress = ScanProgress(current_address=None, scanned_count=scanned, total_count=total, devices_found=0)
    assert progress.percent == expected
