# device.py
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Device:
    ip_address: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""  # User-assigned, falls back to hostname on creation
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    vendor: Optional[str] = None
    is_online: bool = False
    first_discovered: datetime = field(default_factory=utcnow)
    last_seen: datetime = field(default_factory=utcnow)
    consecutive_missed_scans: int = 0  # Always 0 while is_online
    notes: str = ""

    @property
    def display_name(self) -> str:
        if self.name and self.name.strip():
            return self.name
        if self.hostname and self.hostname.strip():
            return self.hostname
        return self.ip_address

    def mark_online(self, seen_at: datetime) -> None:
        self.is_online = True
        self.last_seen = seen_at
        self.consecutive_missed_scans = 0

    def mark_missed(self) -> None:
        self.is_online = False
        self.consecutive_missed_scans += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "hostname": self.hostname,
            "ip_address": self.ip_address,
            "mac_address": self.mac_address,
            "vendor": self.vendor,
            "is_online": self.is_online,
            "first_discovered": self.first_discovered.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "consecutive_missed_scans": self.consecutive_missed_scans,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Device":
        device = cls(
            ip_address=data["ip_address"],
            id=data.get("id") or str(uuid.uuid4()),
            name=data.get("name") or "",
            hostname=data.get("hostname"),
            mac_address=data.get("mac_address"),
            vendor=data.get("vendor"),
            is_online=bool(data.get("is_online", False)),
            consecutive_missed_scans=int(data.get("consecutive_missed_scans", 0)),
            notes=data.get("notes") or "",
        )
        device.first_discovered = _parse_time(data.get("first_discovered")) or device.first_discovered
        device.last_seen = _parse_time(data.get("last_seen")) or device.last_seen
        if device.is_online:
            device.consecutive_missed_scans = 0
        return device


@dataclass
class DeviceInventory:
    """Every known device plus scan bookkeeping, persisted as one unit."""
    devices: List[Device] = field(default_factory=list)
    last_scan_time: Optional[datetime] = None
    total_scans: int = 0

    def find_by_id(self, device_id: str) -> Optional[Device]:
        return next((d for d in self.devices if d.id == device_id), None)

    def find_by_ip(self, ip_address: str) -> Optional[Device]:
        wanted = ip_address.strip().lower()
        return next((d for d in self.devices if d.ip_address.lower() == wanted), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "devices": [device.to_dict() for device in self.devices],
            "last_scan_time": self.last_scan_time.isoformat() if self.last_scan_time else None,
            "total_scans": self.total_scans,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceInventory":
        devices: List[Device] = []
        seen_ids = set()
        seen_ips = set()
        for entry in data.get("devices") or []:
            device = Device.from_dict(entry)
            # The first entry wins for a repeated id or IP address.
            ip_key = device.ip_address.strip().lower()
            if device.id in seen_ids or ip_key in seen_ips:
                continue
            seen_ids.add(device.id)
            seen_ips.add(ip_key)
            devices.append(device)
        return cls(
            devices=devices,
            last_scan_time=_parse_time(data.get("last_scan_time")),
            total_scans=int(data.get("total_scans", 0)),
        )
