# data.py
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from device import Device, DeviceInventory
from exceptions import StorageError, ValidationError

logger = logging.getLogger(__name__)


def load_device_data(json_file: Path) -> DeviceInventory:
    """Loads the device inventory from the JSON file.

    Args:
        json_file (Path): Path to the JSON file.

    Returns:
        DeviceInventory: The stored inventory, or an empty one when the file
        is missing or cannot be decoded.
    """
    try:
        with json_file.open("r", encoding="utf-8") as file:
            data = json.load(file)
    except FileNotFoundError:
        logger.debug("Devices file %s not found. Starting with an empty inventory.", json_file)
        return DeviceInventory()
    except json.JSONDecodeError as err:
        logger.warning("Error decoding JSON data in %s: %s. Starting with an empty inventory.", json_file, err)
        return DeviceInventory()

    try:
        inventory = DeviceInventory.from_dict(data)
    except (KeyError, TypeError, ValueError) as err:
        logger.warning("Malformed device data in %s: %s. Starting with an empty inventory.", json_file, err)
        return DeviceInventory()
    logger.debug("Loaded %d devices from %s", len(inventory.devices), json_file)
    return inventory


def save_device_data(inventory: DeviceInventory, json_file: Path) -> None:
    """Saves the device inventory to the JSON file.

    The data is written to a temporary file in the same directory which then
    replaces the target, so readers never see a partial write.

    Args:
        inventory (DeviceInventory): The inventory to save.
        json_file (Path): Path to the JSON file.

    Raises:
        StorageError: The file system refused the write.
    """
    tmp_name = None
    try:
        json_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{json_file.name}.", suffix=".tmp", dir=json_file.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as file:
            json.dump(inventory.to_dict(), file, indent=4)
        os.replace(tmp_name, json_file)
        tmp_name = None
    except OSError as err:
        raise StorageError(f"Unable to save devices to {json_file}: {err}") from err
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)


class BaseDeviceRepository(ABC):
    """Durable home of the DeviceInventory."""

    @abstractmethod
    def load_all(self) -> DeviceInventory:
        pass

    @abstractmethod
    def save_all(self, inventory: DeviceInventory) -> None:
        pass

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[DeviceInventory]:
        """Yields the inventory under the repository lock and saves it on exit."""
        pass

    def find_by_id(self, device_id: str) -> Optional[Device]:
        return self.load_all().find_by_id(device_id)

    def find_by_ip(self, ip_address: str) -> Optional[Device]:
        return self.load_all().find_by_ip(ip_address)

    def upsert(self, device: Device) -> Device:
        """Adds or replaces ``device`` by id.

        Raises:
            ValidationError: Another device already has the same IP address.
        """
        with self.transaction() as inventory:
            owner = inventory.find_by_ip(device.ip_address)
            if owner is not None and owner.id != device.id:
                raise ValidationError(f"IP address {device.ip_address} already belongs to device {owner.id}")
            for index, existing in enumerate(inventory.devices):
                if existing.id == device.id:
                    inventory.devices[index] = device
                    logger.debug(f"Updated device {device.id} ({device.display_name})")
                    break
            else:
                inventory.devices.append(device)
                logger.debug(f"Added device {device.id} ({device.display_name})")
        return device

    def remove(self, device_id: str) -> bool:
        return self.remove_many([device_id]) == 1

    def remove_many(self, device_ids: Iterable[str]) -> int:
        wanted = set(device_ids)
        with self.transaction() as inventory:
            removed = [d for d in inventory.devices if d.id in wanted]
            if not removed:
                return 0
            inventory.devices[:] = [d for d in inventory.devices if d.id not in wanted]
            for device in removed:
                logger.debug(f"Removed device {device.id} ({device.display_name})")
        return len(removed)


class JsonDeviceRepository(BaseDeviceRepository):
    """Keeps the inventory in a single JSON file, cached after the first load.

    One re-entrant lock serialises every load, mutation and save. When a save
    fails the cached inventory is kept and flagged dirty until a later save
    succeeds.
    """

    def __init__(self, json_file: Path, memory_only: bool = False):
        self.json_file = Path(json_file)
        self._lock = threading.RLock()
        self._cache: Optional[DeviceInventory] = None
        self._memory_only = memory_only
        self._storage_available = True
        self.dirty = False

    @property
    def is_memory_only(self) -> bool:
        return self._memory_only

    @property
    def is_storage_available(self) -> bool:
        return self._storage_available and not self._memory_only

    def enable_memory_only_mode(self) -> None:
        with self._lock:
            self._memory_only = True
        logger.warning("Enabled memory-only mode - devices will not be persisted")

    def load_all(self) -> DeviceInventory:
        with self._lock:
            if self._cache is None:
                self._cache = DeviceInventory() if self._memory_only else load_device_data(self.json_file)
            return self._cache

    def save_all(self, inventory: DeviceInventory) -> None:
        with self._lock:
            self._cache = inventory
            if self._memory_only:
                logger.debug("Device inventory updated in memory (memory-only mode)")
                return
            try:
                save_device_data(inventory, self.json_file)
            except StorageError as err:
                self._storage_available = False
                self.dirty = True
                logger.error(f"{err} - in-memory inventory kept and marked dirty")
                raise
            self._storage_available = True
            self.dirty = False
            logger.debug(f"Saved {len(inventory.devices)} devices to {self.json_file}")

    @contextmanager
    def transaction(self) -> Iterator[DeviceInventory]:
        with self._lock:
            inventory = self.load_all()
            yield inventory
            self.save_all(inventory)
