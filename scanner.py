# scanner.py
"""Ping sweep of an IPv4 subnet.

A fixed pool of ``max_concurrent`` worker threads drains a shared iterator of
host addresses, so no more than that many probes are ever outstanding no
matter how large the subnet is. A single ``threading.Event`` cancels the
sweep: workers stop taking addresses, in-flight probes give up at their next
wait, and the result keeps whatever was collected before.
"""
import ipaddress
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional

import subnet
from device import utcnow
from events import ObserverRegistry, ScanObserver, ScanProgress
from exceptions import ScanCancelled, ValidationError
from interfaces.base import NetworkInterface
from utils import lookup_neighbor_mac, ping_host, reverse_lookup

logger = logging.getLogger(__name__)

DEFAULT_MASK = "255.255.255.0"
PROGRESS_EVERY = 10
CANCEL_POLL_SECONDS = 0.05


@dataclass
class ProbeResult:
    """A host that answered. Unreachable hosts produce no ProbeResult at all."""
    ip_address: str
    hostname: Optional[str] = None
    mac_address: Optional[str] = None
    response_time_ms: float = 0.0


@dataclass
class ScanResult:
    success: bool = False
    error: Optional[str] = None
    subnet: str = ""
    interface_id: str = ""
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    total_addresses: int = 0
    # Completion order, not address order.
    discovered_devices: List[ProbeResult] = field(default_factory=list)
    storage_error: Optional[str] = None

    @property
    def duration(self) -> timedelta:
        return (self.end_time or self.start_time) - self.start_time

    @property
    def devices_found(self) -> int:
        return len(self.discovered_devices)

    @property
    def persisted(self) -> bool:
        return self.success and self.storage_error is None

    @classmethod
    def failed(cls, error: str, **kwargs) -> "ScanResult":
        result = cls(success=False, error=error, **kwargs)
        result.end_time = result.start_time
        return result


class AtomicCounter:
    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


class _Sweep:
    """Shared state of one sweep: address source, counters and results."""

    def __init__(self, addresses: Iterator[ipaddress.IPv4Address], total: int, result: ScanResult):
        self.total = total
        self.result = result
        self.scanned = AtomicCounter()
        self.found = AtomicCounter()
        self.lock = threading.Lock()
        self.failure: Optional[BaseException] = None
        self._addresses = addresses
        self._address_lock = threading.Lock()

    def next_address(self) -> Optional[ipaddress.IPv4Address]:
        with self._address_lock:
            return next(self._addresses, None)


class NetworkScanner:
    """Discovers responsive hosts with ICMP echo plus best-effort reverse DNS.

    ``ping``, ``resolve_hostname`` and ``resolve_mac`` are the network-facing
    seams; they default to the ping3/socket/ARP-cache helpers in ``utils``.
    """

    def __init__(self,
                 ping: Callable[[str, int], Optional[float]] = ping_host,
                 resolve_hostname: Callable[[str], Optional[str]] = reverse_lookup,
                 resolve_mac: Optional[Callable[[str], Optional[str]]] = lookup_neighbor_mac,
                 dns_timeout_ms: int = 2000,
                 observers: Optional[List[ScanObserver]] = None):
        self._ping = ping
        self._resolve_hostname = resolve_hostname
        self._resolve_mac = resolve_mac
        self.dns_timeout_ms = dns_timeout_ms
        self._observers = ObserverRegistry(observers)

    def add_observer(self, observer: ScanObserver) -> None:
        self._observers.add(observer)

    def remove_observer(self, observer: ScanObserver) -> None:
        self._observers.remove(observer)

    def scan(self,
             interface: NetworkInterface,
             subnet_mask: Optional[str] = None,
             timeout_ms: int = 1000,
             max_concurrent: int = 100,
             cancel_event: Optional[threading.Event] = None) -> ScanResult:
        """Sweeps the subnet ``interface`` sits on.

        ``subnet_mask`` overrides the interface's own mask.
        """
        if not interface.ip_address:
            return ScanResult.failed("Network interface has no IP address", interface_id=interface.id)

        mask = subnet_mask or interface.subnet_mask or DEFAULT_MASK
        logger.info(f"Starting scan on interface {interface.name} ({interface.ip_address}), mask {mask}")
        return self._scan_subnet(interface.ip_address, mask, interface.id,
                                 timeout_ms, max_concurrent, cancel_event)

    def scan_cidr(self,
                  cidr: str,
                  timeout_ms: int = 1000,
                  max_concurrent: int = 100,
                  cancel_event: Optional[threading.Event] = None) -> ScanResult:
        parsed = subnet.parse_cidr(cidr)
        if parsed is None:
            return ScanResult.failed(f"Invalid CIDR notation: {cidr}")

        network, prefix = parsed
        logger.info(f"Starting scan on CIDR {cidr}")
        return self._scan_subnet(str(network), str(subnet.mask_from_prefix(prefix)), "",
                                 timeout_ms, max_concurrent, cancel_event)

    def probe(self,
              address: str,
              timeout_ms: int = 1000,
              cancel_event: Optional[threading.Event] = None) -> Optional[ProbeResult]:
        """Pings a single address; None when it is unreachable or the probe was cancelled."""
        cancel_event = cancel_event or threading.Event()
        try:
            return self._probe(str(address), timeout_ms, cancel_event)
        except ScanCancelled:
            return None

    def _probe(self, address: str, timeout_ms: int,
               cancel_event: threading.Event) -> Optional[ProbeResult]:
        if cancel_event.is_set():
            raise ScanCancelled()

        try:
            rtt = self._ping(address, timeout_ms)
        except Exception as e:  # pylint: disable=broad-except
            logger.debug(f"Ping failed for {address}: {e}")
            return None

        if cancel_event.is_set():
            raise ScanCancelled()
        if rtt is None:
            return None

        result = ProbeResult(ip_address=address, response_time_ms=rtt)
        result.hostname = self._lookup_hostname(address, cancel_event)

        if self._resolve_mac is not None:
            try:
                result.mac_address = self._resolve_mac(address)
            except Exception as e:  # pylint: disable=broad-except
                logger.debug(f"MAC lookup failed for {address}: {e}")
        return result

    def _lookup_hostname(self, address: str, cancel_event: threading.Event) -> Optional[str]:
        # One thread per lookup: a resolver call that outlives its timeout
        # cannot delay the lookups that come after it.
        done = threading.Event()
        outcome: Dict[str, Optional[str]] = {}

        def resolve() -> None:
            try:
                outcome["hostname"] = self._resolve_hostname(address)
            except Exception as e:  # pylint: disable=broad-except
                logger.debug(f"Reverse lookup failed for {address}: {e}")
            finally:
                done.set()

        threading.Thread(target=resolve, name=f"rdns-{address}", daemon=True).start()
        deadline = time.monotonic() + self.dns_timeout_ms / 1000.0
        while not done.wait(CANCEL_POLL_SECONDS):
            if cancel_event.is_set():
                raise ScanCancelled()
            if time.monotonic() >= deadline:
                logger.debug(f"Reverse lookup timed out for {address}")
                return None

        hostname = outcome.get("hostname")
        # A resolver that echoes the query back has not found a PTR record.
        if not hostname or hostname == address:
            return None
        return hostname

    def _scan_subnet(self, ip: str, mask: str, interface_id: str, timeout_ms: int,
                     max_concurrent: int, cancel_event: Optional[threading.Event]) -> ScanResult:
        cancel_event = cancel_event or threading.Event()
        result = ScanResult(interface_id=interface_id)
        sweep: Optional[_Sweep] = None

        try:
            result.subnet = subnet.cidr_notation(ip, mask)
            hosts = subnet.host_addresses(ip, mask)
            total = len(hosts)
            result.total_addresses = total

            workers = min(max(1, int(max_concurrent)), total)
            logger.debug(f"Scanning {total} addresses with {workers} concurrent pings")

            sweep = _Sweep(iter(hosts), total, result)
            threads = [
                threading.Thread(target=self._worker, name=f"probe-{n}", daemon=True,
                                 args=(sweep, timeout_ms, cancel_event))
                for n in range(workers)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            if sweep.failure is not None:
                raise sweep.failure
            if cancel_event.is_set() and sweep.scanned.value < total:
                raise ScanCancelled()

            result.success = True
            logger.info(f"Scan completed: {result.devices_found}/{total} devices found")
        except ScanCancelled as e:
            result.success = False
            result.error = str(e)
            logger.info("Scan was cancelled")
        except ValidationError as e:
            result.success = False
            result.error = str(e)
            logger.error(f"Scan failed: {e}")
        except Exception as e:  # pylint: disable=broad-except
            result.success = False
            result.error = str(e) or e.__class__.__name__
            logger.exception("Scan failed")

        result.end_time = utcnow()
        return result

    def _worker(self, sweep: _Sweep, timeout_ms: int, cancel_event: threading.Event) -> None:
        try:
            while not cancel_event.is_set() and sweep.failure is None:
                address = sweep.next_address()
                if address is None:
                    return
                try:
                    probe = self._probe(str(address), timeout_ms, cancel_event)
                except ScanCancelled:
                    return
                self._record(sweep, address, probe)
        except Exception as e:  # pylint: disable=broad-except
            logger.exception("Probe worker failed")
            sweep.failure = e

    def _record(self, sweep: _Sweep, address: ipaddress.IPv4Address, probe: Optional[ProbeResult]) -> None:
        # Counting and notifying under one lock keeps reported counts non-decreasing.
        with sweep.lock:
            scanned = sweep.scanned.increment()
            if probe is not None:
                found = sweep.found.increment()
                sweep.result.discovered_devices.append(probe)
                self._observers.emit("on_probe_succeeded", probe)
            else:
                found = sweep.found.value

            if probe is not None or scanned % PROGRESS_EVERY == 0 or scanned == sweep.total:
                self._observers.emit("on_scan_progress", ScanProgress(
                    current_address=address,
                    scanned_count=scanned,
                    total_count=sweep.total,
                    devices_found=found,
                ))
