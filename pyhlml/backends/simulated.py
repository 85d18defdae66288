"""
Simulated backend for pyhlml.

Provides an in-process implementation of the native call surface.
Useful for testing and development on hosts without accelerator hardware.
"""

from __future__ import annotations

import threading
import uuid as uuid_module
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

import numpy as np

from pyhlml.backends.base import (
    ClockType,
    ECCErrorType,
    Field,
    GlobalField,
    NativeBackend,
    NativeEvent,
    NativeResult,
    PCIeCounter,
    PerfPolicy,
    ReplacedRowCause,
    Status,
    TemperatureSensor,
    TemperatureThreshold,
)

GIB = 1024**3


class Counter(IntEnum):
    """Slots of the per-device monotonic counter array."""

    ENERGY = 0
    PCIE_REPLAY = 1
    PCIE_TX = 2
    PCIE_RX = 3
    ECC_VOLATILE_CORRECTED = 4
    ECC_VOLATILE_UNCORRECTED = 5
    ECC_AGGREGATE_CORRECTED = 6
    ECC_AGGREGATE_UNCORRECTED = 7


def _new_counters() -> np.ndarray:
    return np.zeros(len(Counter), dtype=np.uint64)


@dataclass
class SimulatedDevice:
    """
    State of one simulated accelerator.

    Defaults describe a single HL-225 board; they are fixture values, not
    limits the library enforces.
    """

    index: int
    serial: str
    uuid: str
    name: str = "HL-225"
    board_id: int = 0
    pci_domain: int = 0
    pci_bus: int = 0x19
    pci_device_id: int = 0x1020
    pci_link_speed: str = "16.0 GT/s"
    pci_link_width: str = "x16"
    pcie_link_generation: int = 4
    pcie_link_width: int = 16
    memory: tuple[int, int, int] = (32 * GIB, 1 * GIB, 31 * GIB)  # total, used, free
    utilization: int = 0
    clocks: dict[int, int] = field(
        default_factory=lambda: {
            ClockType.SOC: 1500,
            ClockType.IC: 1200,
            ClockType.MME: 1650,
            ClockType.TPC: 1650,
        }
    )
    clocks_max: dict[int, int] = field(
        default_factory=lambda: {
            ClockType.SOC: 1800,
            ClockType.IC: 1400,
            ClockType.MME: 2000,
            ClockType.TPC: 2000,
        }
    )
    power_usage: int = 95_000  # mW
    power_default_limit: int = 600_000  # mW
    temperatures: dict[int, int] = field(
        default_factory=lambda: {TemperatureSensor.ON_CHIP: 38, TemperatureSensor.ON_BOARD: 33}
    )
    thresholds: dict[int, int] = field(
        default_factory=lambda: {
            TemperatureThreshold.SHUTDOWN: 115,
            TemperatureThreshold.SLOWDOWN: 100,
            TemperatureThreshold.MEMORY: 95,
            TemperatureThreshold.GPU: 100,
        }
    )
    ecc_mode: tuple[int, int] = (1, 1)  # current, pending
    replaced_rows: dict[int, int] = field(
        default_factory=lambda: {
            ReplacedRowCause.MULTIPLE_SINGLE_BIT_ECC: 0,
            ReplacedRowCause.DOUBLE_BIT_ECC: 0,
        }
    )
    replaced_rows_pending: bool = False
    hl_revision: int = 3
    pcb_version: str = "R0C"
    pcb_assembly_version: str = "V2.1"
    mac_addresses: list[str] = field(default_factory=list)
    nic_links: list[bool] = field(default_factory=list)
    violations: dict[int, tuple[int, int]] = field(
        default_factory=lambda: {PerfPolicy.POWER: (0, 0), PerfPolicy.THERMAL: (0, 0)}
    )
    kernel_version: str = "5.15.0-habanalabs-fw-1.15.0"
    uboot_version: str = "U-Boot 2021.04-fw-48.0.1"
    energy_step: int = 1_000  # mJ added per energy read
    counters: np.ndarray = field(default_factory=_new_counters)
    unsupported: set[Field] = field(default_factory=set)
    failures: dict[Field, int] = field(default_factory=dict)

    @classmethod
    def create(cls, index: int, **overrides: Any) -> SimulatedDevice:
        """
        Create a device with identity derived from its index.

        Args:
            index: Device ordinal, also used as the minor number.
            **overrides: Field values to override.

        Returns:
            New simulated device.
        """
        serial = overrides.pop("serial", f"AM{index + 1:012d}")
        values: dict[str, Any] = {
            "uuid": str(uuid_module.uuid5(uuid_module.NAMESPACE_OID, serial)),
            "board_id": index,
            "pci_bus": 0x19 + index * 0x10,
            "mac_addresses": [f"b0:fd:0b:{index:02x}:00:{port:02x}" for port in range(10)],
            "nic_links": [True] * 10,
        }
        values.update(overrides)
        return cls(index=index, serial=serial, **values)

    @property
    def pci_bus_id(self) -> str:
        """Get the PCI address string."""
        return f"{self.pci_domain:04x}:{self.pci_bus:02x}:00.0"

    def add(self, counter: Counter, amount: int = 1) -> None:
        """
        Advance a monotonic counter.

        Args:
            counter: Counter slot.
            amount: Non-negative increment.
        """
        if amount < 0:
            raise ValueError(f"counters only move forward, got {amount}")
        self.counters[counter] += np.uint64(amount)

    def record_ecc_error(self, error_type: ECCErrorType, count: int = 1) -> None:
        """Record ECC errors in both the volatile and aggregate counters."""
        if error_type == ECCErrorType.CORRECTED:
            self.add(Counter.ECC_VOLATILE_CORRECTED, count)
            self.add(Counter.ECC_AGGREGATE_CORRECTED, count)
        else:
            self.add(Counter.ECC_VOLATILE_UNCORRECTED, count)
            self.add(Counter.ECC_AGGREGATE_UNCORRECTED, count)


@dataclass
class _SimulatedEventSet:
    registrations: dict[int, int] = field(default_factory=dict)  # raw device -> mask
    pending: deque[NativeEvent] = field(default_factory=deque)


_VOLATILE_COUNTERS = (Counter.ECC_VOLATILE_CORRECTED, Counter.ECC_VOLATILE_UNCORRECTED)


class SimulatedBackend(NativeBackend):
    """
    Simulated backend implementation.

    Keeps device state in memory and implements event-set waits with a
    condition variable. Tests drive it through :meth:`inject_event`,
    :meth:`set_unsupported` and :meth:`set_failure`.

    Example:
        >>> backend = SimulatedBackend(device_count=2)
        >>> pyhlml.initialize(backend=backend)
        >>> backend.inject_event(0, EventType.THERMAL_VIOLATION)
    """

    RAW_HANDLE_BASE = 0x1000

    def __init__(
        self,
        device_count: int = 1,
        *,
        devices: Iterable[SimulatedDevice] | None = None,
        driver_version: str = "1.15.0-fw-48.0.1",
    ) -> None:
        """
        Initialize the simulated backend.

        Args:
            device_count: Number of default devices to create.
            devices: Explicit devices; overrides ``device_count``.
            driver_version: Value reported as the system driver version.
        """
        if devices is None:
            devices = [SimulatedDevice.create(i) for i in range(device_count)]
        self._devices = list(devices)
        self._driver_version = driver_version
        self._lock = threading.Lock()
        self._event_ready = threading.Condition(self._lock)
        self._initialized = False
        self._flags = 0
        self._event_sets: dict[int, _SimulatedEventSet] = {}
        self._next_event_set = 1
        self.init_calls = 0

        self._readers: dict[Field, Callable[[SimulatedDevice, int | None], Any]] = {
            Field.MINOR_NUMBER: lambda d, a: d.index,
            Field.UUID: lambda d, a: d.uuid,
            Field.NAME: lambda d, a: d.name,
            Field.SERIAL: lambda d, a: d.serial,
            Field.BOARD_ID: lambda d, a: d.board_id,
            Field.PCI_DOMAIN: lambda d, a: d.pci_domain,
            Field.PCI_BUS: lambda d, a: d.pci_bus,
            Field.PCI_BUS_ID: lambda d, a: d.pci_bus_id,
            Field.PCI_ID: lambda d, a: d.pci_device_id,
            Field.PCI_LINK_SPEED: lambda d, a: d.pci_link_speed,
            Field.PCI_LINK_WIDTH: lambda d, a: d.pci_link_width,
            Field.PCIE_THROUGHPUT: self._read_pcie_throughput,
            Field.PCIE_REPLAY_COUNTER: lambda d, a: int(d.counters[Counter.PCIE_REPLAY]),
            Field.PCIE_LINK_GENERATION: lambda d, a: d.pcie_link_generation,
            Field.PCIE_LINK_WIDTH: lambda d, a: d.pcie_link_width,
            Field.MEMORY_INFO: lambda d, a: tuple(d.memory),
            Field.UTILIZATION: lambda d, a: d.utilization,
            Field.CLOCK_INFO: lambda d, a: d.clocks[ClockType(a)],
            Field.CLOCK_MAX: lambda d, a: d.clocks_max[ClockType(a)],
            Field.POWER_USAGE: lambda d, a: d.power_usage,
            Field.POWER_DEFAULT_LIMIT: lambda d, a: d.power_default_limit,
            Field.TEMPERATURE: lambda d, a: d.temperatures[TemperatureSensor(a)],
            Field.TEMPERATURE_THRESHOLD: lambda d, a: d.thresholds[TemperatureThreshold(a)],
            Field.ECC_MODE: lambda d, a: tuple(d.ecc_mode),
            Field.ECC_VOLATILE_ERRORS: self._read_ecc_volatile,
            Field.ECC_AGGREGATE_ERRORS: self._read_ecc_aggregate,
            Field.REPLACED_ROWS: lambda d, a: d.replaced_rows[ReplacedRowCause(a)],
            Field.REPLACED_ROWS_PENDING: lambda d, a: int(d.replaced_rows_pending),
            Field.ENERGY_COUNTER: self._read_energy,
            Field.HL_REVISION: lambda d, a: d.hl_revision,
            Field.PCB_VERSION: lambda d, a: d.pcb_version,
            Field.PCB_ASSEMBLY_VERSION: lambda d, a: d.pcb_assembly_version,
            Field.MAC_INFO: lambda d, a: list(enumerate(d.mac_addresses)),
            Field.NIC_LINK_STATUS: self._read_nic_link,
            Field.VIOLATION_STATUS: lambda d, a: d.violations[PerfPolicy(a)],
        }

    @property
    def name(self) -> str:
        """Get the backend name."""
        return "simulated"

    @property
    def devices(self) -> list[SimulatedDevice]:
        """Get the simulated devices, in index order."""
        return self._devices

    @property
    def initialized(self) -> bool:
        """Check if the simulated management channel is open."""
        return self._initialized

    @property
    def flags(self) -> int:
        """Get the flags passed to the last init()."""
        return self._flags

    @property
    def open_event_sets(self) -> int:
        """Get the number of allocated event sets."""
        with self._lock:
            return len(self._event_sets)

    # Lifecycle

    def init(self, flags: int) -> NativeResult:
        """Open the simulated management channel."""
        with self._lock:
            if self._initialized:
                return Status.ALREADY_INITIALIZED, None
            self._initialized = True
            self._flags = flags
            self.init_calls += 1
            # Volatile ECC counts cover one driver session
            for device in self._devices:
                for counter in _VOLATILE_COUNTERS:
                    device.counters[counter] = np.uint64(0)
            return Status.SUCCESS, None

    def shutdown(self) -> NativeResult:
        """Close the simulated management channel."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            self._initialized = False
            self._event_sets.clear()
            self._event_ready.notify_all()
            return Status.SUCCESS, None

    # Enumeration

    def device_count(self) -> NativeResult:
        """Get the number of simulated devices."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            return Status.SUCCESS, len(self._devices)

    def handle_by_index(self, index: int) -> NativeResult:
        """Resolve a device ordinal to a raw handle."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            if not 0 <= index < len(self._devices):
                return Status.INVALID_ARGUMENT, None
            return Status.SUCCESS, self.RAW_HANDLE_BASE + index

    def handle_by_uuid(self, uuid: str) -> NativeResult:
        """Resolve a device UUID to a raw handle."""
        return self._find(lambda d: d.uuid == uuid)

    def handle_by_serial(self, serial: str) -> NativeResult:
        """Resolve a device serial number to a raw handle."""
        return self._find(lambda d: d.serial == serial)

    def _find(self, predicate: Callable[[SimulatedDevice], bool]) -> NativeResult:
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            for device in self._devices:
                if predicate(device):
                    return Status.SUCCESS, self.RAW_HANDLE_BASE + device.index
            return Status.NOT_FOUND, None

    def _device(self, raw: int) -> SimulatedDevice | None:
        index = raw - self.RAW_HANDLE_BASE
        if 0 <= index < len(self._devices):
            return self._devices[index]
        return None

    # Fields

    def read_field(self, device: int, field: Field, arg: int | None = None) -> NativeResult:
        """Read one per-device field."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            dev = self._device(device)
            if dev is None:
                return Status.INVALID_ARGUMENT, None
            if field in dev.failures:
                return dev.failures[field], None
            if field in dev.unsupported:
                return Status.NOT_SUPPORTED, None
            try:
                return Status.SUCCESS, self._readers[field](dev, arg)
            except (KeyError, IndexError, TypeError, ValueError):
                return Status.INVALID_ARGUMENT, None

    def read_global(self, field: GlobalField, arg: int | None = None) -> NativeResult:
        """Read one field that does not take a device handle."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            if field == GlobalField.DRIVER_VERSION:
                return Status.SUCCESS, self._driver_version
            if field == GlobalField.FW_VERSION:
                if arg is None or not 0 <= arg < len(self._devices):
                    return Status.INVALID_ARGUMENT, None
                dev = self._devices[arg]
                return Status.SUCCESS, (dev.kernel_version, dev.uboot_version)
            return Status.NOT_SUPPORTED, None

    def _read_energy(self, device: SimulatedDevice, arg: int | None) -> int:
        device.add(Counter.ENERGY, device.energy_step)
        return int(device.counters[Counter.ENERGY])

    def _read_pcie_throughput(self, device: SimulatedDevice, arg: int | None) -> int:
        slot = Counter.PCIE_TX if PCIeCounter(arg) == PCIeCounter.TX_BYTES else Counter.PCIE_RX
        return int(device.counters[slot])

    def _read_nic_link(self, device: SimulatedDevice, arg: int | None) -> int:
        if arg is None or not 0 <= arg < len(device.nic_links):
            raise IndexError(f"no NIC port {arg}")
        return int(device.nic_links[arg])

    def _read_ecc_volatile(self, device: SimulatedDevice, arg: int | None) -> int:
        if ECCErrorType(arg) == ECCErrorType.CORRECTED:
            return int(device.counters[Counter.ECC_VOLATILE_CORRECTED])
        return int(device.counters[Counter.ECC_VOLATILE_UNCORRECTED])

    def _read_ecc_aggregate(self, device: SimulatedDevice, arg: int | None) -> int:
        if ECCErrorType(arg) == ECCErrorType.CORRECTED:
            return int(device.counters[Counter.ECC_AGGREGATE_CORRECTED])
        return int(device.counters[Counter.ECC_AGGREGATE_UNCORRECTED])

    # Events

    def event_set_create(self) -> NativeResult:
        """Allocate a simulated event set."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            raw = self._next_event_set
            self._next_event_set += 1
            self._event_sets[raw] = _SimulatedEventSet()
            return Status.SUCCESS, raw

    def event_set_free(self, event_set: int) -> NativeResult:
        """Release a simulated event set and wake its waiters."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            if self._event_sets.pop(event_set, None) is None:
                return Status.INVALID_ARGUMENT, None
            self._event_ready.notify_all()
            return Status.SUCCESS, None

    def register_events(self, device: int, event_types: int, event_set: int) -> NativeResult:
        """Subscribe a device's event classes into an event set."""
        with self._lock:
            if not self._initialized:
                return Status.UNINITIALIZED, None
            target = self._event_sets.get(event_set)
            if target is None or self._device(device) is None:
                return Status.INVALID_ARGUMENT, None
            target.registrations[device] = target.registrations.get(device, 0) | event_types
            return Status.SUCCESS, None

    def event_set_wait(self, event_set: int, timeout_ms: int) -> NativeResult:
        """Block until an event is pending on the set or the timeout elapses."""
        with self._event_ready:
            target = self._event_sets.get(event_set)
            if not self._initialized:
                return Status.UNINITIALIZED, None
            if target is None:
                return Status.INVALID_ARGUMENT, None
            self._event_ready.wait_for(
                lambda: bool(target.pending)
                or not self._initialized
                or event_set not in self._event_sets,
                timeout=timeout_ms / 1000.0,
            )
            if target.pending:
                return Status.SUCCESS, target.pending.popleft()
            if not self._initialized:
                return Status.UNINITIALIZED, None
            if event_set not in self._event_sets:
                return Status.INVALID_ARGUMENT, None
            return Status.TIMEOUT, None

    # Test controls

    def inject_event(self, index: int, event_type: int) -> int:
        """
        Fire a hardware event on a device.

        Args:
            index: Device ordinal.
            event_type: Event class bit.

        Returns:
            Number of event sets the event was delivered to.
        """
        raw = self.RAW_HANDLE_BASE + index
        delivered = 0
        with self._event_ready:
            for target in self._event_sets.values():
                if target.registrations.get(raw, 0) & event_type:
                    target.pending.append(NativeEvent(device=raw, event_type=int(event_type)))
                    delivered += 1
            if delivered:
                self._event_ready.notify_all()
        return delivered

    def set_unsupported(self, index: int, field: Field) -> None:
        """Make a field report NOT_SUPPORTED on one device."""
        with self._lock:
            self._devices[index].unsupported.add(field)

    def set_failure(self, index: int, field: Field, status: int) -> None:
        """Make a field fail with a native status on one device."""
        with self._lock:
            self._devices[index].failures[field] = status

    def __repr__(self) -> str:
        """String representation."""
        return f"SimulatedBackend(devices={len(self._devices)}, initialized={self._initialized})"
