"""
Native backend base classes and interfaces.

Defines the raw call surface every native backend must implement. Backend
primitives mirror the vendor C API: they never raise for native-level
failures, they return a native status code alongside the value. Translation
into pyhlml exceptions happens one layer up, in the adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum, auto
from typing import Any


class Status(IntEnum):
    """Native status codes returned by the management library."""

    SUCCESS = 0
    UNINITIALIZED = 1
    INVALID_ARGUMENT = 2
    NOT_SUPPORTED = 3
    ALREADY_INITIALIZED = 5
    NOT_FOUND = 6
    INSUFFICIENT_SIZE = 7
    DRIVER_NOT_LOADED = 9
    TIMEOUT = 10
    AIP_IS_LOST = 15
    MEMORY = 20
    NO_DATA = 21
    UNKNOWN = 49


# hlml_init_with_flags() flags
INIT_FLAG_DEFAULT = 0x0
INIT_FLAG_DIAGNOSTICS = 0x1


class Field(Enum):
    """Per-device native field selectors."""

    MINOR_NUMBER = auto()
    UUID = auto()
    NAME = auto()
    SERIAL = auto()
    BOARD_ID = auto()
    PCI_DOMAIN = auto()
    PCI_BUS = auto()
    PCI_BUS_ID = auto()
    PCI_ID = auto()
    PCI_LINK_SPEED = auto()
    PCI_LINK_WIDTH = auto()
    PCIE_THROUGHPUT = auto()  # arg: PCIeCounter
    PCIE_REPLAY_COUNTER = auto()
    PCIE_LINK_GENERATION = auto()
    PCIE_LINK_WIDTH = auto()
    MEMORY_INFO = auto()
    UTILIZATION = auto()
    CLOCK_INFO = auto()  # arg: ClockType
    CLOCK_MAX = auto()  # arg: ClockType
    POWER_USAGE = auto()
    POWER_DEFAULT_LIMIT = auto()
    TEMPERATURE = auto()  # arg: TemperatureSensor
    TEMPERATURE_THRESHOLD = auto()  # arg: TemperatureThreshold
    ECC_MODE = auto()
    ECC_VOLATILE_ERRORS = auto()  # arg: ECCErrorType
    ECC_AGGREGATE_ERRORS = auto()  # arg: ECCErrorType
    REPLACED_ROWS = auto()  # arg: ReplacedRowCause
    REPLACED_ROWS_PENDING = auto()
    ENERGY_COUNTER = auto()
    HL_REVISION = auto()
    PCB_VERSION = auto()
    PCB_ASSEMBLY_VERSION = auto()
    MAC_INFO = auto()
    NIC_LINK_STATUS = auto()  # arg: port number
    VIOLATION_STATUS = auto()  # arg: PerfPolicy


class GlobalField(Enum):
    """Native selectors that do not take a device handle."""

    DRIVER_VERSION = auto()
    FW_VERSION = auto()  # arg: device index


class ClockType(IntEnum):
    """Clock domains."""

    SOC = 0
    IC = 1
    MME = 2
    TPC = 3


class TemperatureSensor(IntEnum):
    """Temperature sensors."""

    ON_CHIP = 0
    ON_BOARD = 1


class TemperatureThreshold(IntEnum):
    """Temperature threshold kinds."""

    SHUTDOWN = 0
    SLOWDOWN = 1
    MEMORY = 2
    GPU = 3


class ECCErrorType(IntEnum):
    """ECC error classes."""

    CORRECTED = 0
    UNCORRECTED = 1


class ReplacedRowCause(IntEnum):
    """Reasons a memory row was replaced."""

    MULTIPLE_SINGLE_BIT_ECC = 0
    DOUBLE_BIT_ECC = 1


class PerfPolicy(IntEnum):
    """Violation status policies."""

    POWER = 0
    THERMAL = 1


class PCIeCounter(IntEnum):
    """PCIe throughput counters."""

    TX_BYTES = 0
    RX_BYTES = 1


@dataclass(frozen=True)
class NativeEvent:
    """Event record returned by a native event-set wait."""

    device: int  # raw native device handle
    event_type: int


NativeResult = tuple[int, Any]


class NativeBackend(ABC):
    """
    Abstract base class for native backends.

    Every primitive returns a ``(status, value)`` pair where ``status`` is a
    native status code (see :class:`Status`). ``value`` is meaningless unless
    the status is ``Status.SUCCESS``.

    Raw device handles and raw event sets are plain integers; their meaning is
    private to the backend that issued them.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the backend name."""
        ...

    @abstractmethod
    def init(self, flags: int) -> NativeResult:
        """
        Open the management channel.

        Args:
            flags: Bitwise OR of ``INIT_FLAG_*`` values.
        """
        ...

    @abstractmethod
    def shutdown(self) -> NativeResult:
        """Close the management channel."""
        ...

    @abstractmethod
    def device_count(self) -> NativeResult:
        """Get the number of discoverable devices."""
        ...

    @abstractmethod
    def handle_by_index(self, index: int) -> NativeResult:
        """Resolve a device ordinal to a raw handle."""
        ...

    @abstractmethod
    def handle_by_uuid(self, uuid: str) -> NativeResult:
        """Resolve a device UUID to a raw handle."""
        ...

    @abstractmethod
    def handle_by_serial(self, serial: str) -> NativeResult:
        """Resolve a device serial number to a raw handle."""
        ...

    @abstractmethod
    def read_field(self, device: int, field: Field, arg: int | None = None) -> NativeResult:
        """
        Read one per-device field.

        Args:
            device: Raw device handle.
            field: Field selector.
            arg: Selector argument for parameterized fields.

        Returns:
            Status and the raw field value. Fixed-shape fields return tuples:
            MEMORY_INFO ``(total, used, free)``, ECC_MODE ``(current, pending)``,
            VIOLATION_STATUS ``(reference_time, violation_time)``, MAC_INFO a
            list of ``(port, address)``.
        """
        ...

    @abstractmethod
    def read_global(self, field: GlobalField, arg: int | None = None) -> NativeResult:
        """Read one field that does not take a device handle."""
        ...

    @abstractmethod
    def event_set_create(self) -> NativeResult:
        """Allocate a native event set."""
        ...

    @abstractmethod
    def event_set_free(self, event_set: int) -> NativeResult:
        """Release a native event set."""
        ...

    @abstractmethod
    def register_events(self, device: int, event_types: int, event_set: int) -> NativeResult:
        """Subscribe a device's event classes into an event set."""
        ...

    @abstractmethod
    def event_set_wait(self, event_set: int, timeout_ms: int) -> NativeResult:
        """
        Block until an event fires or the timeout elapses.

        Returns:
            ``(Status.SUCCESS, NativeEvent)`` or ``(Status.TIMEOUT, None)``.
        """
        ...

    def __repr__(self) -> str:
        """String representation."""
        return f"{type(self).__name__}(name={self.name!r})"
