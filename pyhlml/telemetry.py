"""
Typed counter queries.

Every telemetry getter is a :class:`Metric` (native field selector, unit,
result shape) run through :func:`query`. The shared contract:

- exactly one native read per metric, no retries and no caching;
- NOT_SUPPORTED surfaces as UnsupportedError, never as a zero;
- values are returned as the native layer reports them, without rounding
  or rescaling;
- monotonic counters (energy, PCIe replay, aggregate ECC) are never reset
  by this layer.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from pyhlml.backends.base import (
    ClockType,
    ECCErrorType,
    Field,
    GlobalField,
    PCIeCounter,
    PerfPolicy,
    ReplacedRowCause,
    Status,
    TemperatureSensor,
    TemperatureThreshold,
)
from pyhlml.exceptions import NativeFailureError

if TYPE_CHECKING:
    from pyhlml.adapter import NativeAdapter
    from pyhlml.device import DeviceHandle


class Unit(Enum):
    """Implicit unit of a reading."""

    NONE = ""
    BYTES = "B"
    KILOBYTES_PER_SECOND = "KB/s"
    MILLIWATTS = "mW"
    MILLIJOULES = "mJ"
    MEGAHERTZ = "MHz"
    CELSIUS = "C"
    PERCENT = "%"
    COUNT = "count"


@dataclass(frozen=True)
class MemoryInfo:
    """Device memory, in bytes. ``used + free == total`` always holds."""

    total: int
    used: int
    free: int


@dataclass(frozen=True)
class Temperature:
    """On-chip and on-board temperature in degrees Celsius."""

    on_chip: int
    on_board: int


@dataclass(frozen=True)
class ECCMode:
    """Current and pending (after next reset) ECC mode."""

    current: int
    pending: int


@dataclass(frozen=True)
class FWVersion:
    """Firmware versions of one device."""

    kernel: str
    uboot: str


@dataclass(frozen=True)
class ViolationStatus:
    """Time spent under a power or thermal violation."""

    reference_time: int
    violation_time: int


@dataclass(frozen=True)
class MacAddress:
    """MAC address of one NIC port."""

    port: int
    address: str


@dataclass(frozen=True)
class Metric:
    """A typed native counter."""

    name: str
    field: Field | GlobalField
    unit: Unit = Unit.NONE
    convert: Callable[[Any], Any] | None = None
    arg: int | None = None
    monotonic: bool = False


def _invalid(metric: str, detail: str) -> NativeFailureError:
    return NativeFailureError(int(Status.UNKNOWN), metric, detail)


def _unsigned(value: Any) -> int:
    value = int(value)
    if value < 0:
        raise _invalid("unsigned reading", f"native layer reported {value}")
    return value


def _memory(raw: Any) -> MemoryInfo:
    total, used, free = (_unsigned(v) for v in raw)
    if used + free != total:
        raise _invalid("memory_info", f"used ({used}) + free ({free}) != total ({total})")
    return MemoryInfo(total=total, used=used, free=free)


def _ecc_mode(raw: Any) -> ECCMode:
    current, pending = raw
    return ECCMode(current=int(current), pending=int(pending))


def _violation(raw: Any) -> ViolationStatus:
    reference_time, violation_time = raw
    return ViolationStatus(
        reference_time=_unsigned(reference_time), violation_time=_unsigned(violation_time)
    )


def _mac_addresses(raw: Any) -> list[MacAddress]:
    return [MacAddress(port=int(port), address=str(address)) for port, address in raw]


def _fw_version(raw: Any) -> FWVersion:
    kernel, uboot = raw
    return FWVersion(kernel=str(kernel), uboot=str(uboot))


# Identity
MINOR_NUMBER = Metric("minor_number", Field.MINOR_NUMBER, convert=_unsigned)
UUID = Metric("uuid", Field.UUID, convert=str)
NAME = Metric("name", Field.NAME, convert=str)
SERIAL_NUMBER = Metric("serial_number", Field.SERIAL, convert=str)
BOARD_ID = Metric("board_id", Field.BOARD_ID, convert=_unsigned)

# PCI
PCI_DOMAIN = Metric("pci_domain", Field.PCI_DOMAIN, convert=_unsigned)
PCI_BUS = Metric("pci_bus", Field.PCI_BUS, convert=_unsigned)
PCI_BUS_ID = Metric("pci_bus_id", Field.PCI_BUS_ID, convert=str)
PCI_ID = Metric("pci_id", Field.PCI_ID, convert=_unsigned)
PCI_LINK_SPEED = Metric("pci_link_speed", Field.PCI_LINK_SPEED, convert=str)
PCI_LINK_WIDTH = Metric("pci_link_width", Field.PCI_LINK_WIDTH, convert=str)
PCIE_TX = Metric(
    "pcie_tx", Field.PCIE_THROUGHPUT, Unit.KILOBYTES_PER_SECOND, _unsigned, arg=PCIeCounter.TX_BYTES
)
PCIE_RX = Metric(
    "pcie_rx", Field.PCIE_THROUGHPUT, Unit.KILOBYTES_PER_SECOND, _unsigned, arg=PCIeCounter.RX_BYTES
)
PCI_REPLAY_COUNTER = Metric(
    "pci_replay_counter", Field.PCIE_REPLAY_COUNTER, Unit.COUNT, _unsigned, monotonic=True
)
PCIE_LINK_GENERATION = Metric("pcie_link_generation", Field.PCIE_LINK_GENERATION, convert=_unsigned)
PCIE_LINK_WIDTH = Metric("pcie_link_width", Field.PCIE_LINK_WIDTH, convert=_unsigned)

# Memory and utilization
MEMORY_INFO = Metric("memory_info", Field.MEMORY_INFO, Unit.BYTES, _memory)
UTILIZATION = Metric("utilization_info", Field.UTILIZATION, Unit.PERCENT, _unsigned)

# Clocks
CLOCK_INFO = {
    clock: Metric(
        f"{clock.name.lower()}_clock_info", Field.CLOCK_INFO, Unit.MEGAHERTZ, _unsigned, arg=clock
    )
    for clock in ClockType
}
CLOCK_MAX = {
    clock: Metric(
        f"{clock.name.lower()}_clock_max", Field.CLOCK_MAX, Unit.MEGAHERTZ, _unsigned, arg=clock
    )
    for clock in ClockType
}

# Power and energy
POWER_USAGE = Metric("power_usage", Field.POWER_USAGE, Unit.MILLIWATTS, _unsigned)
POWER_DEFAULT_LIMIT = Metric(
    "power_management_default_limit", Field.POWER_DEFAULT_LIMIT, Unit.MILLIWATTS, _unsigned
)
ENERGY_CONSUMPTION = Metric(
    "energy_consumption_counter", Field.ENERGY_COUNTER, Unit.MILLIJOULES, _unsigned, monotonic=True
)
POWER_VIOLATION = Metric(
    "power_violation_status", Field.VIOLATION_STATUS, convert=_violation, arg=PerfPolicy.POWER
)
THERMAL_VIOLATION = Metric(
    "thermal_violation_status", Field.VIOLATION_STATUS, convert=_violation, arg=PerfPolicy.THERMAL
)

# Temperature
TEMPERATURE_ON_CHIP = Metric(
    "temperature_on_chip", Field.TEMPERATURE, Unit.CELSIUS, _unsigned, arg=TemperatureSensor.ON_CHIP
)
TEMPERATURE_ON_BOARD = Metric(
    "temperature_on_board",
    Field.TEMPERATURE,
    Unit.CELSIUS,
    _unsigned,
    arg=TemperatureSensor.ON_BOARD,
)
TEMPERATURE_THRESHOLD = {
    threshold: Metric(
        f"temperature_threshold_{threshold.name.lower()}",
        Field.TEMPERATURE_THRESHOLD,
        Unit.CELSIUS,
        _unsigned,
        arg=threshold,
    )
    for threshold in TemperatureThreshold
}

# ECC and row replacement
ECC_MODE = Metric("ecc_mode", Field.ECC_MODE, convert=_ecc_mode)
ECC_VOLATILE_ERRORS = {
    kind: Metric(
        f"ecc_volatile_{kind.name.lower()}_errors",
        Field.ECC_VOLATILE_ERRORS,
        Unit.COUNT,
        _unsigned,
        arg=kind,
    )
    for kind in ECCErrorType
}
ECC_AGGREGATE_ERRORS = {
    kind: Metric(
        f"ecc_aggregate_{kind.name.lower()}_errors",
        Field.ECC_AGGREGATE_ERRORS,
        Unit.COUNT,
        _unsigned,
        arg=kind,
        monotonic=True,
    )
    for kind in ECCErrorType
}
REPLACED_ROWS_SINGLE_BIT = Metric(
    "replaced_row_single_bit_ecc",
    Field.REPLACED_ROWS,
    Unit.COUNT,
    _unsigned,
    arg=ReplacedRowCause.MULTIPLE_SINGLE_BIT_ECC,
)
REPLACED_ROWS_DOUBLE_BIT = Metric(
    "replaced_row_double_bit_ecc",
    Field.REPLACED_ROWS,
    Unit.COUNT,
    _unsigned,
    arg=ReplacedRowCause.DOUBLE_BIT_ECC,
)
REPLACED_ROWS_PENDING = Metric("replaced_rows_pending", Field.REPLACED_ROWS_PENDING, convert=bool)

# Board
HL_REVISION = Metric("hl_revision", Field.HL_REVISION, convert=int)
PCB_VERSION = Metric("pcb_version", Field.PCB_VERSION, convert=str)
PCB_ASSEMBLY_VERSION = Metric("pcb_assembly_version", Field.PCB_ASSEMBLY_VERSION, convert=str)

# NIC
MAC_ADDRESS_INFO = Metric("mac_address_info", Field.MAC_INFO, convert=_mac_addresses)
NIC_LINK_STATUS = Metric("nic_link_status", Field.NIC_LINK_STATUS, convert=bool)

# Global
SYSTEM_DRIVER_VERSION = Metric("system_driver_version", GlobalField.DRIVER_VERSION, convert=str)
FW_VERSION = Metric("fw_version", GlobalField.FW_VERSION, convert=_fw_version)


def query(handle: DeviceHandle, metric: Metric, arg: int | None = None) -> Any:
    """
    Read one metric from a device.

    Args:
        handle: Device to query.
        metric: Metric to read.
        arg: Selector argument; defaults to ``metric.arg``.

    Returns:
        The converted reading.

    Raises:
        NotInitializedError: If the library is not initialized.
        InvalidHandleError: If the handle is stale or foreign.
        UnsupportedError: If the device does not provide the metric.
        NativeFailureError: For any other native failure.
    """
    adapter = handle._checked_adapter(metric.name)
    if arg is None:
        arg = metric.arg
    value = adapter.call(
        metric.name,
        adapter.backend.read_field,
        handle.raw,
        metric.field,
        arg,
        metric=metric.name,
        argument=("arg", arg),
    )
    return metric.convert(value) if metric.convert is not None else value


def query_global(adapter: NativeAdapter, metric: Metric, arg: int | None = None) -> Any:
    """Read one metric that does not take a device handle."""
    if arg is None:
        arg = metric.arg
    value = adapter.call(
        metric.name,
        adapter.backend.read_global,
        metric.field,
        arg,
        metric=metric.name,
        argument=("arg", arg),
    )
    return metric.convert(value) if metric.convert is not None else value
