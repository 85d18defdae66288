"""
Device handles.

A DeviceHandle is an opaque capability for querying one physical device
during one initialize/shutdown cycle (its epoch).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, TypeVar

from pyhlml import telemetry
from pyhlml.backends.base import ClockType, ECCErrorType, TemperatureThreshold
from pyhlml.exceptions import InvalidArgumentError
from pyhlml.telemetry import (
    ECCMode,
    MacAddress,
    MemoryInfo,
    Temperature,
    ViolationStatus,
)

if TYPE_CHECKING:
    from pyhlml.adapter import NativeAdapter
    from pyhlml.lifecycle import Library


E = TypeVar("E", bound=IntEnum)


@dataclass(frozen=True)
class DeviceIdentity:
    """The redundant identity triple of one physical device."""

    index: int
    uuid: str
    serial: str


def _selector(kind: type[E], value: object, parameter: str) -> E:
    try:
        return kind(value)
    except ValueError as e:
        choices = ", ".join(member.name for member in kind)
        raise InvalidArgumentError(parameter, value, f"must be one of {choices}") from e


class DeviceHandle:
    """
    Handle to one accelerator device.

    Handles are issued by the library at initialize() and are valid until
    the next shutdown(). Every call validates the handle first: after
    shutdown() calls raise NotInitializedError, and a handle from an earlier
    cycle raises InvalidHandleError once the library is initialized again.
    Use after shutdown is therefore reported, not guarded silently.

    Handles carry no mutable state. Two handles for the same device in the
    same cycle compare equal, whichever lookup produced them.

    Example:
        >>> pyhlml.initialize()
        >>> dev = pyhlml.device_handle_by_index(0)
        >>> mem = dev.memory_info()
        >>> print(f"{mem.used}/{mem.total} bytes")
    """

    __slots__ = ("_raw", "_index", "_epoch", "_library")

    def __init__(self, raw: int, index: int, epoch: int, library: Library) -> None:
        """
        Initialize a device handle.

        Args:
            raw: Native device handle.
            index: Device ordinal at enumeration time.
            epoch: Initialize/shutdown cycle the handle belongs to.
            library: Library that issued the handle.
        """
        self._raw = raw
        self._index = index
        self._epoch = epoch
        self._library = library

    @property
    def raw(self) -> int:
        """Get the native handle value."""
        return self._raw

    @property
    def index(self) -> int:
        """Get the device ordinal."""
        return self._index

    @property
    def epoch(self) -> int:
        """Get the initialize/shutdown cycle this handle belongs to."""
        return self._epoch

    def _checked_adapter(self, operation: str) -> NativeAdapter:
        return self._library.validate_handle(self, operation)

    # Identity

    def minor_number(self) -> int:
        """Get the device minor number."""
        return telemetry.query(self, telemetry.MINOR_NUMBER)

    def uuid(self) -> str:
        """Get the device UUID."""
        return telemetry.query(self, telemetry.UUID)

    def name(self) -> str:
        """Get the device product name."""
        return telemetry.query(self, telemetry.NAME)

    def serial_number(self) -> str:
        """Get the board serial number."""
        return telemetry.query(self, telemetry.SERIAL_NUMBER)

    def board_id(self) -> int:
        """Get the board ID."""
        return telemetry.query(self, telemetry.BOARD_ID)

    def identity(self) -> DeviceIdentity:
        """Get the index, UUID and serial of this device."""
        return DeviceIdentity(index=self._index, uuid=self.uuid(), serial=self.serial_number())

    # PCI

    def pci_domain(self) -> int:
        """Get the PCI domain."""
        return telemetry.query(self, telemetry.PCI_DOMAIN)

    def pci_bus(self) -> int:
        """Get the PCI bus number."""
        return telemetry.query(self, telemetry.PCI_BUS)

    def pci_bus_id(self) -> str:
        """Get the PCI address, e.g. ``0000:19:00.0``."""
        return telemetry.query(self, telemetry.PCI_BUS_ID)

    def pci_id(self) -> int:
        """Get the PCI device ID."""
        return telemetry.query(self, telemetry.PCI_ID)

    def pci_link_speed(self) -> str:
        """Get the PCI link speed as reported by the device, e.g. ``16.0 GT/s``."""
        return telemetry.query(self, telemetry.PCI_LINK_SPEED)

    def pci_link_width(self) -> str:
        """Get the PCI link width as reported by the device, e.g. ``x16``."""
        return telemetry.query(self, telemetry.PCI_LINK_WIDTH)

    def pcie_tx(self) -> int:
        """Get PCIe transmit throughput in KB/s."""
        return telemetry.query(self, telemetry.PCIE_TX)

    def pcie_rx(self) -> int:
        """Get PCIe receive throughput in KB/s."""
        return telemetry.query(self, telemetry.PCIE_RX)

    def pci_replay_counter(self) -> int:
        """Get the PCIe replay counter. Monotonic."""
        return telemetry.query(self, telemetry.PCI_REPLAY_COUNTER)

    def pcie_link_generation(self) -> int:
        """Get the current PCIe link generation."""
        return telemetry.query(self, telemetry.PCIE_LINK_GENERATION)

    def pcie_link_width(self) -> int:
        """Get the current PCIe link width (lanes)."""
        return telemetry.query(self, telemetry.PCIE_LINK_WIDTH)

    # Memory and utilization

    def memory_info(self) -> MemoryInfo:
        """
        Get device memory usage.

        Returns:
            Total, used and free bytes; ``used + free == total``.

        Raises:
            NativeFailureError: If the native layer reports inconsistent values.
        """
        return telemetry.query(self, telemetry.MEMORY_INFO)

    def utilization_info(self) -> int:
        """Get device utilization in percent."""
        return telemetry.query(self, telemetry.UTILIZATION)

    # Clocks

    def clock_info(self, clock: ClockType) -> int:
        """
        Get the current frequency of a clock domain.

        Args:
            clock: Clock domain.

        Returns:
            Frequency in MHz.
        """
        return telemetry.query(self, telemetry.CLOCK_INFO[_selector(ClockType, clock, "clock")])

    def clock_max(self, clock: ClockType) -> int:
        """Get the maximum frequency of a clock domain in MHz."""
        return telemetry.query(self, telemetry.CLOCK_MAX[_selector(ClockType, clock, "clock")])

    def soc_clock_info(self) -> int:
        return self.clock_info(ClockType.SOC)

    def soc_clock_max(self) -> int:
        return self.clock_max(ClockType.SOC)

    def ic_clock_info(self) -> int:
        return self.clock_info(ClockType.IC)

    def ic_clock_max(self) -> int:
        return self.clock_max(ClockType.IC)

    def mme_clock_info(self) -> int:
        return self.clock_info(ClockType.MME)

    def mme_clock_max(self) -> int:
        return self.clock_max(ClockType.MME)

    def tpc_clock_info(self) -> int:
        return self.clock_info(ClockType.TPC)

    def tpc_clock_max(self) -> int:
        return self.clock_max(ClockType.TPC)

    # Power

    def power_usage(self) -> int:
        """Get current power draw in milliwatts."""
        return telemetry.query(self, telemetry.POWER_USAGE)

    def power_management_default_limit(self) -> int:
        """Get the default power limit in milliwatts."""
        return telemetry.query(self, telemetry.POWER_DEFAULT_LIMIT)

    def energy_consumption_counter(self) -> int:
        """
        Get total energy consumed since driver load, in millijoules.

        The counter only increases; it is never reset by this library.
        """
        return telemetry.query(self, telemetry.ENERGY_CONSUMPTION)

    def power_violation_status(self) -> ViolationStatus:
        """Get time spent throttled by the power limit."""
        return telemetry.query(self, telemetry.POWER_VIOLATION)

    def thermal_violation_status(self) -> ViolationStatus:
        """Get time spent throttled by thermal limits."""
        return telemetry.query(self, telemetry.THERMAL_VIOLATION)

    # Temperature

    def temperature_on_chip(self) -> int:
        """Get the on-chip temperature in degrees Celsius."""
        return telemetry.query(self, telemetry.TEMPERATURE_ON_CHIP)

    def temperature_on_board(self) -> int:
        """Get the on-board temperature in degrees Celsius."""
        return telemetry.query(self, telemetry.TEMPERATURE_ON_BOARD)

    def temperature(self) -> Temperature:
        """
        Get both temperature sensors.

        Performs one native read per sensor; the two values are not taken
        atomically.
        """
        return Temperature(on_chip=self.temperature_on_chip(), on_board=self.temperature_on_board())

    def temperature_threshold(self, threshold: TemperatureThreshold) -> int:
        """Get a temperature threshold in degrees Celsius."""
        selector = _selector(TemperatureThreshold, threshold, "threshold")
        return telemetry.query(self, telemetry.TEMPERATURE_THRESHOLD[selector])

    def temperature_threshold_shutdown(self) -> int:
        return self.temperature_threshold(TemperatureThreshold.SHUTDOWN)

    def temperature_threshold_slowdown(self) -> int:
        return self.temperature_threshold(TemperatureThreshold.SLOWDOWN)

    def temperature_threshold_memory(self) -> int:
        return self.temperature_threshold(TemperatureThreshold.MEMORY)

    def temperature_threshold_gpu(self) -> int:
        return self.temperature_threshold(TemperatureThreshold.GPU)

    # ECC

    def ecc_mode(self) -> ECCMode:
        """Get the current and pending ECC mode."""
        return telemetry.query(self, telemetry.ECC_MODE)

    def ecc_volatile_errors(self, error_type: ECCErrorType) -> int:
        """Get ECC errors counted since driver load."""
        selector = _selector(ECCErrorType, error_type, "error_type")
        return telemetry.query(self, telemetry.ECC_VOLATILE_ERRORS[selector])

    def ecc_aggregate_errors(self, error_type: ECCErrorType) -> int:
        """Get ECC errors counted over the device lifetime. Monotonic."""
        selector = _selector(ECCErrorType, error_type, "error_type")
        return telemetry.query(self, telemetry.ECC_AGGREGATE_ERRORS[selector])

    def replaced_row_single_bit_ecc(self) -> int:
        """Get the number of rows replaced for repeated single-bit errors."""
        return telemetry.query(self, telemetry.REPLACED_ROWS_SINGLE_BIT)

    def replaced_row_double_bit_ecc(self) -> int:
        """Get the number of rows replaced for double-bit errors."""
        return telemetry.query(self, telemetry.REPLACED_ROWS_DOUBLE_BIT)

    def is_replaced_rows_pending(self) -> bool:
        """Check if row replacements wait for the next reset."""
        return telemetry.query(self, telemetry.REPLACED_ROWS_PENDING)

    # Board

    def hl_revision(self) -> int:
        return telemetry.query(self, telemetry.HL_REVISION)

    def pcb_version(self) -> str:
        return telemetry.query(self, telemetry.PCB_VERSION)

    def pcb_assembly_version(self) -> str:
        return telemetry.query(self, telemetry.PCB_ASSEMBLY_VERSION)

    # NIC

    def mac_address_info(self) -> list[MacAddress]:
        """Get the MAC address of every NIC port."""
        return telemetry.query(self, telemetry.MAC_ADDRESS_INFO)

    def nic_link_status(self, port: int) -> bool:
        """
        Check if a NIC port link is up.

        Args:
            port: NIC port number.

        Raises:
            InvalidArgumentError: If ``port`` is not a non-negative integer, or
                the device has no such port.
        """
        if isinstance(port, bool) or not isinstance(port, int):
            raise InvalidArgumentError("port", port, "must be an integer")
        if port < 0:
            raise InvalidArgumentError("port", port, "must be >= 0")
        return telemetry.query(self, telemetry.NIC_LINK_STATUS, port)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeviceHandle):
            return NotImplemented
        return self._epoch == other._epoch and self._raw == other._raw

    def __hash__(self) -> int:
        return hash((self._epoch, self._raw))

    def __repr__(self) -> str:
        """String representation."""
        return f"DeviceHandle(index={self._index}, raw=0x{self._raw:x}, epoch={self._epoch})"
