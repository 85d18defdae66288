"""
HLML backend for pyhlml.

Binds the vendor management library (``libhlml.so``) with ctypes.
"""

from __future__ import annotations

import ctypes
import logging
from collections.abc import Callable
from typing import Any

from pyhlml.backends.base import (
    Field,
    GlobalField,
    NativeBackend,
    NativeEvent,
    NativeResult,
    Status,
)
from pyhlml.exceptions import LibraryLoadError

logger = logging.getLogger(__name__)

DEFAULT_LIBRARY = "libhlml.so"

PCI_DOMAIN_LEN = 5
PCI_ADDR_LEN = PCI_DOMAIN_LEN + 10
PCI_LINK_INFO_LEN = 10
ETHER_ADDR_LEN = 6
STRING_BUFFER_SIZE = 256
MAX_NIC_PORTS = 24

hlml_device_t = ctypes.c_void_p
hlml_event_set_t = ctypes.c_void_p


class hlml_pci_cap_t(ctypes.Structure):
    _fields_ = [
        ("link_speed", ctypes.c_char * PCI_LINK_INFO_LEN),
        ("link_max_speed", ctypes.c_char * PCI_LINK_INFO_LEN),
        ("link_width", ctypes.c_char * PCI_LINK_INFO_LEN),
        ("link_max_width", ctypes.c_char * PCI_LINK_INFO_LEN),
    ]


class hlml_pci_info_t(ctypes.Structure):
    _fields_ = [
        ("bus", ctypes.c_uint),
        ("bus_id", ctypes.c_char * PCI_ADDR_LEN),
        ("device", ctypes.c_uint),
        ("domain", ctypes.c_uint),
        ("pci_device_id", ctypes.c_uint),
        ("caps", hlml_pci_cap_t),
    ]


class hlml_memory_t(ctypes.Structure):
    _fields_ = [
        ("free", ctypes.c_ulonglong),
        ("total", ctypes.c_ulonglong),
        ("used", ctypes.c_ulonglong),
    ]


class hlml_utilization_t(ctypes.Structure):
    _fields_ = [("aip", ctypes.c_uint)]


class hlml_pcb_info_t(ctypes.Structure):
    _fields_ = [
        ("pcb_ver", ctypes.c_char * 32),
        ("pcb_assembly_ver", ctypes.c_char * 32),
    ]


class hlml_event_data_t(ctypes.Structure):
    _fields_ = [
        ("device", hlml_device_t),
        ("event_type", ctypes.c_ulonglong),
    ]


class hlml_violation_time_t(ctypes.Structure):
    _fields_ = [
        ("reference_time", ctypes.c_ulonglong),
        ("violation_time", ctypes.c_ulonglong),
    ]


class hlml_mac_info_t(ctypes.Structure):
    _fields_ = [
        ("addr", ctypes.c_ubyte * ETHER_ADDR_LEN),
        ("id", ctypes.c_int),
    ]


def _decode(buffer: bytes) -> str:
    return buffer.decode("utf-8", errors="replace")


class HLMLBackend(NativeBackend):
    """
    Native backend implementation over ``libhlml.so``.

    The shared library is loaded lazily on the first :meth:`init` so that
    constructing the backend never touches the filesystem.

    Example:
        >>> backend = HLMLBackend("/usr/lib/habanalabs/libhlml.so")
        >>> pyhlml.initialize(backend=backend)
    """

    def __init__(self, library_path: str = DEFAULT_LIBRARY) -> None:
        """
        Initialize the HLML backend.

        Args:
            library_path: Path or soname of the native library.
        """
        self._library_path = library_path
        self._lib: ctypes.CDLL | None = None
        self._handles: dict[int, hlml_device_t] = {}
        self._event_sets: dict[int, hlml_event_set_t] = {}

        self._readers: dict[Field, Callable[[hlml_device_t, int | None], NativeResult]] = {
            Field.MINOR_NUMBER: self._uint_reader("hlml_device_get_minor_number"),
            Field.UUID: self._string_reader("hlml_device_get_uuid"),
            Field.NAME: self._string_reader("hlml_device_get_name"),
            Field.SERIAL: self._string_reader("hlml_device_get_serial"),
            Field.BOARD_ID: self._uint_reader("hlml_device_get_board_id"),
            Field.PCI_DOMAIN: self._pci_reader(lambda p: p.domain),
            Field.PCI_BUS: self._pci_reader(lambda p: p.bus),
            Field.PCI_BUS_ID: self._pci_reader(lambda p: _decode(p.bus_id)),
            Field.PCI_ID: self._pci_reader(lambda p: p.pci_device_id),
            Field.PCI_LINK_SPEED: self._pci_reader(lambda p: _decode(p.caps.link_speed)),
            Field.PCI_LINK_WIDTH: self._pci_reader(lambda p: _decode(p.caps.link_width)),
            Field.PCIE_THROUGHPUT: self._uint_reader(
                "hlml_device_get_pcie_throughput", with_arg=True
            ),
            Field.PCIE_REPLAY_COUNTER: self._uint_reader("hlml_device_get_pcie_replay_counter"),
            Field.PCIE_LINK_GENERATION: self._uint_reader(
                "hlml_device_get_curr_pcie_link_generation"
            ),
            Field.PCIE_LINK_WIDTH: self._uint_reader("hlml_device_get_curr_pcie_link_width"),
            Field.MEMORY_INFO: self._read_memory,
            Field.UTILIZATION: self._read_utilization,
            Field.CLOCK_INFO: self._uint_reader("hlml_device_get_clock_info", with_arg=True),
            Field.CLOCK_MAX: self._uint_reader("hlml_device_get_max_clock_info", with_arg=True),
            Field.POWER_USAGE: self._uint_reader("hlml_device_get_power_usage"),
            Field.POWER_DEFAULT_LIMIT: self._uint_reader(
                "hlml_device_get_power_management_default_limit"
            ),
            Field.TEMPERATURE: self._uint_reader("hlml_device_get_temperature", with_arg=True),
            Field.TEMPERATURE_THRESHOLD: self._uint_reader(
                "hlml_device_get_temperature_threshold", with_arg=True
            ),
            Field.ECC_MODE: self._read_ecc_mode,
            Field.ECC_VOLATILE_ERRORS: self._ecc_reader(volatile=True),
            Field.ECC_AGGREGATE_ERRORS: self._ecc_reader(volatile=False),
            Field.REPLACED_ROWS: self._read_replaced_rows,
            Field.REPLACED_ROWS_PENDING: self._uint_reader(
                "hlml_device_get_replaced_rows_pending_status"
            ),
            Field.ENERGY_COUNTER: self._read_energy,
            Field.HL_REVISION: self._read_hl_revision,
            Field.PCB_VERSION: self._pcb_reader(lambda p: _decode(p.pcb_ver)),
            Field.PCB_ASSEMBLY_VERSION: self._pcb_reader(lambda p: _decode(p.pcb_assembly_ver)),
            Field.MAC_INFO: self._read_mac_info,
            Field.NIC_LINK_STATUS: self._read_nic_link,
            Field.VIOLATION_STATUS: self._read_violation,
        }

    @property
    def name(self) -> str:
        """Get the backend name."""
        return "hlml"

    @property
    def library_path(self) -> str:
        """Get the native library path."""
        return self._library_path

    def load(self) -> ctypes.CDLL:
        """
        Load the native library.

        Returns:
            The loaded library.

        Raises:
            LibraryLoadError: If the library cannot be loaded.
        """
        if self._lib is None:
            try:
                self._lib = ctypes.CDLL(self._library_path)
            except OSError as e:
                raise LibraryLoadError(self._library_path, str(e)) from e
            logger.debug("Loaded native library %s", self._library_path)
        return self._lib

    def _fn(self, symbol: str) -> Any:
        try:
            return getattr(self.load(), symbol)
        except AttributeError as e:
            raise LibraryLoadError(self._library_path, f"missing symbol {symbol}") from e

    # Lifecycle

    def init(self, flags: int) -> NativeResult:
        """Open the management channel."""
        if flags:
            return self._fn("hlml_init_with_flags")(ctypes.c_uint(flags)), None
        return self._fn("hlml_init")(), None

    def shutdown(self) -> NativeResult:
        """Close the management channel."""
        status = self._fn("hlml_shutdown")()
        self._handles.clear()
        self._event_sets.clear()
        return status, None

    # Enumeration

    def device_count(self) -> NativeResult:
        """Get the number of discoverable devices."""
        count = ctypes.c_uint()
        status = self._fn("hlml_device_get_count")(ctypes.byref(count))
        return status, count.value

    def _remember(self, status: int, handle: hlml_device_t) -> NativeResult:
        if status != Status.SUCCESS or not handle.value:
            return status, None
        self._handles[handle.value] = handle
        return status, handle.value

    def handle_by_index(self, index: int) -> NativeResult:
        """Resolve a device ordinal to a raw handle."""
        handle = hlml_device_t()
        status = self._fn("hlml_device_get_handle_by_index")(
            ctypes.c_uint(index), ctypes.byref(handle)
        )
        return self._remember(status, handle)

    def handle_by_uuid(self, uuid: str) -> NativeResult:
        """Resolve a device UUID to a raw handle."""
        handle = hlml_device_t()
        status = self._fn("hlml_device_get_handle_by_UUID")(uuid.encode(), ctypes.byref(handle))
        return self._remember(status, handle)

    def handle_by_serial(self, serial: str) -> NativeResult:
        """Resolve a serial number by scanning every device."""
        status, count = self.device_count()
        if status != Status.SUCCESS:
            return status, None
        for index in range(count):
            status, raw = self.handle_by_index(index)
            if status != Status.SUCCESS:
                return status, None
            status, value = self.read_field(raw, Field.SERIAL)
            if status == Status.SUCCESS and value == serial:
                return Status.SUCCESS, raw
        return Status.NOT_FOUND, None

    # Fields

    def read_field(self, device: int, field: Field, arg: int | None = None) -> NativeResult:
        """Read one per-device field."""
        handle = self._handles.get(device)
        if handle is None:
            return Status.INVALID_ARGUMENT, None
        return self._readers[field](handle, arg)

    def read_global(self, field: GlobalField, arg: int | None = None) -> NativeResult:
        """Read one field that does not take a device handle."""
        if field == GlobalField.DRIVER_VERSION:
            buffer = ctypes.create_string_buffer(STRING_BUFFER_SIZE)
            status = self._fn("hlml_get_driver_version")(buffer, ctypes.c_uint(STRING_BUFFER_SIZE))
            return status, _decode(buffer.value)
        if field == GlobalField.FW_VERSION:
            kernel = ctypes.create_string_buffer(STRING_BUFFER_SIZE)
            uboot = ctypes.create_string_buffer(STRING_BUFFER_SIZE)
            status = self._fn("hlml_get_fw_version")(
                ctypes.c_uint(arg or 0), kernel, uboot, ctypes.c_uint(STRING_BUFFER_SIZE)
            )
            return status, (_decode(kernel.value), _decode(uboot.value))
        return Status.NOT_SUPPORTED, None

    def _uint_reader(
        self, symbol: str, *, with_arg: bool = False
    ) -> Callable[[hlml_device_t, int | None], NativeResult]:
        def read(handle: hlml_device_t, arg: int | None) -> NativeResult:
            value = ctypes.c_uint()
            if with_arg:
                if arg is None:
                    return Status.INVALID_ARGUMENT, None
                status = self._fn(symbol)(handle, ctypes.c_int(arg), ctypes.byref(value))
            else:
                status = self._fn(symbol)(handle, ctypes.byref(value))
            return status, value.value

        return read

    def _string_reader(self, symbol: str) -> Callable[[hlml_device_t, int | None], NativeResult]:
        def read(handle: hlml_device_t, arg: int | None) -> NativeResult:
            buffer = ctypes.create_string_buffer(STRING_BUFFER_SIZE)
            status = self._fn(symbol)(handle, buffer, ctypes.c_uint(STRING_BUFFER_SIZE))
            return status, _decode(buffer.value)

        return read

    def _pci_reader(
        self, pick: Callable[[hlml_pci_info_t], Any]
    ) -> Callable[[hlml_device_t, int | None], NativeResult]:
        def read(handle: hlml_device_t, arg: int | None) -> NativeResult:
            info = hlml_pci_info_t()
            status = self._fn("hlml_device_get_pci_info")(handle, ctypes.byref(info))
            return status, pick(info)

        return read

    def _pcb_reader(
        self, pick: Callable[[hlml_pcb_info_t], str]
    ) -> Callable[[hlml_device_t, int | None], NativeResult]:
        def read(handle: hlml_device_t, arg: int | None) -> NativeResult:
            info = hlml_pcb_info_t()
            status = self._fn("hlml_device_get_pcb_info")(handle, ctypes.byref(info))
            return status, pick(info)

        return read

    def _ecc_reader(self, *, volatile: bool) -> Callable[[hlml_device_t, int | None], NativeResult]:
        counter_type = 0 if volatile else 1

        def read(handle: hlml_device_t, arg: int | None) -> NativeResult:
            if arg is None:
                return Status.INVALID_ARGUMENT, None
            count = ctypes.c_ulonglong()
            status = self._fn("hlml_device_get_total_ecc_errors")(
                handle, ctypes.c_int(arg), ctypes.c_int(counter_type), ctypes.byref(count)
            )
            return status, count.value

        return read

    def _read_memory(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        mem = hlml_memory_t()
        status = self._fn("hlml_device_get_memory_info")(handle, ctypes.byref(mem))
        return status, (mem.total, mem.used, mem.free)

    def _read_utilization(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        util = hlml_utilization_t()
        status = self._fn("hlml_device_get_utilization_rates")(handle, ctypes.byref(util))
        return status, util.aip

    def _read_ecc_mode(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        current = ctypes.c_int()
        pending = ctypes.c_int()
        status = self._fn("hlml_device_get_ecc_mode")(
            handle, ctypes.byref(current), ctypes.byref(pending)
        )
        return status, (current.value, pending.value)

    def _read_replaced_rows(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        if arg is None:
            return Status.INVALID_ARGUMENT, None
        # A NULL address array asks only for the row count
        count = ctypes.c_uint()
        status = self._fn("hlml_device_get_replaced_rows")(
            handle, ctypes.c_int(arg), ctypes.byref(count), None
        )
        return status, count.value

    def _read_energy(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        energy = ctypes.c_ulonglong()
        status = self._fn("hlml_device_get_total_energy_consumption")(handle, ctypes.byref(energy))
        return status, energy.value

    def _read_hl_revision(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        revision = ctypes.c_int()
        status = self._fn("hlml_device_get_hl_revision")(handle, ctypes.byref(revision))
        return status, revision.value

    def _read_mac_info(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        entries = (hlml_mac_info_t * MAX_NIC_PORTS)()
        actual = ctypes.c_int()
        status = self._fn("hlml_device_get_mac_info")(
            handle,
            entries,
            ctypes.c_uint(ctypes.sizeof(hlml_mac_info_t)),
            ctypes.c_uint(0),
            ctypes.byref(actual),
        )
        ports = [
            (entry.id, ":".join(f"{byte:02x}" for byte in entry.addr))
            for entry in entries[: max(actual.value, 0)]
        ]
        return status, ports

    def _read_nic_link(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        if arg is None:
            return Status.INVALID_ARGUMENT, None
        up = ctypes.c_bool()
        status = self._fn("hlml_nic_get_link")(handle, ctypes.c_uint(arg), ctypes.byref(up))
        return status, int(up.value)

    def _read_violation(self, handle: hlml_device_t, arg: int | None) -> NativeResult:
        if arg is None:
            return Status.INVALID_ARGUMENT, None
        info = hlml_violation_time_t()
        status = self._fn("hlml_device_get_violation_status")(
            handle, ctypes.c_int(arg), ctypes.byref(info)
        )
        return status, (info.reference_time, info.violation_time)

    # Events

    def event_set_create(self) -> NativeResult:
        """Allocate a native event set."""
        event_set = hlml_event_set_t()
        status = self._fn("hlml_event_set_create")(ctypes.byref(event_set))
        if status != Status.SUCCESS or not event_set.value:
            return status, None
        self._event_sets[event_set.value] = event_set
        return status, event_set.value

    def event_set_free(self, event_set: int) -> NativeResult:
        """Release a native event set."""
        native_set = self._event_sets.pop(event_set, None)
        if native_set is None:
            return Status.INVALID_ARGUMENT, None
        return self._fn("hlml_event_set_free")(native_set), None

    def register_events(self, device: int, event_types: int, event_set: int) -> NativeResult:
        """Subscribe a device's event classes into an event set."""
        handle = self._handles.get(device)
        native_set = self._event_sets.get(event_set)
        if handle is None or native_set is None:
            return Status.INVALID_ARGUMENT, None
        status = self._fn("hlml_device_register_events")(
            handle, ctypes.c_ulonglong(event_types), native_set
        )
        return status, None

    def event_set_wait(self, event_set: int, timeout_ms: int) -> NativeResult:
        """Block in the native wait for at most ``timeout_ms``."""
        native_set = self._event_sets.get(event_set)
        if native_set is None:
            return Status.INVALID_ARGUMENT, None
        data = hlml_event_data_t()
        status = self._fn("hlml_event_set_wait")(
            native_set, ctypes.byref(data), ctypes.c_uint(timeout_ms)
        )
        if status != Status.SUCCESS:
            return status, None
        return status, NativeEvent(device=data.device or 0, event_type=data.event_type)

