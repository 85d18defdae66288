"""
pyhlml - access layer for the HLML accelerator management library.

Exposes process-wide initialization, device enumeration and identification,
typed telemetry counters and hardware event notification on top of the
native management interface (``libhlml.so``).

Core Features:
    - Lifecycle: detectable double initialize/shutdown, epoch-tagged handles
    - Devices: lookup by index, UUID or serial number
    - Telemetry: memory, clocks, power, temperature, PCIe, ECC, firmware
    - Events: register devices and wait with a timeout
    - Simulation: full API on hosts without accelerators

Quick Start:
    >>> import pyhlml
    >>>
    >>> pyhlml.initialize()
    >>> dev = pyhlml.device_handle_by_index(0)
    >>> print(dev.name(), dev.memory_info())
    >>> with pyhlml.new_event_set() as events:
    ...     pyhlml.register_events(events, dev, pyhlml.EventType.THERMAL_VIOLATION)
    ...     outcome = pyhlml.wait_for_event(events, timeout=1.0)
    >>> pyhlml.shutdown()

Set ``PYHLML_BACKEND=simulated`` to run without hardware.
"""

from pyhlml.backends.base import ClockType, ECCErrorType, TemperatureThreshold
from pyhlml.config import HLMLConfig
from pyhlml.device import DeviceHandle, DeviceIdentity
from pyhlml.events import (
    EventOutcome,
    EventSet,
    EventType,
    delete_event_set,
    new_event_set,
    register_events,
    wait_for_event,
    wait_for_event_async,
)
from pyhlml.exceptions import (
    AlreadyInitializedError,
    EventSetBusyError,
    HLMLError,
    InvalidArgumentError,
    InvalidHandleError,
    LibraryLoadError,
    NativeFailureError,
    NotFoundError,
    NotInitializedError,
    UnsupportedError,
)
from pyhlml.lifecycle import (
    Library,
    LibraryState,
    device_count,
    device_handle_by_index,
    device_handle_by_serial,
    device_handle_by_uuid,
    devices,
    fw_version,
    initialize,
    initialize_with_diagnostics,
    initialized,
    library_state,
    shutdown,
    system_driver_version,
)
from pyhlml.snapshot import DeviceSnapshot
from pyhlml.telemetry import (
    ECCMode,
    FWVersion,
    MacAddress,
    MemoryInfo,
    Temperature,
    ViolationStatus,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Lifecycle
    "Library",
    "LibraryState",
    "HLMLConfig",
    "initialize",
    "initialize_with_diagnostics",
    "shutdown",
    "initialized",
    "library_state",
    "device_count",
    # Devices
    "DeviceHandle",
    "DeviceIdentity",
    "device_handle_by_index",
    "device_handle_by_uuid",
    "device_handle_by_serial",
    "devices",
    "fw_version",
    "system_driver_version",
    # Telemetry
    "ClockType",
    "ECCErrorType",
    "TemperatureThreshold",
    "MemoryInfo",
    "Temperature",
    "ECCMode",
    "FWVersion",
    "ViolationStatus",
    "MacAddress",
    "DeviceSnapshot",
    # Events
    "EventType",
    "EventSet",
    "EventOutcome",
    "new_event_set",
    "register_events",
    "wait_for_event",
    "wait_for_event_async",
    "delete_event_set",
    # Errors
    "HLMLError",
    "NotInitializedError",
    "AlreadyInitializedError",
    "InvalidArgumentError",
    "EventSetBusyError",
    "NotFoundError",
    "InvalidHandleError",
    "UnsupportedError",
    "NativeFailureError",
    "LibraryLoadError",
]
