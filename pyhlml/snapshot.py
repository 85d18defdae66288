"""
Whole-device snapshots.

Reads every telemetry metric of one device once and packs the result with
msgpack for shipping to collectors.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import msgpack

from pyhlml.backends.base import ClockType, ECCErrorType
from pyhlml.exceptions import SnapshotDecodeError, UnsupportedError

if TYPE_CHECKING:
    from pyhlml.device import DeviceHandle

SNAPSHOT_VERSION = 1


def _readings() -> dict[str, Callable[[DeviceHandle], Any]]:
    readers: dict[str, Callable[[DeviceHandle], Any]] = {
        "name": lambda d: d.name(),
        "minor_number": lambda d: d.minor_number(),
        "board_id": lambda d: d.board_id(),
        "pci_bus_id": lambda d: d.pci_bus_id(),
        "pci_link_speed": lambda d: d.pci_link_speed(),
        "pci_link_width": lambda d: d.pci_link_width(),
        "pcie_link_generation": lambda d: d.pcie_link_generation(),
        "pcie_link_width": lambda d: d.pcie_link_width(),
        "pcie_tx": lambda d: d.pcie_tx(),
        "pcie_rx": lambda d: d.pcie_rx(),
        "pci_replay_counter": lambda d: d.pci_replay_counter(),
        "memory_info": lambda d: d.memory_info(),
        "utilization_info": lambda d: d.utilization_info(),
        "power_usage": lambda d: d.power_usage(),
        "power_management_default_limit": lambda d: d.power_management_default_limit(),
        "energy_consumption_counter": lambda d: d.energy_consumption_counter(),
        "temperature": lambda d: d.temperature(),
        "ecc_mode": lambda d: d.ecc_mode(),
        "replaced_row_single_bit_ecc": lambda d: d.replaced_row_single_bit_ecc(),
        "replaced_row_double_bit_ecc": lambda d: d.replaced_row_double_bit_ecc(),
        "hl_revision": lambda d: d.hl_revision(),
        "pcb_version": lambda d: d.pcb_version(),
        "pcb_assembly_version": lambda d: d.pcb_assembly_version(),
    }
    for clock in ClockType:
        readers[f"{clock.name.lower()}_clock_info"] = lambda d, c=clock: d.clock_info(c)
    for kind in ECCErrorType:
        name = f"ecc_aggregate_{kind.name.lower()}_errors"
        readers[name] = lambda d, k=kind: d.ecc_aggregate_errors(k)
    return readers


_READINGS = _readings()


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    return value


@dataclass
class DeviceSnapshot:
    """
    One-shot reading of every metric of a device.

    Metrics the device does not support are stored as None.

    Example:
        >>> snap = DeviceSnapshot.capture(pyhlml.device_handle_by_index(0))
        >>> payload = snap.to_bytes()
        >>> DeviceSnapshot.from_bytes(payload).readings["power_usage"]
        95000
    """

    index: int
    uuid: str
    serial: str
    readings: dict[str, Any] = field(default_factory=dict)
    captured_at: float = field(default_factory=time.time)

    @classmethod
    def capture(cls, device: DeviceHandle) -> DeviceSnapshot:
        """
        Read every metric of a device.

        Args:
            device: Device to read.

        Returns:
            Snapshot with plain (msgpack-ready) values.

        Raises:
            HLMLError: For any failure other than an unsupported metric.
        """
        identity = device.identity()
        readings: dict[str, Any] = {}
        for name, read in _READINGS.items():
            try:
                readings[name] = _plain(read(device))
            except UnsupportedError:
                readings[name] = None
        return cls(
            index=identity.index, uuid=identity.uuid, serial=identity.serial, readings=readings
        )

    @property
    def unsupported(self) -> list[str]:
        """Get the names of metrics the device did not provide."""
        return [name for name, value in self.readings.items() if value is None]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "version": SNAPSHOT_VERSION,
            "index": self.index,
            "uuid": self.uuid,
            "serial": self.serial,
            "captured_at": self.captured_at,
            "readings": dict(self.readings),
        }

    def to_bytes(self) -> bytes:
        """Serialize with msgpack."""
        return msgpack.packb(self.to_dict(), use_bin_type=True)

    @classmethod
    def from_bytes(cls, data: bytes) -> DeviceSnapshot:
        """
        Deserialize a snapshot produced by :meth:`to_bytes`.

        Raises:
            SnapshotDecodeError: If the payload is not a snapshot.
        """
        try:
            payload = msgpack.unpackb(data, raw=False)
            if payload.get("version") != SNAPSHOT_VERSION:
                raise ValueError(f"unsupported snapshot version {payload.get('version')!r}")
            return cls(
                index=payload["index"],
                uuid=payload["uuid"],
                serial=payload["serial"],
                readings=payload["readings"],
                captured_at=payload["captured_at"],
            )
        except (ValueError, KeyError, TypeError, AttributeError, msgpack.UnpackException) as e:
            raise SnapshotDecodeError(e) from e
