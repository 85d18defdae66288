"""
Device handle registry.

Enumerates devices once per initialize/shutdown cycle and resolves device
identities (index, UUID, serial) to the handles issued for that cycle.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pyhlml.device import DeviceHandle
from pyhlml.exceptions import InvalidArgumentError, NotFoundError

if TYPE_CHECKING:
    from pyhlml.adapter import NativeAdapter
    from pyhlml.lifecycle import Library

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Handles issued for one initialize/shutdown cycle.

    The registry never tracks validity itself: it is dropped by the library
    at shutdown(), and handles validate their epoch against the library on
    every call.
    """

    def __init__(self, library: Library, adapter: NativeAdapter, epoch: int) -> None:
        """
        Initialize the registry.

        Args:
            library: Library issuing the handles.
            adapter: Native adapter for the current cycle.
            epoch: Cycle the handles belong to.
        """
        self._library = library
        self._adapter = adapter
        self._epoch = epoch
        self._handles: list[DeviceHandle] = []
        self._by_raw: dict[int, DeviceHandle] = {}

    @property
    def epoch(self) -> int:
        """Get the cycle this registry belongs to."""
        return self._epoch

    @property
    def count(self) -> int:
        """Get the number of enumerated devices."""
        return len(self._handles)

    @property
    def handles(self) -> list[DeviceHandle]:
        """Get all handles, in index order."""
        return list(self._handles)

    def enumerate(self) -> int:
        """
        Discover devices and issue a handle for each.

        Returns:
            Number of devices found.
        """
        backend = self._adapter.backend
        count = self._adapter.call("get device count", backend.device_count)
        handles = []
        for index in range(count):
            raw = self._adapter.call(
                "get device handle by index",
                backend.handle_by_index,
                index,
                argument=("index", index),
            )
            handles.append(DeviceHandle(raw, index, self._epoch, self._library))
        self._handles = handles
        self._by_raw = {handle.raw: handle for handle in handles}
        logger.debug("Enumerated %d device(s) for epoch %d", count, self._epoch)
        return count

    def owns(self, handle: DeviceHandle) -> bool:
        """Check if a handle was issued by this registry."""
        issued = self._by_raw.get(handle.raw)
        return issued is not None and issued == handle

    def check_index(self, index: object) -> int:
        """
        Validate a device ordinal.

        Raises:
            InvalidArgumentError: If ``index`` is not an int in ``[0, count)``.
        """
        if isinstance(index, bool) or not isinstance(index, int):
            raise InvalidArgumentError("index", index, "must be an integer")
        if not 0 <= index < len(self._handles):
            raise InvalidArgumentError("index", index, f"must be in [0, {len(self._handles)})")
        return index

    def by_index(self, index: int) -> DeviceHandle:
        """Get the handle of the device at ``index``."""
        return self._handles[self.check_index(index)]

    def by_uuid(self, uuid: str) -> DeviceHandle:
        """Resolve a device UUID."""
        uuid = _check_identity("uuid", uuid)
        raw = self._adapter.call(
            "get device handle by UUID",
            self._adapter.backend.handle_by_uuid,
            uuid,
            argument=("uuid", uuid),
        )
        return self._resolve(raw, "uuid", uuid)

    def by_serial(self, serial: str) -> DeviceHandle:
        """Resolve a device serial number."""
        serial = _check_identity("serial", serial)
        raw = self._adapter.call(
            "get device handle by serial",
            self._adapter.backend.handle_by_serial,
            serial,
            argument=("serial", serial),
        )
        return self._resolve(raw, "serial", serial)

    def by_raw(self, raw: int) -> DeviceHandle | None:
        """Get the handle for a native handle value, if issued this cycle."""
        return self._by_raw.get(raw)

    def _resolve(self, raw: int, key: str, value: str) -> DeviceHandle:
        handle = self._by_raw.get(raw)
        if handle is None:
            # The device appeared after enumeration
            raise NotFoundError(key, value)
        return handle

    def __repr__(self) -> str:
        """String representation."""
        return f"DeviceRegistry(epoch={self._epoch}, devices={len(self._handles)})"


def _check_identity(parameter: str, value: object) -> str:
    if not isinstance(value, str):
        raise InvalidArgumentError(parameter, value, "must be a string")
    value = value.strip()
    if not value:
        raise InvalidArgumentError(parameter, value, "must not be empty")
    return value
