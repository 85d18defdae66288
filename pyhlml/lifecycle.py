"""
Library lifecycle management.

Provides the process-wide state machine:
UNINITIALIZED → INITIALIZED → UNINITIALIZED (re-enterable)

Double initialize() and shutdown() without initialize() are reported as
errors, never absorbed. Each successful initialize() starts a new epoch;
handles and event sets from earlier epochs are rejected.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import threading
from collections.abc import Iterator
from enum import Enum, auto
from typing import TYPE_CHECKING

from pyhlml import telemetry
from pyhlml.adapter import NativeAdapter
from pyhlml.backends.base import INIT_FLAG_DEFAULT, INIT_FLAG_DIAGNOSTICS, NativeBackend
from pyhlml.config import HLMLConfig
from pyhlml.device import DeviceHandle
from pyhlml.exceptions import (
    AlreadyInitializedError,
    HLMLError,
    InvalidHandleError,
    NotInitializedError,
)
from pyhlml.registry import DeviceRegistry
from pyhlml.telemetry import FWVersion

if TYPE_CHECKING:
    from pyhlml.events import EventSet

logger = logging.getLogger(__name__)


class LibraryState(Enum):
    """State of the process-wide library."""

    UNINITIALIZED = auto()
    INITIALIZED = auto()


class Library:
    """
    Process-wide HLML library state.

    There is exactly one Library per process; ``Library()`` always returns
    it. Transitions are serialized by a transition lock so that two racing
    initialize() calls cannot both succeed.

    Example:
        >>> lib = Library.instance()
        >>> lib.initialize()
        >>> lib.device_count()
        8
        >>> lib.shutdown()
    """

    _instance: Library | None = None
    _created: bool = False
    _instance_lock = threading.Lock()

    def __new__(cls) -> Library:
        """Singleton pattern for the library."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._created = False
            return cls._instance

    def __init__(self) -> None:
        """Initialize the process state (first construction only)."""
        with Library._instance_lock:
            if Library._created:
                return

            self._state = LibraryState.UNINITIALIZED
            self._epoch = 0
            self._transition_lock = threading.RLock()
            self._adapter: NativeAdapter | None = None
            self._registry: DeviceRegistry | None = None
            self._config: HLMLConfig | None = None
            self._event_sets: dict[int, EventSet] = {}
            self._saved_log_level: int | None = None
            Library._created = True

    @classmethod
    def instance(cls) -> Library:
        """Get the process-wide library."""
        return cls()

    @property
    def state(self) -> LibraryState:
        """Get the current state."""
        return self._state

    @property
    def epoch(self) -> int:
        """Get the current (or most recent) initialize/shutdown cycle."""
        return self._epoch

    @property
    def is_initialized(self) -> bool:
        """Check if the library is initialized."""
        return self._state is LibraryState.INITIALIZED

    @property
    def config(self) -> HLMLConfig | None:
        """Get the configuration of the current cycle."""
        return self._config

    def is_current(self, epoch: int) -> bool:
        """Check if ``epoch`` is the live initialize/shutdown cycle."""
        return self._state is LibraryState.INITIALIZED and epoch == self._epoch

    # Transitions

    def initialize(
        self,
        config: HLMLConfig | None = None,
        *,
        backend: NativeBackend | None = None,
        diagnostics: bool = False,
    ) -> None:
        """
        Open the native management channel and enumerate devices.

        Args:
            config: Configuration; read from the environment when omitted.
            backend: Backend to use instead of the one ``config`` selects.
            diagnostics: Enable verbose native diagnostics.

        Raises:
            AlreadyInitializedError: If already initialized.
            LibraryLoadError: If the native library cannot be loaded.
            HLMLError: If native initialization or enumeration fails. The
                library stays UNINITIALIZED.
        """
        with self._transition_lock:
            if self._state is LibraryState.INITIALIZED:
                raise AlreadyInitializedError()

            if config is None:
                config = HLMLConfig.from_env()
            if diagnostics and not config.diagnostics:
                config = dataclasses.replace(config, diagnostics=True)
            if backend is None:
                backend = config.create_backend()

            adapter = NativeAdapter(backend)
            flags = INIT_FLAG_DIAGNOSTICS if config.diagnostics else INIT_FLAG_DEFAULT
            adapter.call("initialize", backend.init, flags)

            epoch = self._epoch + 1
            registry = DeviceRegistry(self, adapter, epoch)
            try:
                registry.enumerate()
            except HLMLError:
                with contextlib.suppress(HLMLError):
                    adapter.call("shutdown", backend.shutdown)
                raise

            if config.diagnostics:
                package_logger = logging.getLogger("pyhlml")
                self._saved_log_level = package_logger.level
                package_logger.setLevel(logging.DEBUG)

            self._adapter = adapter
            self._registry = registry
            self._config = config
            self._epoch = epoch
            self._state = LibraryState.INITIALIZED
            logger.debug(
                "Initialized %s backend (epoch %d, %d device(s), diagnostics=%s)",
                backend.name,
                epoch,
                registry.count,
                config.diagnostics,
            )

    def initialize_with_diagnostics(
        self,
        config: HLMLConfig | None = None,
        *,
        backend: NativeBackend | None = None,
    ) -> None:
        """Same as initialize(), with verbose native diagnostics enabled."""
        self.initialize(config, backend=backend, diagnostics=True)

    def shutdown(self) -> None:
        """
        Close the native management channel.

        Frees every live event set (waking blocked waiters) and ends the
        current epoch, which invalidates all outstanding handles.

        Raises:
            NotInitializedError: If not initialized.
            HLMLError: If the native shutdown fails. The library is
                UNINITIALIZED regardless.
        """
        with self._transition_lock:
            if self._state is not LibraryState.INITIALIZED or self._adapter is None:
                raise NotInitializedError("shut down")

            adapter = self._adapter
            event_sets = list(self._event_sets.values())

            self._state = LibraryState.UNINITIALIZED
            self._adapter = None
            self._registry = None
            self._event_sets.clear()

            try:
                for event_set in event_sets:
                    event_set._invalidate()
                    try:
                        adapter.call(
                            "delete event set", adapter.backend.event_set_free, event_set.raw
                        )
                    except HLMLError as e:
                        logger.warning("Failed to free %r during shutdown: %s", event_set, e)
                adapter.call("shutdown", adapter.backend.shutdown)
            finally:
                if self._saved_log_level is not None:
                    logging.getLogger("pyhlml").setLevel(self._saved_log_level)
                    self._saved_log_level = None
                logger.debug("Shut down epoch %d", self._epoch)

    # Access

    def require(self, operation: str) -> tuple[NativeAdapter, DeviceRegistry]:
        """
        Get the live adapter and registry.

        Raises:
            NotInitializedError: If not initialized.
        """
        adapter, registry = self._adapter, self._registry
        if self._state is not LibraryState.INITIALIZED or adapter is None or registry is None:
            raise NotInitializedError(operation)
        return adapter, registry

    def validate_handle(self, handle: DeviceHandle, operation: str) -> NativeAdapter:
        """
        Check a handle before a native call.

        Returns:
            Adapter to issue the call through.

        Raises:
            NotInitializedError: If not initialized.
            InvalidHandleError: If the handle is stale or foreign.
        """
        adapter, registry = self.require(operation)
        if not isinstance(handle, DeviceHandle):
            raise InvalidHandleError(handle, "not a DeviceHandle")
        if handle.epoch != registry.epoch:
            raise InvalidHandleError(handle, "issued before the last shutdown()")
        if not registry.owns(handle):
            raise InvalidHandleError(handle, "not issued by this library")
        return adapter

    def device_count(self) -> int:
        """
        Get the number of discoverable devices.

        Raises:
            NotInitializedError: If not initialized.
        """
        _, registry = self.require("get device count")
        return registry.count

    def _track_event_set(self, event_set: EventSet) -> None:
        with self._transition_lock:
            if not self.is_current(event_set.epoch):
                # The native shutdown of that cycle already released the set
                event_set._invalidate()
                raise NotInitializedError("create event set")
            self._event_sets[id(event_set)] = event_set

    def _forget_event_set(self, event_set: EventSet) -> None:
        with self._transition_lock:
            self._event_sets.pop(id(event_set), None)

    def __repr__(self) -> str:
        """String representation."""
        return f"Library(state={self._state.name}, epoch={self._epoch})"


def initialize(config: HLMLConfig | None = None, *, backend: NativeBackend | None = None) -> None:
    """
    Initialize the process-wide library.

    Raises:
        AlreadyInitializedError: If already initialized.
    """
    Library.instance().initialize(config, backend=backend)


def initialize_with_diagnostics(
    config: HLMLConfig | None = None, *, backend: NativeBackend | None = None
) -> None:
    """Initialize with verbose native diagnostics enabled."""
    Library.instance().initialize_with_diagnostics(config, backend=backend)


def shutdown() -> None:
    """
    Shut down the process-wide library.

    Raises:
        NotInitializedError: If not initialized.
    """
    Library.instance().shutdown()


def library_state() -> LibraryState:
    """Get the process-wide library state."""
    return Library.instance().state


def device_count() -> int:
    """Get the number of discoverable devices."""
    return Library.instance().device_count()


def device_handle_by_index(index: int) -> DeviceHandle:
    """
    Get the handle of the device at ``index``.

    Raises:
        NotInitializedError: If not initialized.
        InvalidArgumentError: If ``index`` is outside ``[0, device_count())``.
    """
    _, registry = Library.instance().require("get device handle by index")
    return registry.by_index(index)


def device_handle_by_uuid(uuid: str) -> DeviceHandle:
    """
    Get the handle of the device with ``uuid``.

    Raises:
        NotInitializedError: If not initialized.
        InvalidArgumentError: If ``uuid`` is empty or not a string.
        NotFoundError: If no device matches.
    """
    _, registry = Library.instance().require("get device handle by UUID")
    return registry.by_uuid(uuid)


def device_handle_by_serial(serial: str) -> DeviceHandle:
    """
    Get the handle of the device with serial number ``serial``.

    Raises:
        NotInitializedError: If not initialized.
        InvalidArgumentError: If ``serial`` is empty or not a string.
        NotFoundError: If no device matches.
    """
    _, registry = Library.instance().require("get device handle by serial")
    return registry.by_serial(serial)


def devices() -> list[DeviceHandle]:
    """Get the handles of all devices, in index order."""
    _, registry = Library.instance().require("list devices")
    return registry.handles


def fw_version(index: int) -> FWVersion:
    """
    Get the firmware versions of the device at ``index``.

    Raises:
        NotInitializedError: If not initialized.
        InvalidArgumentError: If ``index`` is out of range.
    """
    adapter, registry = Library.instance().require("get firmware version")
    return telemetry.query_global(adapter, telemetry.FW_VERSION, registry.check_index(index))


def system_driver_version() -> str:
    """Get the driver version string."""
    adapter, _ = Library.instance().require("get system driver version")
    return telemetry.query_global(adapter, telemetry.SYSTEM_DRIVER_VERSION)


@contextlib.contextmanager
def initialized(
    config: HLMLConfig | None = None, *, backend: NativeBackend | None = None
) -> Iterator[Library]:
    """
    Context manager for one initialize/shutdown cycle.

    Example:
        >>> with pyhlml.initialized():
        ...     print(pyhlml.device_count())
    """
    library = Library.instance()
    library.initialize(config, backend=backend)
    try:
        yield library
    finally:
        if library.is_initialized:
            library.shutdown()
