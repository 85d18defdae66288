"""
Hardware event notification.

Event sets follow create → register devices → wait (repeatable) → delete.
wait_for_event() is the only long-blocking call in pyhlml. It waits in
short native slices and releases the process-wide native lock between
slices, so telemetry queries from other threads keep flowing. A shutdown()
during the wait wakes the waiter, which raises NotInitializedError.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import os
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntFlag
from typing import TYPE_CHECKING, Any

from pyhlml.backends.base import Status
from pyhlml.exceptions import (
    EventSetBusyError,
    HLMLError,
    InvalidArgumentError,
    NativeFailureError,
    NotInitializedError,
)
from pyhlml.lifecycle import Library

if TYPE_CHECKING:
    from pyhlml.adapter import NativeAdapter
    from pyhlml.device import DeviceHandle

logger = logging.getLogger(__name__)


class EventType(IntFlag):
    """Hardware event classes."""

    ECC_ERROR = 1 << 0
    CRITICAL_ERROR = 1 << 1
    CLOCK_RATE_CHANGE = 1 << 2
    THERMAL_VIOLATION = 1 << 3
    POWER_VIOLATION = 1 << 4
    LINK_STATE_CHANGE = 1 << 5
    ALL = (
        ECC_ERROR
        | CRITICAL_ERROR
        | CLOCK_RATE_CHANGE
        | THERMAL_VIOLATION
        | POWER_VIOLATION
        | LINK_STATE_CHANGE
    )


@dataclass(frozen=True)
class EventOutcome:
    """Result of wait_for_event(): a fired event, or a timeout."""

    device: DeviceHandle | None = None
    event_type: EventType | None = None

    @property
    def timed_out(self) -> bool:
        """Check if the wait expired without an event."""
        return self.device is None

    @classmethod
    def timeout(cls) -> EventOutcome:
        """Create the timed-out outcome."""
        return cls()


class EventSet:
    """
    A registration group for hardware events.

    Event sets belong to the process and the initialize/shutdown cycle that
    created them. shutdown() frees every live set.

    Example:
        >>> with pyhlml.new_event_set() as events:
        ...     pyhlml.register_events(events, dev, EventType.THERMAL_VIOLATION)
        ...     outcome = pyhlml.wait_for_event(events, timeout=1.0)
    """

    def __init__(
        self,
        library: Library,
        adapter: NativeAdapter,
        raw: int,
        epoch: int,
        poll_interval: float,
    ) -> None:
        """
        Initialize an event set wrapper.

        Args:
            library: Library that created the set.
            adapter: Native adapter of the creating cycle.
            raw: Native event set.
            epoch: Creating initialize/shutdown cycle.
            poll_interval: Length of one native wait slice in seconds.
        """
        self._library = library
        self._adapter = adapter
        self._raw = raw
        self._epoch = epoch
        self._poll_interval = poll_interval
        self._pid = os.getpid()
        self._lock = threading.Lock()
        self._deleted = False
        self._waiters = 0

    @property
    def raw(self) -> int:
        """Get the native event set value."""
        return self._raw

    @property
    def epoch(self) -> int:
        """Get the initialize/shutdown cycle this set belongs to."""
        return self._epoch

    @property
    def is_deleted(self) -> bool:
        """Check if the set has been deleted (explicitly or by shutdown)."""
        return self._deleted

    @property
    def waiters(self) -> int:
        """Get the number of in-flight wait_for_event() calls."""
        with self._lock:
            return self._waiters

    def _invalidate(self) -> None:
        with self._lock:
            self._deleted = True

    def _check(self, operation: str) -> NativeAdapter:
        if os.getpid() != self._pid:
            raise InvalidArgumentError("event_set", self, "created in another process")
        if not self._library.is_initialized:
            raise NotInitializedError(operation)
        if self._deleted:
            raise InvalidArgumentError("event_set", self, "already deleted")
        if not self._library.is_current(self._epoch):
            raise InvalidArgumentError("event_set", self, "created before the last shutdown()")
        return self._adapter

    @contextlib.contextmanager
    def _waiting(self) -> Iterator[None]:
        with self._lock:
            if self._deleted:
                raise InvalidArgumentError("event_set", self, "already deleted")
            self._waiters += 1
        try:
            yield
        finally:
            with self._lock:
                self._waiters -= 1

    def __enter__(self) -> EventSet:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        delete_event_set(self)

    def __repr__(self) -> str:
        """String representation."""
        return f"EventSet(raw={self._raw}, epoch={self._epoch}, deleted={self._deleted})"


def _check_mask(event_types: object) -> int:
    if isinstance(event_types, bool) or not isinstance(event_types, int):
        raise InvalidArgumentError("event_types", event_types, "must be an EventType mask")
    if event_types == 0:
        raise InvalidArgumentError("event_types", event_types, "must select at least one event")
    unknown = event_types & ~int(EventType.ALL)
    if unknown:
        raise InvalidArgumentError("event_types", event_types, f"unknown event bits 0x{unknown:x}")
    return int(event_types)


def _check_timeout(timeout: object) -> float | None:
    if timeout is None:
        return None
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise InvalidArgumentError("timeout", timeout, "must be a number of seconds or None")
    if math.isnan(timeout) or timeout < 0:
        raise InvalidArgumentError("timeout", timeout, "must be >= 0")
    if math.isinf(timeout):
        return None
    return float(timeout)


def new_event_set() -> EventSet:
    """
    Allocate an event set with no devices registered.

    Raises:
        NotInitializedError: If the library is not initialized, or is shut
            down while the set is being created.
    """
    library = Library.instance()
    adapter, registry = library.require("create event set")
    config = library.config
    poll_interval = config.event_poll_interval if config is not None else 0.05
    raw = adapter.call("create event set", adapter.backend.event_set_create)
    event_set = EventSet(library, adapter, raw, registry.epoch, poll_interval)
    library._track_event_set(event_set)
    logger.debug("Created %r", event_set)
    return event_set


def register_events(event_set: EventSet, device: DeviceHandle, event_types: int) -> None:
    """
    Subscribe a device's event classes into an event set.

    Args:
        event_set: Target set.
        device: Device to watch.
        event_types: Bitwise OR of :class:`EventType` values.

    Raises:
        NotInitializedError: If the library is not initialized.
        InvalidHandleError: If ``device`` is stale or foreign.
        InvalidArgumentError: If the mask is empty or has unknown bits, or
            the set is deleted, stale or from another process.
    """
    mask = _check_mask(event_types)
    adapter = event_set._check("register events")
    device._checked_adapter("register events")
    adapter.call(
        "register events",
        adapter.backend.register_events,
        device.raw,
        mask,
        event_set.raw,
        argument=("event_set", event_set),
    )


def wait_for_event(event_set: EventSet, timeout: float | None) -> EventOutcome:
    """
    Block until a registered event fires or ``timeout`` elapses.

    Args:
        event_set: Set to wait on.
        timeout: Seconds to wait. ``0`` polls without blocking; ``None`` (or
            infinity) waits until an event fires or the library shuts down.

    Returns:
        The firing device and event type, or ``EventOutcome.timeout()``.

    Raises:
        NotInitializedError: If the library is not initialized, or is shut
            down while waiting.
        InvalidArgumentError: If ``timeout`` is negative or the set is
            deleted, stale or from another process.
    """
    timeout = _check_timeout(timeout)
    adapter = event_set._check("wait for event")
    interval = event_set._poll_interval
    deadline = None if timeout is None else time.monotonic() + timeout

    with event_set._waiting():
        while True:
            if deadline is None:
                slice_seconds = interval
            else:
                slice_seconds = min(max(deadline - time.monotonic(), 0.0), interval)

            try:
                status, event = adapter.call_with_status(
                    "wait for event",
                    adapter.backend.event_set_wait,
                    event_set.raw,
                    math.ceil(slice_seconds * 1000),
                    allow=(Status.TIMEOUT,),
                    argument=("event_set", event_set),
                )
            except HLMLError:
                # A shutdown() racing this slice surfaces as the cause
                event_set._check("wait for event")
                raise

            if status == Status.SUCCESS:
                return _outcome(event_set, event)

            event_set._check("wait for event")
            if deadline is not None and time.monotonic() >= deadline:
                return EventOutcome.timeout()


def _outcome(event_set: EventSet, event: Any) -> EventOutcome:
    _, registry = event_set._library.require("wait for event")
    device = registry.by_raw(event.device)
    if device is None:
        raise NativeFailureError(
            int(Status.UNKNOWN), "wait for event", f"unknown device 0x{event.device:x}"
        )
    return EventOutcome(device=device, event_type=EventType(event.event_type))


async def wait_for_event_async(event_set: EventSet, timeout: float | None) -> EventOutcome:
    """
    Await wait_for_event() on a worker thread.

    The event loop is never blocked. Cancelling the awaiting task does not
    stop the worker; it ends at ``timeout`` or at shutdown().
    """
    return await asyncio.to_thread(wait_for_event, event_set, timeout)


def delete_event_set(event_set: EventSet) -> None:
    """
    Release an event set.

    Deleting an already deleted set, or a set whose cycle has ended, is a
    no-op. Registered devices are not otherwise affected.

    Raises:
        EventSetBusyError: If a wait_for_event() is in flight on the set.
        InvalidArgumentError: If the set was created in another process.
    """
    if os.getpid() != event_set._pid:
        raise InvalidArgumentError("event_set", event_set, "created in another process")

    with event_set._lock:
        if event_set._waiters:
            raise EventSetBusyError(event_set)
        if event_set._deleted:
            return
        event_set._deleted = True

    library = event_set._library
    library._forget_event_set(event_set)
    if not library.is_current(event_set.epoch):
        return

    adapter = event_set._adapter
    adapter.call(
        "delete event set",
        adapter.backend.event_set_free,
        event_set.raw,
        argument=("event_set", event_set),
    )
    logger.debug("Deleted %r", event_set)
