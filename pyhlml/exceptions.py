"""
pyhlml exception hierarchy.

Every failure reported by the access layer is one of the exceptions below.
Native status codes never cross into caller-visible results: the adapter
translates them at the call boundary.

- NotInitializedError: library used outside an initialize/shutdown window
- AlreadyInitializedError: initialize() called twice
- InvalidArgumentError: out-of-range index, malformed identity or mask
- NotFoundError: UUID/serial lookup miss
- InvalidHandleError: stale or foreign device handle
- UnsupportedError: metric not available on this device/firmware
- NativeFailureError: any other native status, passed through opaquely
- LibraryLoadError: the native library could not be loaded
- SnapshotDecodeError: a serialized snapshot is malformed

All exceptions inherit from HLMLError for easy catching.
"""

from __future__ import annotations


class HLMLError(Exception):
    """Base exception for all pyhlml errors."""

    pass


class NotInitializedError(HLMLError):
    """Raised when the library is used while not initialized."""

    def __init__(self, operation: str = "") -> None:
        self.operation = operation
        msg = "HLML is not initialized"
        if operation:
            msg = f"Cannot {operation}: {msg}"
        msg += "\nHint: Did you forget to call pyhlml.initialize()?"
        super().__init__(msg)


class AlreadyInitializedError(HLMLError):
    """Raised when initialize() is called while already initialized."""

    def __init__(self) -> None:
        super().__init__("HLML is already initialized; call shutdown() first")


class InvalidArgumentError(HLMLError):
    """Raised when an argument is out of range or malformed."""

    def __init__(self, parameter: str, value: object, reason: str) -> None:
        self.parameter = parameter
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid argument: {parameter}={value!r} - {reason}")


class EventSetBusyError(InvalidArgumentError):
    """Raised when deleting an event set that has a wait in flight."""

    def __init__(self, event_set: object) -> None:
        super().__init__(
            "event_set",
            event_set,
            "a wait_for_event() call is still in flight on this set",
        )


class NotFoundError(HLMLError):
    """Raised when no device matches a UUID or serial lookup."""

    def __init__(self, key: str, value: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"No device with {key} {value!r}")


class InvalidHandleError(HLMLError):
    """Raised when a device handle is stale or does not belong to this library."""

    def __init__(self, handle: object, reason: str) -> None:
        self.handle = handle
        self.reason = reason
        super().__init__(f"Invalid device handle {handle!r}: {reason}")


class UnsupportedError(HLMLError):
    """Raised when the native layer reports a metric as not available."""

    def __init__(self, metric: str) -> None:
        self.metric = metric
        super().__init__(f"Metric '{metric}' is not supported on this device/firmware")


class NativeFailureError(HLMLError):
    """Raised for any native status code without a dedicated exception."""

    def __init__(self, code: int, operation: str, detail: str = "") -> None:
        self.code = code
        self.operation = operation
        msg = f"Native call '{operation}' failed with status {code}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class LibraryLoadError(HLMLError):
    """Raised when the native management library cannot be loaded."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load native library '{path}': {reason}")


class SnapshotDecodeError(HLMLError):
    """Raised when a serialized device snapshot cannot be decoded."""

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Failed to decode device snapshot: {cause}")
