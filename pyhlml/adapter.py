"""
Native interface adapter.

Owns the process-wide lock every native call goes through and translates
native status codes into pyhlml exceptions. Nothing above this module ever
sees a raw status code.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Collection
from typing import Any

from pyhlml.backends.base import NativeBackend, Status
from pyhlml.exceptions import (
    AlreadyInitializedError,
    HLMLError,
    InvalidArgumentError,
    NativeFailureError,
    NotFoundError,
    NotInitializedError,
    UnsupportedError,
)


def _status_name(code: int) -> str:
    try:
        return Status(code).name
    except ValueError:
        return "UNMAPPED"


def translate_status(
    code: int,
    operation: str,
    *,
    metric: str | None = None,
    argument: tuple[str, object] | None = None,
) -> HLMLError | None:
    """
    Map a native status code to an exception.

    Args:
        code: Native status code.
        operation: Name of the operation, used in messages.
        metric: Metric name for NOT_SUPPORTED reporting.
        argument: ``(name, value)`` of the argument blamed on INVALID_ARGUMENT
            and NOT_FOUND.

    Returns:
        The exception to raise, or None on success.
    """
    if code == Status.SUCCESS:
        return None
    name, value = argument if argument is not None else ("argument", None)
    if code == Status.UNINITIALIZED:
        return NotInitializedError(operation)
    if code == Status.ALREADY_INITIALIZED:
        return AlreadyInitializedError()
    if code == Status.INVALID_ARGUMENT:
        return InvalidArgumentError(name, value, f"rejected by native layer in {operation}")
    if code == Status.NOT_FOUND:
        return NotFoundError(name, str(value))
    if code == Status.NOT_SUPPORTED:
        return UnsupportedError(metric or operation)
    return NativeFailureError(int(code), operation, _status_name(code))


class NativeAdapter:
    """
    Serialized, translated access to a native backend.

    Vendor management libraries are not designed for concurrent entry, so
    every call into the backend holds a single re-entrant lock. The lock is
    shared by all adapters in the process.

    Example:
        >>> adapter = NativeAdapter(SimulatedBackend())
        >>> adapter.call("initialize", adapter.backend.init, 0)
        >>> count = adapter.call("device count", adapter.backend.device_count)
    """

    _lock = threading.RLock()

    def __init__(self, backend: NativeBackend) -> None:
        """
        Initialize the adapter.

        Args:
            backend: Backend providing the raw call surface.
        """
        self._backend = backend

    @property
    def backend(self) -> NativeBackend:
        """Get the wrapped backend."""
        return self._backend

    @classmethod
    def lock(cls) -> threading.RLock:
        """Get the process-wide native call lock."""
        return cls._lock

    def call_with_status(
        self,
        operation: str,
        func: Callable[..., tuple[int, Any]],
        *args: Any,
        allow: Collection[int] = (),
        metric: str | None = None,
        argument: tuple[str, object] | None = None,
    ) -> tuple[Status, Any]:
        """
        Invoke a backend primitive, passing selected statuses through.

        Args:
            operation: Operation name for error messages.
            func: Backend primitive.
            *args: Primitive arguments.
            allow: Non-success statuses returned instead of raised.
            metric: Metric name for NOT_SUPPORTED reporting.
            argument: Argument blamed on INVALID_ARGUMENT / NOT_FOUND.

        Returns:
            ``(status, value)`` where status is SUCCESS or one of ``allow``.

        Raises:
            HLMLError: For any other status.
        """
        with self._lock:
            code, value = func(*args)
        if code in allow:
            return Status(code), value
        error = translate_status(code, operation, metric=metric, argument=argument)
        if error is None:
            return Status.SUCCESS, value
        raise error

    def call(
        self,
        operation: str,
        func: Callable[..., tuple[int, Any]],
        *args: Any,
        metric: str | None = None,
        argument: tuple[str, object] | None = None,
    ) -> Any:
        """
        Invoke a backend primitive and return its value.

        Raises:
            HLMLError: If the native status is not SUCCESS.
        """
        _, value = self.call_with_status(operation, func, *args, metric=metric, argument=argument)
        return value

    def __repr__(self) -> str:
        """String representation."""
        return f"NativeAdapter(backend={self._backend.name!r})"
