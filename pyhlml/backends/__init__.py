"""
Native backends for pyhlml.

Concrete backends are imported from their modules
(``pyhlml.backends.hlml``, ``pyhlml.backends.simulated``) so that loading
the package never pulls in a backend the configuration does not select.
"""

from pyhlml.backends.base import NativeBackend, NativeEvent, Status

__all__ = [
    "NativeBackend",
    "NativeEvent",
    "Status",
]
