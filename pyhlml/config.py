"""
Configuration for pyhlml.

Settings come from an explicit HLMLConfig or from the environment.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from pyhlml.backends.base import NativeBackend

BACKENDS = ("native", "simulated")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class HLMLConfig:
    """Configuration for one initialize/shutdown cycle."""

    backend: str = "native"  # native, simulated
    library_path: str = "libhlml.so"
    diagnostics: bool = False
    event_poll_interval: float = 0.05  # seconds per native wait slice
    simulated_devices: int = 1

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if not self.library_path:
            raise ValueError("library_path must not be empty")
        if self.event_poll_interval <= 0:
            raise ValueError(f"event_poll_interval must be > 0, got {self.event_poll_interval}")
        if self.simulated_devices < 0:
            raise ValueError(f"simulated_devices must be >= 0, got {self.simulated_devices}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> HLMLConfig:
        """
        Build a configuration from environment variables.

        Recognized variables: ``PYHLML_BACKEND``, ``HLML_LIBRARY_PATH``,
        ``PYHLML_DIAGNOSTICS``, ``PYHLML_EVENT_POLL_INTERVAL`` and
        ``PYHLML_SIMULATED_DEVICES``. Unset variables keep their defaults.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            Validated configuration.

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            backend=env.get("PYHLML_BACKEND", defaults.backend).strip().lower(),
            library_path=env.get("HLML_LIBRARY_PATH", defaults.library_path),
            diagnostics=_parse_bool(
                "PYHLML_DIAGNOSTICS", env.get("PYHLML_DIAGNOSTICS"), defaults.diagnostics
            ),
            event_poll_interval=float(
                env.get("PYHLML_EVENT_POLL_INTERVAL", defaults.event_poll_interval)
            ),
            simulated_devices=int(env.get("PYHLML_SIMULATED_DEVICES", defaults.simulated_devices)),
        )

    def create_backend(self) -> NativeBackend:
        """Instantiate the backend this configuration selects."""
        if self.backend == "simulated":
            from pyhlml.backends.simulated import SimulatedBackend

            return SimulatedBackend(device_count=self.simulated_devices)

        from pyhlml.backends.hlml import HLMLBackend

        return HLMLBackend(self.library_path)


def _parse_bool(name: str, raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")
