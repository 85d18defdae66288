"""
Unit tests for configuration.
"""

from __future__ import annotations

import subprocess
import sys

import pytest

from pyhlml.backends.hlml import HLMLBackend
from pyhlml.backends.simulated import SimulatedBackend
from pyhlml.config import HLMLConfig


class TestHLMLConfig:
    """Tests for HLMLConfig."""

    def test_default_config(self) -> None:
        """Test default configuration."""
        config = HLMLConfig()

        assert config.backend == "native"
        assert config.library_path == "libhlml.so"
        assert config.diagnostics is False
        assert config.event_poll_interval == 0.05
        assert config.simulated_devices == 1

    def test_validation(self) -> None:
        """Test configuration validation."""
        with pytest.raises(ValueError):
            HLMLConfig(backend="cuda")

        with pytest.raises(ValueError):
            HLMLConfig(library_path="")

        with pytest.raises(ValueError):
            HLMLConfig(event_poll_interval=0)

        with pytest.raises(ValueError):
            HLMLConfig(simulated_devices=-1)

    def test_from_env_defaults(self) -> None:
        """Test that an empty environment gives the defaults."""
        assert HLMLConfig.from_env({}) == HLMLConfig()

    def test_from_env(self) -> None:
        """Test reading every variable."""
        config = HLMLConfig.from_env(
            {
                "PYHLML_BACKEND": " Simulated ",
                "HLML_LIBRARY_PATH": "/opt/habanalabs/libhlml.so",
                "PYHLML_DIAGNOSTICS": "yes",
                "PYHLML_EVENT_POLL_INTERVAL": "0.2",
                "PYHLML_SIMULATED_DEVICES": "8",
            }
        )

        assert config.backend == "simulated"
        assert config.library_path == "/opt/habanalabs/libhlml.so"
        assert config.diagnostics is True
        assert config.event_poll_interval == 0.2
        assert config.simulated_devices == 8

    def test_from_env_invalid(self) -> None:
        """Test that malformed variables are rejected."""
        with pytest.raises(ValueError):
            HLMLConfig.from_env({"PYHLML_DIAGNOSTICS": "maybe"})

        with pytest.raises(ValueError):
            HLMLConfig.from_env({"PYHLML_EVENT_POLL_INTERVAL": "-1"})

    def test_create_backend(self) -> None:
        """Test backend selection."""
        simulated = HLMLConfig(backend="simulated", simulated_devices=4).create_backend()
        native = HLMLConfig(library_path="/nonexistent/libhlml.so").create_backend()

        assert isinstance(simulated, SimulatedBackend)
        assert len(simulated.devices) == 4
        assert isinstance(native, HLMLBackend)
        assert native.library_path == "/nonexistent/libhlml.so"


class TestBackendImports:
    """Tests for lazy backend loading."""

    def test_import_loads_no_backend(self) -> None:
        """Test that importing the package leaves backend modules unloaded."""
        code = (
            "import sys, pyhlml, pyhlml.backends; "
            "print(*(m in sys.modules for m in "
            "('pyhlml.backends.simulated', 'pyhlml.backends.hlml', 'numpy')))"
        )
        result = subprocess.run(
            [sys.executable, "-c", code], capture_output=True, text=True, check=True
        )

        assert result.stdout.split() == ["False", "False", "False"]
