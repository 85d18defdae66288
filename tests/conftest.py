"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest

from pyhlml.backends.hlml import HLMLBackend
from pyhlml.backends.simulated import SimulatedBackend
from pyhlml.config import HLMLConfig
from pyhlml.exceptions import LibraryLoadError
from pyhlml.lifecycle import Library

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]


def _reset_library() -> None:
    library = Library._instance
    if library is not None and library.is_initialized:
        library.shutdown()
    Library._instance = None
    Library._created = False


@pytest.fixture(autouse=True)
def fresh_library() -> Generator[None, None, None]:
    """Start and end every test with an uninitialized library."""
    # Reset singleton for testing
    _reset_library()
    yield
    _reset_library()


@pytest.fixture
def config() -> HLMLConfig:
    """Provide a simulated configuration with a short wait slice."""
    return HLMLConfig(backend="simulated", simulated_devices=2, event_poll_interval=0.01)


@pytest.fixture
def backend() -> SimulatedBackend:
    """Provide a simulated backend with two devices."""
    return SimulatedBackend(device_count=2)


@pytest.fixture
def library(config: HLMLConfig, backend: SimulatedBackend) -> Generator[Library, None, None]:
    """Provide an initialized library on the simulated backend."""
    lib = Library.instance()
    lib.initialize(config, backend=backend)
    yield lib
    if lib.is_initialized:
        lib.shutdown()


# Markers for hardware tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring libhlml.so and an accelerator"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip hardware tests if the native library is not available."""
    hardware_available = False
    try:
        HLMLBackend(HLMLConfig.from_env().library_path).load()
        hardware_available = True
    except (LibraryLoadError, ValueError):
        pass

    if not hardware_available:
        skip_hardware = pytest.mark.skip(reason="libhlml.so not available")
        for item in items:
            if "hardware" in item.keywords:
                item.add_marker(skip_hardware)
