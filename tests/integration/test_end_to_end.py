"""
End-to-end integration tests for pyhlml.
"""

from __future__ import annotations

import threading

import pytest

import pyhlml
from pyhlml.backends.simulated import SimulatedBackend
from pyhlml.config import HLMLConfig


@pytest.fixture
def simulated(monkeypatch: pytest.MonkeyPatch) -> None:
    """Select the simulated backend through the environment."""
    monkeypatch.setenv("PYHLML_BACKEND", "simulated")
    monkeypatch.setenv("PYHLML_SIMULATED_DEVICES", "4")
    monkeypatch.setenv("PYHLML_EVENT_POLL_INTERVAL", "0.01")


@pytest.mark.usefixtures("simulated")
class TestScenarios:
    """Usage scenarios against the simulated backend."""

    def test_device_count_before_and_after_init(self) -> None:
        """Test that counting devices needs an initialized library."""
        with pytest.raises(pyhlml.NotInitializedError):
            pyhlml.device_count()

        pyhlml.initialize()

        assert pyhlml.device_count() == 4
        pyhlml.shutdown()

    def test_repeated_cycles(self) -> None:
        """Test initialize, count, handle(0), minor number, shutdown, twice."""
        for _ in range(2):
            pyhlml.initialize()
            assert pyhlml.device_count() > 0
            assert pyhlml.device_handle_by_index(0).minor_number() == 0
            pyhlml.shutdown()

        assert pyhlml.library_state() is pyhlml.LibraryState.UNINITIALIZED

    def test_double_init_keeps_library_usable(self) -> None:
        """Test that a rejected second initialize() leaves the library working."""
        pyhlml.initialize()

        with pytest.raises(pyhlml.AlreadyInitializedError):
            pyhlml.initialize()

        assert pyhlml.device_count() == 4
        pyhlml.shutdown()

    def test_serial_round_trip(self) -> None:
        """Test that every device is found again by its own serial."""
        with pyhlml.initialized():
            for device in pyhlml.devices():
                assert pyhlml.device_handle_by_serial(device.serial_number()) == device

    def test_identity_consistency(self) -> None:
        """Test that index, UUID and serial agree for every device."""
        with pyhlml.initialized():
            for index in range(pyhlml.device_count()):
                device = pyhlml.device_handle_by_index(index)
                identity = device.identity()

                assert pyhlml.device_handle_by_uuid(identity.uuid).index == index
                assert pyhlml.device_handle_by_serial(identity.serial).index == index

    def test_memory_on_every_device(self) -> None:
        """Test the memory invariant across the machine."""
        with pyhlml.initialized():
            for device in pyhlml.devices():
                mem = device.memory_info()
                assert mem.used + mem.free == mem.total

    def test_thermal_wait_times_out(self) -> None:
        """Test thermal registration followed by a short wait with no events."""
        with pyhlml.initialized():
            device = pyhlml.device_handle_by_index(0)
            with pyhlml.new_event_set() as events:
                pyhlml.register_events(events, device, pyhlml.EventType.THERMAL_VIOLATION)
                outcome = pyhlml.wait_for_event(events, 0.1)

            assert outcome.timed_out

    def test_event_set_round_trip(self) -> None:
        """Test new then delete of an event set."""
        with pyhlml.initialized():
            events = pyhlml.new_event_set()
            pyhlml.delete_event_set(events)

            assert events.is_deleted


class TestMonitoring:
    """A monitoring loop with an event watcher running beside it."""

    def test_poll_while_watching(self) -> None:
        """Test polling telemetry while a watcher thread waits for ECC events."""
        backend = SimulatedBackend(device_count=2)
        config = HLMLConfig(backend="simulated", event_poll_interval=0.01)
        outcomes: list[pyhlml.EventOutcome] = []

        with pyhlml.initialized(config, backend=backend):
            events = pyhlml.new_event_set()
            for device in pyhlml.devices():
                pyhlml.register_events(events, device, pyhlml.EventType.ECC_ERROR)

            watcher = threading.Thread(
                target=lambda: outcomes.append(pyhlml.wait_for_event(events, 2.0))
            )
            watcher.start()

            device = pyhlml.device_handle_by_index(1)
            energy = [device.energy_consumption_counter() for _ in range(10)]
            backend.inject_event(1, pyhlml.EventType.ECC_ERROR)
            watcher.join(timeout=3.0)
            pyhlml.delete_event_set(events)

        assert energy == sorted(energy)
        assert len(outcomes) == 1
        assert outcomes[0].device is not None
        assert outcomes[0].device.index == 1
        assert outcomes[0].event_type is pyhlml.EventType.ECC_ERROR

    def test_snapshots_of_all_devices(self) -> None:
        """Test capturing and shipping a snapshot of every device."""
        with pyhlml.initialized(backend=SimulatedBackend(device_count=3)):
            payloads = [pyhlml.DeviceSnapshot.capture(d).to_bytes() for d in pyhlml.devices()]

        restored = [pyhlml.DeviceSnapshot.from_bytes(p) for p in payloads]
        assert [s.index for s in restored] == [0, 1, 2]
        assert len({s.uuid for s in restored}) == 3


@pytest.mark.hardware
class TestHardware:
    """Smoke tests against a real libhlml.so."""

    def test_enumerate(self) -> None:
        """Test reading basic telemetry from every device."""
        with pyhlml.initialized(HLMLConfig.from_env()):
            for device in pyhlml.devices():
                mem = device.memory_info()
                assert mem.used + mem.free == mem.total
                assert device.name()
