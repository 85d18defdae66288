"""
Unit tests for the simulated backend.
"""

from __future__ import annotations

import threading
import time

import pytest

from pyhlml.backends.base import ECCErrorType, Field, GlobalField, NativeEvent, Status
from pyhlml.backends.simulated import Counter, SimulatedBackend, SimulatedDevice
from pyhlml.events import EventType


@pytest.fixture
def sim() -> SimulatedBackend:
    """Provide an initialized two-device simulated backend."""
    backend = SimulatedBackend(device_count=2)
    backend.init(0)
    return backend


class TestSimulatedDevice:
    """Tests for SimulatedDevice."""

    def test_create_identity(self) -> None:
        """Test identity derived from the index."""
        first = SimulatedDevice.create(0)
        second = SimulatedDevice.create(1)

        assert first.serial == "AM000000000001"
        assert second.serial == "AM000000000002"
        assert first.uuid != second.uuid
        assert first.pci_bus_id == "0000:19:00.0"
        assert second.pci_bus_id == "0000:29:00.0"

    def test_create_overrides(self) -> None:
        """Test overriding fields."""
        device = SimulatedDevice.create(0, serial="X1", name="HL-205")

        assert device.serial == "X1"
        assert device.name == "HL-205"

    def test_memory_fixture_consistent(self) -> None:
        """Test that the default memory reading satisfies used + free == total."""
        total, used, free = SimulatedDevice.create(0).memory

        assert used + free == total

    def test_counters_only_increase(self) -> None:
        """Test that counters reject negative increments."""
        device = SimulatedDevice.create(0)
        device.add(Counter.PCIE_REPLAY, 3)

        assert int(device.counters[Counter.PCIE_REPLAY]) == 3
        with pytest.raises(ValueError):
            device.add(Counter.PCIE_REPLAY, -1)

    def test_record_ecc_error(self) -> None:
        """Test that ECC errors land in volatile and aggregate counters."""
        device = SimulatedDevice.create(0)
        device.record_ecc_error(ECCErrorType.UNCORRECTED, 2)

        assert int(device.counters[Counter.ECC_VOLATILE_UNCORRECTED]) == 2
        assert int(device.counters[Counter.ECC_AGGREGATE_UNCORRECTED]) == 2
        assert int(device.counters[Counter.ECC_VOLATILE_CORRECTED]) == 0


class TestLifecycle:
    """Tests for simulated init/shutdown."""

    def test_double_init(self) -> None:
        """Test that a second init is reported."""
        backend = SimulatedBackend()

        assert backend.init(0) == (Status.SUCCESS, None)
        assert backend.init(0) == (Status.ALREADY_INITIALIZED, None)
        assert backend.init_calls == 1

    def test_shutdown_without_init(self) -> None:
        """Test shutdown before init."""
        assert SimulatedBackend().shutdown() == (Status.UNINITIALIZED, None)

    def test_calls_need_init(self) -> None:
        """Test that calls fail before init."""
        backend = SimulatedBackend()

        assert backend.device_count()[0] == Status.UNINITIALIZED
        status, _ = backend.read_field(SimulatedBackend.RAW_HANDLE_BASE, Field.NAME)
        assert status == Status.UNINITIALIZED

    def test_init_resets_volatile_ecc(self, sim: SimulatedBackend) -> None:
        """Test that volatile ECC counts cover one session only."""
        sim.devices[0].record_ecc_error(ECCErrorType.CORRECTED)
        sim.shutdown()
        sim.init(0)

        assert int(sim.devices[0].counters[Counter.ECC_VOLATILE_CORRECTED]) == 0
        assert int(sim.devices[0].counters[Counter.ECC_AGGREGATE_CORRECTED]) == 1

    def test_flags_recorded(self) -> None:
        """Test that init flags are kept."""
        backend = SimulatedBackend()
        backend.init(1)

        assert backend.flags == 1


class TestReads:
    """Tests for field reads."""

    def test_lookup(self, sim: SimulatedBackend) -> None:
        """Test handle lookups."""
        second = sim.devices[1]
        found = (Status.SUCCESS, SimulatedBackend.RAW_HANDLE_BASE + 1)

        assert sim.handle_by_index(1) == found
        assert sim.handle_by_uuid(second.uuid) == found
        assert sim.handle_by_serial(second.serial) == found
        assert sim.handle_by_index(2)[0] == Status.INVALID_ARGUMENT
        assert sim.handle_by_serial("nope")[0] == Status.NOT_FOUND

    def test_unknown_handle(self, sim: SimulatedBackend) -> None:
        """Test that an unknown raw handle is rejected."""
        assert sim.read_field(0xDEAD, Field.NAME)[0] == Status.INVALID_ARGUMENT

    def test_bad_selector(self, sim: SimulatedBackend) -> None:
        """Test that a bad selector argument is rejected."""
        status, _ = sim.read_field(SimulatedBackend.RAW_HANDLE_BASE, Field.CLOCK_INFO, 42)
        assert status == Status.INVALID_ARGUMENT

    def test_energy_advances(self, sim: SimulatedBackend) -> None:
        """Test that each energy read advances the counter."""
        raw = SimulatedBackend.RAW_HANDLE_BASE
        _, first = sim.read_field(raw, Field.ENERGY_COUNTER)
        _, second = sim.read_field(raw, Field.ENERGY_COUNTER)

        assert second > first

    def test_unsupported_and_failure(self, sim: SimulatedBackend) -> None:
        """Test injected NOT_SUPPORTED and failure statuses."""
        raw = SimulatedBackend.RAW_HANDLE_BASE
        sim.set_unsupported(0, Field.POWER_USAGE)
        sim.set_failure(0, Field.UTILIZATION, Status.AIP_IS_LOST)

        assert sim.read_field(raw, Field.POWER_USAGE)[0] == Status.NOT_SUPPORTED
        assert sim.read_field(raw, Field.UTILIZATION)[0] == Status.AIP_IS_LOST
        assert sim.read_field(raw + 1, Field.POWER_USAGE)[0] == Status.SUCCESS

    def test_nic_port_bounds(self, sim: SimulatedBackend) -> None:
        """Test that NIC ports outside the device are rejected, not wrapped."""
        raw = SimulatedBackend.RAW_HANDLE_BASE

        assert sim.read_field(raw, Field.NIC_LINK_STATUS, 9) == (Status.SUCCESS, 1)
        assert sim.read_field(raw, Field.NIC_LINK_STATUS, 10)[0] == Status.INVALID_ARGUMENT
        assert sim.read_field(raw, Field.NIC_LINK_STATUS, -1)[0] == Status.INVALID_ARGUMENT

    def test_globals(self, sim: SimulatedBackend) -> None:
        """Test driver and firmware version reads."""
        assert sim.read_global(GlobalField.DRIVER_VERSION) == (Status.SUCCESS, "1.15.0-fw-48.0.1")
        status, (kernel, uboot) = sim.read_global(GlobalField.FW_VERSION, 1)

        assert status == Status.SUCCESS
        assert kernel and uboot
        assert sim.read_global(GlobalField.FW_VERSION, 5)[0] == Status.INVALID_ARGUMENT


class TestEvents:
    """Tests for simulated event sets."""

    def test_wait_times_out(self, sim: SimulatedBackend) -> None:
        """Test a wait with nothing pending."""
        _, event_set = sim.event_set_create()

        assert sim.event_set_wait(event_set, 10) == (Status.TIMEOUT, None)

    def test_inject_delivers_to_registered(self, sim: SimulatedBackend) -> None:
        """Test that events reach only sets registered for them."""
        raw = SimulatedBackend.RAW_HANDLE_BASE
        _, watching = sim.event_set_create()
        _, other = sim.event_set_create()
        sim.register_events(raw, EventType.THERMAL_VIOLATION, watching)
        sim.register_events(raw, EventType.ECC_ERROR, other)

        assert sim.inject_event(0, EventType.THERMAL_VIOLATION) == 1
        assert sim.event_set_wait(watching, 0) == (
            Status.SUCCESS,
            NativeEvent(device=raw, event_type=int(EventType.THERMAL_VIOLATION)),
        )
        assert sim.event_set_wait(other, 0)[0] == Status.TIMEOUT

    def test_free_unknown_set(self, sim: SimulatedBackend) -> None:
        """Test freeing a set twice."""
        _, event_set = sim.event_set_create()

        assert sim.event_set_free(event_set) == (Status.SUCCESS, None)
        assert sim.event_set_free(event_set)[0] == Status.INVALID_ARGUMENT
        assert sim.open_event_sets == 0

    def test_shutdown_wakes_waiter(self, sim: SimulatedBackend) -> None:
        """Test that shutdown ends a blocked wait."""
        _, event_set = sim.event_set_create()
        results: list[tuple[int, object]] = []
        waiter = threading.Thread(
            target=lambda: results.append(sim.event_set_wait(event_set, 5000))
        )
        waiter.start()
        time.sleep(0.05)
        start = time.monotonic()
        sim.shutdown()
        waiter.join(timeout=2.0)

        assert not waiter.is_alive()
        assert time.monotonic() - start < 2.0
        assert results == [(Status.UNINITIALIZED, None)]
