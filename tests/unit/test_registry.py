"""
Unit tests for device enumeration and lookup.
"""

from __future__ import annotations

import pytest

import pyhlml
from pyhlml.backends.simulated import SimulatedBackend
from pyhlml.device import DeviceHandle, DeviceIdentity
from pyhlml.exceptions import InvalidArgumentError, InvalidHandleError, NotFoundError
from pyhlml.lifecycle import Library


class TestByIndex:
    """Tests for lookup by index."""

    def test_all_indices(self, library: Library) -> None:
        """Test that every index in range yields a handle."""
        handles = [pyhlml.device_handle_by_index(i) for i in range(pyhlml.device_count())]

        assert [h.index for h in handles] == [0, 1]
        assert handles == pyhlml.devices()

    @pytest.mark.parametrize("index", [-1, 2, 100])
    def test_out_of_range(self, library: Library, index: int) -> None:
        """Test that out-of-range indices are rejected."""
        with pytest.raises(InvalidArgumentError) as excinfo:
            pyhlml.device_handle_by_index(index)

        assert excinfo.value.parameter == "index"

    @pytest.mark.parametrize("index", ["0", 0.0, True, None])
    def test_non_integer(self, library: Library, index: object) -> None:
        """Test that non-integer indices are rejected."""
        with pytest.raises(InvalidArgumentError):
            pyhlml.device_handle_by_index(index)  # type: ignore[arg-type]

    def test_same_handle_every_time(self, library: Library) -> None:
        """Test that repeated lookups return equal handles."""
        assert pyhlml.device_handle_by_index(1) == pyhlml.device_handle_by_index(1)
        assert hash(pyhlml.device_handle_by_index(1)) == hash(pyhlml.device_handle_by_index(1))


class TestByIdentity:
    """Tests for lookup by UUID and serial."""

    def test_identity_consistency(self, library: Library) -> None:
        """Test that index, UUID and serial resolve to the same device."""
        for index in range(pyhlml.device_count()):
            device = pyhlml.device_handle_by_index(index)

            assert pyhlml.device_handle_by_uuid(device.uuid()) == device
            assert pyhlml.device_handle_by_serial(device.serial_number()) == device

    def test_identity_triple(self, library: Library, backend: SimulatedBackend) -> None:
        """Test the DeviceIdentity value."""
        sim = backend.devices[1]
        identity = pyhlml.device_handle_by_index(1).identity()

        assert identity == DeviceIdentity(1, sim.uuid, sim.serial)

    def test_whitespace_trimmed(self, library: Library, backend: SimulatedBackend) -> None:
        """Test that surrounding whitespace is ignored."""
        serial = backend.devices[0].serial

        assert pyhlml.device_handle_by_serial(f"  {serial}\n").index == 0

    def test_not_found(self, library: Library) -> None:
        """Test lookups that match no device."""
        with pytest.raises(NotFoundError) as excinfo:
            pyhlml.device_handle_by_serial("AM999999999999")
        assert excinfo.value.key == "serial"

        with pytest.raises(NotFoundError):
            pyhlml.device_handle_by_uuid("00000000-0000-0000-0000-000000000000")

    def test_lookup_is_live(self, library: Library, backend: SimulatedBackend) -> None:
        """Test that identity lookups ask the native layer on every call."""
        old_serial = backend.devices[1].serial
        backend.devices[1].serial = "AM000000000042"

        assert pyhlml.device_handle_by_serial("AM000000000042") == pyhlml.device_handle_by_index(1)
        with pytest.raises(NotFoundError):
            pyhlml.device_handle_by_serial(old_serial)

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_malformed(self, library: Library, value: object) -> None:
        """Test that empty or non-string identities are rejected."""
        with pytest.raises(InvalidArgumentError):
            pyhlml.device_handle_by_uuid(value)  # type: ignore[arg-type]
        with pytest.raises(InvalidArgumentError):
            pyhlml.device_handle_by_serial(value)  # type: ignore[arg-type]


class TestEnumeration:
    """Tests for enumeration edge cases."""

    def test_no_devices(self) -> None:
        """Test a host with zero devices."""
        pyhlml.initialize(backend=SimulatedBackend(device_count=0))

        assert pyhlml.device_count() == 0
        assert pyhlml.devices() == []
        with pytest.raises(InvalidArgumentError):
            pyhlml.device_handle_by_index(0)

    def test_foreign_handle(self, library: Library) -> None:
        """Test that a handle not issued by the library is rejected."""
        forged = DeviceHandle(0xBEEF, 0, library.epoch, library)

        with pytest.raises(InvalidHandleError):
            forged.name()

    def test_repr(self, library: Library) -> None:
        """Test handle representation."""
        assert "index=0" in repr(pyhlml.device_handle_by_index(0))
