"""
Shared fixtures for the Combustion decoder tests.

build_payload() assembles manufacturer data payloads field by field so that
tests can state the on-wire values they care about and leave the rest zeroed.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest


def pack_thermistors(raw_values):
    """Pack up to 8 raw 13-bit readings (thermistor 1 first) into the 13 byte wire block."""
    packed = 0
    for i, value in enumerate(raw_values):
        packed |= (value & 0x1FFF) << (13 * i)
    return packed.to_bytes(13, "little")


def build_payload(
    product_type=0x01,
    serial=bytes([0x78, 0x56, 0x34, 0x12]),
    thermistors=None,
    mode_id=0x00,
    status=0x00,
    network=0x00,
    overheating=0x00,
):
    if thermistors is None:
        thermistors = bytes(13)
    elif not isinstance(thermistors, (bytes, bytearray)):
        thermistors = pack_thermistors(thermistors)
    return bytes([product_type]) + bytes(serial) + bytes(thermistors) + bytes([mode_id, status, network, overheating])


@pytest.fixture
def payload_factory():
    return build_payload


@pytest.fixture
def mock_device():
    device = MagicMock()
    device.name = "CP"
    device.address = "C2:71:04:90:43:5B"
    return device


@pytest.fixture
def advertisement_factory():
    def make(manufacturer_data, rssi=-60):
        return SimpleNamespace(manufacturer_data=manufacturer_data, rssi=rssi)
    return make


@pytest.fixture
def mock_scanner_factory():
    """Stand-in for BleakScanner; the created scanner is available as factory.scanner."""
    scanner = MagicMock()
    scanner.start = AsyncMock()
    scanner.stop = AsyncMock()
    factory = MagicMock(return_value=scanner)
    factory.scanner = scanner
    return factory
