# MIT License
#
# Copyright (c) 2025-26 University of Bristol
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Decoder for the manufacturer specific data of Combustion Inc. probe advertisements.

Payload layout (after the 0x09C7 company identifier), see
https://github.com/combustion-inc/combustion-documentation/blob/main/probe_ble_specification.rst

    Offset  Bytes  Description
    0       1      Product type
    1       4      Serial number, little-endian
    5       13     Raw temperature data, 8 x 13-bit thermistor readings
    18      1      Mode and ID data
    19      1      Battery status and virtual sensors
    20      1      Network information, unused by probes
    21      1      Overheating sensors
"""

import enum
import struct
from dataclasses import dataclass

COMBUSTION_COMPANY_ID = 0x09C7
PACKET_LENGTH = 22
THERMISTOR_COUNT = 8
THERMISTOR_BITS = 13


class PacketDecodeError(ValueError):
    pass


class TruncatedPacket(PacketDecodeError):
    def __init__(self, length, required=PACKET_LENGTH):
        super().__init__("Packet is %d bytes long, at least %d are required" % (length, required))
        self.length = length
        self.required = required


class ProductType(enum.IntEnum):
    UNKNOWN = 0
    PREDICTIVE_PROBE = 1
    REPEATER_NODE = 2
    GIANT_GRILL_GAUGE = 3
    DISPLAY = 4
    BOOSTER = 5

    @classmethod
    def _missing_(cls, value):
        # Newer firmware may report product types we do not know about yet
        return cls.UNKNOWN


class Mode(enum.IntEnum):
    NORMAL = 0
    INSTANT_READ = 1
    RESERVED = 2
    ERROR = 3


class ColorID(enum.IntEnum):
    YELLOW = 0
    GREY = 1


def _float32(value):
    return struct.unpack("<f", struct.pack("<f", value))[0]


_SCALE = _float32(0.05)
_OFFSET = 20.0


def raw_to_celsius(raw):
    """Temperature = (raw value * 0.05) - 20, in single precision."""
    return _float32(_float32(float(raw) * _SCALE) - _OFFSET)


@dataclass(frozen=True)
class CombustionPacket:
    product_type: ProductType
    serial_number: str
    mode: Mode
    color_id: int
    probe_id: int
    temperatures: tuple
    battery_ok: bool
    virtual_core_index: int
    virtual_surface_index: int
    virtual_ambient_index: int
    overheating: tuple

    @property
    def color(self):
        """The named probe colour, or None when color_id is not a documented value."""
        try:
            return ColorID(self.color_id)
        except ValueError:
            return None

    def _virtual(self, index):
        if self.mode != Mode.NORMAL:
            return None
        return self.temperatures[index]

    @property
    def core_temperature(self):
        return self._virtual(self.virtual_core_index)

    @property
    def surface_temperature(self):
        return self._virtual(self.virtual_surface_index)

    @property
    def ambient_temperature(self):
        return self._virtual(self.virtual_ambient_index)

    @property
    def instant_read_temperature(self):
        if self.mode != Mode.INSTANT_READ:
            return None
        return self.temperatures[0]

    def as_dict(self):
        return {
            "product_type": self.product_type.name,
            "serial_number": self.serial_number,
            "mode": self.mode.name,
            "color_id": self.color_id,
            "probe_id": self.probe_id,
            "temperatures": list(self.temperatures),
            "battery_ok": self.battery_ok,
            "virtual_core_index": self.virtual_core_index,
            "virtual_surface_index": self.virtual_surface_index,
            "virtual_ambient_index": self.virtual_ambient_index,
            "overheating": list(self.overheating),
        }


def _unpack_thermistors(block, count):
    # The 13 byte block is little-endian on the wire. Read as a single integer,
    # thermistor 1 sits in the least significant 13 bits and thermistor 8 in the most.
    packed = int.from_bytes(block, "little")
    mask = (1 << THERMISTOR_BITS) - 1
    return tuple(raw_to_celsius((packed >> (THERMISTOR_BITS * i)) & mask) for i in range(count))


def decode(raw):
    """
    Decode the manufacturer specific payload of a Combustion advertisement.

    raw is the payload that follows the company identifier. Any bytes-like
    object or sequence of ints is accepted and is never modified.
    Raises TruncatedPacket when fewer than PACKET_LENGTH bytes are supplied.
    """
    if len(raw) < PACKET_LENGTH:
        raise TruncatedPacket(len(raw))
    data = bytes(raw[:PACKET_LENGTH])

    (product_type, serial, thermistors,
     mode_id, status, _network, overheat) = struct.unpack("<B4s13sBBBB", data)

    mode = Mode(mode_id & 0x03)
    # Colour and probe ID keep the 0x70 mask applied after the shift, matching
    # the vendor's reference decoder bit for bit.
    color_id = (mode_id >> 2) & 0x70
    probe_id = (mode_id >> 5) & 0x70

    if mode == Mode.INSTANT_READ:
        temperatures = _unpack_thermistors(thermistors, 1)
    elif mode == Mode.NORMAL:
        temperatures = _unpack_thermistors(thermistors, THERMISTOR_COUNT)
    else:
        temperatures = ()

    return CombustionPacket(
        product_type=ProductType(product_type),
        serial_number=serial[::-1].hex(),
        mode=mode,
        color_id=color_id,
        probe_id=probe_id,
        temperatures=temperatures,
        battery_ok=(status & 0x01) == 0x00,
        virtual_core_index=(status >> 1) & 0x07,
        virtual_surface_index=((status >> 4) & 0x03) + 3,
        virtual_ambient_index=((status >> 6) & 0x03) + 4,
        overheating=tuple(bool(overheat & (1 << i)) for i in range(THERMISTOR_COUNT)),
    )
