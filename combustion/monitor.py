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

import asyncio
import logging

from bleak import BleakScanner

from combustion.packet import COMBUSTION_COMPANY_ID, PacketDecodeError, decode

logger = logging.getLogger(__name__)


class CombustionMonitor:
    """
    Scan for Combustion advertisements and hand every decoded packet to a callback.

    The callback is called as callback(monitor, packet, device, advertisement_data)
    from within the detection callback, on the scanner's event loop.
    """

    def __init__(self, callback=None, scanner_factory=BleakScanner, scanning_mode='active'):
        self.packet_handler = callback
        self.scanner_factory = scanner_factory
        self.scanning_mode = scanning_mode
        self.scanner = None
        self.packets_decoded = 0
        self.packets_rejected = 0
        self._stopped = None

    def on_advertisement(self, device, advertisement_data):
        try:
            payload = advertisement_data.manufacturer_data[COMBUSTION_COMPANY_ID]
        except KeyError:
            logger.debug("Ignoring device '%s'" % (device.address,))
            return

        logger.debug("Scanned device '%s'" % (device.name,))
        logger.debug("       Address: %s" % (device.address,))
        logger.debug("       Payload: %s" % (bytes(payload).hex(' '),))

        try:
            packet = decode(payload)
        except PacketDecodeError as e:
            self.packets_rejected += 1
            logger.warning("*** Error decoding Combustion payload from %s ***: %s" % (device.address, e))
            return

        self.packets_decoded += 1
        if self.packet_handler is not None:
            self.packet_handler(self, packet, device, advertisement_data)

    async def start(self, callback=None):
        if self.scanner is not None:
            raise RuntimeError("Monitor already started")
        if callback is not None:
            self.packet_handler = callback

        logger.info("Starting BLE scanner")
        self.scanner = self.scanner_factory(detection_callback=self.on_advertisement,
                                            scanning_mode=self.scanning_mode)
        self._stopped = asyncio.Event()
        try:
            await self.scanner.start()
        except Exception:
            self.scanner = None
            raise

    async def stop(self):
        if self.scanner is None:
            return
        logger.info("Stopping BLE scanner")
        scanner, self.scanner = self.scanner, None
        try:
            await scanner.stop()
        finally:
            self._stopped.set()

    async def run_forever(self, callback=None):
        await self.start(callback)
        stopped = self._stopped
        try:
            await stopped.wait()
        finally:
            await self.stop()
