#!/usr/bin/env python3

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

import sys
import os
import asyncio
from bleak.exc import BleakBluetoothNotAvailableError

from combustion import __version__
from combustion.monitor import CombustionMonitor
from combustion.packet import Mode
from combustion.push import DEFAULT_TOPIC_PREFIX, TRANSPORT_HANDLERS, TelemetryPusher

# Configure a logger.
# We create a separate logger here so we can control ourselves without messing around with bleak
import logging
logger = logging.getLogger('Scanner')

# Command line argument support
import argparse
defaults = {
    'transport': None,
    'transport_const': 'MQTT',
    'debug_level': 'INFO',
    'mqtt_broker': 'localhost',
    'mqtt_port': 1883,
    'mqtt_topic_prefix': DEFAULT_TOPIC_PREFIX,
    'https_url': 'https://demo.thingsboard.io/api/v1',
    'min_push_interval': 30,
}

choices = {
    'debug_level': ('DEBUG', 'INFO', 'WARN', 'ERROR'),
    'transport': tuple(TRANSPORT_HANDLERS),
}

# Access token for the HTTPS transport - not version controlled
ACCESS_TOKEN_ENV = 'COMBUSTION_ACCESS_TOKEN'


def to_fahrenheit(celsius):
    return celsius * 9 / 5 + 32


def format_temperature(celsius, fahrenheit=False):
    if fahrenheit:
        return "%0.2f°F" % (to_fahrenheit(celsius),)
    return "%0.2f°C" % (celsius,)


def format_packet(packet, fahrenheit=False):
    """One line summary of a decoded packet"""
    head = "%s %s" % (packet.product_type.name, packet.serial_number)
    if packet.mode == Mode.NORMAL:
        body = "probe(%d)=%s, surface(%d)=%s, ambient(%d)=%s" % (
            packet.virtual_core_index, format_temperature(packet.core_temperature, fahrenheit),
            packet.virtual_surface_index, format_temperature(packet.surface_temperature, fahrenheit),
            packet.virtual_ambient_index, format_temperature(packet.ambient_temperature, fahrenheit))
    elif packet.mode == Mode.INSTANT_READ:
        body = "instant read=%s" % (format_temperature(packet.instant_read_temperature, fahrenheit),)
    else:
        body = "mode %s, no temperature data" % (packet.mode.name,)

    flags = []
    if not packet.battery_ok:
        flags.append("LOW BATTERY")
    overheating = [str(i + 1) for i, hot in enumerate(packet.overheating) if hot]
    if overheating:
        flags.append("OVERHEATING T%s" % (",T".join(overheating),))
    if flags:
        body += " [%s]" % ("; ".join(flags),)
    return "%s: %s" % (head, body)


def make_packet_handler(args, pusher):
    def packet_handler(monitor, packet, device, advertisement_data):
        logger.info("%s RSSI=%d" % (format_packet(packet, args.fahrenheit), advertisement_data.rssi))
        pusher.push(packet, advertisement_data.rssi)
    return packet_handler


async def main(args):
    pusher = TelemetryPusher(transport=args.transport,
                             min_push_interval=args.min_push_interval,
                             mqtt_broker=args.mqtt_broker,
                             mqtt_port=args.mqtt_port,
                             topic_prefix=args.mqtt_topic_prefix,
                             https_url=args.https_url,
                             access_token=args.access_token)
    monitor = CombustionMonitor(callback=make_packet_handler(args, pusher))
    try:
        await monitor.run_forever()
    finally:
        logger.info("Decoded %d packets, rejected %d" % (monitor.packets_decoded, monitor.packets_rejected))


def log_init(debug_level):
    if logger.handlers:
        return
    logger.setLevel(logging.DEBUG)

    # Create a handler and a formatter
    ch = logging.StreamHandler()
    ch.setLevel(debug_level)
    formatter = logging.Formatter('[%(asctime)s - %(name)s - %(levelname)s] %(message)s')
    ch.setFormatter(formatter)

    logger.addHandler(ch)

    # Library modules log under the combustion namespace
    lib_logger = logging.getLogger('combustion')
    lib_logger.setLevel(logging.DEBUG)
    lib_logger.addHandler(ch)


def arg_parser(argv=None):
    parser = argparse.ArgumentParser(add_help = False,
                                     description = "Scan for Combustion probe advertisements, decode their "
                                                   "temperatures and (optionally) push them to an MQTT broker "
                                                   "or the ThingsBoard Cloud.")

    out_group = parser.add_argument_group('Transport Options')
    out_group.add_argument('-t', '--transport', action='store', nargs='?',
                           const=defaults['transport_const'], choices=choices['transport'],
                           default=defaults['transport'],
                           help="Push data over TRANSPORT. If -t is specified but TRANSPORT is omitted, "
                                "%s will be used. If the argument is omitted altogether, data will not be pushed."
                                % (defaults['transport_const'],))
    out_group.add_argument('-m', '--min-push-interval', action='store', type=float,
                           default=defaults['min_push_interval'],
                           help="Suppress pushing data from a probe if we have pushed data from the same "
                                "probe within the last MIN_PUSH_INTERVAL seconds. "
                                "Default: %s" % (defaults['min_push_interval'],))

    out_group = parser.add_argument_group('MQTT Options')
    out_group.add_argument('-b', '--mqtt-broker', action='store', default=defaults['mqtt_broker'],
                           help="MQTT broker hostname or address. Default: %s" % (defaults['mqtt_broker'],))
    out_group.add_argument('-p', '--mqtt-port', action='store', type=int, default=defaults['mqtt_port'],
                           help="MQTT broker port. Default: %d" % (defaults['mqtt_port'],))
    out_group.add_argument('-T', '--mqtt-topic-prefix', action='store', default=defaults['mqtt_topic_prefix'],
                           help="Publish to MQTT_TOPIC_PREFIX/<serial>. Default: %s"
                                % (defaults['mqtt_topic_prefix'],))

    out_group = parser.add_argument_group('HTTPS Options')
    out_group.add_argument('-u', '--https-url', action='store', default=defaults['https_url'],
                           help="Telemetry API base URL. Default: %s" % (defaults['https_url'],))
    out_group.add_argument('-a', '--access-token', action='store', default=os.environ.get(ACCESS_TOKEN_ENV),
                           help="Device access token. Default: value of $%s" % (ACCESS_TOKEN_ENV,))

    out_group = parser.add_argument_group('Display Options')
    out_group.add_argument('-F', '--fahrenheit', action='store_true',
                           help="Print temperatures in degrees Fahrenheit")

    log_group = parser.add_argument_group('Debugging')
    log_group.add_argument('-D', '--debug-level', action = 'store',
                           choices = choices['debug_level'],
                           default = defaults['debug_level'],
                           help = "Print messages of severity DEBUG_LEVEL "
                                  "or higher (Default %s)"
                                   % (defaults['debug_level'],))

    gen_group = parser.add_argument_group('General Options')
    gen_group.add_argument('-v', '--version', action = 'version',
                           version = 'Scanner v%s' % (__version__))
    gen_group.add_argument('-h', '--help', action = 'help',
                           help = 'Shows this message and exits')

    return parser.parse_args(argv)


def run(argv=None):
    args = arg_parser(argv)
    log_init(args.debug_level)
    try:
        logger.info("Starting gateway")
        try:
            asyncio.run(main(args))
        except BleakBluetoothNotAvailableError as e:
            logger.error("Bluetooth not available. Exiting")
            sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Stopping gateway")


if __name__ == "__main__":
    run()
