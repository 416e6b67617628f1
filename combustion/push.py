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

import json
import logging
import time

import requests
from paho.mqtt import MQTTException, publish

logger = logging.getLogger(__name__)

DEFAULT_TOPIC_PREFIX = 'combustion'


def build_payload(packet, rssi):
    """Flatten a decoded packet into telemetry keys suffixed with the probe serial number."""
    serial = packet.serial_number
    payload = {
        f"Mode_{serial}": packet.mode.name,
        f"BatteryOK_{serial}": packet.battery_ok,
        f"RSSI_{serial}": rssi,
    }
    if packet.instant_read_temperature is not None:
        payload[f"InstantRead_{serial}"] = packet.instant_read_temperature
    if packet.core_temperature is not None:
        payload[f"Core_{serial}"] = packet.core_temperature
        payload[f"Surface_{serial}"] = packet.surface_temperature
        payload[f"Ambient_{serial}"] = packet.ambient_temperature
    if any(packet.overheating):
        payload[f"Overheating_{serial}"] = [i + 1 for i, hot in enumerate(packet.overheating) if hot]
    return payload


def push_to_cloud_mqtt(packet, rssi, mqtt_broker='localhost', mqtt_port=1883,
                       topic_prefix=DEFAULT_TOPIC_PREFIX, **_):
    logger.debug("Pushing over MQTT")
    topic = f"{topic_prefix}/{packet.serial_number}"
    payload = build_payload(packet, rssi)
    try:
        publish.single(topic, json.dumps(payload), hostname=mqtt_broker, port=int(mqtt_port))
        logger.info(f" -> MQTT Publish Success: {topic}")
    except (OSError, MQTTException) as e:
        logger.error(f" -> MQTT Connection Failed: {e}")


def push_to_cloud_https(packet, rssi, https_url=None, access_token=None, **_):
    """Sends JSON data to a ThingsBoard style telemetry endpoint via HTTP"""
    logger.debug("Pushing over HTTPS")
    if not https_url or not access_token:
        logger.warning("Suppressing Push: HTTPS URL or access token not set")
        return
    url = f"{https_url}/{access_token}/telemetry"
    payload = build_payload(packet, rssi)

    try:
        response = requests.post(url, json=payload, timeout=2)
        if response.status_code == 200:
            logger.info(f" -> Cloud Upload Success: {payload}")
        elif response.status_code == 400:
            logger.warning("Invalid URL, request parameters or body")
        elif response.status_code == 404:
            logger.warning("Invalid ACCESS_TOKEN used")
        else:
            logger.warning(f" -> Cloud Error: {response.status_code}")
    except requests.RequestException as e:
        logger.error(f" -> Cloud Connection Failed: {e}")


TRANSPORT_HANDLERS = {
    'MQTT': push_to_cloud_mqtt,
    'HTTPS': push_to_cloud_https,
}


class TelemetryPusher:
    """Push decoded packets over a transport, at most once per probe every min_push_interval seconds."""

    def __init__(self, transport=None, min_push_interval=30, clock=time.time, **options):
        self.transport = transport
        self.min_push_interval = float(min_push_interval)
        self.options = options
        self.clock = clock
        self.last_tx_timestamps = {}

    def push(self, packet, rssi=None):
        serial = packet.serial_number
        logger.debug("Pushing to Cloud, S=%s" % (serial,))
        current_time = self.clock()
        last = self.last_tx_timestamps.get(serial)
        if last is not None:
            delta_from_last_tx = current_time - last
            if delta_from_last_tx < self.min_push_interval:
                logger.warning("Suppressing Push: Last attempt was %u ago" % (delta_from_last_tx,))
                return False

        try:
            handler = TRANSPORT_HANDLERS[self.transport]
        except KeyError:
            # No transport configured, carry on without pushing
            logger.debug("Suppressing Push: Transport not set")
            return False

        handler(packet, rssi, **self.options)

        # Update the timestamp of the most recent attempt to send from this probe
        self.last_tx_timestamps[serial] = current_time
        logger.info("Pushed S:%s, T:%s" %
                    (serial, time.strftime("%d/%m/%Y %H:%M:%S", time.localtime(current_time))))
        return True
