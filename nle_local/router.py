#
# Copyright 2025 The NoLongerEvil Local contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Routing of inbound MQTT messages to per-device thermostat state machines."""

import logging
from typing import Callable, Dict, List, Optional, Tuple, Union

from .config import DEFAULT_TOPIC_PREFIX
from .payload import Payload, decode_payload
from .thermostat import ThermostatAccessory

logger = logging.getLogger(__name__)

SCOPE_DEVICE = 'device'
SCOPE_SHARED = 'shared'

# Fields matched on name alone, whatever scope they arrive in
FIELD_CURRENT_TEMPERATURE = 'current_temperature'
FIELD_AVAILABILITY = 'availability'

# (scope, field) pairs the router subscribes to for every device
SUBSCRIBED_FIELDS: List[Tuple[str, str]] = [
    (SCOPE_SHARED, FIELD_CURRENT_TEMPERATURE),
    (SCOPE_DEVICE, FIELD_CURRENT_TEMPERATURE),
    (SCOPE_SHARED, 'target_temperature'),
    (SCOPE_SHARED, 'target_temperature_low'),
    (SCOPE_SHARED, 'target_temperature_high'),
    (SCOPE_SHARED, 'target_temperature_type'),
    (SCOPE_DEVICE, 'fan_timer_active'),
    (SCOPE_DEVICE, 'away'),
]

Handler = Callable[[ThermostatAccessory, str, Payload], None]


def _numeric(update: Callable[[ThermostatAccessory, float], None]) -> Handler:
    def handler(thermostat: ThermostatAccessory, field: str, payload: Payload):
        value = payload.as_number()
        if value is None:
            logger.debug(f"Ignoring non-numeric {field} for {thermostat.serial}: {payload.value!r}")
            return
        update(thermostat, value)
    return handler


def _boolean(update: Callable[[ThermostatAccessory, bool], None]) -> Handler:
    def handler(thermostat: ThermostatAccessory, field: str, payload: Payload):
        value = payload.as_bool()
        if value is None:
            logger.debug(f"Ignoring non-boolean {field} for {thermostat.serial}: {payload.value!r}")
            return
        update(thermostat, value)
    return handler


def _mode(thermostat: ThermostatAccessory, field: str, payload: Payload):
    thermostat.update_mode(payload.as_text())


def _availability(thermostat: ThermostatAccessory, field: str, payload: Payload):
    logger.debug(f"Device {thermostat.serial} is {payload.as_text()}")


def _away(thermostat: ThermostatAccessory, away: bool):
    thermostat.update_occupancy(not away)


DISPATCH_TABLE: Dict[Tuple[str, str], Handler] = {
    (SCOPE_SHARED, 'target_temperature'): _numeric(ThermostatAccessory.update_target_temperature),
    (SCOPE_SHARED, 'target_temperature_low'): _numeric(ThermostatAccessory.update_target_temperature_low),
    (SCOPE_SHARED, 'target_temperature_high'): _numeric(ThermostatAccessory.update_target_temperature_high),
    (SCOPE_SHARED, 'target_temperature_type'): _mode,
    (SCOPE_DEVICE, 'fan_timer_active'): _boolean(ThermostatAccessory.update_fan_state),
    (SCOPE_DEVICE, 'away'): _boolean(_away),
}

FIELD_TABLE: Dict[str, Handler] = {
    # Firmware versions differ in which object carries the ambient reading
    FIELD_CURRENT_TEMPERATURE: _numeric(ThermostatAccessory.update_current_temperature),
    FIELD_AVAILABILITY: _availability,
}


class MessageRouter:
    """Parses `<prefix>/<serial>/<scope>/<field>` topics and dispatches to thermostats.

    Owns the serial -> ThermostatAccessory map. It is populated by the platform
    when devices are discovered and only changes on add/remove.
    """

    def __init__(self, topic_prefix: str = DEFAULT_TOPIC_PREFIX):
        self.topic_prefix = topic_prefix
        self._thermostats: Dict[str, ThermostatAccessory] = {}

    def add_device(self, serial: str, thermostat: ThermostatAccessory):
        self._thermostats[serial] = thermostat

    def remove_device(self, serial: str) -> Optional[ThermostatAccessory]:
        return self._thermostats.pop(serial, None)

    def get(self, serial: str) -> Optional[ThermostatAccessory]:
        return self._thermostats.get(serial)

    @property
    def serials(self) -> List[str]:
        return list(self._thermostats)

    def thermostats(self) -> List[ThermostatAccessory]:
        return list(self._thermostats.values())

    def topics_for(self, serial: str) -> List[str]:
        """State topics to subscribe to for one device."""
        topics = [f"{self.topic_prefix}/{serial}/{scope}/{field}" for scope, field in SUBSCRIBED_FIELDS]
        topics.append(f"{self.topic_prefix}/{serial}/{FIELD_AVAILABILITY}")
        return topics

    def command_topic(self, serial: str, scope: str, field: str) -> str:
        return f"{self.topic_prefix}/{serial}/{scope}/{field}/set"

    def route(self, topic: str, raw_payload: Union[bytes, bytearray, str, None]) -> bool:
        """Dispatch one message. Returns True when a handler ran.

        Foreign topics, unknown devices and unknown fields are dropped silently.
        """
        parts = topic.split('/')
        if len(parts) < 4 or parts[0] != self.topic_prefix:
            return False

        serial, scope, field = parts[1], parts[2], parts[3]

        thermostat = self._thermostats.get(serial)
        if thermostat is None:
            return False

        handler = FIELD_TABLE.get(field) or DISPATCH_TABLE.get((scope, field))
        if handler is None:
            return False

        payload = decode_payload(raw_payload)
        logger.debug(f"Received MQTT message: {topic} = {payload.value!r}")

        handler(thermostat, field, payload)
        return True
