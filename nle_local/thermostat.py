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

"""Per-thermostat state machine between MQTT device fields and HomeKit characteristics."""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from aiohomekit.model.characteristics import (
    ActivationStateValues,
    CharacteristicsTypes,
    HeatingCoolingCurrentValues,
    HeatingCoolingTargetValues,
)
from aiohomekit.model.services import ServicesTypes

from .config import DeviceConfig, FAHRENHEIT
from .modes import MODE_COOL, MODE_HEAT, MODE_OFF, MODE_RANGE, normalize_device_mode, to_accessory_mode, to_device_mode
from .registry import Accessory

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 20.0
DEFAULT_TEMPERATURE_HIGH = 24.0
DEFAULT_TEMPERATURE_LOW = 18.0

# Minimum |target - current| before the thermostat is considered active
ACTIVITY_THRESHOLD = 0.5

MANUFACTURER = 'Google Nest'
MODEL = 'Nest Thermostat'

OCCUPANCY_DETECTED = 1
OCCUPANCY_NOT_DETECTED = 0


class CommandPublisher(Protocol):
    def publish_command(self, serial: str, scope: str, field: str, value: Any) -> None:
        ...


@dataclass
class ThermostatState:
    current_temperature: Optional[float] = None
    target_temperature: Optional[float] = None
    target_temperature_low: Optional[float] = None
    target_temperature_high: Optional[float] = None
    mode: str = MODE_OFF
    current_heating_cooling_state: HeatingCoolingCurrentValues = HeatingCoolingCurrentValues.IDLE
    fan_active: bool = False
    occupied: bool = True


def compute_heating_cooling_state(
    mode: str,
    current: Optional[float],
    target: Optional[float],
    previous: HeatingCoolingCurrentValues,
) -> HeatingCoolingCurrentValues:
    """Infer whether the thermostat is heating or cooling.

    Range mode compares against the single target temperature, not the
    low/high thresholds. With current or target unknown the previous value
    is kept.
    """
    if mode == MODE_OFF:
        return HeatingCoolingCurrentValues.IDLE
    if current is None or target is None:
        return previous

    diff = target - current
    if abs(diff) < ACTIVITY_THRESHOLD:
        return HeatingCoolingCurrentValues.IDLE
    if diff > ACTIVITY_THRESHOLD and mode in (MODE_HEAT, MODE_RANGE):
        return HeatingCoolingCurrentValues.HEATING
    if diff < -ACTIVITY_THRESHOLD and mode in (MODE_COOL, MODE_RANGE):
        return HeatingCoolingCurrentValues.COOLING
    return HeatingCoolingCurrentValues.IDLE


class ThermostatAccessory:
    """Owns the state of one thermostat and keeps the accessory and device in sync.

    update_* handlers are fed by the message router (device -> accessory),
    request_* handlers by characteristic set hooks (accessory -> device).
    """

    def __init__(self, publisher: CommandPublisher, accessory: Accessory):
        self.publisher = publisher
        self.accessory = accessory
        self.device = DeviceConfig.from_dict(accessory.context['device'])
        self.state = ThermostatState()

        info = accessory.get_service(ServicesTypes.ACCESSORY_INFORMATION) \
            or accessory.add_service(ServicesTypes.ACCESSORY_INFORMATION)
        info.set_characteristic(CharacteristicsTypes.MANUFACTURER, MANUFACTURER) \
            .set_characteristic(CharacteristicsTypes.MODEL, MODEL) \
            .set_characteristic(CharacteristicsTypes.SERIAL_NUMBER, self.device.serial) \
            .set_characteristic(CharacteristicsTypes.NAME, self.device.name)

        self.service = accessory.get_service(ServicesTypes.THERMOSTAT) \
            or accessory.add_service(ServicesTypes.THERMOSTAT)
        self.service.set_characteristic(CharacteristicsTypes.NAME, self.device.name)

        display_units = 1 if self.device.temperature_display_units == FAHRENHEIT else 0
        self.service.get_characteristic(CharacteristicsTypes.TEMPERATURE_UNITS).update_value(display_units)

        self.service.get_characteristic(CharacteristicsTypes.TEMPERATURE_CURRENT) \
            .on_get(self.get_current_temperature)
        self.service.get_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET) \
            .on_get(self.get_target_temperature) \
            .on_set(self.request_target_temperature)
        self.service.get_characteristic(CharacteristicsTypes.HEATING_COOLING_CURRENT) \
            .on_get(self.get_current_heating_cooling_state)
        self.service.get_characteristic(CharacteristicsTypes.HEATING_COOLING_TARGET) \
            .on_get(self.get_target_heating_cooling_state) \
            .on_set(self.request_mode_change)
        self.service.get_characteristic(CharacteristicsTypes.TEMPERATURE_COOLING_THRESHOLD) \
            .on_get(self.get_target_temperature_high) \
            .on_set(self.request_target_temperature_high)
        self.service.get_characteristic(CharacteristicsTypes.TEMPERATURE_HEATING_THRESHOLD) \
            .on_get(self.get_target_temperature_low) \
            .on_set(self.request_target_temperature_low)

        fan_name = f"{self.device.name} Fan"
        self.fan_service = accessory.get_service(ServicesTypes.FAN_V2, 'fan') \
            or accessory.add_service(ServicesTypes.FAN_V2, fan_name, 'fan')
        self.fan_service.set_characteristic(CharacteristicsTypes.NAME, fan_name)
        self.fan_service.get_characteristic(CharacteristicsTypes.ACTIVE) \
            .on_get(self.get_fan_active) \
            .on_set(self.request_fan_active)

        occupancy_name = f"{self.device.name} Occupancy"
        self.occupancy_service = accessory.get_service(ServicesTypes.OCCUPANCY_SENSOR, 'occupancy') \
            or accessory.add_service(ServicesTypes.OCCUPANCY_SENSOR, occupancy_name, 'occupancy')
        self.occupancy_service.set_characteristic(CharacteristicsTypes.NAME, occupancy_name)
        self.occupancy_service.get_characteristic(CharacteristicsTypes.OCCUPANCY_DETECTED) \
            .on_get(self.get_occupancy_detected)

    @property
    def serial(self) -> str:
        return self.device.serial

    # Get hooks

    def get_current_temperature(self) -> float:
        return self.state.current_temperature if self.state.current_temperature is not None else DEFAULT_TEMPERATURE

    def get_target_temperature(self) -> float:
        return self.state.target_temperature if self.state.target_temperature is not None else DEFAULT_TEMPERATURE

    def get_target_temperature_high(self) -> float:
        return self.state.target_temperature_high if self.state.target_temperature_high is not None else DEFAULT_TEMPERATURE_HIGH

    def get_target_temperature_low(self) -> float:
        return self.state.target_temperature_low if self.state.target_temperature_low is not None else DEFAULT_TEMPERATURE_LOW

    def get_current_heating_cooling_state(self) -> int:
        return int(self.state.current_heating_cooling_state)

    def get_target_heating_cooling_state(self) -> int:
        return int(to_accessory_mode(self.state.mode))

    def get_fan_active(self) -> int:
        return int(ActivationStateValues.ACTIVE if self.state.fan_active else ActivationStateValues.INACTIVE)

    def get_occupancy_detected(self) -> int:
        return OCCUPANCY_DETECTED if self.state.occupied else OCCUPANCY_NOT_DETECTED

    # Device -> accessory

    def update_current_temperature(self, value: float):
        self.state.current_temperature = value
        self.service.update_characteristic(CharacteristicsTypes.TEMPERATURE_CURRENT, value)
        logger.debug(f"Updated current temperature for {self.serial}: {value}°C")

        self._update_current_heating_cooling_state()

    def update_target_temperature(self, value: float):
        self.state.target_temperature = value
        self.service.update_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET, value)
        logger.debug(f"Updated target temperature for {self.serial}: {value}°C")

    def update_target_temperature_high(self, value: float):
        self.state.target_temperature_high = value
        self.service.update_characteristic(CharacteristicsTypes.TEMPERATURE_COOLING_THRESHOLD, value)
        logger.debug(f"Updated target temperature high for {self.serial}: {value}°C")

    def update_target_temperature_low(self, value: float):
        self.state.target_temperature_low = value
        self.service.update_characteristic(CharacteristicsTypes.TEMPERATURE_HEATING_THRESHOLD, value)
        logger.debug(f"Updated target temperature low for {self.serial}: {value}°C")

    def update_mode(self, mode: str):
        self.state.mode = normalize_device_mode(mode)
        if self.state.mode != mode:
            logger.debug(f"Unrecognized mode {mode!r} for {self.serial}, treating as {self.state.mode}")

        self.service.update_characteristic(CharacteristicsTypes.HEATING_COOLING_TARGET, int(to_accessory_mode(self.state.mode)))
        logger.debug(f"Updated mode for {self.serial}: {self.state.mode}")

        self._update_current_heating_cooling_state()

    def update_fan_state(self, active: bool):
        self.state.fan_active = active
        self.fan_service.update_characteristic(CharacteristicsTypes.ACTIVE, self.get_fan_active())
        logger.debug(f"Updated fan state for {self.serial}: {active}")

    def update_occupancy(self, occupied: bool):
        self.state.occupied = occupied
        self.occupancy_service.update_characteristic(CharacteristicsTypes.OCCUPANCY_DETECTED, self.get_occupancy_detected())
        logger.debug(f"Updated occupancy for {self.serial}: {'home' if occupied else 'away'}")

    # Accessory -> device

    def request_target_temperature(self, value: float):
        self.state.target_temperature = value
        self.publisher.publish_command(self.serial, 'shared', 'target_temperature', value)
        logger.debug(f"Set target temperature for {self.serial}: {value}°C")

    def request_target_temperature_high(self, value: float):
        self.state.target_temperature_high = value
        self.publisher.publish_command(self.serial, 'shared', 'target_temperature_high', value)
        logger.debug(f"Set target temperature high for {self.serial}: {value}°C")

    def request_target_temperature_low(self, value: float):
        self.state.target_temperature_low = value
        self.publisher.publish_command(self.serial, 'shared', 'target_temperature_low', value)
        logger.debug(f"Set target temperature low for {self.serial}: {value}°C")

    def request_mode_change(self, accessory_mode: Any):
        mode = to_device_mode(accessory_mode)
        self.state.mode = mode

        self.publisher.publish_command(self.serial, 'shared', 'target_temperature_type', mode)
        logger.debug(f"Set mode for {self.serial}: {mode}")

        self._update_current_heating_cooling_state()

    def request_fan_active(self, active: Any):
        # Accepts a bool or an Active characteristic value (INACTIVE == 0)
        active = bool(active)
        self.state.fan_active = active

        self.publisher.publish_command(self.serial, 'device', 'fan_timer_active', active)
        logger.debug(f"Set fan active for {self.serial}: {active}")

    def _update_current_heating_cooling_state(self):
        self.state.current_heating_cooling_state = compute_heating_cooling_state(
            self.state.mode,
            self.state.current_temperature,
            self.state.target_temperature,
            self.state.current_heating_cooling_state,
        )
        self.service.update_characteristic(
            CharacteristicsTypes.HEATING_COOLING_CURRENT,
            int(self.state.current_heating_cooling_state),
        )

    def snapshot(self) -> dict:
        """Simplified state for the REST surface."""
        return {
            'serial_number': self.serial,
            'name': self.device.name,
            'cur_temp_c': self.state.current_temperature,
            'target_temp_c': self.state.target_temperature,
            'target_temp_low_c': self.state.target_temperature_low,
            'target_temp_high_c': self.state.target_temperature_high,
            'device_mode': self.state.mode,
            'mode': int(to_accessory_mode(self.state.mode)),
            'cur_heating': int(self.state.current_heating_cooling_state),
            'fan_active': self.state.fan_active,
            'occupied': self.state.occupied,
        }
