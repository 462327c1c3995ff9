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

"""Translation between thermostat mode strings and HomeKit heating/cooling modes."""

from typing import Any

from aiohomekit.model.characteristics import HeatingCoolingTargetValues

MODE_OFF = 'off'
MODE_HEAT = 'heat'
MODE_COOL = 'cool'
MODE_RANGE = 'range'

DEVICE_MODES = (MODE_OFF, MODE_HEAT, MODE_COOL, MODE_RANGE)

DEVICE_TO_ACCESSORY = {
    MODE_OFF: HeatingCoolingTargetValues.OFF,
    MODE_HEAT: HeatingCoolingTargetValues.HEAT,
    MODE_COOL: HeatingCoolingTargetValues.COOL,
    MODE_RANGE: HeatingCoolingTargetValues.AUTO,
}

ACCESSORY_TO_DEVICE = {accessory: device for device, accessory in DEVICE_TO_ACCESSORY.items()}


def to_accessory_mode(device_mode: Any) -> HeatingCoolingTargetValues:
    """Map a device mode (off/heat/cool/range) to a HomeKit target state.

    Anything unrecognized maps to OFF.
    """
    if isinstance(device_mode, str):
        return DEVICE_TO_ACCESSORY.get(device_mode, HeatingCoolingTargetValues.OFF)
    return HeatingCoolingTargetValues.OFF


def to_device_mode(accessory_mode: Any) -> str:
    """Map a HomeKit target state to a device mode string.

    Accepts the enum member or its integer value (0-3). Strings, including
    device mode names, are rejected. Anything unrecognized maps to 'off'.
    """
    if isinstance(accessory_mode, (bool, str)):
        return MODE_OFF

    try:
        accessory_mode = HeatingCoolingTargetValues(accessory_mode)
    except (ValueError, TypeError):
        return MODE_OFF

    return ACCESSORY_TO_DEVICE.get(accessory_mode, MODE_OFF)


def normalize_device_mode(device_mode: Any) -> str:
    """Return device_mode if it is a known mode, else 'off'."""
    return to_device_mode(to_accessory_mode(device_mode))
