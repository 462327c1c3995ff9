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
"""
HomeKit UUID mappings for the services and characteristics a thermostat
accessory exposes.

These mappings convert HomeKit UUIDs to human-readable names for better API
usability, and back again so REST clients can address characteristics by name.
"""

from typing import Any, Dict, List, Optional

from aiohomekit.model.characteristics import CharacteristicsTypes
from aiohomekit.model.services import ServicesTypes

HOMEKIT_SERVICES = {
    ServicesTypes.ACCESSORY_INFORMATION: "AccessoryInformation",
    ServicesTypes.THERMOSTAT: "Thermostat",
    ServicesTypes.FAN_V2: "Fanv2",
    ServicesTypes.OCCUPANCY_SENSOR: "OccupancySensor",
}

HOMEKIT_CHARACTERISTICS = {
    # Accessory information
    CharacteristicsTypes.IDENTIFY: "Identify",
    CharacteristicsTypes.MANUFACTURER: "Manufacturer",
    CharacteristicsTypes.MODEL: "Model",
    CharacteristicsTypes.NAME: "Name",
    CharacteristicsTypes.SERIAL_NUMBER: "SerialNumber",
    CharacteristicsTypes.FIRMWARE_REVISION: "FirmwareRevision",

    # Thermostat
    CharacteristicsTypes.TEMPERATURE_CURRENT: "CurrentTemperature",
    CharacteristicsTypes.TEMPERATURE_TARGET: "TargetTemperature",
    CharacteristicsTypes.HEATING_COOLING_CURRENT: "CurrentHeatingCoolingState",
    CharacteristicsTypes.HEATING_COOLING_TARGET: "TargetHeatingCoolingState",
    CharacteristicsTypes.TEMPERATURE_HEATING_THRESHOLD: "HeatingThresholdTemperature",
    CharacteristicsTypes.TEMPERATURE_COOLING_THRESHOLD: "CoolingThresholdTemperature",
    CharacteristicsTypes.TEMPERATURE_UNITS: "TemperatureDisplayUnits",

    # Fan and occupancy
    CharacteristicsTypes.ACTIVE: "Active",
    CharacteristicsTypes.OCCUPANCY_DETECTED: "OccupancyDetected",
}

# Human-readable value mappings
HOMEKIT_VALUES = {
    "CurrentHeatingCoolingState": {
        0: "Off",
        1: "Heat",
        2: "Cool",
    },
    "TargetHeatingCoolingState": {
        0: "Off",
        1: "Heat",
        2: "Cool",
        3: "Auto",
    },
    "TemperatureDisplayUnits": {
        0: "Celsius",
        1: "Fahrenheit",
    },
    "Active": {
        0: "Inactive",
        1: "Active",
    },
    "OccupancyDetected": {
        0: "NotDetected",
        1: "Detected",
    },
}

_CHARACTERISTICS_BY_NAME = {name.lower(): uuid for uuid, name in HOMEKIT_CHARACTERISTICS.items()}


def get_service_name(uuid: str) -> str:
    """Convert HomeKit service UUID to human-readable name."""
    return HOMEKIT_SERVICES.get(uuid.upper(), uuid)


def get_characteristic_name(uuid: str) -> str:
    """Convert HomeKit characteristic UUID to human-readable name."""
    return HOMEKIT_CHARACTERISTICS.get(uuid.upper(), uuid)


def get_characteristic_value_name(characteristic_name: str, value) -> str:
    """Convert HomeKit characteristic value to human-readable name."""
    if characteristic_name in HOMEKIT_VALUES and value in HOMEKIT_VALUES[characteristic_name]:
        return HOMEKIT_VALUES[characteristic_name][value]
    return str(value)


def resolve_characteristic(name_or_uuid: str) -> Optional[str]:
    """Return the characteristic UUID for a readable name or a UUID, or None."""
    if name_or_uuid.upper() in HOMEKIT_CHARACTERISTICS:
        return name_or_uuid.upper()
    return _CHARACTERISTICS_BY_NAME.get(name_or_uuid.lower())


def enhance_accessory_data(accessories: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Enhance accessory dicts with human-readable service, characteristic and value names.

    Args:
        accessories: Accessory dicts as produced by Accessory.to_dict()

    Returns:
        Enhanced accessories with readable names and values
    """
    enhanced = []

    for accessory in accessories:
        enhanced_accessory = {
            "aid": accessory.get("aid"),
            "uuid": accessory.get("uuid"),
            "serial_number": accessory.get("serial_number"),
            "display_name": accessory.get("display_name"),
            "services": []
        }

        for service in accessory.get("services", []):
            service_uuid = service.get("type", "")
            enhanced_service = {
                "type": service_uuid,
                "type_name": get_service_name(service_uuid),
                "iid": service.get("iid"),
                "characteristics": []
            }

            for char in service.get("characteristics", []):
                char_uuid = char.get("type", "")
                char_name = get_characteristic_name(char_uuid)

                enhanced_char = {
                    "type": char_uuid,
                    "type_name": char_name,
                    "iid": char.get("iid"),
                    "value": char.get("value"),
                    "perms": char.get("perms", []),
                    "format": char.get("format"),
                }
                if "value" in char:
                    enhanced_char["value_name"] = get_characteristic_value_name(char_name, char["value"])

                if char_name in ("CurrentTemperature", "TargetTemperature") and isinstance(char.get("value"), (int, float)):
                    enhanced_char["temperature_fahrenheit"] = round((char["value"] * 9/5) + 32, 1)

                enhanced_service["characteristics"].append(enhanced_char)

            enhanced_accessory["services"].append(enhanced_service)

        enhanced.append(enhanced_accessory)

    return enhanced
