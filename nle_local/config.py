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

"""Platform and device configuration."""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TOPIC_PREFIX = 'nolongerevil'
DEFAULT_PLATFORM_NAME = 'NoLongerEvil Thermostat'

CELSIUS = 'CELSIUS'
FAHRENHEIT = 'FAHRENHEIT'


class ConfigError(ValueError):
    """Raised when the configuration cannot be used to start the platform."""


@dataclass(frozen=True)
class DeviceConfig:
    """Identity of one configured thermostat. Never mutated after load."""
    name: str
    serial: str
    temperature_display_units: str = CELSIUS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeviceConfig':
        units = str(data.get('temperatureDisplayUnits') or CELSIUS).upper()
        return cls(
            name=str(data.get('name') or data.get('serial') or ''),
            serial=str(data.get('serial') or ''),
            temperature_display_units=FAHRENHEIT if units == FAHRENHEIT else CELSIUS,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'serial': self.serial,
            'temperatureDisplayUnits': self.temperature_display_units,
        }


@dataclass
class PlatformConfig:
    name: str = DEFAULT_PLATFORM_NAME
    mqtt_broker: Optional[str] = None
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_client_id: Optional[str] = None
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    devices: List[DeviceConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlatformConfig':
        return cls(
            name=data.get('name') or DEFAULT_PLATFORM_NAME,
            mqtt_broker=data.get('mqttBroker'),
            mqtt_username=data.get('mqttUsername'),
            mqtt_password=data.get('mqttPassword'),
            mqtt_client_id=data.get('mqttClientId'),
            topic_prefix=data.get('topicPrefix') or DEFAULT_TOPIC_PREFIX,
            devices=[DeviceConfig.from_dict(d) for d in data.get('devices') or []],
        )

    def validate(self):
        """Refuse configurations the platform cannot run with."""
        if not self.mqtt_broker:
            raise ConfigError("MQTT broker URL is required in configuration")
        if not self.devices:
            raise ConfigError("At least one thermostat device must be configured")

        serials = [d.serial for d in self.devices]
        duplicates = sorted({s for s in serials if serials.count(s) > 1})
        if duplicates:
            logger.warning(f"Duplicate device serials in configuration, later entries win: {', '.join(duplicates)}")

    def as_log_dict(self) -> Dict[str, Any]:
        """Config as a dict with the password masked."""
        data = asdict(self)
        if data.get('mqtt_password'):
            data['mqtt_password'] = '***'
        return data


def load_config(path: str) -> PlatformConfig:
    """Load a PlatformConfig from a JSON file."""
    config_path = Path(os.path.expanduser(path))
    try:
        data = json.loads(config_path.read_text(encoding='utf-8'))
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {config_path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Configuration file {config_path} is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a JSON object")

    config = PlatformConfig.from_dict(data)
    logger.debug(f"Loaded configuration from {config_path}: {config.as_log_dict()}")
    return config
