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
"""NoLongerEvil Local - HomeKit-style accessories for NoLongerEvil thermostats over MQTT."""

from .__version__ import __version__

__author__ = "NoLongerEvil Local Contributors"
__description__ = "HomeKit-style accessories for NoLongerEvil thermostats over MQTT"

from .config import PlatformConfig, DeviceConfig, ConfigError, load_config
from .database import DB_SCHEMA, ensure_schema_and_migrate
from .modes import to_accessory_mode, to_device_mode
from .payload import Payload, PayloadKind, decode_payload
from .registry import AccessoryRegistry, Accessory
from .thermostat import ThermostatAccessory, ThermostatState
from .router import MessageRouter
from .transport import MqttTransport
from .platform import ThermostatPlatform
from . import homekit_uuids

__all__ = [
    "__version__",
    "PlatformConfig",
    "DeviceConfig",
    "ConfigError",
    "load_config",
    "DB_SCHEMA",
    "ensure_schema_and_migrate",
    "to_accessory_mode",
    "to_device_mode",
    "Payload",
    "PayloadKind",
    "decode_payload",
    "AccessoryRegistry",
    "Accessory",
    "ThermostatAccessory",
    "ThermostatState",
    "MessageRouter",
    "MqttTransport",
    "ThermostatPlatform",
    "homekit_uuids",
]
