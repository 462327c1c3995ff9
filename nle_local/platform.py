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

"""Thermostat platform: wires configuration, accessories, router and MQTT transport."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .config import PlatformConfig
from .registry import AccessoryRegistry
from .router import MessageRouter
from .thermostat import ThermostatAccessory
from .transport import MqttTransport

logger = logging.getLogger('nle-local')


class ThermostatPlatform:
    """Owns one ThermostatAccessory per configured device."""

    def __init__(self, config: PlatformConfig, registry: AccessoryRegistry, transport: Optional[MqttTransport] = None):
        self.config = config
        self.registry = registry
        self.router = MessageRouter(config.topic_prefix)
        self.transport = transport or MqttTransport(config, self.router)
        self.transport_task: Optional[asyncio.Task] = None
        self.publish_failures = 0
        self.transport.add_publish_failure_listener(self._on_publish_failure)

    def publish_command(self, serial: str, scope: str, field: str, value: Any):
        self.transport.publish_command(serial, scope, field, value)

    def _on_publish_failure(self, topic: str, payload: str, error: BaseException):
        self.publish_failures += 1

    def discover_devices(self):
        """Create, restore and remove accessories to match the configured devices."""
        for accessory in self.registry.load_cached_accessories():
            self.registry.configure_accessory(accessory)

        for device in self.config.devices:
            accessory_uuid = self.registry.generate_uuid(device.serial)
            existing = self.registry.get(accessory_uuid)

            if existing:
                logger.info(f"Restoring existing accessory from cache: {existing.display_name}")
                existing.context['device'] = device.to_dict()
                self.registry.update_accessories([existing])
                self._attach(existing)
            else:
                logger.info(f"Adding new accessory: {device.name}")
                accessory = self.registry.create_accessory(device.name, accessory_uuid)
                accessory.context['device'] = device.to_dict()
                self._attach(accessory)
                self.registry.register_accessories([accessory])

        configured_serials = {d.serial for d in self.config.devices}
        to_remove = [a for a in self.registry.all() if a.serial_number not in configured_serials]
        if to_remove:
            logger.info(f"Removing {len(to_remove)} accessories")
            for accessory in to_remove:
                self.router.remove_device(accessory.serial_number)
            self.registry.unregister_accessories(to_remove)

    def _attach(self, accessory):
        thermostat = ThermostatAccessory(self, accessory)
        self.router.add_device(thermostat.serial, thermostat)

    def start(self):
        """Start the MQTT transport on the running event loop."""
        self.transport_task = asyncio.get_running_loop().create_task(self.transport.run())
        self.transport_task.add_done_callback(self._on_transport_done)

    def _on_transport_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"MQTT transport stopped unexpectedly: {error!r}", exc_info=error)
        else:
            logger.warning("MQTT transport exited, no further device updates will be received")

    async def stop(self):
        logger.debug("Shutting down MQTT connection")
        if self.transport_task and not self.transport_task.done():
            self.transport_task.cancel()
            await asyncio.gather(self.transport_task, return_exceptions=True)
        self.registry.close_listeners()

    def status(self) -> Dict[str, Any]:
        return {
            'mqtt_broker': self.config.mqtt_broker,
            'mqtt_connected': self.transport.connected,
            'topic_prefix': self.config.topic_prefix,
            'devices': len(self.router.serials),
            'publish_failures': self.publish_failures,
            'last_update': self.registry.last_update,
        }

    def thermostats(self) -> List[Dict[str, Any]]:
        return [t.snapshot() for t in self.router.thermostats()]
