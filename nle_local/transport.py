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

"""MQTT transport: subscriptions, inbound message pump and fire-and-forget commands."""

import asyncio
import logging
import secrets
import ssl
from typing import Any, Callable, List, Optional
from urllib.parse import urlsplit

import aiomqtt

from .config import PlatformConfig
from .payload import encode_command
from .router import MessageRouter

logger = logging.getLogger(__name__)

QOS_AT_LEAST_ONCE = 1
RECONNECT_DELAY = 5.0

PublishFailureListener = Callable[[str, str, BaseException], None]


def parse_broker_url(url: str):
    """Split a broker URL (mqtt://host:port, mqtts://host, host:port) into (host, port, tls)."""
    if '://' not in url:
        url = f"mqtt://{url}"
    parts = urlsplit(url)
    tls = parts.scheme in ('mqtts', 'ssl', 'tls')
    port = parts.port or (8883 if tls else 1883)
    return parts.hostname or 'localhost', port, tls


class MqttTransport:
    """Single shared MQTT connection for all configured thermostats."""

    def __init__(self, config: PlatformConfig, router: MessageRouter):
        self.config = config
        self.router = router
        self.client_id = config.mqtt_client_id or f"nle-local-{secrets.token_hex(4)}"
        self.connected = False
        self.reconnect_delay = RECONNECT_DELAY

        self._client: Optional[aiomqtt.Client] = None
        self._publish_failure_listeners: List[PublishFailureListener] = []
        self._pending: set = set()

    def add_publish_failure_listener(self, listener: PublishFailureListener):
        self._publish_failure_listeners.append(listener)

    def _create_client(self) -> aiomqtt.Client:
        host, port, tls = parse_broker_url(self.config.mqtt_broker)
        return aiomqtt.Client(
            hostname=host,
            port=port,
            username=self.config.mqtt_username or None,
            password=self.config.mqtt_password or None,
            identifier=self.client_id,
            tls_context=ssl.create_default_context() if tls else None,
        )

    async def run(self):
        """Connect, subscribe and pump messages into the router until cancelled.

        Device state is left untouched across disconnects; every new
        connection subscribes again.
        """
        logger.info(f"Connecting to MQTT broker: {self.config.mqtt_broker}")
        while True:
            try:
                async with self._create_client() as client:
                    self._client = client
                    self.connected = True
                    logger.info("Connected to MQTT broker")

                    await self.subscribe_all(client)

                    async for message in client.messages:
                        self.router.route(str(message.topic), message.payload)
            except aiomqtt.MqttError as e:
                logger.error(f"MQTT connection error: {e}")
            finally:
                self.connected = False
                self._client = None

            logger.debug(f"Reconnecting to MQTT broker in {self.reconnect_delay:.0f}s")
            await asyncio.sleep(self.reconnect_delay)

    async def subscribe_all(self, client: aiomqtt.Client):
        for serial in self.router.serials:
            for topic in self.router.topics_for(serial):
                try:
                    await client.subscribe(topic, qos=QOS_AT_LEAST_ONCE)
                    logger.debug(f"Subscribed to topic: {topic}")
                except aiomqtt.MqttError as e:
                    logger.error(f"Failed to subscribe to topic {topic}: {e}")

    def publish_command(self, serial: str, scope: str, field: str, value: Any):
        """Submit a command and return without waiting for the broker.

        Failures are logged and reported to publish-failure listeners; the
        caller's optimistic state is never rolled back.
        """
        if not self._client or not self.connected:
            logger.error("MQTT client is not connected")
            return

        topic = self.router.command_topic(serial, scope, field)
        payload = encode_command(value)
        logger.debug(f"Publishing MQTT command: {topic} = {payload}")

        task = asyncio.get_running_loop().create_task(
            self._client.publish(topic, payload=payload, qos=QOS_AT_LEAST_ONCE)
        )
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_publish_done(t, topic, payload))

    def _on_publish_done(self, task: asyncio.Task, topic: str, payload: str):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return

        logger.error(f"Failed to publish to {topic}: {error}")
        for listener in self._publish_failure_listeners:
            try:
                listener(topic, payload, error)
            except Exception as e:
                logger.error(f"Publish failure listener raised: {e}")
