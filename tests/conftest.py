import pytest

from nle_local.config import DeviceConfig, PlatformConfig


class FakeTransport:
    """Stands in for MqttTransport; records commands instead of publishing."""

    def __init__(self):
        self.connected = True
        self.commands = []
        self.failure_listeners = []
        self.started = False

    def add_publish_failure_listener(self, listener):
        self.failure_listeners.append(listener)

    def publish_command(self, serial, scope, field, value):
        self.commands.append((serial, scope, field, value))

    async def run(self):
        self.started = True


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def platform_config():
    return PlatformConfig(
        mqtt_broker='mqtt://broker.local',
        devices=[
            DeviceConfig(name='Hallway', serial='S1'),
            DeviceConfig(name='Bedroom', serial='S2'),
        ],
    )
