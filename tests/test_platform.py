import asyncio

import aiomqtt

from nle_local.config import DeviceConfig
from nle_local.platform import ThermostatPlatform
from nle_local.registry import AccessoryRegistry


def test_discover_creates_accessories(platform_config, fake_transport):
    registry = AccessoryRegistry()
    platform = ThermostatPlatform(platform_config, registry, transport=fake_transport)
    platform.discover_devices()

    assert sorted(platform.router.serials) == ['S1', 'S2']
    assert [a.display_name for a in registry.all()] == ['Hallway', 'Bedroom']
    assert [a.aid for a in registry.all()] == [2, 3]


def test_restart_restores_cached_accessories(tmp_path, platform_config, fake_transport):
    db_file = str(tmp_path / "state.db")
    first = ThermostatPlatform(platform_config, AccessoryRegistry(db_file), transport=fake_transport)
    first.discover_devices()
    aids = {a.serial_number: a.aid for a in first.registry.all()}

    platform_config.devices.reverse()
    second = ThermostatPlatform(platform_config, AccessoryRegistry(db_file), transport=fake_transport)
    second.discover_devices()

    assert {a.serial_number: a.aid for a in second.registry.all()} == aids
    assert sorted(second.router.serials) == ['S1', 'S2']


def test_renamed_device_updates_cached_context(tmp_path, platform_config, fake_transport):
    db_file = str(tmp_path / "state.db")
    ThermostatPlatform(platform_config, AccessoryRegistry(db_file), transport=fake_transport).discover_devices()

    platform_config.devices[0] = DeviceConfig(name='Landing', serial='S1')
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(db_file), transport=fake_transport)
    platform.discover_devices()

    assert platform.router.get('S1').device.name == 'Landing'
    restored = AccessoryRegistry(db_file).load_cached_accessories()
    assert {a.context['device']['name'] for a in restored} == {'Landing', 'Bedroom'}


def test_removed_device_is_unregistered(tmp_path, platform_config, fake_transport):
    db_file = str(tmp_path / "state.db")
    ThermostatPlatform(platform_config, AccessoryRegistry(db_file), transport=fake_transport).discover_devices()

    platform_config.devices = platform_config.devices[:1]
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(db_file), transport=fake_transport)
    platform.discover_devices()

    assert platform.router.serials == ['S1']
    assert platform.registry.find_by_serial('S2') is None
    assert [a.serial_number for a in AccessoryRegistry(db_file).load_cached_accessories()] == ['S1']


def test_user_action_reaches_transport(platform_config, fake_transport):
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(), transport=fake_transport)
    platform.discover_devices()

    platform.router.get('S2').request_target_temperature(22.5)
    assert fake_transport.commands == [('S2', 'shared', 'target_temperature', 22.5)]


def test_publish_failures_are_counted(platform_config, fake_transport):
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(), transport=fake_transport)
    for listener in fake_transport.failure_listeners:
        listener('topic', 'payload', RuntimeError('boom'))
    assert platform.status()['publish_failures'] == 1


def test_start_and_stop(platform_config, fake_transport):
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(), transport=fake_transport)
    queue = asyncio.Queue()
    platform.registry.event_listeners.append(queue)

    async def run():
        platform.start()
        await asyncio.sleep(0)
        await platform.stop()

    asyncio.run(run())
    assert fake_transport.started is True
    assert queue.get_nowait() is None


def test_status_and_thermostats(platform_config, fake_transport):
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(), transport=fake_transport)
    platform.discover_devices()
    platform.router.route('nolongerevil/S1/device/current_temperature', b'20.5')

    status = platform.status()
    assert status['devices'] == 2
    assert status['mqtt_connected'] is True
    assert status['last_update'] is not None

    by_serial = {t['serial_number']: t for t in platform.thermostats()}
    assert by_serial['S1']['cur_temp_c'] == 20.5


def test_failed_publish_keeps_requested_state(platform_config):
    platform = ThermostatPlatform(platform_config, AccessoryRegistry())
    platform.discover_devices()
    transport = platform.transport

    class BrokenClient:
        async def publish(self, topic, payload=None, qos=0):
            raise aiomqtt.MqttError("not authorized")

    transport._client = BrokenClient()
    transport.connected = True
    thermostat = platform.router.get('S1')

    async def run():
        thermostat.request_target_temperature(22.5)
        thermostat.request_mode_change(1)
        await asyncio.gather(*list(transport._pending), return_exceptions=True)
        await asyncio.sleep(0)

    asyncio.run(run())

    assert platform.publish_failures == 2
    assert thermostat.state.target_temperature == 22.5
    assert thermostat.state.mode == 'heat'
    assert thermostat.get_target_temperature() == 22.5


def test_transport_crash_is_logged(platform_config, fake_transport, caplog):
    async def crash():
        raise RuntimeError("socket closed by peer")

    fake_transport.run = crash
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(), transport=fake_transport)

    async def run():
        platform.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await platform.stop()

    asyncio.run(run())
    assert "MQTT transport stopped unexpectedly" in caplog.text
    assert "socket closed by peer" in caplog.text


def test_cancelled_transport_is_not_reported(platform_config, fake_transport, caplog):
    async def idle():
        await asyncio.Event().wait()

    fake_transport.run = idle
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(), transport=fake_transport)

    async def run():
        platform.start()
        await asyncio.sleep(0)
        await platform.stop()

    asyncio.run(run())
    assert "MQTT transport" not in caplog.text
