import asyncio
import json

import pytest

from aiohomekit.model.characteristics import CharacteristicsTypes
from aiohomekit.model.services import ServicesTypes

from nle_local.registry import AccessoryRegistry, CharacteristicNotWritable, coerce_value


def add_accessory(registry, serial, name=None):
    name = name or f"Thermostat {serial}"
    accessory = registry.create_accessory(name, registry.generate_uuid(serial))
    accessory.context['device'] = {'name': name, 'serial': serial}
    service = accessory.add_service(ServicesTypes.THERMOSTAT, name)
    service.get_characteristic(CharacteristicsTypes.TEMPERATURE_CURRENT)
    service.get_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET)
    registry.register_accessories([accessory])
    return accessory


def test_uuid_is_stable_per_serial():
    assert AccessoryRegistry.generate_uuid('S1') == AccessoryRegistry.generate_uuid('S1')
    assert AccessoryRegistry.generate_uuid('S1') != AccessoryRegistry.generate_uuid('S2')


def test_aids_start_at_two_and_fill_gaps():
    registry = AccessoryRegistry()
    a = add_accessory(registry, 'S1')
    b = add_accessory(registry, 'S2')
    assert (a.aid, b.aid) == (2, 3)

    registry.unregister_accessories([a])
    c = add_accessory(registry, 'S3')
    assert c.aid == 2


def test_find_by_serial():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    assert registry.find_by_serial('S1') is accessory
    assert registry.find_by_serial('missing') is None


def test_restore_from_db(tmp_path):
    db_file = str(tmp_path / "state.db")
    registry = AccessoryRegistry(db_file)
    add_accessory(registry, 'S1', 'Hallway')
    add_accessory(registry, 'S2', 'Bedroom')

    restored = AccessoryRegistry(db_file).load_cached_accessories()
    assert [(a.display_name, a.aid, a.serial_number) for a in restored] == [
        ('Hallway', 2, 'S1'),
        ('Bedroom', 3, 'S2'),
    ]


def test_unregister_removes_from_db(tmp_path):
    db_file = str(tmp_path / "state.db")
    registry = AccessoryRegistry(db_file)
    accessory = add_accessory(registry, 'S1')
    registry.unregister_accessories([accessory])

    assert AccessoryRegistry(db_file).load_cached_accessories() == []


def test_update_accessories_persists_context(tmp_path):
    db_file = str(tmp_path / "state.db")
    registry = AccessoryRegistry(db_file)
    accessory = add_accessory(registry, 'S1', 'Old')
    accessory.context['device']['name'] = 'New'
    registry.update_accessories([accessory])

    restored = AccessoryRegistry(db_file).load_cached_accessories()
    assert restored[0].context['device']['name'] == 'New'


def test_set_hook_runs_before_value_is_recorded():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    seen = []
    char = accessory.find_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET)
    char.on_set(lambda value: seen.append((value, char.value)))

    assert registry.set_characteristic_value('S1', CharacteristicsTypes.TEMPERATURE_TARGET, '21.5') == 21.5
    assert seen == [(21.5, None)]


def test_get_hook_is_used():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    accessory.find_characteristic(CharacteristicsTypes.TEMPERATURE_CURRENT).on_get(lambda: 19.5)
    assert registry.get_characteristic_value('S1', CharacteristicsTypes.TEMPERATURE_CURRENT) == 19.5


def test_read_only_characteristic_rejects_set():
    registry = AccessoryRegistry()
    add_accessory(registry, 'S1')
    with pytest.raises(CharacteristicNotWritable):
        registry.set_characteristic_value('S1', CharacteristicsTypes.TEMPERATURE_CURRENT, 20)


def test_invalid_value_raises_value_error():
    registry = AccessoryRegistry()
    add_accessory(registry, 'S1')
    with pytest.raises(ValueError):
        registry.set_characteristic_value('S1', CharacteristicsTypes.TEMPERATURE_TARGET, 'warm')


@pytest.mark.parametrize("value", ['nan', 'inf', '-inf', float('nan'), '9.5', '38.5', 1000])
def test_rejected_target_temperature_never_reaches_set_hook(value):
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    seen = []
    char = accessory.find_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET)
    char.on_set(seen.append)

    with pytest.raises(ValueError):
        char.set_value(value)
    assert seen == []
    assert char.value is None


def test_limits_are_inclusive():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    char = accessory.find_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET)
    char.set_value('10')
    char.set_value('38')
    assert char.value == 38.0


def test_mode_outside_valid_values_is_rejected():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    service = accessory.get_service(ServicesTypes.THERMOSTAT)
    char = service.get_characteristic(CharacteristicsTypes.HEATING_COOLING_TARGET)
    seen = []
    char.on_set(seen.append)

    for value in ('9', '-1', '1.5', 'inf'):
        with pytest.raises(ValueError):
            char.set_value(value)
    assert seen == []

    char.set_value('3')
    assert seen == [3]


def test_threshold_limits():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    service = accessory.get_service(ServicesTypes.THERMOSTAT)
    heating = service.get_characteristic(CharacteristicsTypes.TEMPERATURE_HEATING_THRESHOLD)
    cooling = service.get_characteristic(CharacteristicsTypes.TEMPERATURE_COOLING_THRESHOLD)

    heating.set_value('0')
    with pytest.raises(ValueError):
        heating.set_value('26')
    cooling.set_value('35')
    with pytest.raises(ValueError):
        cooling.set_value('9')


def test_device_updates_are_not_limited():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    char = accessory.find_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET)
    char.update_value(5.0)
    assert char.value == 5.0


def test_limits_are_exposed_in_dict():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1')
    data = accessory.find_characteristic(CharacteristicsTypes.TEMPERATURE_TARGET).to_dict()
    assert (data['minValue'], data['maxValue']) == (10.0, 38.0)


def test_unknown_serial_or_characteristic():
    registry = AccessoryRegistry()
    add_accessory(registry, 'S1')
    with pytest.raises(KeyError):
        registry.get_characteristic_value('S9', CharacteristicsTypes.TEMPERATURE_CURRENT)
    with pytest.raises(KeyError):
        registry.get_characteristic_value('S1', CharacteristicsTypes.ACTIVE)


def test_coerce_value():
    assert coerce_value('float', '20') == 20.0
    assert coerce_value('uint8', '3') == 3
    assert coerce_value('bool', 'on') is True
    assert coerce_value('string', 5) == '5'
    with pytest.raises(ValueError):
        coerce_value('bool', 'perhaps')
    with pytest.raises(ValueError):
        coerce_value('float', 'nan')
    with pytest.raises(ValueError):
        coerce_value('uint8', 'inf')


def test_changes_are_broadcast_once():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1', 'Hallway')
    queue = asyncio.Queue()
    registry.event_listeners.append(queue)

    service = accessory.get_service(ServicesTypes.THERMOSTAT)
    service.update_characteristic(CharacteristicsTypes.TEMPERATURE_CURRENT, 21.0)
    service.update_characteristic(CharacteristicsTypes.TEMPERATURE_CURRENT, 21.0)

    assert queue.qsize() == 1
    message = queue.get_nowait()
    assert message.startswith("data: ") and message.endswith("\n\n")
    event = json.loads(message[len("data: "):])
    assert event['type'] == 'characteristic'
    assert event['aid'] == 2
    assert event['serial_number'] == 'S1'
    assert event['characteristic'] == 'CurrentTemperature'
    assert event['value'] == 21.0
    assert event['previous_value'] is None
    assert registry.last_update is not None


def test_full_queue_listener_is_dropped():
    registry = AccessoryRegistry()
    queue = asyncio.Queue(maxsize=1)
    registry.event_listeners.append(queue)
    registry.broadcast_event({'type': 'test'})
    registry.broadcast_event({'type': 'test'})
    assert registry.event_listeners == []


def test_close_listeners_sends_end_of_stream():
    registry = AccessoryRegistry()
    queue = asyncio.Queue()
    registry.event_listeners.append(queue)
    registry.close_listeners()
    assert queue.get_nowait() is None
    assert registry.event_listeners == []


def test_to_dict_shape():
    registry = AccessoryRegistry()
    accessory = add_accessory(registry, 'S1', 'Hallway')
    data = accessory.to_dict()
    assert data['aid'] == 2
    assert data['serial_number'] == 'S1'
    char = data['services'][0]['characteristics'][1]
    assert char['type'] == CharacteristicsTypes.TEMPERATURE_CURRENT
    assert char['unit'] == 'celsius'
    assert 'pw' not in char['perms']
