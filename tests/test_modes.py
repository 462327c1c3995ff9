import pytest

from aiohomekit.model.characteristics import HeatingCoolingTargetValues

from nle_local.modes import normalize_device_mode, to_accessory_mode, to_device_mode


@pytest.mark.parametrize("device_mode, expected", [
    ('off', HeatingCoolingTargetValues.OFF),
    ('heat', HeatingCoolingTargetValues.HEAT),
    ('cool', HeatingCoolingTargetValues.COOL),
    ('range', HeatingCoolingTargetValues.AUTO),
])
def test_device_modes_map_to_accessory_modes(device_mode, expected):
    assert to_accessory_mode(device_mode) is expected


@pytest.mark.parametrize("device_mode", ['eco', 'HEAT', '', None, 1])
def test_unknown_device_modes_map_to_off(device_mode):
    assert to_accessory_mode(device_mode) is HeatingCoolingTargetValues.OFF


def test_accessory_modes_map_back_to_device_modes():
    assert to_device_mode(HeatingCoolingTargetValues.OFF) == 'off'
    assert to_device_mode(HeatingCoolingTargetValues.HEAT) == 'heat'
    assert to_device_mode(HeatingCoolingTargetValues.COOL) == 'cool'
    assert to_device_mode(HeatingCoolingTargetValues.AUTO) == 'range'


def test_accessory_mode_accepts_int():
    assert to_device_mode(3) == 'range'
    assert to_device_mode(1) == 'heat'


@pytest.mark.parametrize("name", ['heat', 'range', 'AUTO', '3'])
def test_strings_are_not_accessory_modes(name):
    assert to_device_mode(name) == 'off'


@pytest.mark.parametrize("accessory_mode", [7, -1, 'boost', None, True, 1.5j])
def test_unknown_accessory_modes_map_to_off(accessory_mode):
    assert to_device_mode(accessory_mode) == 'off'


def test_round_trip_for_every_device_mode():
    for mode in ('off', 'heat', 'cool', 'range'):
        assert to_device_mode(to_accessory_mode(mode)) == mode


def test_normalize_device_mode():
    assert normalize_device_mode('cool') == 'cool'
    assert normalize_device_mode('emergency') == 'off'
