import pytest
from fastapi.testclient import TestClient

from nle_local.platform import ThermostatPlatform
from nle_local.registry import AccessoryRegistry
from nle_local.routes import create_app, register_routes


@pytest.fixture
def platform(platform_config, fake_transport):
    platform = ThermostatPlatform(platform_config, AccessoryRegistry(), transport=fake_transport)
    platform.discover_devices()
    return platform


@pytest.fixture
def client(platform, monkeypatch):
    monkeypatch.delenv('NLE_API_KEYS', raising=False)
    app = create_app()
    register_routes(app, lambda: platform)
    return TestClient(app)


def test_api_info(client):
    response = client.get('/api')
    assert response.status_code == 200
    assert response.json()['endpoints']['thermostats'] == '/thermostats'


def test_status(client):
    data = client.get('/status').json()
    assert data['status'] == 'connected'
    assert data['devices'] == 2
    assert data['topic_prefix'] == 'nolongerevil'


def test_platform_not_ready(monkeypatch):
    monkeypatch.delenv('NLE_API_KEYS', raising=False)
    app = create_app()
    register_routes(app, lambda: None)
    assert TestClient(app).get('/status').status_code == 503


def test_accessories_enhanced(client):
    data = client.get('/accessories').json()
    assert data['enhanced'] is True
    accessory = data['accessories'][0]
    assert accessory['serial_number'] == 'S1'
    service_names = [s['type_name'] for s in accessory['services']]
    assert service_names == ['AccessoryInformation', 'Thermostat', 'Fanv2', 'OccupancySensor']
    thermostat = accessory['services'][1]
    current = next(c for c in thermostat['characteristics'] if c['type_name'] == 'CurrentTemperature')
    assert current['value'] == 20.0
    assert current['temperature_fahrenheit'] == 68.0


def test_accessory_by_serial(client):
    assert client.get('/accessories/S2?enhanced=false').json()['accessory']['display_name'] == 'Bedroom'
    assert client.get('/accessories/NOPE').status_code == 404


def test_read_characteristic_by_name(client, platform):
    platform.router.route('nolongerevil/S1/shared/target_temperature', b'21.5')
    data = client.get('/accessories/S1/characteristics/TargetTemperature').json()
    assert data['value'] == 21.5
    assert data['characteristic'] == 'TargetTemperature'


def test_unknown_characteristic(client):
    assert client.get('/accessories/S1/characteristics/Brightness').status_code == 404


def test_write_characteristic_publishes_command(client, fake_transport):
    response = client.put('/accessories/S1/characteristics/TargetHeatingCoolingState', params={'value': '3'})
    assert response.status_code == 200
    assert response.json()['value'] == 3
    assert fake_transport.commands == [('S1', 'shared', 'target_temperature_type', 'range')]

    thermostats = {t['serial_number']: t for t in client.get('/thermostats').json()['thermostats']}
    assert thermostats['S1']['device_mode'] == 'range'
    assert thermostats['S1']['mode'] == 3


def test_write_read_only_characteristic(client, fake_transport):
    response = client.put('/accessories/S1/characteristics/CurrentTemperature', params={'value': '30'})
    assert response.status_code == 400
    assert fake_transport.commands == []


def test_write_invalid_value(client, fake_transport):
    response = client.put('/accessories/S1/characteristics/TargetTemperature', params={'value': 'warm'})
    assert response.status_code == 400
    assert fake_transport.commands == []


def test_api_key_required(platform, monkeypatch):
    monkeypatch.setenv('NLE_API_KEYS', 'secret other')
    app = create_app()
    register_routes(app, lambda: platform)
    client = TestClient(app)

    assert client.get('/status').status_code == 401
    assert client.get('/status', headers={'Authorization': 'Bearer wrong'}).status_code == 401
    assert client.get('/status', headers={'Authorization': 'Bearer other'}).status_code == 200


@pytest.mark.parametrize("value", ['nan', 'inf', '1000', '5'])
def test_write_out_of_range_temperature(client, platform, fake_transport, value):
    response = client.put('/accessories/S1/characteristics/TargetTemperature', params={'value': value})
    assert response.status_code == 400
    assert fake_transport.commands == []
    assert platform.router.get('S1').state.target_temperature is None


def test_write_invalid_mode(client, platform, fake_transport):
    response = client.put('/accessories/S1/characteristics/TargetHeatingCoolingState', params={'value': '9'})
    assert response.status_code == 400
    assert fake_transport.commands == []
    assert platform.router.get('S1').state.mode == 'off'
    assert client.get('/accessories/S1/characteristics/TargetHeatingCoolingState').json()['value'] == 0
