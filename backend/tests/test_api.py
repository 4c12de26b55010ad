import json

import conftest
from conftest import send_message
from tapsync import create_app


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert 'message' in res.get_json()


def test_health_counts_connections(client, sio_client):
    res = client.get('/health')
    assert res.status_code == 200
    data = res.get_json()
    assert data['status'] == 'ok'
    assert data['connections'] == 1


def test_state_and_taps_reflect_socket_traffic(client, sio_client):
    send_message(sio_client, 'tap', {'name': 'x', 'delta': 4})
    send_message(sio_client, 'chat', {'text': 'hello'})

    state = client.get('/api/state').get_json()
    assert state['taps']['x']['total'] == 4
    assert state['chat'][0]['text'] == 'hello'
    assert client.get('/api/taps').get_json() == state['taps']


def _app_for(data_file):
    return create_app(type('FileTestConfig', (conftest.TestConfig,), {'DATA_FILE': str(data_file)}))


def test_startup_loads_persisted_state(data_file):
    data_file.write_text(json.dumps({
        'taps': {'x': {'name': 'x', 'total': 33, 'lastTs': 1}},
        'users': {'stale': {'id': 'stale', 'nick': 'Old', 'score': 0, 'ts': 1}},
        'chat': [{'nick': 'Old', 'text': 'remember me', 'ts': 1}],
    }))
    app = _app_for(data_file)
    state = app.test_client().get('/api/state').get_json()
    assert state['taps']['x']['total'] == 33
    assert state['chat'][0]['text'] == 'remember me'
    assert state['users'] == {}


def test_startup_with_corrupt_file_starts_empty(data_file):
    data_file.write_text('this is not json')
    app = _app_for(data_file)
    state = app.test_client().get('/api/state').get_json()
    assert state == {'taps': {}, 'users': {}, 'chat': []}


def test_state_flush_command_writes_file(flask_app, sio_client, data_file):
    send_message(sio_client, 'tap', {'name': 'cli', 'total': 7})
    result = flask_app.test_cli_runner().invoke(args=['state-flush'])
    assert result.exit_code == 0
    assert json.loads(data_file.read_text())['taps']['cli']['total'] == 7


def test_state_reset_command_clears_everything(flask_app, sio_client, data_file, router):
    send_message(sio_client, 'tap', {'name': 'gone'})
    result = flask_app.test_cli_runner().invoke(args=['state-reset'])
    assert result.exit_code == 0
    assert json.loads(data_file.read_text()) == {'taps': {}, 'users': {}, 'chat': []}
    assert router.snapshot()['taps'] == {}
    assert not router.persistence.pending
