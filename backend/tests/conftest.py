import json
import os
import sys
import time
import pytest

# Ensure the backend root (containing the `tapsync` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tapsync import create_app, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SAVE_DELAY_SEC = 0.2
    CHAT_CAPACITY = 500
    LOG_LEVEL = 'DEBUG'
    CORS_ORIGINS = '*'


@pytest.fixture()
def data_file(tmp_path):
    return tmp_path / 'data.json'


@pytest.fixture()
def flask_app(data_file):
    config = type('FileTestConfig', (TestConfig,), {'DATA_FILE': str(data_file)})
    application = create_app(config)
    yield application
    application.extensions['tapsync'].persistence.cancel()


@pytest.fixture()
def router(flask_app):
    return flask_app.extensions['tapsync']


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client())
    yield test_client
    try:
        test_client.disconnect()
    except Exception:
        pass


@pytest.fixture()
def connect(flask_app):
    """Factory for extra Socket.IO clients, disconnected at teardown."""
    opened = []

    def _connect():
        c = socketio.test_client(flask_app)
        opened.append(c)
        return c

    yield _connect
    for c in opened:
        if c.is_connected():
            c.disconnect()


def received_messages(sio_client, msg_type=None):
    """Decode the JSON records a test client has received so far."""
    out = []
    for pkt in sio_client.get_received():
        if pkt['name'] != 'message':
            continue
        msg = json.loads(pkt['args'])
        if msg_type is None or msg['type'] == msg_type:
            out.append(msg)
    return out


def send_message(sio_client, msg_type, payload=None, **extra):
    record = {'type': msg_type, **extra}
    if payload is not None:
        record['payload'] = payload
    sio_client.send(json.dumps(record))


def wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()
