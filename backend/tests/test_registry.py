import json
import re

import pytest

from tapsync.registry import ConnectionRegistry


class RecordingSender:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def __call__(self, raw, to):
        if to in self.fail_for:
            raise ConnectionError(f'{to} went away')
        self.sent.append((to, raw))


@pytest.fixture()
def sender():
    return RecordingSender()


@pytest.fixture()
def registry(sender):
    return ConnectionRegistry(sender)


def test_register_assigns_unique_ids_and_default_nicknames(registry):
    ids = {registry.register() for _ in range(200)}
    assert len(ids) == 200
    for cid in ids:
        assert re.fullmatch(r'User[1-9]\d\d', registry.nickname(cid))


def test_register_uses_given_socket_id(registry):
    assert registry.register('sid-1') == 'sid-1'
    assert 'sid-1' in registry


def test_set_nickname_ignores_unknown_ids(registry):
    cid = registry.register()
    registry.set_nickname(cid, 'Ann')
    registry.set_nickname('ghost', 'Bob')
    assert registry.nickname(cid) == 'Ann'
    assert registry.nickname('ghost') is None


def test_unregister_is_idempotent(registry):
    cid = registry.register()
    registry.unregister(cid)
    registry.unregister(cid)
    assert len(registry) == 0


def test_broadcast_reaches_everyone_but_excluded(registry, sender):
    a, b, c = registry.register('a'), registry.register('b'), registry.register('c')
    assert registry.broadcast({'type': 'chat', 'payload': {}}, exclude=b) == 2
    assert sorted(to for to, _ in sender.sent) == [a, c]
    # serialized once: every recipient gets the same text
    assert len({raw for _, raw in sender.sent}) == 1
    assert json.loads(sender.sent[0][1]) == {'type': 'chat', 'payload': {}}


def test_broadcast_skips_failing_connection():
    sender = RecordingSender(fail_for={'b'})
    registry = ConnectionRegistry(sender)
    for cid in ('a', 'b', 'c'):
        registry.register(cid)
    assert registry.broadcast({'type': 'presence', 'payload': {}}) == 2
    assert sorted(to for to, _ in sender.sent) == ['a', 'c']


def test_broadcast_excludes_unregistered(registry, sender):
    registry.register('a')
    registry.register('b')
    registry.unregister('a')
    registry.broadcast({'type': 'x'})
    assert [to for to, _ in sender.sent] == ['b']


def test_send_to_unknown_or_failing_connection_is_silent():
    sender = RecordingSender(fail_for={'bad'})
    registry = ConnectionRegistry(sender)
    registry.register('bad')
    assert registry.send_to('bad', {'type': 'x'}) is False
    assert registry.send_to('missing', {'type': 'x'}) is False
    assert sender.sent == []
