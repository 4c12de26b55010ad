"""Wire records and the error taxonomy shared by the sync components.

Every message on the socket is a JSON text record ``{"type": ..., "payload": ...}``.
"""

import json
from typing import Any, Dict, Union


class SyncError(Exception):
    """Base class for errors raised inside the sync core."""


class MalformedMessage(SyncError):
    """Inbound data is not a JSON object with a string ``type``."""


class InvalidInput(SyncError):
    """A well-formed message carries a field the store cannot accept."""


class DeliveryFailure(SyncError):
    """Sending to a single connection failed."""


class PersistenceFailure(SyncError):
    """Writing the state snapshot to disk failed."""


class StartupLoadFailure(SyncError):
    """The persisted snapshot exists but cannot be read back."""


def decode_message(raw: Union[str, bytes, Dict[str, Any]]) -> Dict[str, Any]:
    """Turn an inbound frame into a message dict.

    Socket.IO may hand us either the raw text a client sent or an object it
    already decoded (``send(obj, json=True)``); both are accepted.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as exc:
            raise MalformedMessage(f"not utf-8: {exc}") from exc
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise MalformedMessage(f"bad json: {exc}") from exc
    if not isinstance(raw, dict):
        raise MalformedMessage("message must be an object")
    if not isinstance(raw.get('type'), str):
        raise MalformedMessage("message type missing")
    return raw


def encode_message(obj: Dict[str, Any]) -> str:
    try:
        return json.dumps(obj, separators=(',', ':'), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage(f"cannot encode message: {exc}") from exc


def make_message(msg_type: str, payload: Any) -> Dict[str, Any]:
    return {'type': msg_type, 'payload': payload}


def payload_of(message: Dict[str, Any]) -> Dict[str, Any]:
    """Return the message payload merged over any top-level fields.

    Older clients put ``nick``/``text`` beside ``type`` instead of inside
    ``payload``; the nested payload wins when both are present.
    """
    merged = {k: v for k, v in message.items() if k not in ('type', 'payload')}
    payload = message.get('payload')
    if isinstance(payload, dict):
        merged.update(payload)
    return merged


__all__ = [
    'SyncError',
    'MalformedMessage',
    'InvalidInput',
    'DeliveryFailure',
    'PersistenceFailure',
    'StartupLoadFailure',
    'decode_message',
    'encode_message',
    'make_message',
    'payload_of',
]
