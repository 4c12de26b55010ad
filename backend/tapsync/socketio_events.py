import logging
import threading
from typing import Any, Callable, Dict, Optional

from flask import current_app, request

from tapsync import socketio
from tapsync.protocol import InvalidInput, MalformedMessage, decode_message, make_message, payload_of
from tapsync.registry import ConnectionRegistry
from tapsync.store import SharedState, now_ms


class ProtocolRouter:
    """Dispatches inbound socket traffic onto the shared state.

    Connection open, message and close events each run to completion under a
    single lock, so the store and registry only ever see one mutator.
    """

    def __init__(self, state: SharedState, registry: ConnectionRegistry, persistence=None,
                 clock: Callable[[], int] = now_ms, logger: Optional[logging.Logger] = None):
        self.state = state
        self.registry = registry
        self.persistence = persistence
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.lock = threading.RLock()
        self.handlers: Dict[str, Callable[[str, Dict[str, Any]], None]] = {
            'chat': self._handle_chat,
            'presence': self._handle_presence,
            'tap': self._handle_tap,
            'get_taps': self._handle_get_taps,
            'disconnect_me': self._handle_disconnect_me,
        }

    def attach_persistence(self, persistence):
        """Wire the snapshot writer in after construction.

        The writer reads state through ``self.snapshot`` (under the router
        lock), so it can only be built once the router exists.
        """
        self.persistence = persistence
        return persistence

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return self.state.snapshot()

    # ---- lifecycle ----
    def on_open(self, sid: Optional[str] = None) -> str:
        with self.lock:
            cid = self.registry.register(sid)
            self.registry.send_to(cid, make_message('init', {
                'db': self.state.snapshot(),
                'serverTime': self.clock(),
            }))
        self.logger.info(f"[router] open id={cid} nick={self.registry.nickname(cid)} live={len(self.registry)}")
        return cid

    def on_message(self, cid: str, raw: Any) -> bool:
        """Handle one inbound frame. Returns False when it was dropped."""
        try:
            message = decode_message(raw)
        except MalformedMessage as exc:
            self.logger.debug(f"[router] id={cid} dropped malformed message: {exc}")
            return False
        handler = self.handlers.get(message['type'])
        if handler is None:
            self.logger.debug(f"[router] id={cid} dropped unknown type={message['type']!r}")
            return False
        with self.lock:
            if cid not in self.registry:
                self.logger.debug(f"[router] id={cid} not open, dropped type={message['type']}")
                return False
            try:
                handler(cid, message)
            except InvalidInput as exc:
                self.logger.debug(f"[router] id={cid} rejected type={message['type']}: {exc}")
                return False
        return True

    def on_close(self, cid: str) -> None:
        with self.lock:
            self.registry.unregister(cid)
            self._drop_presence(cid)
        self.logger.info(f"[router] closed id={cid} live={len(self.registry)}")

    # ---- handlers ----
    def _handle_chat(self, cid, message):
        payload = payload_of(message)
        text = payload.get('text')
        if text is None:
            text = ''
        if not isinstance(text, str):
            raise InvalidInput("chat text must be a string")
        nick = payload.get('nick')
        if not isinstance(nick, str) or not nick:
            nick = self.registry.nickname(cid)
        entry = self.state.append_chat(nick, text)
        self._dirty()
        self.registry.broadcast(make_message('chat', entry.to_dict()))

    def _handle_presence(self, cid, message):
        payload = payload_of(message)
        nick = payload.get('nick')
        if isinstance(nick, str) and nick:
            self.registry.set_nickname(cid, nick)
        users = self.state.upsert_presence(
            cid,
            score=payload.get('score'),
            default_nick=self.registry.nickname(cid),
        )
        self._dirty()
        self.registry.broadcast(make_message('presence', users))

    def _handle_tap(self, cid, message):
        payload = message.get('payload')
        if not isinstance(payload, dict):
            raise InvalidInput("tap payload missing")
        counter = self.state.apply_tap(payload.get('name'), delta=payload.get('delta'), total=payload.get('total'))
        self._dirty()
        self.registry.broadcast(make_message('taps_update', counter.to_dict()))

    def _handle_get_taps(self, cid, message):
        self.registry.send_to(cid, make_message('taps_snapshot', self.state.get_taps()))

    def _handle_disconnect_me(self, cid, message):
        self._drop_presence(cid)

    def _drop_presence(self, cid):
        users = self.state.remove_presence(cid)
        self._dirty()
        self.registry.broadcast(make_message('presence', users))

    def _dirty(self):
        if self.persistence is not None:
            self.persistence.notify_dirty()


# ---- Socket.IO binding ----

def get_router() -> ProtocolRouter:
    return current_app.extensions['tapsync']


def handle_connect(auth=None):
    get_router().on_open(request.sid)  # type: ignore[attr-defined]


def handle_disconnect(reason=None):
    get_router().on_close(request.sid)  # type: ignore[attr-defined]


def handle_message(data):
    get_router().on_message(request.sid, data)  # type: ignore[attr-defined]


def register_socketio_handlers(namespace: str = '/') -> None:
    """Bind the router to Socket.IO events on ``namespace``.

    Clients talk through unnamed messages: ``send(text)`` arrives as the
    ``message`` event, ``send(obj, json=True)`` as ``json``.
    """
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('message', handle_message, namespace=namespace)
    socketio.on_event('json', handle_message, namespace=namespace)
