"""Shared state: chat log, presence map and tap counters.

The store does no locking of its own. Callers funnel every mutation through
one serialized path (see ``ProtocolRouter``), so each operation below runs to
completion before the next one starts.
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Dict, Optional

from .models import ChatEntry, PresenceEntry, TapCounter, is_number
from .protocol import InvalidInput

DEFAULT_CHAT_CAPACITY = 500


def now_ms() -> int:
    return int(time.time() * 1000)


def empty_document() -> Dict[str, Any]:
    return {'taps': {}, 'users': {}, 'chat': []}


class SharedState:
    def __init__(self, chat_capacity: int = DEFAULT_CHAT_CAPACITY,
                 clock: Callable[[], int] = now_ms,
                 logger: Optional[logging.Logger] = None):
        if chat_capacity < 1:
            raise ValueError("chat_capacity must be positive")
        self.chat_capacity = chat_capacity
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.chat: deque = deque(maxlen=chat_capacity)
        self.presence: Dict[str, PresenceEntry] = {}
        self.taps: Dict[str, TapCounter] = {}

    # ---- chat ----
    def append_chat(self, nick: str, text: str) -> ChatEntry:
        entry = ChatEntry(nick=nick, text=text, ts=self.clock())
        # deque(maxlen) drops from the left once full
        self.chat.append(entry)
        return entry

    # ---- presence ----
    def upsert_presence(self, cid: str, nick: Optional[str] = None, score: Any = None,
                        default_nick: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        """Overwrite the presence record for ``cid`` and return the whole map."""
        self.presence[cid] = PresenceEntry(
            id=cid,
            nick=nick or default_nick or '',
            score=score if is_number(score) else 0,
            ts=self.clock(),
        )
        return self.presence_map()

    def remove_presence(self, cid: str) -> Dict[str, Dict[str, Any]]:
        self.presence.pop(cid, None)
        return self.presence_map()

    def presence_map(self) -> Dict[str, Dict[str, Any]]:
        return {cid: entry.to_dict() for cid, entry in self.presence.items()}

    # ---- taps ----
    def apply_tap(self, name: Any, delta: Any = None, total: Any = None) -> TapCounter:
        """Merge one tap event into the named counter.

        A numeric ``total`` replaces the counter; otherwise ``delta`` (default 1)
        is added. The counter is created at 0 on first use.
        """
        if not isinstance(name, str) or not name:
            raise InvalidInput("tap name is required")
        if delta is not None and not is_number(delta):
            raise InvalidInput(f"tap delta must be a number, got {delta!r}")
        counter = self.taps.get(name)
        if counter is None:
            counter = self.taps[name] = TapCounter(name=name)
        counter.apply(delta, total, self.clock())
        return counter

    def get_taps(self) -> Dict[str, Dict[str, Any]]:
        return {name: counter.to_dict() for name, counter in self.taps.items()}

    # ---- whole-state views ----
    def snapshot(self) -> Dict[str, Any]:
        return {
            'taps': self.get_taps(),
            'users': self.presence_map(),
            'chat': [entry.to_dict() for entry in self.chat],
        }

    def clear(self) -> None:
        self.chat.clear()
        self.presence.clear()
        self.taps.clear()

    def load(self, data: Dict[str, Any]) -> None:
        """Replace the current contents with a persisted document.

        Presence entries are not restored: they name connections of a previous
        process, none of which can still be open.
        """
        self.clear()
        taps = data.get('taps')
        for key, raw in (taps.items() if isinstance(taps, dict) else ()):
            try:
                self.taps[key] = TapCounter.from_dict({'name': key, **raw})
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.warning(f"[load] skipping tap counter {key!r}: {exc}")
        chat = data.get('chat')
        for raw in (chat[-self.chat_capacity:] if isinstance(chat, list) else ()):
            try:
                self.chat.append(ChatEntry.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                self.logger.warning(f"[load] skipping chat entry: {exc}")
        stale = data.get('users')
        if isinstance(stale, dict) and stale:
            self.logger.info(f"[load] dropped {len(stale)} presence entries from a previous run")

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **kwargs) -> 'SharedState':
        state = cls(**kwargs)
        state.load(data)
        return state
