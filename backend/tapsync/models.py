import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, Optional

from .protocol import InvalidInput


def is_number(value: Any) -> bool:
    # bool is an int subclass, but JSON true/false is not a count;
    # 1e400 and NaN decode to floats that JSON cannot carry back out
    if not isinstance(value, Real) or isinstance(value, bool):
        return False
    return isinstance(value, int) or math.isfinite(value)


@dataclass(frozen=True)
class ChatEntry:
    nick: str
    text: str
    ts: int

    def to_dict(self):
        return {
            'nick': self.nick,
            'text': self.text,
            'ts': self.ts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChatEntry':
        return cls(nick=str(data['nick']), text=str(data.get('text', '')), ts=int(data.get('ts', 0)))


@dataclass
class PresenceEntry:
    id: str
    nick: str
    score: Any = 0
    ts: int = 0

    def to_dict(self):
        return {
            'id': self.id,
            'nick': self.nick,
            'score': self.score,
            'ts': self.ts,
        }


@dataclass
class TapCounter:
    name: str
    total: Any = 0
    last_ts: int = 0

    def apply(self, delta: Optional[Any], total: Optional[Any], now: int) -> None:
        """Absolute totals replace the counter, anything else accumulates."""
        if is_number(total):
            self.total = total
        else:
            accumulated = self.total + (delta if delta is not None else 1)
            if not is_number(accumulated):
                raise InvalidInput(f"tap {self.name!r} total overflows: {accumulated!r}")
            self.total = accumulated
        self.last_ts = now

    def to_dict(self):
        return {
            'name': self.name,
            'total': self.total,
            'lastTs': self.last_ts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TapCounter':
        total = data.get('total', 0)
        if not is_number(total):
            raise ValueError(f"tap total is not a number: {total!r}")
        return cls(name=str(data['name']), total=total, last_ts=int(data.get('lastTs', 0)))
