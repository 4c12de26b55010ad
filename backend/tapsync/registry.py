import logging
import secrets
from typing import Any, Callable, Dict, List, Optional

from .protocol import DeliveryFailure, encode_message


def generate_connection_id() -> str:
    return secrets.token_hex(8)


def generate_nickname() -> str:
    return f"User{secrets.randbelow(900) + 100}"


class Connection:
    def __init__(self, cid: str, nick: str):
        self.id = cid
        self.nick = nick


class ConnectionRegistry:
    """Live connections and their nicknames; the broadcast fan-out list.

    ``sender(raw, to)`` performs the actual transmission of one encoded
    message to one connection id. It must not block on a slow peer.
    """

    def __init__(self, sender: Callable[[str, str], Any], logger: Optional[logging.Logger] = None):
        self.sender = sender
        self.logger = logger or logging.getLogger(__name__)
        self._connections: Dict[str, Connection] = {}

    def register(self, cid: Optional[str] = None) -> str:
        if cid is None:
            cid = generate_connection_id()
            while cid in self._connections:
                cid = generate_connection_id()
        self._connections[cid] = Connection(cid, generate_nickname())
        return cid

    def unregister(self, cid: str) -> None:
        self._connections.pop(cid, None)

    def set_nickname(self, cid: str, name: str) -> None:
        conn = self._connections.get(cid)
        if conn is not None:
            conn.nick = name

    def nickname(self, cid: str) -> Optional[str]:
        conn = self._connections.get(cid)
        return conn.nick if conn else None

    def ids(self) -> List[str]:
        return list(self._connections)

    def __contains__(self, cid) -> bool:
        return cid in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    # ---- delivery ----
    def _deliver(self, cid: str, raw: str) -> None:
        try:
            self.sender(raw, cid)
        except Exception as exc:
            raise DeliveryFailure(f"send to {cid} failed: {exc}") from exc

    def broadcast(self, message: Dict[str, Any], exclude: Optional[str] = None) -> int:
        """Send ``message`` to every live connection except ``exclude``.

        Returns the number of connections the message was handed to.
        """
        raw = encode_message(message)
        delivered = 0
        for cid in self.ids():
            if cid == exclude:
                continue
            try:
                self._deliver(cid, raw)
            except DeliveryFailure as exc:
                self.logger.warning(f"[broadcast] type={message.get('type')} skipped: {exc}")
                continue
            delivered += 1
        return delivered

    def send_to(self, cid: str, message: Dict[str, Any]) -> bool:
        if cid not in self._connections:
            return False
        try:
            self._deliver(cid, encode_message(message))
        except DeliveryFailure as exc:
            self.logger.debug(f"[send] type={message.get('type')} dropped: {exc}")
            return False
        return True
