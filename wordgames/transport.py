"""Socket.IO transport adapter.

The coordinator talks to clients only through this small surface (emit,
enter_room, leave_room), so it can be exercised with a recording stand-in.
"""

from typing import Any, Optional

NAMESPACE = '/ws'


def room_for_session(session_id: str) -> str:
    return f"game:{session_id}"


def room_for_lobby(lobby_id: str) -> str:
    return f"lobby:{lobby_id}"


class SocketIOTransport:

    def __init__(self, socketio, namespace: str = NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace

    def emit(self, event: str, data: Any, to: Optional[str] = None) -> None:
        """Send to a room or a single connection id; ``to=None`` reaches every connection."""
        self.socketio.emit(event, data, to=to, namespace=self.namespace)

    def enter_room(self, connection_id: str, room: str) -> None:
        self.socketio.server.enter_room(connection_id, room, namespace=self.namespace)

    def leave_room(self, connection_id: str, room: str) -> None:
        self.socketio.server.leave_room(connection_id, room, namespace=self.namespace)


def broadcast(transport, room: str, event: str, payload: Any) -> None:
    transport.emit(event, payload, to=room)
