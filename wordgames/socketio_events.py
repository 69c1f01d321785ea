from flask import current_app, request
from flask_socketio import emit

from wordgames import get_coordinator, socketio
from wordgames.transport import NAMESPACE


def _sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _data(data) -> dict:
    if isinstance(data, dict):
        return data
    return {}


def handle_connect(auth=None):
    current_app.logger.info(f"[connect] sid={_sid()}")
    emit('connected', {'message': f'Connected to {NAMESPACE}', 'sid': _sid()})


def handle_disconnect(reason=None):
    current_app.logger.info(f"[disconnect] sid={_sid()} reason={reason}")
    get_coordinator().disconnect(_sid())


def handle_create_game(data=None):
    data = _data(data)
    return get_coordinator().create_game(
        _sid(),
        data.get('playerName'),
        title=data.get('title'),
        game_type=data.get('gameType'),
    )


def handle_join_game(data=None):
    data = _data(data)
    target = data.get('sessionId') or data.get('gameId') or data.get('lobbyId')
    return get_coordinator().join_game(_sid(), target, data.get('playerName'))


def handle_reconnect(data=None):
    data = _data(data)
    return get_coordinator().reconnect(_sid(), data.get('sessionId') or data.get('gameId'), data.get('playerId'))


def handle_set_player_ready(data=None):
    # Accepts a bare string or {'value': ...}
    return get_coordinator().set_player_ready(_sid(), data)


def handle_make_move(data=None):
    return get_coordinator().make_move(_sid(), data)


def handle_leave_game(data=None):
    return get_coordinator().leave_game(_sid())


def handle_get_game_list(data=None):
    return get_coordinator().get_game_list(_sid())


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = NAMESPACE) -> None:
    """Register Socket.IO event handlers on ``namespace`` ('/ws')."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('createGame', handle_create_game, namespace=namespace)
    socketio.on_event('joinGame', handle_join_game, namespace=namespace)
    socketio.on_event('reconnect', handle_reconnect, namespace=namespace)
    socketio.on_event('setSecretWord', handle_set_player_ready, namespace=namespace)
    socketio.on_event('setPlayerReady', handle_set_player_ready, namespace=namespace)
    socketio.on_event('makeGuess', handle_make_move, namespace=namespace)
    socketio.on_event('makeMove', handle_make_move, namespace=namespace)
    socketio.on_event('leaveGame', handle_leave_game, namespace=namespace)
    socketio.on_event('getGameList', handle_get_game_list, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
