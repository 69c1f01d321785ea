"""Connection coordination: client actions in, broadcasts and persistence out.

The coordinator owns no game state. Every action resolves the live engine
through the ``SessionRegistry``, mutates it under the engine's lock, then
turns the engine's domain events into room broadcasts and write-behind
operations.

Consistency per action:
- create, join, reconnect, leave and ready write to storage first and only
  touch the live engine once that transaction has committed;
- moves, timer expiries, disconnects and idle abandonment change the live
  engine first and are persisted through the write-behind queue.
"""

from datetime import timedelta
from functools import wraps
import time
from typing import Any, Dict, List, Optional

from flask import current_app

from wordgames.errors import GameError, MoveValidationError, NotFoundError, StateConflictError, CapacityError
from wordgames.models import utcnow
from wordgames.services.games import default_config, resolve_game_type
from wordgames.services.games.types import LOBBY_STATUS_BY_PHASE, Phase, TERMINAL_PHASES
from wordgames.transport import broadcast, room_for_lobby, room_for_session

MAX_NAME_LENGTH = 32
MAX_TITLE_LENGTH = 128


def client_action(func):
    """Answer every action with an ack dict; game errors go back to the requester only."""

    @wraps(func)
    def wrapper(self, connection_id, *args, **kwargs):
        try:
            return func(self, connection_id, *args, **kwargs)
        except GameError as exc:
            current_app.logger.info(f"[{func.__name__}] rejected sid={connection_id}: {exc.message}")
            if connection_id is not None:
                self.transport.emit('error', {'message': exc.message, 'code': exc.code}, to=connection_id)
            return exc.to_ack()
        except Exception:
            current_app.logger.exception(f"[{func.__name__}] failed sid={connection_id}")
            self.gateway.session.rollback()
            return {'success': False, 'error': 'Internal server error', 'code': 'error'}

    return wrapper


def _clean_name(value: Any) -> str:
    name = value.strip() if isinstance(value, str) else ''
    if not name:
        raise MoveValidationError('Player name is required')
    if len(name) > MAX_NAME_LENGTH:
        raise MoveValidationError(f'Player name must be at most {MAX_NAME_LENGTH} characters')
    return name


class ConnectionCoordinator:

    def __init__(self, registry, gateway, queue, transport, config: Optional[Dict[str, Any]] = None,
                 clock=time.time):
        self.registry = registry
        self.gateway = gateway
        self.queue = queue
        self.transport = transport
        self.config = config or {}
        self.clock = clock

    # ---- lobby / membership ----

    @client_action
    def create_game(self, connection_id: Optional[str], player_name: Any, title: Optional[str] = None,
                    game_type: Optional[str] = None) -> Dict[str, Any]:
        name = _clean_name(player_name)
        game_type = resolve_game_type(game_type, self.config.get('DEFAULT_GAME_TYPE', 'WORD_MATCH'))
        if isinstance(title, str) and title.strip():
            title = title.strip()[:MAX_TITLE_LENGTH]
        else:
            title = None
        config = default_config(game_type, self.config, title)

        with self.gateway.transaction():
            user = self.gateway.upsert_user(name)
            lobby = self.gateway.create_lobby(user, config['title'], game_type, config['maxPlayers'])
            config['lobbyId'] = lobby.id
            game = self.gateway.create_game(lobby, game_type, config)
            player = self.gateway.create_player(user, lobby, game, is_host=True, connection_id=connection_id)
            session_id, lobby_id, player_id = game.id, lobby.id, player.id
            display_name = user.display_name

        if connection_id is not None:
            self._release_connection(connection_id)
        engine = self.registry.get_or_create(session_id, game_type, config)
        with engine.lock:
            engine.add_player(player_id, display_name, is_host=True, connection_id=connection_id)
            events = engine.drain_events()
        if connection_id is not None:
            self._attach(connection_id, engine, player_id)
        current_app.logger.info(f"[create] session={session_id} type={game_type} host={display_name} sid={connection_id}")

        self._publish(engine, events, roster_changed=True)
        return {
            'success': True,
            'sessionId': session_id,
            'gameId': session_id,
            'lobbyId': lobby_id,
            'playerId': player_id,
        }

    @client_action
    def join_game(self, connection_id: Optional[str], target_id: Any, player_name: Any) -> Dict[str, Any]:
        name = _clean_name(player_name)
        if not isinstance(target_id, str) or not target_id.strip():
            raise NotFoundError('Game not found')
        game = self.gateway.resolve_game(target_id.strip())
        if game is None:
            raise NotFoundError('Game not found')
        session_id, lobby_id = game.id, game.lobby_id

        engine = self.registry.get_or_create(session_id)
        with engine.lock:
            existing_user = self.gateway.find_user(name)
            membership = (
                self.gateway.find_membership(existing_user.id, lobby_id) if existing_user is not None else None
            )
            rejoined = (
                membership is not None and membership.left_at is None and membership.id in engine.players
            )
            if rejoined:
                player_id = membership.id
                with self.gateway.transaction():
                    self.gateway.mark_player_connected(membership, connection_id)
                engine.connect_player(player_id, connection_id)
                display_name = engine.players[player_id].display_name
            else:
                self._check_joinable(engine)
                with self.gateway.transaction():
                    user = self.gateway.upsert_user(name)
                    if membership is None:
                        row = self.gateway.create_player(user, game.lobby, game, connection_id=connection_id)
                    else:
                        row = self.gateway.rejoin_player(membership, game, connection_id)
                    player_id, display_name = row.id, user.display_name
                engine.add_player(player_id, display_name, connection_id=connection_id)
            events = engine.drain_events()

        if connection_id is not None:
            if rejoined:
                self._unbind_stale(player_id, connection_id)
            self._release_connection(connection_id, keep_player=player_id)
            self._attach(connection_id, engine, player_id)
        current_app.logger.info(
            f"[join] session={session_id} player={player_id} name={display_name} rejoined={rejoined} sid={connection_id}"
        )

        if rejoined:
            broadcast(self.transport, room_for_session(session_id), 'playerReconnected', {
                'sessionId': session_id,
                'playerId': player_id,
                'playerName': display_name,
            })
        self._publish(engine, events, roster_changed=True)
        if connection_id is not None:
            with engine.lock:
                private = engine.get_private_state(player_id)
            self.transport.emit('gameState', private, to=connection_id)
        return {
            'success': True,
            'sessionId': session_id,
            'lobbyId': lobby_id,
            'playerId': player_id,
            'rejoined': rejoined,
        }

    @staticmethod
    def _check_joinable(engine) -> None:
        if engine.phase in TERMINAL_PHASES:
            raise StateConflictError('Game is over')
        if not engine.has_capacity():
            raise CapacityError('Game is full')
        if not engine.is_joinable():
            raise StateConflictError('Game already started')

    @client_action
    def reconnect(self, connection_id: str, session_id: Any, player_id: Any) -> Dict[str, Any]:
        if not isinstance(session_id, str) or not isinstance(player_id, str):
            raise NotFoundError('Game not found')
        engine = self.registry.get_or_create(session_id)
        with engine.lock:
            if player_id not in engine.players:
                raise NotFoundError('Player not found in this game')
            row = self.gateway.get_player(player_id)
            if row is None or row.left_at is not None:
                raise NotFoundError('Player not found in this game')
            with self.gateway.transaction():
                self.gateway.mark_player_connected(row, connection_id)
            ref = engine.connect_player(player_id, connection_id)
            events = engine.drain_events()

        self._unbind_stale(player_id, connection_id)
        self._release_connection(connection_id, keep_player=player_id)
        self._attach(connection_id, engine, player_id)
        current_app.logger.info(f"[reconnect] session={session_id} player={player_id} sid={connection_id}")

        broadcast(self.transport, room_for_session(session_id), 'playerReconnected', {
            'sessionId': session_id,
            'playerId': player_id,
            'playerName': ref.display_name,
        })
        self._publish(engine, events, roster_changed=True)
        with engine.lock:
            private = engine.get_private_state(player_id)
        self.transport.emit('gameState', private, to=connection_id)
        return {'success': True, 'sessionId': session_id, 'playerId': player_id}

    @client_action
    def leave_game(self, connection_id: str) -> Dict[str, Any]:
        binding = self.registry.binding_for(connection_id)
        if binding is None:
            raise NotFoundError('You are not in a game')
        engine = self.registry.get_or_create(binding.session_id)
        with engine.lock:
            row = self.gateway.get_player(binding.player_id)
            if row is not None and row.left_at is None:
                with self.gateway.transaction():
                    self.gateway.mark_player_left(row)
            engine.remove_player(binding.player_id)
            events = engine.drain_events()

        self.registry.unbind(connection_id)
        self.transport.leave_room(connection_id, room_for_session(engine.session_id))
        if engine.lobby_id:
            self.transport.leave_room(connection_id, room_for_lobby(engine.lobby_id))
        current_app.logger.info(f"[leave] session={engine.session_id} player={binding.player_id} sid={connection_id}")

        self._publish(engine, events, roster_changed=True)
        return {'success': True}

    def disconnect(self, connection_id: str) -> None:
        """Transport lost the connection: keep the player, mark them disconnected."""
        binding = self.registry.unbind(connection_id)
        if binding is None:
            return
        self._detach(binding)

    def _detach(self, binding) -> None:
        engine = self.registry.get(binding.session_id)
        if engine is None:
            return
        with engine.lock:
            ref = engine.players.get(binding.player_id)
            if ref is None or ref.connection_id != binding.connection_id:
                return
            engine.disconnect_player(binding.player_id)
            events = engine.drain_events()
        current_app.logger.info(
            f"[disconnect] session={binding.session_id} player={binding.player_id} sid={binding.connection_id}"
        )
        self.queue.enqueue('playerUpdate', {
            'playerId': binding.player_id,
            'fields': {'is_connected': False, 'connection_id': None, 'last_active_at': self.clock()},
        })
        broadcast(self.transport, room_for_session(binding.session_id), 'playerDisconnected', {
            'sessionId': binding.session_id,
            'playerId': binding.player_id,
            'playerName': ref.display_name,
        })
        self._publish(engine, events, roster_changed=True)

    def _release_connection(self, connection_id: str, keep_player: Optional[str] = None) -> None:
        """Detach the player this connection played for before it starts playing for another."""
        binding = self.registry.binding_for(connection_id)
        if binding is None or binding.player_id == keep_player:
            return
        self.registry.unbind(connection_id)
        self.transport.leave_room(connection_id, room_for_session(binding.session_id))
        engine = self.registry.get(binding.session_id)
        if engine is not None and engine.lobby_id:
            self.transport.leave_room(connection_id, room_for_lobby(engine.lobby_id))
        self._detach(binding)

    def _unbind_stale(self, player_id: str, connection_id: str) -> None:
        """Drop every older connection still bound to ``player_id``."""
        for stale in self.registry.connections_for_player(player_id):
            if stale != connection_id:
                self.registry.unbind(stale)

    def _attach(self, connection_id: str, engine, player_id: str) -> None:
        self.registry.bind_connection(connection_id, engine.session_id, player_id)
        self.transport.enter_room(connection_id, room_for_session(engine.session_id))
        if engine.lobby_id:
            self.transport.enter_room(connection_id, room_for_lobby(engine.lobby_id))

    # ---- gameplay ----

    def _bound_engine(self, connection_id: str):
        binding = self.registry.binding_for(connection_id)
        if binding is None:
            raise NotFoundError('You are not in a game')
        engine = self.registry.get(binding.session_id)
        if engine is None:
            raise NotFoundError('Game not found')
        return binding, engine

    @client_action
    def set_player_ready(self, connection_id: str, ready_data: Any = None) -> Dict[str, Any]:
        binding, engine = self._bound_engine(connection_id)
        with engine.lock:
            data = engine.check_ready(binding.player_id, ready_data)
            row = self.gateway.get_player(binding.player_id)
            if row is None:
                raise NotFoundError('Player not found')
            with self.gateway.transaction():
                self.gateway.set_player_ready(row, data.get('secretValue'))
            engine.set_player_ready(binding.player_id, ready_data)
            events = engine.drain_events()
            private = engine.get_private_state(binding.player_id)
        current_app.logger.info(f"[ready] session={engine.session_id} player={binding.player_id}")

        self._publish(engine, events, roster_changed=True)
        self.transport.emit('gameState', private, to=connection_id)
        return {'success': True}

    @client_action
    def make_move(self, connection_id: str, move_data: Any) -> Dict[str, Any]:
        binding, engine = self._bound_engine(connection_id)
        with engine.lock:
            result = engine.process_move(binding.player_id, move_data)
            events = engine.drain_events()
        if not result.accepted:
            current_app.logger.info(
                f"[move] rejected session={engine.session_id} player={binding.player_id}: {result.error}"
            )
            return {'success': False, 'error': result.error, 'code': 'rejected'}
        current_app.logger.info(
            f"[move] session={engine.session_id} player={binding.player_id} value={result.move.payload} "
            f"over={result.is_game_over}"
        )
        self._publish(engine, events)
        return {'success': True, 'isGameOver': result.is_game_over, 'outcome': result.outcome}

    # ---- browsing ----

    def list_games(self) -> List[Dict[str, Any]]:
        """Joinable sessions below capacity, with live roster counts where cached."""
        games = []
        for summary in self.gateway.list_joinable_games():
            engine = self.registry.get(summary['id'])
            if engine is not None:
                with engine.lock:
                    if not engine.is_joinable():
                        continue
                    summary = engine.summary()
            games.append(summary)
        return games

    @client_action
    def get_game_list(self, connection_id: Optional[str]) -> Dict[str, Any]:
        games = self.list_games()
        if connection_id is not None:
            self.transport.emit('gameList', games, to=connection_id)
        return {'success': True, 'games': games}

    def get_state(self, session_id: str, player_id: Optional[str] = None) -> Dict[str, Any]:
        engine = self.registry.get_or_create(session_id)
        with engine.lock:
            if player_id is not None and player_id in engine.players:
                return engine.get_private_state(player_id)
            return engine.get_public_state()

    # ---- background ----

    def handle_timer(self, session_id: str, kind: str, token: int) -> bool:
        engine = self.registry.get(session_id)
        if engine is None:
            return False
        with engine.lock:
            fired = engine.handle_timer(kind, token)
            events = engine.drain_events()
        if fired:
            current_app.logger.info(f"[timer] session={session_id} kind={kind} applied")
            self._publish(engine, events)
        return fired

    def sweep_idle(self, now: Optional[float] = None) -> Dict[str, int]:
        result = self.registry.sweep_idle(now)
        for engine in result['abandoned']:
            with engine.lock:
                events = engine.drain_events()
            self._publish(engine, events, roster_changed=True, announce_list=False)

        threshold = self.registry.idle_threshold
        stale_lobbies = self.gateway.abandon_stale_lobbies(utcnow() - timedelta(seconds=threshold))
        if result['abandoned'] or stale_lobbies:
            self.transport.emit('gameListUpdated', {})
        current_app.logger.info(
            f"[sweep] abandoned={len(result['abandoned'])} evicted={len(result['evicted'])} lobbies={stale_lobbies}"
        )
        return {
            'abandoned': len(result['abandoned']),
            'evicted': len(result['evicted']),
            'lobbies': stale_lobbies,
        }

    # ---- broadcasting / persistence of engine events ----

    def _publish(self, engine, events, roster_changed: bool = False, announce_list: bool = True) -> None:
        room = room_for_session(engine.session_id)
        # Lobby status follows the session phase.
        roster_changed = roster_changed or any(name == 'phaseChanged' for name, _ in events)
        for name, payload in events:
            broadcast(self.transport, room, name, payload)
            self._persist_event(engine, name, payload)
        with engine.lock:
            state = engine.get_public_state()
            lobby_state = self._lobby_state(engine) if roster_changed else None
        broadcast(self.transport, room, 'gameState', state)
        if lobby_state is not None and engine.lobby_id:
            broadcast(self.transport, room_for_lobby(engine.lobby_id), 'lobbyState', lobby_state)
            if announce_list:
                self.transport.emit('gameListUpdated', {})

    def _persist_event(self, engine, name: str, payload: Dict[str, Any]) -> None:
        if name == engine.move_event:
            self.queue.enqueue('move', {
                'id': payload['id'],
                'sessionId': engine.session_id,
                'playerId': payload['playerId'],
                'moveType': engine.move_type,
                'value': payload['value'],
                'seq': payload['seq'],
                'createdAt': payload['timestamp'],
            })
            if 'score' in payload:
                self.queue.enqueue('playerUpdate', {
                    'playerId': payload['playerId'],
                    'fields': {'score': payload['score'], 'last_active_at': payload['timestamp']},
                })
        elif name == 'phaseChanged' and payload['phase'] != Phase.COMPLETED.value:
            self.queue.enqueue('sessionUpdate', {
                'sessionId': engine.session_id,
                'lobbyId': engine.lobby_id,
                'phase': payload['phase'],
                'at': self.clock(),
            })
        elif name == 'gameOver':
            self.queue.enqueue('sessionComplete', {
                'sessionId': engine.session_id,
                'lobbyId': engine.lobby_id,
                'winningValue': engine.winning_value,
                'outcome': engine.outcome,
                'endedAt': self.clock(),
            })
        elif name == 'playerEliminated':
            self.queue.enqueue('playerUpdate', {
                'playerId': payload['playerId'],
                'fields': {'eliminated': True},
            })

    @staticmethod
    def _lobby_state(engine) -> Dict[str, Any]:
        return {
            'lobbyId': engine.lobby_id,
            'sessionId': engine.session_id,
            'title': engine.title,
            'gameType': engine.game_type.value,
            'status': LOBBY_STATUS_BY_PHASE[engine.phase].value,
            'maxPlayers': engine.max_players,
            'players': [
                {
                    'id': ref.player_id,
                    'name': ref.display_name,
                    'isHost': ref.is_host,
                    'isConnected': ref.is_connected,
                    'isReady': ref.is_ready,
                }
                for ref in engine.players.values()
            ],
        }
