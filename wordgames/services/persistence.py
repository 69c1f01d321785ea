"""Typed access to durable storage for users, lobbies, sessions, players and moves.

All writes go through whitelisted read-modify-write helpers; callers never
assemble query text. Critical-path callers wrap their writes in
``transaction()`` so a failure rolls back and surfaces as ``PersistenceError``.
"""

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from wordgames import db
from wordgames.errors import PersistenceError
from wordgames.models import Game, Lobby, Move, Player, User, from_timestamp, to_timestamp, utcnow
from wordgames.services.games.types import (
    LOBBY_STATUS_BY_PHASE,
    PHASE_ORDER,
    TERMINAL_PHASES,
    LobbyStatus,
    Phase,
    SessionSnapshot,
)

logger = logging.getLogger(__name__)

JOINABLE_LOBBY_STATUSES = (LobbyStatus.WAITING.value,)
JOINABLE_PHASES = (Phase.WAITING_FOR_PLAYERS.value,)
TERMINAL_LOBBY_STATUSES = (LobbyStatus.FINISHED.value, LobbyStatus.ABANDONED.value)

# Columns the deferred queue may patch.
PLAYER_PATCH_FIELDS = {
    'is_connected', 'connection_id', 'is_ready', 'secret_value',
    'score', 'eliminated', 'last_active_at',
}
LOBBY_PATCH_FIELDS = {'status', 'title'}
TIMESTAMP_FIELDS = {'last_active_at', 'started_at', 'ended_at'}


def normalize_username(name: str) -> str:
    return name.strip().lower()


class PersistenceGateway:

    def __init__(self, database=db):
        self.db = database

    @property
    def session(self):
        return self.db.session

    @contextmanager
    def transaction(self):
        """Commit on success; roll back and raise ``PersistenceError`` on storage errors."""
        try:
            yield self.session
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"[persistence] transaction rolled back: {exc}")
            raise PersistenceError('Storage is unavailable, please try again') from exc

    # ---- users / lobbies / sessions ----

    def find_user(self, nickname: str) -> Optional[User]:
        return User.query.filter_by(username=normalize_username(nickname)).first()

    def upsert_user(self, nickname: str) -> User:
        username = normalize_username(nickname)
        user = self.find_user(nickname)
        if user is not None:
            return user
        user = User(username=username, display_name=nickname.strip())
        self.session.add(user)
        self.session.flush()
        return user

    def create_lobby(self, host: User, title: str, game_type: str, max_players: int) -> Lobby:
        lobby = Lobby(
            title=title,
            game_type=game_type,
            status=LobbyStatus.WAITING.value,
            max_players=max_players,
            host_id=host.id,
        )
        self.session.add(lobby)
        self.session.flush()
        return lobby

    def create_game(self, lobby: Lobby, game_type: str, config: Dict[str, Any]) -> Game:
        game = Game(
            lobby_id=lobby.id,
            game_type=game_type,
            status=Phase.WAITING_FOR_PLAYERS.value,
            config=config,
        )
        self.session.add(game)
        self.session.flush()
        return game

    def get_game(self, game_id: str) -> Optional[Game]:
        if not game_id:
            return None
        return self.session.get(Game, game_id)

    def get_lobby(self, lobby_id: str) -> Optional[Lobby]:
        if not lobby_id:
            return None
        return self.session.get(Lobby, lobby_id)

    def get_player(self, player_id: str) -> Optional[Player]:
        if not player_id:
            return None
        return self.session.get(Player, player_id)

    def resolve_game(self, target_id: str) -> Optional[Game]:
        """Look up a session by its id, falling back to the id of its lobby."""
        game = self.get_game(target_id)
        if game is None:
            lobby = self.get_lobby(target_id)
            game = lobby.game if lobby is not None else None
        return game

    # ---- players ----

    def find_membership(self, user_id: str, lobby_id: str) -> Optional[Player]:
        return Player.query.filter_by(user_id=user_id, lobby_id=lobby_id).first()

    def create_player(self, user: User, lobby: Lobby, game: Optional[Game], is_host: bool = False,
                      connection_id: Optional[str] = None) -> Player:
        player = Player(
            user_id=user.id,
            lobby_id=lobby.id,
            game_id=game.id if game is not None else None,
            is_host=is_host,
            is_connected=connection_id is not None,
            connection_id=connection_id,
        )
        self.session.add(player)
        self.session.flush()
        self._touch_lobby(lobby)
        return player

    def rejoin_player(self, player: Player, game: Optional[Game], connection_id: Optional[str]) -> Player:
        """Reactivate a membership row that was left earlier."""
        player.left_at = None
        player.game_id = game.id if game is not None else player.game_id
        player.is_ready = False
        player.secret_value = None
        player.score = 0
        player.eliminated = False
        self.mark_player_connected(player, connection_id)
        self._touch_lobby(player.lobby)
        return player

    def mark_player_connected(self, player: Player, connection_id: Optional[str]) -> Player:
        player.is_connected = connection_id is not None
        player.connection_id = connection_id
        player.last_active_at = utcnow()
        self.session.add(player)
        return player

    def mark_player_left(self, player: Player) -> Player:
        player.left_at = utcnow()
        player.is_connected = False
        player.connection_id = None
        player.game_id = None
        self.session.add(player)
        self._touch_lobby(player.lobby)
        return player

    def set_player_ready(self, player: Player, secret_value: Optional[str] = None) -> Player:
        player.is_ready = True
        if secret_value is not None:
            player.secret_value = secret_value
        player.last_active_at = utcnow()
        self.session.add(player)
        return player

    def _touch_lobby(self, lobby: Optional[Lobby]) -> None:
        if lobby is not None:
            lobby.updated_at = utcnow()
            self.session.add(lobby)

    # ---- hydration / queries ----

    def load_session(self, game_id: str) -> Optional[SessionSnapshot]:
        game = self.get_game(game_id)
        if game is None:
            return None
        lobby = game.lobby
        players = (
            Player.query
            .filter(Player.lobby_id == lobby.id, Player.left_at.is_(None))
            .order_by(Player.joined_at.asc(), Player.id.asc())
            .all()
        )
        moves = (
            Move.query
            .filter_by(game_id=game.id)
            .order_by(Move.created_at.asc(), Move.seq.asc())
            .all()
        )
        return SessionSnapshot(
            session_id=game.id,
            lobby_id=lobby.id,
            game_type=game.game_type,
            phase=game.status,
            title=lobby.title,
            max_players=lobby.max_players,
            created_at=to_timestamp(game.created_at),
            config=dict(game.config or {}),
            winning_value=game.winning_value,
            outcome=game.outcome,
            players=[
                {
                    'id': p.id,
                    'display_name': p.user.display_name,
                    'is_host': p.is_host,
                    'secret_value': p.secret_value,
                    'is_ready': p.is_ready,
                    'score': p.score,
                    'eliminated': p.eliminated,
                }
                for p in players
            ],
            moves=[
                {
                    'id': m.id,
                    'player_id': m.player_id,
                    'player_name': m.player.user.display_name if m.player else None,
                    'payload': m.payload,
                    'seq': m.seq,
                    'created_at': to_timestamp(m.created_at),
                }
                for m in moves
            ],
        )

    def list_joinable_games(self) -> List[Dict[str, Any]]:
        games = (
            Game.query.join(Lobby, Game.lobby_id == Lobby.id)
            .filter(Game.status.in_(JOINABLE_PHASES), Lobby.status.in_(JOINABLE_LOBBY_STATUSES))
            .order_by(Game.created_at.desc())
            .all()
        )
        summaries = []
        for game in games:
            lobby = game.lobby
            active = lobby.active_players
            if len(active) >= lobby.max_players:
                continue
            connected = [p for p in active if p.is_connected]
            summaries.append({
                'id': game.id,
                'lobbyId': lobby.id,
                'title': lobby.title,
                'host': lobby.host.display_name if lobby.host else None,
                'players': len(active),
                'playerCount': len(active),
                'connectedCount': len(connected),
                'playerNames': [p.user.display_name for p in active],
                'maxPlayers': lobby.max_players,
                'gameType': game.game_type,
                'status': game.status,
            })
        return summaries

    def abandon_stale_lobbies(self, cutoff: datetime) -> int:
        """Mark lobbies untouched since ``cutoff`` as abandoned, in one statement."""
        with self.transaction():
            count = (
                Lobby.query
                .filter(Lobby.updated_at < cutoff, Lobby.status.notin_(TERMINAL_LOBBY_STATUSES))
                .update({Lobby.status: LobbyStatus.ABANDONED.value, Lobby.updated_at: utcnow()},
                        synchronize_session=False)
            )
        return count

    # ---- deferred batches ----

    def apply_batch(self, operations: Iterable) -> None:
        """Apply queued operations in a single transaction, grouped by type."""
        grouped: Dict[str, list] = {}
        for op in operations:
            grouped.setdefault(op.type, []).append(op)
        try:
            for op in grouped.get('move', []):
                self._apply_move(op.payload)
            for op in grouped.get('sessionUpdate', []):
                self._apply_session_update(op.payload)
            for op in grouped.get('sessionComplete', []):
                self._apply_session_complete(op.payload)
            for op in grouped.get('playerUpdate', []):
                self._apply_player_update(op.payload)
            for op in grouped.get('lobbyUpdate', []):
                self._apply_lobby_update(op.payload)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _apply_move(self, data: Dict[str, Any]) -> None:
        if self.session.get(Move, data['id']) is not None:
            return
        self.session.add(Move(
            id=data['id'],
            game_id=data['sessionId'],
            player_id=data['playerId'],
            move_type=data.get('moveType', 'guess'),
            payload=data['value'],
            seq=data['seq'],
            created_at=from_timestamp(data['createdAt']),
        ))
        self.session.flush()

    def _apply_session_complete(self, data: Dict[str, Any]) -> None:
        game = self._require(Game, data['sessionId'])
        game.status = Phase.COMPLETED.value
        game.ended_at = from_timestamp(data.get('endedAt')) or utcnow()
        game.winning_value = data.get('winningValue')
        game.outcome = data.get('outcome') or {}
        lobby = self.get_lobby(data.get('lobbyId') or game.lobby_id)
        if lobby is not None:
            lobby.status = LobbyStatus.FINISHED.value

    def _apply_session_update(self, data: Dict[str, Any]) -> None:
        game = self._require(Game, data['sessionId'])
        phase = Phase(data['phase'])
        current = Phase(game.status)
        if current in TERMINAL_PHASES:
            return
        if phase != Phase.ABANDONED and PHASE_ORDER[phase] < PHASE_ORDER[current]:
            return
        game.status = phase.value
        if phase == Phase.ACTIVE and game.started_at is None:
            game.started_at = from_timestamp(data.get('at')) or utcnow()
        if phase == Phase.ABANDONED:
            game.ended_at = from_timestamp(data.get('at')) or utcnow()
        lobby = self.get_lobby(data.get('lobbyId') or game.lobby_id)
        if lobby is not None and lobby.status not in TERMINAL_LOBBY_STATUSES:
            lobby.status = LOBBY_STATUS_BY_PHASE[phase].value

    def _apply_player_update(self, data: Dict[str, Any]) -> None:
        player = self._require(Player, data['playerId'])
        self._patch(player, data.get('fields', {}), PLAYER_PATCH_FIELDS)

    def _apply_lobby_update(self, data: Dict[str, Any]) -> None:
        lobby = self._require(Lobby, data['lobbyId'])
        self._patch(lobby, data.get('fields', {}), LOBBY_PATCH_FIELDS)

    def _require(self, model, key):
        row = self.session.get(model, key)
        if row is None:
            raise LookupError(f'{model.__tablename__} {key} does not exist')
        return row

    @staticmethod
    def _patch(row, fields: Dict[str, Any], allowed: set) -> None:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f'cannot patch {row.__tablename__} fields: {sorted(unknown)}')
        for name, value in fields.items():
            if name in TIMESTAMP_FIELDS and isinstance(value, (int, float)):
                value = from_timestamp(value)
            setattr(row, name, value)
