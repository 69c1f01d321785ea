from wordgames import db
from datetime import datetime, timezone
import uuid

from wordgames.services.games.types import GameType, LobbyStatus, Phase


def _new_id():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value):
    """Naive UTC datetime (as stored) -> epoch seconds."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_timestamp(value):
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


class User(db.Model):
    __tablename__ = 'user'
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    # Normalized lowercase nickname
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'displayName': self.display_name,
        }


class Lobby(db.Model):
    __tablename__ = 'lobby'
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    title = db.Column(db.String(128), nullable=False, default='New Game')
    game_type = db.Column(db.String(32), nullable=False, default=GameType.WORD_MATCH.value)
    status = db.Column(db.String(32), nullable=False, default=LobbyStatus.WAITING.value, index=True)
    max_players = db.Column(db.Integer, nullable=False, default=2)
    host_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    host = db.relationship('User')
    players = db.relationship('Player', back_populates='lobby')
    game = db.relationship('Game', back_populates='lobby', uselist=False)

    @property
    def active_players(self):
        return [p for p in self.players if p.left_at is None]

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'gameType': self.game_type,
            'status': self.status,
            'maxPlayers': self.max_players,
            'hostId': self.host_id,
            'host': self.host.display_name if self.host else None,
            'players': [
                {
                    'id': p.id,
                    'name': p.user.display_name,
                    'isHost': p.user_id == self.host_id,
                    'isConnected': p.is_connected,
                }
                for p in self.active_players
            ],
        }


class Game(db.Model):
    """Persisted record of a session; ``status`` holds the session phase."""
    __tablename__ = 'game'
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    lobby_id = db.Column(db.String(36), db.ForeignKey('lobby.id'), nullable=False, unique=True, index=True)
    game_type = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(32), nullable=False, default=Phase.WAITING_FOR_PLAYERS.value, index=True)
    config = db.Column(db.JSON, nullable=False, default=dict)
    winning_value = db.Column(db.String(64), nullable=True)
    outcome = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)

    lobby = db.relationship('Lobby', back_populates='game')
    players = db.relationship('Player', back_populates='game')
    moves = db.relationship('Move', back_populates='game', order_by='Move.seq', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'lobbyId': self.lobby_id,
            'gameType': self.game_type,
            'status': self.status,
            'config': self.config or {},
            'winningValue': self.winning_value,
            'outcome': self.outcome,
            'createdAt': to_timestamp(self.created_at),
            'endedAt': to_timestamp(self.ended_at),
        }


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'lobby_id', name='uq_player_user_lobby'),
    )
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False, index=True)
    lobby_id = db.Column(db.String(36), db.ForeignKey('lobby.id'), nullable=False, index=True)
    game_id = db.Column(db.String(36), db.ForeignKey('game.id', ondelete='SET NULL'), nullable=True, index=True)
    is_host = db.Column(db.Boolean, nullable=False, default=False)
    is_ready = db.Column(db.Boolean, nullable=False, default=False)
    secret_value = db.Column(db.String(64), nullable=True)
    is_connected = db.Column(db.Boolean, nullable=False, default=False)
    connection_id = db.Column(db.String(64), nullable=True)
    score = db.Column(db.Integer, nullable=False, default=0)
    eliminated = db.Column(db.Boolean, nullable=False, default=False)
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_active_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    left_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship('User')
    lobby = db.relationship('Lobby', back_populates='players')
    game = db.relationship('Game', back_populates='players')

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'lobbyId': self.lobby_id,
            'gameId': self.game_id,
            'name': self.user.display_name if self.user else None,
            'isHost': self.is_host,
            'isReady': self.is_ready,
            'isConnected': self.is_connected,
            'score': self.score,
            'eliminated': self.eliminated,
        }


class Move(db.Model):
    __tablename__ = 'move'
    __table_args__ = (
        db.UniqueConstraint('game_id', 'seq', name='uq_move_game_seq'),
    )
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    game_id = db.Column(db.String(36), db.ForeignKey('game.id'), nullable=False, index=True)
    player_id = db.Column(db.String(36), db.ForeignKey('player.id'), nullable=False, index=True)
    move_type = db.Column(db.String(32), nullable=False, default='guess')
    payload = db.Column(db.String(64), nullable=False)
    # Position in the session's move log; breaks created_at ties
    seq = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    game = db.relationship('Game', back_populates='moves')
    player = db.relationship('Player')

    def to_dict(self):
        return {
            'id': self.id,
            'gameId': self.game_id,
            'playerId': self.player_id,
            'moveType': self.move_type,
            'value': self.payload,
            'seq': self.seq,
            'timestamp': to_timestamp(self.created_at),
        }
