from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class GameType(str, Enum):
    WORD_MATCH = 'WORD_MATCH'
    WORD_BOMB = 'WORD_BOMB'


class Phase(str, Enum):
    WAITING_FOR_PLAYERS = 'WAITING_FOR_PLAYERS'
    SETTING_UP = 'SETTING_UP'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    ABANDONED = 'ABANDONED'


class LobbyStatus(str, Enum):
    WAITING = 'WAITING'
    READY = 'READY'
    IN_GAME = 'IN_GAME'
    FINISHED = 'FINISHED'
    ABANDONED = 'ABANDONED'


TERMINAL_PHASES = frozenset({Phase.COMPLETED, Phase.ABANDONED})

# Forward order of the non-abandon phases; transitions never go backwards.
PHASE_ORDER = {
    Phase.WAITING_FOR_PLAYERS: 0,
    Phase.SETTING_UP: 1,
    Phase.ACTIVE: 2,
    Phase.COMPLETED: 3,
}

LOBBY_STATUS_BY_PHASE = {
    Phase.WAITING_FOR_PLAYERS: LobbyStatus.WAITING,
    Phase.SETTING_UP: LobbyStatus.READY,
    Phase.ACTIVE: LobbyStatus.IN_GAME,
    Phase.COMPLETED: LobbyStatus.FINISHED,
    Phase.ABANDONED: LobbyStatus.ABANDONED,
}


@dataclass
class PlayerRef:
    """A player's membership in one session.

    ``connection_id`` is only a lookup key for the live connection; ``None``
    means the player is currently disconnected but still on the roster.
    """
    player_id: str
    display_name: str
    is_host: bool = False
    connection_id: Optional[str] = None
    secret_value: Optional[str] = None
    is_ready: bool = False
    score: int = 0
    eliminated: bool = False

    @property
    def is_connected(self) -> bool:
        return self.connection_id is not None


@dataclass(frozen=True)
class Move:
    id: str
    player_id: str
    payload: str
    created_at: float
    seq: int


@dataclass
class MoveResult:
    accepted: bool
    is_game_over: bool = False
    outcome: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    move: Optional[Move] = None

    @classmethod
    def rejected(cls, error: str) -> 'MoveResult':
        return cls(accepted=False, error=error)


@dataclass
class SessionSnapshot:
    """Persisted view of a session used to rebuild a live engine."""
    session_id: str
    lobby_id: str
    game_type: str
    phase: str
    title: str
    max_players: int
    created_at: float
    config: Dict[str, Any] = field(default_factory=dict)
    winning_value: Optional[str] = None
    outcome: Optional[Dict[str, Any]] = None
    players: list = field(default_factory=list)
    moves: list = field(default_factory=list)
