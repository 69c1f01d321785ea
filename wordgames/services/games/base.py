"""Shared contract for every game type.

A ``GameEngine`` owns one session's authoritative state. Nothing outside the
engine mutates its roster, move log or phase; callers go through the methods
below and then collect the domain events produced by the mutation with
``drain_events()``. Engines never talk to the transport themselves.
"""

import logging
import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple

from wordgames.errors import (
    CapacityError,
    GameError,
    MoveValidationError,
    NotFoundError,
    StateConflictError,
)
from .types import (
    LOBBY_STATUS_BY_PHASE,
    PHASE_ORDER,
    TERMINAL_PHASES,
    GameType,
    Move,
    MoveResult,
    Phase,
    PlayerRef,
    SessionSnapshot,
)

logger = logging.getLogger(__name__)

HIDDEN = '[hidden]'
MAX_WORD_LENGTH = 32


def normalize_word(value: Any, max_length: int = MAX_WORD_LENGTH) -> Optional[str]:
    """Trim and lowercase a single word; ``None`` if it is not one."""
    if not isinstance(value, str):
        return None
    word = value.strip().lower()
    if not word or len(word) > max_length:
        return None
    if not word.replace("'", '').replace('-', '').isalpha():
        return None
    return word


class GameEngine:
    game_type: GameType = None
    default_title = 'New Game'
    move_event = 'newMove'
    move_type = 'move'
    joinable_phases = frozenset({Phase.WAITING_FOR_PLAYERS})

    def __init__(self, gateway=None, scheduler=None, clock=time.time):
        self.gateway = gateway
        self.scheduler = scheduler
        self.clock = clock
        # Serializes every mutation of this session; other sessions are unaffected.
        self.lock = threading.RLock()

        self.session_id: Optional[str] = None
        self.lobby_id: Optional[str] = None
        self.title = self.default_title
        self.max_players = 2
        self.min_players = 2
        self.config: Dict[str, Any] = {}
        self.phase = Phase.WAITING_FOR_PLAYERS
        self.players: Dict[str, PlayerRef] = {}
        self.moves: List[Move] = []
        self.winning_value: Optional[str] = None
        self.outcome: Optional[Dict[str, Any]] = None
        self.created_at = clock()
        self.last_activity_at = self.created_at

        self._names: Dict[str, str] = {}
        self._events: List[Tuple[str, Dict[str, Any]]] = []
        # At most one armed timer per session: (kind, token, deadline)
        self._timer: Optional[Tuple[str, int, float]] = None
        self._timer_token = 0
        self._next_seq = 0
        self._initialized = False

    # ---- lifecycle ----

    def initialize(self, session_id: str, config: Optional[Dict[str, Any]] = None) -> 'GameEngine':
        """Bind this engine to ``session_id``, hydrating from storage when a record exists.

        Calling it again for the same session returns the live instance untouched.
        """
        if self._initialized:
            if session_id != self.session_id:
                raise ValueError(f'engine already bound to session {self.session_id}')
            return self

        self.session_id = session_id
        self._apply_config(dict(config or {}))

        snapshot = self.gateway.load_session(session_id) if self.gateway is not None else None
        if snapshot is not None:
            self._hydrate(snapshot)
        self._initialized = True
        logger.info(
            f"[init] session={session_id} type={self.game_type.value} phase={self.phase.value} "
            f"players={len(self.players)} moves={len(self.moves)} hydrated={snapshot is not None}"
        )
        if snapshot is not None and self.phase not in TERMINAL_PHASES:
            self._resume()
        return self

    def _apply_config(self, config: Dict[str, Any]) -> None:
        self.config = config
        self.lobby_id = config.get('lobbyId', self.lobby_id)
        self.title = config.get('title') or self.default_title
        self.max_players = int(config.get('maxPlayers') or self.max_players)
        self.min_players = int(config.get('minPlayers') or self.min_players)

    def _hydrate(self, snapshot: SessionSnapshot) -> None:
        self._apply_config({**snapshot.config, **self.config})
        self.lobby_id = snapshot.lobby_id
        self.title = snapshot.title or self.title
        self.max_players = snapshot.max_players or self.max_players
        self.phase = Phase(snapshot.phase)
        self.winning_value = snapshot.winning_value
        self.outcome = snapshot.outcome
        self.created_at = snapshot.created_at
        for row in snapshot.players:
            ref = PlayerRef(
                player_id=row['id'],
                display_name=row['display_name'],
                is_host=bool(row.get('is_host')),
                secret_value=row.get('secret_value'),
                is_ready=bool(row.get('is_ready')),
                score=int(row.get('score') or 0),
                eliminated=bool(row.get('eliminated')),
            )
            self.players[ref.player_id] = ref
            self._names[ref.player_id] = ref.display_name
        for index, row in enumerate(snapshot.moves):
            self.moves.append(Move(
                id=row['id'],
                player_id=row['player_id'],
                payload=row['payload'],
                created_at=row['created_at'],
                seq=row.get('seq', index),
            ))
            self._names.setdefault(row['player_id'], row.get('player_name') or 'Unknown')
        # Stored seq values may have gaps; new moves always go after the highest one
        self._next_seq = max((m.seq for m in self.moves), default=-1) + 1
        last_move_at = self.moves[-1].created_at if self.moves else self.created_at
        self.last_activity_at = max(self.created_at, last_move_at)
        self._after_hydrate()

    def _after_hydrate(self) -> None:
        pass

    def _resume(self) -> None:
        """Re-arm whatever timer the restored phase needs."""

    # ---- roster ----

    def has_capacity(self) -> bool:
        return len(self.players) < self.max_players

    def is_joinable(self) -> bool:
        return self.phase in self.joinable_phases and self.has_capacity()

    def add_player(self, player_id: str, display_name: str, is_host: bool = False,
                   connection_id: Optional[str] = None) -> bool:
        """Add a player to the roster. Returns False when the player was already present."""
        existing = self.players.get(player_id)
        if existing is not None:
            if connection_id is not None:
                existing.connection_id = connection_id
            self._touch()
            return False
        if self.phase in TERMINAL_PHASES:
            raise StateConflictError('Game is over')
        if not self.has_capacity():
            raise CapacityError('Game is full')
        if self.phase not in self.joinable_phases:
            raise StateConflictError('Game already started')

        self.players[player_id] = PlayerRef(
            player_id=player_id,
            display_name=display_name,
            is_host=is_host,
            connection_id=connection_id,
        )
        self._names[player_id] = display_name
        self._touch()
        logger.info(f"[roster] session={self.session_id} add player={player_id} name={display_name}")
        self._on_player_added(player_id)
        return True

    def remove_player(self, player_id: str) -> Optional[PlayerRef]:
        ref = self.players.pop(player_id, None)
        if ref is None:
            return None
        self._touch()
        logger.info(f"[roster] session={self.session_id} remove player={player_id} remaining={len(self.players)}")
        if self.phase in TERMINAL_PHASES:
            return ref
        if not self.players:
            self.abandon_game()
        else:
            self._on_player_removed(ref)
        return ref

    def connect_player(self, player_id: str, connection_id: str) -> PlayerRef:
        ref = self.players.get(player_id)
        if ref is None:
            raise NotFoundError('Player not found')
        ref.connection_id = connection_id
        self._touch()
        return ref

    def disconnect_player(self, player_id: str) -> Optional[PlayerRef]:
        ref = self.players.get(player_id)
        if ref is not None:
            ref.connection_id = None
            self._touch()
        return ref

    def player_for_connection(self, connection_id: str) -> Optional[PlayerRef]:
        for ref in self.players.values():
            if ref.connection_id == connection_id:
                return ref
        return None

    def _on_player_added(self, player_id: str) -> None:
        pass

    def _on_player_removed(self, ref: PlayerRef) -> None:
        pass

    # ---- readiness ----

    def check_ready(self, player_id: str, ready_data: Any = None) -> Dict[str, Any]:
        """Validate a ready request without mutating anything."""
        player = self.players.get(player_id)
        if player is None:
            raise NotFoundError('Player not found')
        if self.phase == Phase.ACTIVE or self.phase in TERMINAL_PHASES:
            raise StateConflictError('Game already started')
        if isinstance(ready_data, str):
            ready_data = {'value': ready_data}
        return self._validate_ready(player, ready_data or {})

    def set_player_ready(self, player_id: str, ready_data: Any = None) -> None:
        data = self.check_ready(player_id, ready_data)
        player = self.players[player_id]
        player.is_ready = True
        if 'secretValue' in data:
            player.secret_value = data['secretValue']
        self._touch()
        self._on_player_ready(player)

    def all_ready(self) -> bool:
        return bool(self.players) and all(p.is_ready for p in self.players.values())

    def _validate_ready(self, player: PlayerRef, data: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    def _on_player_ready(self, player: PlayerRef) -> None:
        pass

    # ---- moves ----

    def process_move(self, player_id: str, move_data: Any) -> MoveResult:
        if self.phase != Phase.ACTIVE:
            return MoveResult.rejected('Game is not active')
        player = self.players.get(player_id)
        if player is None:
            return MoveResult.rejected('Player not in this game')
        try:
            value = self._validate_move(player, self._extract_value(move_data))
        except GameError as exc:
            return MoveResult.rejected(exc.message)

        move = Move(
            id=str(uuid.uuid4()),
            player_id=player_id,
            payload=value,
            created_at=self.clock(),
            seq=self._next_seq,
        )
        self._next_seq += 1
        self.moves.append(move)
        self._touch()
        self._record_move(player, move)
        payload = self._move_payload(move)
        payload.update(self._move_event_extras(player))
        self._emit(self.move_event, payload)

        outcome = self._after_move(player, move)
        if outcome is not None:
            self.end_game(outcome)
            return MoveResult(accepted=True, is_game_over=True, outcome=outcome, move=move)
        return MoveResult(accepted=True, move=move)

    @staticmethod
    def _extract_value(move_data: Any) -> Any:
        if isinstance(move_data, dict):
            return move_data.get('value', move_data.get('word'))
        return move_data

    def _validate_move(self, player: PlayerRef, value: Any) -> str:
        word = normalize_word(value)
        if word is None:
            raise MoveValidationError('Moves must be a single word')
        return word

    def _record_move(self, player: PlayerRef, move: Move) -> None:
        pass

    def _move_event_extras(self, player: PlayerRef) -> Dict[str, Any]:
        return {}

    def _after_move(self, player: PlayerRef, move: Move) -> Optional[Dict[str, Any]]:
        return None

    # ---- phase transitions ----

    def start_game(self) -> None:
        if self.phase == Phase.ACTIVE:
            raise StateConflictError('Game already started')
        self._transition(Phase.ACTIVE)
        self._on_started()

    def end_game(self, outcome: Optional[Dict[str, Any]] = None) -> None:
        if self.phase in TERMINAL_PHASES:
            raise StateConflictError('Game is already over')
        self.outcome = dict(outcome or {})
        self.winning_value = self.outcome.get('winningValue')
        self._transition(Phase.COMPLETED)
        self._emit('gameOver', {'sessionId': self.session_id, **self.outcome})

    def abandon_game(self) -> None:
        if self.phase in TERMINAL_PHASES:
            return
        self._transition(Phase.ABANDONED)

    def _on_started(self) -> None:
        pass

    def _transition(self, target: Phase) -> None:
        current = self.phase
        if target == current:
            return
        if current in TERMINAL_PHASES:
            raise StateConflictError(f'Game is already {current.value.lower()}')
        if target != Phase.ABANDONED and PHASE_ORDER[target] < PHASE_ORDER[current]:
            raise StateConflictError(f'Cannot move from {current.value} back to {target.value}')
        self._cancel_timer()
        self.phase = target
        self._touch()
        logger.info(f"[phase] session={self.session_id} {current.value} -> {target.value}")
        self._emit('phaseChanged', {
            'sessionId': self.session_id,
            'phase': target.value,
            'previous': current.value,
            'lobbyStatus': LOBBY_STATUS_BY_PHASE[target].value,
        })

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    # ---- timers ----

    @property
    def armed_timer(self) -> Optional[Tuple[str, int]]:
        if self._timer is None:
            return None
        kind, token, _ = self._timer
        return kind, token

    def _arm_timer(self, kind: str, seconds: float) -> int:
        self._cancel_timer()
        self._timer_token += 1
        token = self._timer_token
        self._timer = (kind, token, self.clock() + seconds)
        if self.scheduler is not None:
            self.scheduler.schedule(self.session_id, kind, seconds, token)
        return token

    def _cancel_timer(self) -> None:
        if self._timer is None:
            return
        self._timer = None
        if self.scheduler is not None:
            self.scheduler.cancel(self.session_id)

    def handle_timer(self, kind: str, token: int) -> bool:
        """Apply an expired timer. Stale or cancelled timers are ignored and return False."""
        if self._timer is None or self._timer[0] != kind or self._timer[1] != token:
            logger.info(f"[timer-stale] session={self.session_id} kind={kind} token={token}")
            return False
        if self.phase in TERMINAL_PHASES:
            self._timer = None
            return False
        self._timer = None
        return self._on_timer(kind)

    def _on_timer(self, kind: str) -> bool:
        return False

    # ---- events ----

    def _emit(self, name: str, payload: Dict[str, Any]) -> None:
        self._events.append((name, payload))

    def drain_events(self) -> List[Tuple[str, Dict[str, Any]]]:
        events, self._events = self._events, []
        return events

    def _touch(self) -> None:
        self.last_activity_at = self.clock()

    # ---- views ----

    def player_name(self, player_id: str) -> str:
        return self._names.get(player_id, 'Unknown')

    def _move_payload(self, move: Move) -> Dict[str, Any]:
        return {
            'id': move.id,
            'playerId': move.player_id,
            'playerName': self.player_name(move.player_id),
            'value': move.payload,
            'timestamp': move.created_at,
            'seq': move.seq,
        }

    def _public_player(self, ref: PlayerRef) -> Dict[str, Any]:
        return {
            'id': ref.player_id,
            'name': ref.display_name,
            'isHost': ref.is_host,
            'isConnected': ref.is_connected,
            'isReady': ref.is_ready,
            'secretValue': HIDDEN if ref.secret_value else '',
            'score': ref.score,
            'eliminated': ref.eliminated,
        }

    def _extra_state(self) -> Dict[str, Any]:
        return {}

    def get_public_state(self) -> Dict[str, Any]:
        """Snapshot safe to broadcast to every participant; secrets are masked."""
        timer = None
        if self._timer is not None:
            timer = {'kind': self._timer[0], 'deadline': self._timer[2]}
        state = {
            'id': self.session_id,
            'lobbyId': self.lobby_id,
            'title': self.title,
            'gameType': self.game_type.value,
            'phase': self.phase.value,
            'status': self.phase.value,
            'maxPlayers': self.max_players,
            'players': [self._public_player(p) for p in self.players.values()],
            'moves': [self._move_payload(m) for m in self.moves],
            'winningValue': self.winning_value,
            'outcome': self.outcome,
            'createdAt': self.created_at,
            'timer': timer,
        }
        state.update(self._extra_state())
        return state

    def get_private_state(self, player_id: str) -> Dict[str, Any]:
        """Public snapshot plus the viewer's own hidden fields."""
        state = self.get_public_state()
        own = self.players.get(player_id)
        for entry in state['players']:
            if own is not None and entry['id'] == player_id:
                entry['secretValue'] = own.secret_value or ''
        state['you'] = player_id
        return state

    def summary(self) -> Dict[str, Any]:
        host = next((p for p in self.players.values() if p.is_host), None)
        connected = [p for p in self.players.values() if p.is_connected]
        return {
            'id': self.session_id,
            'lobbyId': self.lobby_id,
            'title': self.title,
            'host': host.display_name if host else None,
            'players': len(self.players),
            'playerCount': len(self.players),
            'connectedCount': len(connected),
            'playerNames': [p.display_name for p in self.players.values()],
            'maxPlayers': self.max_players,
            'gameType': self.game_type.value,
            'status': self.phase.value,
        }
