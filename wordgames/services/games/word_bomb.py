"""Word Bomb game.

Rules:
1. Players take turns submitting words, in join order
2. Each word must start with the last letter of the previous word
3. Words cannot be repeated
4. A player who runs out of time is eliminated; the last player standing wins
"""

import logging
from typing import Any, Dict, List, Optional

from wordgames.errors import MoveValidationError, StateConflictError
from .base import GameEngine, normalize_word
from .types import GameType, Move, Phase, PlayerRef

logger = logging.getLogger(__name__)

DEFAULT_TURN_SEC = 15
MIN_WORD_LENGTH = 2


class WordBombEngine(GameEngine):
    game_type = GameType.WORD_BOMB
    default_title = 'Word Bomb'
    move_event = 'newWord'
    move_type = 'word'

    def __init__(self, gateway=None, scheduler=None, **kwargs):
        super().__init__(gateway=gateway, scheduler=scheduler, **kwargs)
        self.turn_seconds = DEFAULT_TURN_SEC
        self.current_player_id: Optional[str] = None
        self.used_words = set()
        self._turn_order: List[str] = []

    def _apply_config(self, config: Dict[str, Any]) -> None:
        super()._apply_config(config)
        self.turn_seconds = int(config.get('turnSeconds', DEFAULT_TURN_SEC))

    def _after_hydrate(self) -> None:
        self.used_words = {m.payload for m in self.moves}
        self._turn_order = list(self.players)

    def _resume(self) -> None:
        if self.phase != Phase.ACTIVE:
            return
        last_mover = self.moves[-1].player_id if self.moves else None
        self.current_player_id = self._next_player_id(last_mover) if last_mover else self._first_active()
        if self.current_player_id is not None:
            self._begin_turn()

    # ---- turn order ----

    def _active_ids(self) -> List[str]:
        return [pid for pid, ref in self.players.items() if not ref.eliminated]

    def _first_active(self) -> Optional[str]:
        active = self._active_ids()
        return active[0] if active else None

    def _next_player_id(self, current: Optional[str]) -> Optional[str]:
        order = self._turn_order or list(self.players)
        if not order:
            return None
        start = order.index(current) if current in order else -1
        for step in range(1, len(order) + 1):
            pid = order[(start + step) % len(order)]
            ref = self.players.get(pid)
            if ref is not None and not ref.eliminated and pid != current:
                return pid
        return None

    def _begin_turn(self) -> None:
        self._arm_timer('turn', self.turn_seconds)
        self._emit('turnChange', {
            'sessionId': self.session_id,
            'playerId': self.current_player_id,
            'playerName': self.player_name(self.current_player_id),
            'timeLimit': self.turn_seconds,
            'deadline': self._timer[2],
        })

    # ---- lifecycle hooks ----

    def _on_player_ready(self, player: PlayerRef) -> None:
        self._maybe_start()

    def _maybe_start(self) -> None:
        if (self.phase == Phase.WAITING_FOR_PLAYERS
                and len(self.players) >= self.min_players
                and self.all_ready()):
            self.start_game()

    def _on_started(self) -> None:
        self._turn_order = list(self.players)
        self.current_player_id = self._first_active()
        self._begin_turn()

    def _on_player_removed(self, ref: PlayerRef) -> None:
        if self.phase == Phase.WAITING_FOR_PLAYERS:
            self._maybe_start()
            return
        if self.phase != Phase.ACTIVE:
            return
        remaining = self._active_ids()
        if len(remaining) <= 1:
            self._finish(remaining[0] if remaining else None, 'forfeit')
            return
        if ref.player_id == self.current_player_id:
            self.current_player_id = self._next_player_id(ref.player_id)
            self._begin_turn()

    def _on_timer(self, kind: str) -> bool:
        if kind != 'turn' or self.phase != Phase.ACTIVE or self.current_player_id is None:
            return False
        loser = self.players.get(self.current_player_id)
        if loser is None:
            return False
        loser.eliminated = True
        logger.info(f"[turn-expired] session={self.session_id} player={loser.player_id}")
        self._emit('playerEliminated', {
            'sessionId': self.session_id,
            'playerId': loser.player_id,
            'playerName': loser.display_name,
            'reason': 'timeout',
        })
        remaining = self._active_ids()
        if len(remaining) <= 1:
            self._finish(remaining[0] if remaining else None, 'timeout')
        else:
            self.current_player_id = self._next_player_id(loser.player_id)
            self._begin_turn()
        return True

    def _finish(self, winner_id: Optional[str], reason: str) -> None:
        self.current_player_id = None
        self.end_game({
            'winnerId': winner_id,
            'winnerName': self.player_name(winner_id) if winner_id else None,
            'reason': reason,
        })

    # ---- words ----

    def _validate_move(self, player: PlayerRef, value: Any) -> str:
        if player.player_id != self.current_player_id:
            raise StateConflictError('Not your turn')
        word = normalize_word(value)
        if word is None or len(word) < MIN_WORD_LENGTH:
            raise MoveValidationError(f'Words need at least {MIN_WORD_LENGTH} letters')
        if word in self.used_words:
            raise MoveValidationError(f'"{word}" was already played')
        if self.moves:
            last_letter = self.moves[-1].payload[-1]
            if not word.startswith(last_letter):
                raise MoveValidationError(f'Word must start with "{last_letter}"')
        return word

    def _record_move(self, player: PlayerRef, move: Move) -> None:
        self.used_words.add(move.payload)
        player.score += len(move.payload)

    def _move_event_extras(self, player: PlayerRef) -> Dict[str, Any]:
        return {'score': player.score}

    def _after_move(self, player: PlayerRef, move: Move) -> Optional[Dict[str, Any]]:
        self.current_player_id = self._next_player_id(player.player_id)
        self._begin_turn()
        return None

    def _extra_state(self) -> Dict[str, Any]:
        deadline = self._timer[2] if self._timer is not None and self._timer[0] == 'turn' else None
        return {
            'currentPlayerId': self.current_player_id,
            'turnTimeLimit': self.turn_seconds,
            'turnDeadline': deadline,
        }
