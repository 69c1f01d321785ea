"""Match My Guess: every player keeps guessing until all of them say the same word."""

import logging
from typing import Any, Dict, Optional

from wordgames.errors import MoveValidationError
from .base import GameEngine, normalize_word
from .types import GameType, Move, Phase, PlayerRef

logger = logging.getLogger(__name__)

DEFAULT_COUNTDOWN_SEC = 5


class WordMatchEngine(GameEngine):
    game_type = GameType.WORD_MATCH
    default_title = 'Match My Guess'
    move_event = 'newGuess'
    move_type = 'guess'

    def __init__(self, gateway=None, scheduler=None, **kwargs):
        super().__init__(gateway=gateway, scheduler=scheduler, **kwargs)
        self.countdown_seconds = DEFAULT_COUNTDOWN_SEC
        # Index in the move log where the current guessing round begins.
        self._round_start = 0

    def _apply_config(self, config: Dict[str, Any]) -> None:
        super()._apply_config(config)
        self.countdown_seconds = int(config.get('countdownSeconds', DEFAULT_COUNTDOWN_SEC))

    def _after_hydrate(self) -> None:
        self._round_start = 0
        for end in range(1, len(self.moves) + 1):
            self._close_round(end)

    def _resume(self) -> None:
        if self.phase == Phase.WAITING_FOR_PLAYERS and len(self.players) >= self.max_players:
            self._start_countdown()

    # ---- roster ----

    def _on_player_added(self, player_id: str) -> None:
        if self.phase == Phase.WAITING_FOR_PLAYERS and len(self.players) >= self.max_players:
            self._start_countdown()

    def _on_player_removed(self, ref: PlayerRef) -> None:
        if self.phase == Phase.WAITING_FOR_PLAYERS:
            if self.armed_timer is not None:
                self._cancel_timer()
                self._emit('countdownCancelled', {'sessionId': self.session_id})
        elif self.phase in (Phase.SETTING_UP, Phase.ACTIVE) and len(self.players) < self.min_players:
            # Nobody left to match with.
            logger.info(f"[forfeit] session={self.session_id} roster={len(self.players)} below min={self.min_players}")
            self.abandon_game()

    def _start_countdown(self) -> None:
        if self.countdown_seconds <= 0:
            self._begin_setup()
            return
        self._arm_timer('countdown', self.countdown_seconds)
        self._emit('countdownStarted', {
            'sessionId': self.session_id,
            'seconds': self.countdown_seconds,
            'deadline': self._timer[2],
        })

    def _on_timer(self, kind: str) -> bool:
        if kind != 'countdown' or self.phase != Phase.WAITING_FOR_PLAYERS:
            return False
        if len(self.players) < self.min_players:
            return False
        self._begin_setup()
        return True

    def _begin_setup(self) -> None:
        self._transition(Phase.SETTING_UP)
        if self._all_secrets_set():
            self.start_game()

    # ---- secrets ----

    def _all_secrets_set(self) -> bool:
        return bool(self.players) and all(p.secret_value for p in self.players.values())

    def _validate_ready(self, player: PlayerRef, data: Dict[str, Any]) -> Dict[str, Any]:
        raw = data.get('secretValue', data.get('secretWord', data.get('value')))
        secret = normalize_word(raw)
        if secret is None:
            raise MoveValidationError('Secret word must be a single word')
        return {'secretValue': secret}

    def _on_player_ready(self, player: PlayerRef) -> None:
        if self.phase == Phase.SETTING_UP and self._all_secrets_set():
            self.start_game()

    # ---- guesses ----

    def _validate_move(self, player: PlayerRef, value: Any) -> str:
        word = normalize_word(value)
        if word is None:
            raise MoveValidationError('Guess must be a single word')
        return word

    def _after_move(self, player: PlayerRef, move: Move) -> Optional[Dict[str, Any]]:
        winning = self._close_round(len(self.moves))
        if winning is not None:
            return {'winningValue': winning}
        return None

    def _close_round(self, end: int) -> Optional[str]:
        """Evaluate the open round over ``moves[round_start:end]``.

        The round closes once every current player has guessed in it. The most
        recent guess of each player is kept (scanning backwards, first seen
        wins); if they are all equal that word wins.
        """
        roster = set(self.players)
        if len(roster) < 2:
            return None
        latest: Dict[str, str] = {}
        for move in reversed(self.moves[self._round_start:end]):
            if move.player_id in roster and move.player_id not in latest:
                latest[move.player_id] = move.payload
                if len(latest) == len(roster):
                    break
        if len(latest) < len(roster):
            return None
        self._round_start = end
        values = set(latest.values())
        return values.pop() if len(values) == 1 else None

    def _extra_state(self) -> Dict[str, Any]:
        deadline = self._timer[2] if self._timer is not None and self._timer[0] == 'countdown' else None
        return {
            'countdownSeconds': self.countdown_seconds,
            'countdownDeadline': deadline,
            'roundStart': self._round_start,
        }
