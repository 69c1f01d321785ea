from typing import Any, Dict, List, Optional

from wordgames.errors import MoveValidationError
from .base import GameEngine
from .types import GameType
from .word_bomb import WordBombEngine
from .word_match import WordMatchEngine

GAME_ENGINES = {
    GameType.WORD_MATCH.value: WordMatchEngine,
    GameType.WORD_BOMB.value: WordBombEngine,
}


def supported_game_types() -> List[str]:
    return list(GAME_ENGINES)


def resolve_game_type(game_type: Optional[str], default: str = GameType.WORD_MATCH.value) -> str:
    resolved = (game_type or default).strip().upper()
    if resolved not in GAME_ENGINES:
        raise MoveValidationError(f"Game type '{game_type}' is not supported")
    return resolved


def create_engine(game_type: str, **kwargs) -> GameEngine:
    """Build an uninitialized engine for ``game_type``."""
    engine_cls = GAME_ENGINES.get(game_type)
    if engine_cls is None:
        raise MoveValidationError(f"Game type '{game_type}' is not supported")
    return engine_cls(**kwargs)


def default_config(game_type: str, app_config: Dict[str, Any], title: Optional[str] = None) -> Dict[str, Any]:
    """Session config persisted on the game row and handed to ``initialize``."""
    config = {
        'title': title or GAME_ENGINES[game_type].default_title,
        'maxPlayers': int(app_config.get('DEFAULT_MAX_PLAYERS', 2)),
        'minPlayers': int(app_config.get('MIN_PLAYERS', 2)),
    }
    if game_type == GameType.WORD_MATCH.value:
        config['countdownSeconds'] = int(app_config.get('WORD_MATCH_COUNTDOWN_SEC', 5))
    elif game_type == GameType.WORD_BOMB.value:
        config['turnSeconds'] = int(app_config.get('WORD_BOMB_TURN_SEC', 15))
    return config
