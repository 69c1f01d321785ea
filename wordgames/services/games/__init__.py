"""Game engines: one authoritative state machine per live session.

Engines hold roster, move log and phase for a single session and know the
rules of their game type. They are transport-free; the coordinator reads the
events they produce and takes care of broadcasting and persistence.
"""

from .base import GameEngine, normalize_word
from .factory import create_engine, default_config, resolve_game_type, supported_game_types
from .types import GameType, LobbyStatus, Phase

__all__ = [
    'GameEngine',
    'GameType',
    'LobbyStatus',
    'Phase',
    'create_engine',
    'default_config',
    'normalize_word',
    'resolve_game_type',
    'supported_game_types',
]
