"""Process-wide cache of live sessions and of which connection plays for whom.

The registry is the only owner of live ``GameEngine`` instances. It is created
once per app by ``create_app`` and handed to the coordinator; nothing reaches
it through module globals.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from wordgames.errors import NotFoundError
from wordgames.services.games import create_engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionBinding:
    connection_id: str
    session_id: str
    player_id: str


class SessionRegistry:

    def __init__(self, gateway=None, scheduler=None, clock: Callable[[], float] = time.time,
                 idle_threshold: float = 24 * 60 * 60):
        self.gateway = gateway
        self.scheduler = scheduler
        self.clock = clock
        self.idle_threshold = idle_threshold
        self._sessions = {}
        self._bindings: Dict[str, ConnectionBinding] = {}
        # Guards the two maps only; engines carry their own locks.
        self._lock = threading.RLock()

    # ---- sessions ----

    def get_or_create(self, session_id: str, game_type: Optional[str] = None, config: Optional[dict] = None):
        """Return the cached engine, or build and initialize one (hydrating from storage).

        Storage is read outside the registry lock. If two callers race, the
        first insert wins.
        """
        engine = self.get(session_id)
        if engine is not None:
            return engine
        if game_type is None:
            game = self.gateway.get_game(session_id) if self.gateway is not None else None
            if game is None:
                raise NotFoundError('Game not found')
            game_type = game.game_type
        built = create_engine(game_type, gateway=self.gateway, scheduler=self.scheduler, clock=self.clock)
        built.initialize(session_id, config)
        with self._lock:
            engine = self._sessions.setdefault(session_id, built)
        if engine is not built:
            logger.info(f"[registry] session={session_id} was loaded concurrently; keeping the first instance")
        return engine

    def get(self, session_id: str):
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str):
        with self._lock:
            engine = self._sessions.pop(session_id, None)
            stale = [cid for cid, b in self._bindings.items() if b.session_id == session_id]
            for cid in stale:
                del self._bindings[cid]
        if engine is not None:
            logger.info(f"[registry] evicted session={session_id}")
        return engine

    def sessions(self) -> List:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    # ---- connection bindings ----

    def bind_connection(self, connection_id: str, session_id: str, player_id: str) -> Optional[ConnectionBinding]:
        """Bind a connection to a player; returns the binding it replaced, if any."""
        binding = ConnectionBinding(connection_id, session_id, player_id)
        with self._lock:
            previous = self._bindings.get(connection_id)
            self._bindings[connection_id] = binding
        return previous

    def binding_for(self, connection_id: str) -> Optional[ConnectionBinding]:
        with self._lock:
            return self._bindings.get(connection_id)

    def unbind(self, connection_id: str) -> Optional[ConnectionBinding]:
        with self._lock:
            return self._bindings.pop(connection_id, None)

    def connections_for_player(self, player_id: str) -> List[str]:
        with self._lock:
            return [cid for cid, b in self._bindings.items() if b.player_id == player_id]

    # ---- idle cleanup ----

    def sweep_idle(self, now: Optional[float] = None) -> Dict[str, list]:
        """Abandon live sessions idle past the threshold and evict idle terminal ones.

        Returns ``{'abandoned': [engine, ...], 'evicted': [session_id, ...]}``;
        callers are responsible for broadcasting and persisting the abandonment.
        """
        now = self.clock() if now is None else now
        abandoned, evicted = [], []
        for engine in self.sessions():
            with engine.lock:
                idle_for = now - engine.last_activity_at
                if idle_for <= self.idle_threshold:
                    continue
                if engine.is_terminal:
                    evicted.append(engine.session_id)
                    continue
                logger.info(f"[sweep] abandoning session={engine.session_id} idle={int(idle_for)}s")
                engine.abandon_game()
                abandoned.append(engine)
        for session_id in evicted:
            self.remove(session_id)
        return {'abandoned': abandoned, 'evicted': evicted}
