"""Session timers and periodic background loops on top of Socket.IO background tasks.

Each session has at most one pending timer. A timer that was cancelled or
replaced before it fired is skipped here, and engines also compare the timer
token on arrival, so a late wakeup can never act on a newer phase.
"""

import threading
from typing import Callable, Dict, Optional, Tuple


class TimerScheduler:

    def __init__(self, socketio, app=None, on_fire: Optional[Callable[[str, str, int], None]] = None):
        self.socketio = socketio
        self.app = app
        self.on_fire = on_fire
        self._pending: Dict[str, Tuple[str, int]] = {}
        self._lock = threading.Lock()

    def bind(self, app, on_fire: Callable[[str, str, int], None]) -> None:
        self.app = app
        self.on_fire = on_fire

    def pending(self, session_id: str) -> Optional[Tuple[str, int]]:
        with self._lock:
            return self._pending.get(session_id)

    def schedule(self, session_id: str, kind: str, seconds: float, token: int) -> None:
        with self._lock:
            self._pending[session_id] = (kind, token)
        self.app.logger.info(f"[timer-set] session={session_id} kind={kind} token={token} duration={seconds}s")
        self.socketio.start_background_task(self._worker, session_id, kind, token, seconds)

    def cancel(self, session_id: str) -> None:
        with self._lock:
            removed = self._pending.pop(session_id, None)
        if removed is not None:
            self.app.logger.info(f"[timer-cancel] session={session_id}")

    def _claim(self, session_id: str, kind: str, token: int) -> bool:
        """Remove the pending entry only if it is still this exact timer."""
        with self._lock:
            if self._pending.get(session_id) != (kind, token):
                return False
            del self._pending[session_id]
            return True

    def _worker(self, session_id: str, kind: str, token: int, delay: float) -> None:
        self.socketio.sleep(delay)
        if not self._claim(session_id, kind, token):
            self.app.logger.info(f"[timer-skip] session={session_id} kind={kind} token={token} no longer armed")
            return
        with self.app.app_context():
            self.app.logger.info(f"[timer-fire] session={session_id} kind={kind} token={token}")
            try:
                self.on_fire(session_id, kind, token)
            except Exception:
                self.app.logger.exception(f"[timer-fire] session={session_id} kind={kind} failed")


def run_periodic(socketio, app, interval: float, func: Callable[[], None], name: str) -> None:
    """Start a background task calling ``func`` every ``interval`` seconds inside an app context."""

    def _loop():
        while True:
            socketio.sleep(interval)
            with app.app_context():
                try:
                    func()
                except Exception:
                    app.logger.exception(f"[{name}] periodic task failed")

    app.logger.info(f"[{name}] periodic task every {interval}s")
    socketio.start_background_task(_loop)
