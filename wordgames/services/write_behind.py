"""Deferred persistence for state the live sessions already own.

Moves, timer-driven phase changes and bookkeeping are applied in memory first
and queued here; a background loop drains the queue in small batches, each
batch in one storage transaction. A failed batch is put back with every
operation's retry count bumped, and an operation that keeps failing is dropped
and logged. The live sessions never wait on this queue.
"""

from dataclasses import dataclass, field
import heapq
import itertools
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

PRIORITY_SESSION_COMPLETE = 2
PRIORITY_MOVE = 1
PRIORITY_HOUSEKEEPING = 0

OPERATION_TYPES = ('move', 'sessionComplete', 'sessionUpdate', 'playerUpdate', 'lobbyUpdate')

DEFAULT_PRIORITIES = {
    'sessionComplete': PRIORITY_SESSION_COMPLETE,
    'sessionUpdate': PRIORITY_SESSION_COMPLETE,
    'move': PRIORITY_MOVE,
    'playerUpdate': PRIORITY_HOUSEKEEPING,
    'lobbyUpdate': PRIORITY_HOUSEKEEPING,
}


@dataclass
class PendingOperation:
    type: str
    payload: Dict[str, Any]
    priority: int = PRIORITY_HOUSEKEEPING
    retry_count: int = 0
    # Enqueue order; ties between equal priorities drain oldest first.
    seq: int = field(default=0, compare=False)


class WriteBehindQueue:

    def __init__(self, apply_batch: Callable[[List[PendingOperation]], None], batch_size: int = 10,
                 max_retries: int = 3, interval: float = 2.0, max_pending: int = 10000,
                 sleep: Callable[[float], None] = time.sleep):
        self.apply_batch = apply_batch
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.interval = interval
        self.max_pending = max_pending
        self.sleep = sleep

        self._heap: List[tuple] = []
        self._lock = threading.Lock()
        self._counter = itertools.count()
        self._running = False

        self.applied = 0
        self.failed_batches = 0
        self.dropped = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._heap)

    @property
    def running(self) -> bool:
        return self._running

    def enqueue(self, op_type: str, payload: Dict[str, Any], priority: Optional[int] = None) -> PendingOperation:
        """Queue an operation; never blocks on storage."""
        if op_type not in OPERATION_TYPES:
            raise ValueError(f'unknown write-behind operation {op_type!r}')
        if priority is None:
            priority = DEFAULT_PRIORITIES[op_type]
        op = PendingOperation(type=op_type, payload=payload, priority=priority)
        with self._lock:
            self._push(op)
            pending = len(self._heap)
        logger.debug(f"[write-behind] queued {op_type} priority={priority} pending={pending}")
        return op

    def _push(self, op: PendingOperation) -> None:
        # Caller holds the lock.
        if len(self._heap) >= self.max_pending:
            evicted = self._evict_lowest()
            if evicted is not None and evicted.priority > op.priority:
                heapq.heappush(self._heap, self._entry(evicted))
                self.dropped += 1
                logger.error(f"[write-behind] buffer full, dropped {op.type} payload={op.payload}")
                return
            if evicted is not None:
                self.dropped += 1
                logger.error(f"[write-behind] buffer full, evicted {evicted.type} payload={evicted.payload}")
        op.seq = next(self._counter)
        heapq.heappush(self._heap, self._entry(op))

    @staticmethod
    def _entry(op: PendingOperation) -> tuple:
        return (-op.priority, op.seq, op)

    def _evict_lowest(self) -> Optional[PendingOperation]:
        if not self._heap:
            return None
        # Lowest priority, newest first among equals.
        victim = max(self._heap, key=lambda entry: (entry[0], entry[1]))
        self._heap.remove(victim)
        heapq.heapify(self._heap)
        return victim[2]

    def _take_batch(self) -> List[PendingOperation]:
        with self._lock:
            count = min(self.batch_size, len(self._heap))
            return [heapq.heappop(self._heap)[2] for _ in range(count)]

    def drain_once(self) -> int:
        """Apply one batch. Returns the number of operations committed."""
        batch = self._take_batch()
        if not batch:
            return 0
        try:
            self.apply_batch(batch)
        except Exception as exc:
            self.failed_batches += 1
            logger.warning(f"[write-behind] batch of {len(batch)} failed: {exc}")
            self._requeue(batch)
            return 0
        self.applied += len(batch)
        logger.debug(f"[write-behind] applied batch of {len(batch)}")
        return len(batch)

    def _requeue(self, batch: List[PendingOperation]) -> None:
        with self._lock:
            for op in batch:
                op.retry_count += 1
                if op.retry_count >= self.max_retries:
                    self.dropped += 1
                    logger.error(
                        f"[write-behind] permanent failure, dropping {op.type} "
                        f"after {op.retry_count} attempts payload={op.payload}"
                    )
                    continue
                # Keep the original seq so retried work stays ahead of newer peers.
                heapq.heappush(self._heap, self._entry(op))

    def flush(self, max_batches: Optional[int] = None) -> int:
        """Drain synchronously until empty (or ``max_batches`` attempts). Returns ops committed."""
        committed = 0
        attempts = 0
        while len(self) and (max_batches is None or attempts < max_batches):
            committed += self.drain_once()
            attempts += 1
        return committed

    def start(self, app, spawn: Callable[..., Any]) -> None:
        """Run the drain loop as a background task created by ``spawn``."""
        if self._running:
            return
        self._running = True
        spawn(self._run, app)
        app.logger.info(f"[write-behind] drain loop started interval={self.interval}s batch={self.batch_size}")

    def stop(self) -> None:
        self._running = False

    def _run(self, app) -> None:
        while self._running:
            self.sleep(self.interval)
            with app.app_context():
                try:
                    self.drain_once()
                except Exception:
                    app.logger.exception('[write-behind] drain loop error')

    def stats(self) -> Dict[str, int]:
        return {
            'pending': len(self),
            'applied': self.applied,
            'failedBatches': self.failed_batches,
            'dropped': self.dropped,
        }
