import pytest

from wordgames.services.write_behind import (
    PRIORITY_HOUSEKEEPING,
    PRIORITY_MOVE,
    PRIORITY_SESSION_COMPLETE,
    WriteBehindQueue,
)


class RecordingStore:

    def __init__(self, failures=0):
        self.batches = []
        self.failures = failures
        self.attempts = 0

    def apply(self, batch):
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise RuntimeError('database is down')
        self.batches.append([(op.type, op.payload.get('n')) for op in batch])


def test_drains_highest_priority_first():
    store = RecordingStore()
    queue = WriteBehindQueue(store.apply, batch_size=10)
    queue.enqueue('playerUpdate', {'n': 1})
    queue.enqueue('move', {'n': 2})
    queue.enqueue('sessionComplete', {'n': 3})
    queue.enqueue('move', {'n': 4})

    assert queue.drain_once() == 4
    assert store.batches == [[('sessionComplete', 3), ('move', 2), ('move', 4), ('playerUpdate', 1)]]
    assert len(queue) == 0


def test_batch_size_limits_each_drain():
    store = RecordingStore()
    queue = WriteBehindQueue(store.apply, batch_size=2)
    for n in range(5):
        queue.enqueue('move', {'n': n})
    assert queue.drain_once() == 2
    assert len(queue) == 3
    assert queue.flush() == 3
    assert [n for batch in store.batches for _, n in batch] == [0, 1, 2, 3, 4]


def test_priorities_follow_operation_type():
    queue = WriteBehindQueue(lambda batch: None)
    assert queue.enqueue('sessionComplete', {}).priority == PRIORITY_SESSION_COMPLETE
    assert queue.enqueue('move', {}).priority == PRIORITY_MOVE
    assert queue.enqueue('lobbyUpdate', {}).priority == PRIORITY_HOUSEKEEPING
    assert queue.enqueue('move', {}, priority=5).priority == 5


def test_unknown_operation_type_rejected():
    queue = WriteBehindQueue(lambda batch: None)
    with pytest.raises(ValueError):
        queue.enqueue('dropTable', {})


def test_transient_failure_is_retried():
    store = RecordingStore(failures=1)
    queue = WriteBehindQueue(store.apply)
    op = queue.enqueue('move', {'n': 1})

    assert queue.drain_once() == 0
    assert op.retry_count == 1
    assert len(queue) == 1

    assert queue.drain_once() == 1
    assert store.batches == [[('move', 1)]]
    assert queue.stats() == {'pending': 0, 'applied': 1, 'failedBatches': 1, 'dropped': 0}


def test_operation_dropped_after_max_retries():
    store = RecordingStore(failures=100)
    queue = WriteBehindQueue(store.apply, max_retries=3)
    queue.enqueue('sessionComplete', {'n': 1})

    for _ in range(3):
        queue.drain_once()
    assert store.attempts == 3
    assert len(queue) == 0
    assert queue.dropped == 1

    # Queue stays usable once storage recovers
    store.failures = 0
    queue.enqueue('move', {'n': 2})
    assert queue.flush() == 1
    assert store.batches == [[('move', 2)]]


def test_failed_batch_keeps_its_place_ahead_of_newer_work():
    store = RecordingStore(failures=1)
    queue = WriteBehindQueue(store.apply, batch_size=1)
    queue.enqueue('move', {'n': 1})
    queue.drain_once()
    queue.enqueue('move', {'n': 2})
    queue.flush()
    assert store.batches == [[('move', 1)], [('move', 2)]]


def test_full_buffer_evicts_lowest_priority():
    store = RecordingStore()
    queue = WriteBehindQueue(store.apply, max_pending=2)
    queue.enqueue('lobbyUpdate', {'n': 1})
    queue.enqueue('move', {'n': 2})
    queue.enqueue('sessionComplete', {'n': 3})
    assert len(queue) == 2
    assert queue.dropped == 1

    # A housekeeping op never displaces more important work
    queue.enqueue('playerUpdate', {'n': 4})
    assert len(queue) == 2
    assert queue.dropped == 2

    queue.flush()
    assert store.batches == [[('sessionComplete', 3), ('move', 2)]]


def test_start_spawns_a_single_drain_loop(flask_app):
    spawned = []
    queue = WriteBehindQueue(lambda batch: None, interval=0)
    queue.start(flask_app, lambda func, *args: spawned.append((func, args)))
    queue.start(flask_app, lambda func, *args: spawned.append((func, args)))
    assert len(spawned) == 1
    assert queue.running
    queue.stop()
    assert not queue.running
