from wordgames.services.scheduler import TimerScheduler


class DeferredSocketIO:
    """Collects background tasks so tests decide when each one runs."""

    def __init__(self):
        self.tasks = []

    def start_background_task(self, target, *args):
        self.tasks.append((target, args))

    def sleep(self, seconds):
        pass

    def run(self, index):
        target, args = self.tasks[index]
        target(*args)


def test_timer_fires_once(flask_app):
    fired = []
    sio = DeferredSocketIO()
    scheduler = TimerScheduler(sio, flask_app, lambda *args: fired.append(args))
    scheduler.schedule('s1', 'turn', 15, 1)
    assert scheduler.pending('s1') == ('turn', 1)

    sio.run(0)
    assert fired == [('s1', 'turn', 1)]
    assert scheduler.pending('s1') is None
    sio.run(0)
    assert fired == [('s1', 'turn', 1)]


def test_cancelled_timer_is_skipped(flask_app):
    fired = []
    sio = DeferredSocketIO()
    scheduler = TimerScheduler(sio, flask_app, lambda *args: fired.append(args))
    scheduler.schedule('s1', 'countdown', 5, 1)
    scheduler.cancel('s1')
    sio.run(0)
    assert fired == []


def test_superseded_timer_leaves_the_new_one_armed(flask_app):
    fired = []
    sio = DeferredSocketIO()
    scheduler = TimerScheduler(sio, flask_app, lambda *args: fired.append(args))
    scheduler.schedule('s1', 'turn', 15, 5)
    scheduler.schedule('s1', 'turn', 15, 6)

    sio.run(0)
    assert fired == []
    assert scheduler.pending('s1') == ('turn', 6)
    sio.run(1)
    assert fired == [('s1', 'turn', 6)]


def test_timer_rearmed_while_firing_still_runs(flask_app):
    fired = []
    sio = DeferredSocketIO()

    def on_fire(session_id, kind, token):
        fired.append(token)
        if token == 5:
            scheduler.schedule(session_id, kind, 15, 6)

    scheduler = TimerScheduler(sio, flask_app, on_fire)
    scheduler.schedule('s1', 'turn', 15, 5)
    sio.run(0)
    assert scheduler.pending('s1') == ('turn', 6)
    sio.run(1)
    assert fired == [5, 6]
    assert scheduler.pending('s1') is None
