import threading
import time
from types import SimpleNamespace

from school_api import db
from school_api.models import Notification
from school_api.notifications import dispatcher, orchestrator
from school_api.notifications import tokens as token_registry


class ConcurrencyTracker:
    """Wraps a provider call and records how many invocations overlap."""

    def __init__(self, func, delay=0.05):
        self.func = func
        self.delay = delay
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def __call__(self, *args, **kwargs):
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            time.sleep(self.delay)
            return self.func(*args, **kwargs)
        finally:
            with self.lock:
                self.active -= 1


def test_handler_returns_before_background_delivery_finishes(background_app, monkeypatch):
    push = background_app.extensions['push_provider']
    release = threading.Event()
    send_to_topic = push.send_to_topic

    def blocked_send(*args, **kwargs):
        assert release.wait(5)
        return send_to_topic(*args, **kwargs)

    monkeypatch.setattr(push, 'send_to_topic', blocked_send)

    futures = []

    def capture(notification_ids):
        future = dispatcher.dispatch(notification_ids)
        futures.append(future)
        return future

    monkeypatch.setattr(orchestrator, 'dispatch', capture)

    rows = orchestrator.create_and_send(title='Exam timetable', body='Posted on the portal',
                                        recipients=[{'role': 'student', 'id': 'ALL'}])
    notification_id = rows[0].notification_id

    assert futures[0] is not None
    assert db.session.get(Notification, notification_id).status == 'pending'

    release.set()
    futures[0].result(timeout=5)
    db.session.expire_all()

    row = db.session.get(Notification, notification_id)
    assert row.status == 'sent'
    assert [t['topic'] for t in push.topics] == ['students']


def test_background_worker_failure_is_contained(background_app, monkeypatch):
    def broken_deliver(notification_ids, app=None):
        raise RuntimeError('database went away')

    monkeypatch.setattr(dispatcher, 'deliver', broken_deliver)

    future = dispatcher.dispatch([1])

    assert future.result(timeout=5) is None


def test_chunk_sends_never_exceed_configured_concurrency(app, push, monkeypatch):
    app.config['DISPATCH_CHUNK_SIZE'] = 1
    for i in range(8):
        token_registry.register('tok-%d' % i, 'android', 'student', 9)

    tracker = ConcurrencyTracker(push.multicast)
    monkeypatch.setattr(push, 'multicast', tracker)

    orchestrator.create_and_send(title='x', body='y', recipients=[{'role': 'student', 'id': 9}])

    assert len(push.multicasts) == 8
    assert 1 < tracker.peak <= app.config['DISPATCH_CONCURRENCY']
    assert Notification.query.one().status == 'sent'


def test_shared_semaphore_caps_wider_worker_pools(app, push, monkeypatch):
    for i in range(6):
        token_registry.register('tok-%d' % i, 'android', 'student', 9)

    tracker = ConcurrencyTracker(push.multicast)
    monkeypatch.setattr(push, 'multicast', tracker)

    strategy = dispatcher.IndividualStrategy(push, threading.BoundedSemaphore(2), chunk_size=1, concurrency=6)
    row = SimpleNamespace(recipient_type='student', recipient_id='9', title='x', body='y', data_json=None)

    result = strategy.send(row)

    assert result.sent
    assert len(push.multicasts) == 6
    assert tracker.peak <= 2
