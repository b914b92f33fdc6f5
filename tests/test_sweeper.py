from datetime import datetime, timedelta

from school_api import db, gateway
from school_api.models import Notification, SendFailure
from school_api.notifications.sweeper import fail_stale_notifications


def add_row(created_at, status='pending'):
    row = Notification(title='t', body='b', dispatch_mode='sync', recipient_type='student',
                       recipient_id='1', status=status, created_at=created_at)
    db.session.add(row)
    db.session.commit()
    return row.notification_id


def test_stale_pending_rows_are_failed(app):
    now = datetime(2026, 10, 18, 12, 0)
    stale = add_row(now - timedelta(minutes=30))
    fresh = add_row(now - timedelta(minutes=5))
    done = add_row(now - timedelta(hours=2), status='sent')

    assert fail_stale_notifications(now=now) == 1

    assert db.session.get(Notification, stale).status == 'failed'
    assert db.session.get(Notification, fresh).status == 'pending'
    assert db.session.get(Notification, done).status == 'sent'
    failure = SendFailure.query.filter_by(notification_id=stale).one()
    assert failure.error_code == 'dispatch_timeout'


def test_stale_window_comes_from_config(app):
    app.config['NOTIFICATION_STALE_MINUTES'] = 60
    now = datetime(2026, 10, 18, 12, 0)
    add_row(now - timedelta(minutes=30))

    assert fail_stale_notifications(now=now) == 0


def test_sweeper_leaves_rows_finalised_by_delivery(app):
    now = datetime(2026, 10, 18, 12, 0)
    notification_id = add_row(now - timedelta(minutes=30))
    assert gateway.mark_notification_sent(notification_id)
    db.session.commit()

    assert fail_stale_notifications(now=now) == 0
    assert gateway.mark_notification_failed(notification_id, 'dispatch_timeout', 'late') is False
    db.session.commit()

    assert db.session.get(Notification, notification_id).status == 'sent'
    assert SendFailure.query.count() == 0
