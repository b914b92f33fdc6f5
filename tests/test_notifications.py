from datetime import datetime, timedelta

import pytest

from school_api import db
from school_api.errors import ValidationError
from school_api.models import DeviceToken, Notification, NotificationTemplate, SendFailure
from school_api.notifications import dispatcher, orchestrator
from school_api.notifications import tokens as token_registry
from school_api.notifications.push import INVALID_TOKEN, TOKEN_NOT_REGISTERED
from school_api.notifications.sweeper import fail_stale_notifications


def failures_for(row):
    return SendFailure.query.filter_by(notification_id=row.notification_id).all()


def test_broadcast_to_students_is_one_topic_send(app, push):
    rows = orchestrator.create_and_send(title='Holiday', body='School closed tomorrow',
                                        recipients=[{'role': 'student', 'id': 'ALL'}])

    assert len(rows) == 1
    assert Notification.query.count() == 1
    row = db.session.get(Notification, rows[0].notification_id)
    assert (row.recipient_type, row.recipient_id) == ('student', 'ALL')
    assert row.status == 'sent'
    assert row.sent_at is not None
    assert [t['topic'] for t in push.topics] == ['students']
    assert push.multicasts == []


def test_stale_token_is_invalidated_while_row_is_sent(app, push):
    token_registry.register('T1', 'android', 'student', 42)
    token_registry.register('T2', 'ios', 'student', 42)
    push.token_errors['T2'] = TOKEN_NOT_REGISTERED

    rows = orchestrator.create_and_send(title='Fee reminder', body='Due Friday',
                                        recipients=[{'role': 'student', 'id': 42}],
                                        data={'kind': 'fees', 'amount': 1200})

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.status == 'sent'
    assert push.multicasts[0]['tokens'] == ['T1', 'T2']
    assert DeviceToken.query.filter_by(token='T2').one().is_valid is False
    assert DeviceToken.query.filter_by(token='T1').one().is_valid is True
    assert token_registry.list_valid_tokens('student', 42) == ['T1']


def test_all_tokens_failing_marks_row_failed_with_first_error(app, push):
    token_registry.register('T1', 'android', 'teacher', 5)
    push.token_errors['T1'] = INVALID_TOKEN

    rows = orchestrator.create_and_send(title='Staff meeting', body='4pm',
                                        recipients=[{'role': 'teacher', 'id': 5}])

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.status == 'failed'
    assert [f.error_code for f in failures_for(row)] == [INVALID_TOKEN]
    assert token_registry.list_valid_tokens('teacher', 5) == []


def test_recipient_without_tokens_fails_with_no_tokens(app, push):
    rows = orchestrator.create_and_send(title='Hi', body='There',
                                        recipients=[{'role': 'student', 'id': 7}])

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.status == 'failed'
    assert [f.error_code for f in failures_for(row)] == ['no_tokens']
    assert push.multicasts == []


def test_active_template_overrides_literals(app, push):
    template = NotificationTemplate(type='announcement', title_template='Announcement',
                                    body_template='Please check the notice board', is_active=True)
    db.session.add(template)
    db.session.commit()

    rows = orchestrator.create_and_send(type='announcement', title='ignored', body='ignored',
                                        recipients=[{'role': 'admin', 'id': '*'}])

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.title == 'Announcement'
    assert row.notification_template_id == template.notification_template_id
    assert push.topics[0] == {'topic': 'admins', 'title': 'Announcement',
                              'body': 'Please check the notice board', 'data': None}


def test_role_all_persists_one_row_per_topic(app, push):
    rows = orchestrator.create_and_send(title='Sports day', body='Friday',
                                        recipients=[{'role': 'all', 'id': 'BROADCAST'}])

    assert sorted(r.recipient_type for r in rows) == ['admin', 'student', 'teacher']
    assert sorted(t['topic'] for t in push.topics) == ['admins', 'students', 'teachers']
    assert {r.status for r in Notification.query.all()} == {'sent'}


def test_expand_recipients_rules():
    assert orchestrator.expand_recipients([
        {'role': 'student', 'id': 1},
        {'role': 'student', 'id': '1'},
        {'role': 'teacher', 'id': 'broadcast'},
    ]) == [('student', '1'), ('teacher', 'ALL')]

    with pytest.raises(ValidationError):
        orchestrator.expand_recipients([{'role': 'all', 'id': 3}])
    with pytest.raises(ValidationError):
        orchestrator.expand_recipients([{'role': 'parent', 'id': 3}])
    with pytest.raises(ValidationError):
        orchestrator.expand_recipients([])


def test_missing_title_without_template_is_rejected(app):
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.create_and_send(recipients=[{'role': 'student', 'id': 1}])
    assert {d['field'] for d in excinfo.value.details} == {'title', 'body'}
    assert Notification.query.count() == 0


def test_topic_provider_error_marks_row_failed(app, push):
    push.topic_error = 'messaging/quota-exceeded'

    rows = orchestrator.create_and_send(title='x', body='y', recipients=[{'role': 'teacher', 'id': 'ALL'}])

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.status == 'failed'
    assert failures_for(row)[0].error_code == 'messaging/quota-exceeded'


def test_tokens_are_sent_in_chunks(app, push):
    app.config['DISPATCH_CHUNK_SIZE'] = 2
    for i in range(5):
        token_registry.register('tok-%d' % i, 'android', 'student', 9)

    orchestrator.create_and_send(title='x', body='y', recipients=[{'role': 'student', 'id': 9}])

    sizes = sorted(len(m['tokens']) for m in push.multicasts)
    assert sizes == [1, 2, 2]
    assert Notification.query.one().status == 'sent'


def test_chunk_tokens():
    assert dispatcher.chunk_tokens(['a', 'b', 'c'], 2) == [['a', 'b'], ['c']]
    assert dispatcher.chunk_tokens([], 500) == []


def test_queue_driver_fails_rows(app, push):
    app.config['NOTIFICATION_DRIVER'] = 'queue'

    rows = orchestrator.create_and_send(title='x', body='y', recipients=[{'role': 'student', 'id': 'ALL'}])

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.dispatch_mode == 'queue'
    assert row.status == 'failed'
    assert failures_for(row)[0].error_code == 'driver_unavailable'
    assert push.topics == []


def test_unexpected_provider_exception_marks_row_failed(app, push, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError('socket closed')

    monkeypatch.setattr(push, 'send_to_topic', explode)

    rows = orchestrator.create_and_send(title='x', body='y', recipients=[{'role': 'student', 'id': 'ALL'}])

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.status == 'failed'
    assert failures_for(row)[0].error_code == 'dispatch_error'


def test_event_endpoint_and_inbox(client, seed, push, admin_headers, student_headers):
    resp = client.post('/notifications/event', headers=admin_headers, json={
        'title': 'PTM', 'body': 'Saturday 10am',
        'recipients': [{'role': 'student', 'id': seed.student_ids[0]}, {'role': 'student', 'id': 'ALL'}],
    })
    assert resp.status_code == 202
    assert resp.get_json()['data']['count'] == 2

    resp = client.post('/notifications/event', headers=admin_headers, json={'title': 'x', 'body': 'y', 'recipients': []})
    assert resp.status_code == 400

    headers = student_headers(0)
    inbox = client.get('/notifications', headers=headers).get_json()
    assert inbox['pagination']['total'] == 2
    assert client.get('/notifications/unread-count', headers=headers).get_json()['data']['count'] == 2

    first = inbox['data'][0]['id']
    resp = client.patch('/notifications/%d/read' % first, headers=headers)
    assert resp.get_json()['data']['isRead'] is True
    assert client.get('/notifications?status=unread', headers=headers).get_json()['pagination']['total'] == 1

    resp = client.patch('/notifications/read-all', headers=headers)
    assert resp.get_json()['data']['updated'] == 1
    assert client.get('/notifications/unread-count', headers=headers).get_json()['data']['count'] == 0

    # Another student only sees the broadcast
    other = client.get('/notifications', headers=student_headers(1)).get_json()
    assert other['pagination']['total'] == 1


def test_event_endpoint_requires_admin(client, seed, student_headers):
    resp = client.post('/notifications/event', headers=student_headers(), json={
        'title': 'x', 'body': 'y', 'recipients': [{'role': 'student', 'id': 'ALL'}]})
    assert resp.status_code == 403


def test_broadcast_read_state_is_per_student(client, seed, admin_headers, student_headers):
    client.post('/notifications/event', headers=admin_headers, json={
        'title': 'Annual day', 'body': 'Rehearsal at 3pm', 'recipients': [{'role': 'student', 'id': 'ALL'}]})
    first, second = student_headers(0), student_headers(1)
    notification_id = client.get('/notifications', headers=first).get_json()['data'][0]['id']

    resp = client.patch('/notifications/%d/read' % notification_id, headers=first)
    assert resp.get_json()['data']['isRead'] is True

    assert client.get('/notifications/unread-count', headers=first).get_json()['data']['count'] == 0
    assert client.get('/notifications/unread-count', headers=second).get_json()['data']['count'] == 1
    item = client.get('/notifications', headers=second).get_json()['data'][0]
    assert item['isRead'] is False
    assert db.session.get(Notification, notification_id).read_at is None

    assert client.patch('/notifications/read-all', headers=second).get_json()['data']['updated'] == 1
    assert client.get('/notifications?status=read', headers=second).get_json()['pagination']['total'] == 1
    assert client.patch('/notifications/read-all', headers=first).get_json()['data']['updated'] == 0


def test_student_cannot_read_another_students_notification(client, seed, admin_headers, student_headers):
    client.post('/notifications/event', headers=admin_headers, json={
        'title': 'Fees', 'body': 'Due', 'recipients': [{'role': 'student', 'id': seed.student_ids[0]}]})
    notification_id = Notification.query.one().notification_id

    resp = client.patch('/notifications/%d/read' % notification_id, headers=student_headers(1))

    assert resp.status_code == 404
    assert db.session.get(Notification, notification_id).read_at is None


def test_event_data_must_be_an_object(client, admin_headers):
    resp = client.post('/notifications/event', headers=admin_headers, json={
        'title': 'x', 'body': 'y', 'data': ['not', 'an', 'object'],
        'recipients': [{'role': 'student', 'id': 'ALL'}]})

    assert resp.status_code == 400
    body = resp.get_json()
    assert body['error']['code'] == 'VALIDATION_ERROR'
    assert body['error']['details'][0]['field'] == 'data'
    assert Notification.query.count() == 0


def test_row_failed_by_sweeper_mid_send_stays_failed(app, push, monkeypatch):
    send_to_topic = push.send_to_topic

    def send_then_sweep(*args, **kwargs):
        message_id = send_to_topic(*args, **kwargs)
        fail_stale_notifications(now=datetime.now() + timedelta(days=1))
        return message_id

    monkeypatch.setattr(push, 'send_to_topic', send_then_sweep)

    rows = orchestrator.create_and_send(title='x', body='y', recipients=[{'role': 'student', 'id': 'ALL'}])

    row = db.session.get(Notification, rows[0].notification_id)
    assert row.status == 'failed'
    assert row.sent_at is None
    assert [f.error_code for f in failures_for(row)] == ['dispatch_timeout']
