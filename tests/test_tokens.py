from school_api import db
from school_api.models import DeviceToken
from school_api.notifications import tokens as token_registry


def test_register_new_token_subscribes_role_topic(app, push):
    row = token_registry.register('abc', 'android', 'student', 11)

    assert row.is_valid
    assert row.recipient_id == '11'
    assert push.subscriptions == [(['abc'], 'students')]
    assert push.unsubscriptions == []


def test_role_change_moves_topic(app, push):
    token_registry.register('abc', 'android', 'student', 11)
    token_registry.register('abc', 'android', 'teacher', 3)

    assert push.unsubscriptions == [(['abc'], 'students')]
    assert push.subscriptions[-1] == (['abc'], 'teachers')
    row = DeviceToken.query.filter_by(token='abc').one()
    assert (row.recipient_type, row.recipient_id) == ('teacher', '3')
    assert DeviceToken.query.count() == 1


def test_same_role_reregistration_does_not_resubscribe(app, push):
    token_registry.register('abc', 'android', 'student', 11)
    token_registry.register('abc', 'ios', 'student', 11)

    assert len(push.subscriptions) == 1
    assert DeviceToken.query.filter_by(token='abc').one().platform == 'ios'


def test_invalidated_token_disappears_until_reregistered(app, push):
    token_registry.register('abc', 'android', 'student', 11)
    token_registry.register('def', 'android', 'student', 11)

    assert token_registry.invalidate(['abc']) == 1
    db.session.commit()

    assert token_registry.list_valid_tokens('student', 11) == ['def']
    assert DeviceToken.query.filter_by(token='abc').one().is_valid is False

    token_registry.register('abc', 'android', 'student', 11)
    assert token_registry.list_valid_tokens('student', 11) == ['abc', 'def']


def test_unregister_removes_row_and_all_topics(app, push):
    token_registry.register('abc', 'android', 'admin', 1)

    assert token_registry.unregister('abc') is True
    assert DeviceToken.query.count() == 0
    assert sorted(topic for _, topic in push.unsubscriptions) == ['admins', 'students', 'teachers']
    assert token_registry.unregister('abc') is False


def test_provider_failure_does_not_block_registration(app, push):
    push.subscribe_error = 'messaging/internal-error'

    row = token_registry.register('abc', 'web', 'student', 11)

    assert row.is_valid
    assert token_registry.list_valid_tokens('student', 11) == ['abc']


def test_device_routes(client, seed, push, student_headers):
    headers = student_headers(0)

    resp = client.post('/devices', headers=headers, json={'token': 'xyz', 'platform': 'Android'})
    assert resp.status_code == 201
    assert token_registry.list_valid_tokens('student', seed.student_ids[0]) == ['xyz']

    resp = client.post('/devices', headers=headers, json={'platform': 'fax'})
    assert resp.status_code == 400
    assert {d['field'] for d in resp.get_json()['error']['details']} == {'token', 'platform'}

    resp = client.delete('/devices?token=xyz', headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['data']['removed'] is True
    assert DeviceToken.query.count() == 0

    assert client.post('/devices', json={'token': 'xyz', 'platform': 'ios'}).status_code == 401
