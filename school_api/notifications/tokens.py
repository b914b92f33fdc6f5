"""
Device token registry.

Maps a principal to its device tokens and keeps each token subscribed to the
topic of its current role. Topic (un)subscription is best effort: the database
row is the source of truth and a failed provider call is only logged.
"""

import logging
from datetime import datetime

from flask import current_app

from school_api import db, gateway
from school_api.models import DeviceToken
from school_api.notifications.push import PushProviderError

logger = logging.getLogger(__name__)

ROLE_TOPICS = {
    'student': 'students',
    'teacher': 'teachers',
    'admin': 'admins',
}


def _provider():
    return current_app.extensions['push_provider']


def _subscribe(token, topic):
    try:
        failures = _provider().subscribe([token], topic)
        if failures:
            logger.warning("Provider rejected subscription of a token to topic %s", topic)
    except PushProviderError as e:
        logger.warning("Topic subscribe to %s failed: %s (%s)", topic, e.message, e.code)


def _unsubscribe(token, topic):
    try:
        _provider().unsubscribe([token], topic)
    except PushProviderError as e:
        logger.warning("Topic unsubscribe from %s failed: %s (%s)", topic, e.message, e.code)


def register(token, platform, role, recipient_id):
    """Upsert a device token for a principal, moving it to the new role topic if needed."""
    if role not in ROLE_TOPICS:
        raise ValueError('Unknown role: %s' % role)

    row = gateway.get_device_token(token)
    previous_role = None
    if row is None:
        row = DeviceToken(token=token)
        db.session.add(row)
    else:
        previous_role = row.recipient_type

    row.platform = platform
    row.recipient_type = role
    row.recipient_id = str(recipient_id)
    row.is_valid = True
    row.updated_at = datetime.now()
    db.session.commit()

    if previous_role != role:
        if previous_role in ROLE_TOPICS:
            _unsubscribe(token, ROLE_TOPICS[previous_role])
        _subscribe(token, ROLE_TOPICS[role])
    return row


def unregister(token):
    row = gateway.get_device_token(token)
    for topic in ROLE_TOPICS.values():
        _unsubscribe(token, topic)
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    return True


def list_valid_tokens(role, recipient_id):
    return gateway.valid_tokens(role, recipient_id)


def invalidate(tokens):
    """Flag tokens as invalid; rows are kept for audit."""
    count = gateway.invalidate_tokens(tokens)
    if count:
        logger.info("Invalidated %d device tokens", count)
    return count
