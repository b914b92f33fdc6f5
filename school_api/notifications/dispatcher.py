"""
Notification delivery.

Rows addressed to a single user go out as chunked multicasts to that user's
device tokens; rows addressed to 'ALL' go out as one topic publish. Chunk
sends share a process-wide semaphore that bounds parallel provider calls.
Delivery never raises into the caller: every row ends up 'sent' or 'failed'.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from school_api import db, gateway
from school_api.notifications import tokens as token_registry
from school_api.notifications.push import (
    INVALID_TOKEN, TOKEN_NOT_REGISTERED, MulticastResult, PushProviderError,
)

logger = logging.getLogger(__name__)

INVALID_TOKEN_CODES = {TOKEN_NOT_REGISTERED, INVALID_TOKEN}


class DispatchError(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class DeliveryResult:
    sent: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


def chunk_tokens(tokens, size):
    size = max(int(size), 1)
    return [tokens[i:i + size] for i in range(0, len(tokens), size)]


def _state(app=None):
    app = app or current_app
    return app.extensions['notification_dispatch']


class IndividualStrategy:
    """Per-user multicast to every valid device token of the recipient."""

    def __init__(self, provider, semaphore, chunk_size=500, concurrency=3):
        self.provider = provider
        self.semaphore = semaphore
        self.chunk_size = chunk_size
        self.concurrency = concurrency

    def _send_chunk(self, chunk, title, body, data):
        with self.semaphore:
            try:
                return self.provider.multicast(chunk, title, body, data)
            except PushProviderError as e:
                logger.warning("Multicast of %d tokens failed: %s", len(chunk), e.message)
                return MulticastResult.all_failed(chunk, e.code, e.message)

    def send(self, row):
        device_tokens = token_registry.list_valid_tokens(row.recipient_type, row.recipient_id)
        if not device_tokens:
            return DeliveryResult(False, 'no_tokens', 'No valid device tokens for recipient')

        chunks = chunk_tokens(device_tokens, self.chunk_size)
        workers = min(self.concurrency, len(chunks))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._send_chunk, chunk, row.title, row.body, row.data_json)
                       for chunk in chunks]
            results = [f.result() for f in futures]

        success = 0
        first_error = None
        stale = []
        for result in results:
            for response in result.responses:
                if response.success:
                    success += 1
                    continue
                if first_error is None:
                    first_error = (response.error_code, response.error_message)
                if response.error_code in INVALID_TOKEN_CODES:
                    stale.append(response.token)

        if stale:
            token_registry.invalidate(stale)

        if success:
            return DeliveryResult(True)
        if first_error is None:
            return DeliveryResult(False, 'all_failed', 'All deliveries failed')
        return DeliveryResult(False, first_error[0], first_error[1])


class TopicStrategy:
    """Broadcast to the provider topic of the recipient role."""

    def __init__(self, provider):
        self.provider = provider

    def send(self, row):
        topic = token_registry.ROLE_TOPICS.get(row.recipient_type)
        if topic is None:
            return DeliveryResult(False, 'unknown_topic', 'No topic for role %s' % row.recipient_type)
        try:
            self.provider.send_to_topic(topic, row.title, row.body, row.data_json)
        except PushProviderError as e:
            return DeliveryResult(False, e.code, e.message)
        return DeliveryResult(True)


class SyncDispatcher:
    """Sends rows directly through the push provider and records the outcome."""

    def __init__(self, provider, semaphore, chunk_size=500, concurrency=3):
        self.individual = IndividualStrategy(provider, semaphore, chunk_size, concurrency)
        self.topic = TopicStrategy(provider)

    def strategy_for(self, row):
        return self.topic if row.recipient_id == 'ALL' else self.individual

    def send(self, rows):
        for row in rows:
            if row.status != 'pending':
                continue
            try:
                result = self.strategy_for(row).send(row)
                if result.sent:
                    recorded = gateway.mark_notification_sent(row.notification_id)
                else:
                    recorded = gateway.mark_notification_failed(row.notification_id, result.error_code,
                                                                result.error_message)
                db.session.commit()
                if not recorded:
                    logger.warning("Notification %s was finalised elsewhere; delivery outcome dropped",
                                   row.notification_id)
            except Exception as e:
                db.session.rollback()
                logger.exception("Dispatch of notification %s failed", row.notification_id)
                gateway.mark_notification_failed(row.notification_id, 'dispatch_error', str(e))
                db.session.commit()


class QueueDispatcher:
    """Placeholder for delivery through an external queue."""

    def send(self, rows):
        raise DispatchError('driver_unavailable', 'Queue notification driver is not available')


def get_dispatcher(app=None):
    app = app or current_app
    if app.config.get('NOTIFICATION_DRIVER', 'sync') == 'queue':
        return QueueDispatcher()
    return SyncDispatcher(
        app.extensions['push_provider'],
        _state(app)['semaphore'],
        chunk_size=app.config.get('DISPATCH_CHUNK_SIZE', 500),
        concurrency=app.config.get('DISPATCH_CONCURRENCY', 3),
    )


def init_dispatch(app):
    concurrency = app.config.get('DISPATCH_CONCURRENCY', 3)
    app.extensions['notification_dispatch'] = {
        'semaphore': threading.BoundedSemaphore(concurrency),
        'executor': ThreadPoolExecutor(
            max_workers=app.config.get('NOTIFICATION_BACKGROUND_WORKERS', 4),
            thread_name_prefix='notification-dispatch',
        ),
    }


def deliver(notification_ids, app=None):
    """Send the given rows in the current app context."""
    rows = gateway.notifications_by_ids(notification_ids)
    try:
        get_dispatcher(app).send(rows)
    except DispatchError as e:
        logger.error("Notification driver error: %s", e.message)
        for row in rows:
            gateway.mark_notification_failed(row.notification_id, e.code, e.message)
        db.session.commit()


def _deliver_in_context(app, notification_ids):
    with app.app_context():
        try:
            deliver(notification_ids, app)
        except Exception:
            logger.exception("Background delivery of notifications %s failed", notification_ids)
        finally:
            db.session.remove()


def dispatch(notification_ids):
    """Start delivery without blocking the caller on provider results."""
    if not notification_ids:
        return None
    app = current_app._get_current_object()
    if app.config.get('NOTIFICATION_DISPATCH_EAGER'):
        deliver(notification_ids, app)
        return None
    return _state(app)['executor'].submit(_deliver_in_context, app, list(notification_ids))
