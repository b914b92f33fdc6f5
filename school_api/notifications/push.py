"""
Firebase Cloud Messaging wrapper.

The rest of the package only sees TokenResult / MulticastResult and
PushProviderError; Firebase exception types stop here.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from school_api.firebase_config import initialize_firebase

logger = logging.getLogger(__name__)

TOKEN_NOT_REGISTERED = 'messaging/registration-token-not-registered'
INVALID_TOKEN = 'messaging/invalid-registration-token'
PROVIDER_UNAVAILABLE = 'provider_unavailable'


class PushProviderError(Exception):
    def __init__(self, code, message):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class TokenResult:
    token: str
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class MulticastResult:
    responses: List[TokenResult] = field(default_factory=list)

    @property
    def success_count(self):
        return sum(1 for r in self.responses if r.success)

    @property
    def failure_count(self):
        return sum(1 for r in self.responses if not r.success)

    @classmethod
    def all_failed(cls, tokens, code, message):
        return cls([TokenResult(token, False, code, message) for token in tokens])


def normalize_error(exc):
    """Map a Firebase exception to a provider-neutral error code."""
    if isinstance(exc, messaging.UnregisteredError):
        return TOKEN_NOT_REGISTERED
    if isinstance(exc, firebase_exceptions.InvalidArgumentError):
        if 'registration token' in str(exc).lower():
            return INVALID_TOKEN
        return 'messaging/invalid-argument'
    if isinstance(exc, messaging.SenderIdMismatchError):
        return 'messaging/mismatched-credential'
    if isinstance(exc, firebase_exceptions.FirebaseError):
        return 'messaging/' + str(exc.code).lower().replace('_', '-')
    return 'messaging/unknown-error'


def stringify_data(data):
    # FCM requires data values to be strings
    if not data:
        return None
    return {str(k): str(v) for k, v in data.items() if v is not None}


def _android_config():
    return messaging.AndroidConfig(
        priority='high',
        notification=messaging.AndroidNotification(
            channel_id='school_updates',
            sound='default',
            priority='high'
        )
    )


def _apns_config():
    return messaging.APNSConfig(
        payload=messaging.APNSPayload(
            aps=messaging.Aps(
                sound='default',
                badge=1
            )
        )
    )


class PushProvider:
    """Sends multicast and topic messages through the Firebase Admin SDK."""

    def __init__(self, enabled=True):
        self.enabled = enabled

    @classmethod
    def from_config(cls, config):
        enabled = initialize_firebase(
            credentials_path=config.get('FIREBASE_CREDENTIALS_PATH'),
            service_account_json=config.get('FCM_SERVICE_ACCOUNT_JSON'),
        )
        return cls(enabled=enabled)

    def multicast(self, tokens, title, body, data=None) -> MulticastResult:
        if not self.enabled:
            logger.warning("Push provider not configured; skipping %d tokens", len(tokens))
            return MulticastResult.all_failed(tokens, PROVIDER_UNAVAILABLE, 'Push provider not configured')

        message = messaging.MulticastMessage(
            notification=messaging.Notification(title=title, body=body),
            data=stringify_data(data),
            tokens=list(tokens),
            android=_android_config(),
            apns=_apns_config(),
        )
        try:
            response = messaging.send_each_for_multicast(message)
        except firebase_exceptions.FirebaseError as e:
            raise PushProviderError(normalize_error(e), str(e))

        results = []
        for token, send_response in zip(tokens, response.responses):
            if send_response.success:
                results.append(TokenResult(token, True))
            else:
                exc = send_response.exception
                results.append(TokenResult(token, False, normalize_error(exc), str(exc)))
        return MulticastResult(results)

    def send_to_topic(self, topic, title, body, data=None) -> str:
        if not self.enabled:
            raise PushProviderError(PROVIDER_UNAVAILABLE, 'Push provider not configured')

        message = messaging.Message(
            topic=topic,
            notification=messaging.Notification(title=title, body=body),
            data=stringify_data(data),
            android=_android_config(),
            apns=_apns_config(),
        )
        try:
            return messaging.send(message)
        except firebase_exceptions.FirebaseError as e:
            raise PushProviderError(normalize_error(e), str(e))

    def subscribe(self, tokens, topic) -> int:
        """Subscribe tokens to a topic; returns the number of per-token failures."""
        if not self.enabled:
            raise PushProviderError(PROVIDER_UNAVAILABLE, 'Push provider not configured')
        try:
            response = messaging.subscribe_to_topic(list(tokens), topic)
        except firebase_exceptions.FirebaseError as e:
            raise PushProviderError(normalize_error(e), str(e))
        return response.failure_count

    def unsubscribe(self, tokens, topic) -> int:
        if not self.enabled:
            raise PushProviderError(PROVIDER_UNAVAILABLE, 'Push provider not configured')
        try:
            response = messaging.unsubscribe_from_topic(list(tokens), topic)
        except firebase_exceptions.FirebaseError as e:
            raise PushProviderError(normalize_error(e), str(e))
        return response.failure_count
