"""
Firebase Admin SDK Configuration
Initialize Firebase Admin SDK for push notifications
"""

import json
import logging
import os

import firebase_admin
from firebase_admin import credentials

logger = logging.getLogger(__name__)


def initialize_firebase(credentials_path=None, service_account_json=None):
    """
    Initialize Firebase Admin SDK once per process.

    Credentials come from FCM_SERVICE_ACCOUNT_JSON (inline JSON, preferred for
    containers) or from a service account file. Returns False when neither is
    available so the app can still serve non-push traffic.
    """
    if firebase_admin._apps:
        return True

    try:
        if service_account_json:
            cred = credentials.Certificate(json.loads(service_account_json))
        elif credentials_path and os.path.exists(credentials_path):
            cred = credentials.Certificate(credentials_path)
        else:
            logger.warning("Firebase credentials not found; push delivery disabled")
            return False

        firebase_admin.initialize_app(cred)
        return True

    except (ValueError, IOError) as e:
        logger.error("Firebase initialization failed: %s", e)
        return False
