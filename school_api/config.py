import os
from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env


def _int_env(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return int(value)


class Config:

    FLASK_ENV = os.getenv('FLASK_ENV', 'development')

    # Get both connection strings
    _production_url = os.getenv('DATABASE_URL')  # Connection Pooler (port 6543)
    _development_url = os.getenv('SQLALCHEMY_DATABASE_URI')  # Direct Connection (port 5432)

    if FLASK_ENV == 'production':
        # Production only talks to the pooler; create_app refuses to start without it
        SQLALCHEMY_DATABASE_URI = _production_url
    else:
        SQLALCHEMY_DATABASE_URI = _development_url or _production_url

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'max_overflow': 10,
        'pool_timeout': 30,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
        'connect_args': {
            'connect_timeout': 10,
            'application_name': 'School_API',
        }
    }

    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', '').lower() in ('1', 'true', 'yes')

    # Bearer tokens
    JWT_SECRET = os.getenv('JWT_SECRET')
    JWT_ALGORITHM = 'HS256'

    # Push notifications
    FIREBASE_CREDENTIALS_PATH = os.getenv('FIREBASE_CREDENTIALS_PATH', 'serviceAccountKey.json')
    FCM_SERVICE_ACCOUNT_JSON = os.getenv('FCM_SERVICE_ACCOUNT_JSON')
    NOTIFICATION_DRIVER = os.getenv('NOTIFICATION_DRIVER', 'sync').lower()
    DISPATCH_CONCURRENCY = _int_env('DISPATCH_CONCURRENCY', 3)
    DISPATCH_CHUNK_SIZE = _int_env('DISPATCH_CHUNK_SIZE', 500)
    NOTIFICATION_BACKGROUND_WORKERS = _int_env('NOTIFICATION_BACKGROUND_WORKERS', 4)
    # Run delivery inline instead of on the background executor
    NOTIFICATION_DISPATCH_EAGER = False

    NOTIFICATION_SWEEP_MINUTES = _int_env('NOTIFICATION_SWEEP_MINUTES', 5)
    NOTIFICATION_STALE_MINUTES = _int_env('NOTIFICATION_STALE_MINUTES', 15)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SQLALCHEMY_ECHO = False
    JWT_SECRET = 'test-secret-key-with-enough-length-for-hs256'
    FIREBASE_CREDENTIALS_PATH = None
    FCM_SERVICE_ACCOUNT_JSON = None
    NOTIFICATION_DRIVER = 'sync'
    NOTIFICATION_DISPATCH_EAGER = True
