import pytest

from school_api import create_app
from school_api.config import TestingConfig


def test_missing_jwt_secret_refuses_to_start():
    class NoSecretConfig(TestingConfig):
        JWT_SECRET = ''

    with pytest.raises(ValueError, match='JWT_SECRET'):
        create_app(NoSecretConfig)


def test_missing_database_url_refuses_to_start():
    class NoDatabaseConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = None

    with pytest.raises(ValueError, match='Database URL'):
        create_app(NoDatabaseConfig)
