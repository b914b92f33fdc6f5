import logging

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS

from .config import Config


db = SQLAlchemy()
migrate = Migrate()

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        raise ValueError(
            "Database URL not configured! Please set in your .env file:\n"
            "  For Development: SQLALCHEMY_DATABASE_URI=postgresql://...@host:5432/postgres\n"
            "  For Production:  DATABASE_URL=postgresql://...@host:6543/postgres"
        )

    if not app.config.get('JWT_SECRET'):
        raise ValueError("JWT_SECRET not configured! Please set it in your .env file")

    db.init_app(app)
    migrate.init_app(app, db)

    CORS(app)

    from school_api import models  # noqa: F401

    # Firebase handle, send semaphore and background executor live for the
    # whole process
    from school_api.notifications.push import PushProvider
    from school_api.notifications.dispatcher import init_dispatch
    app.extensions['push_provider'] = PushProvider.from_config(app.config)
    init_dispatch(app)

    from school_api.errors import register_error_handlers
    register_error_handlers(app)

    from school_api.routes import routes
    app.register_blueprint(routes)

    # Ensure database sessions are properly closed after each request
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        db.session.remove()

    logger.info("School API started (notification driver: %s)", app.config['NOTIFICATION_DRIVER'])
    return app
