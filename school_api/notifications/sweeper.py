import atexit
import logging
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app

from school_api import db, gateway

logger = logging.getLogger(__name__)


def fail_stale_notifications(now=None):
    """Fail rows still pending after NOTIFICATION_STALE_MINUTES."""
    now = now or datetime.now()
    cutoff = now - timedelta(minutes=current_app.config.get('NOTIFICATION_STALE_MINUTES', 15))
    failed = 0
    for row in gateway.stale_pending_notifications(cutoff):
        if gateway.mark_notification_failed(row.notification_id, 'dispatch_timeout',
                                            'Delivery did not complete in time'):
            failed += 1
    db.session.commit()
    if failed:
        logger.warning("Marked %d stale notifications as failed", failed)
    return failed


def start_notification_sweeper(app):
    scheduler = BackgroundScheduler(daemon=True)

    def sweep():
        with app.app_context():
            try:
                fail_stale_notifications()
            except Exception:
                db.session.rollback()
                logger.exception("Notification sweep failed")

    scheduler.add_job(func=sweep, trigger='interval',
                      minutes=app.config.get('NOTIFICATION_SWEEP_MINUTES', 5))
    scheduler.start()
    atexit.register(lambda: scheduler.shutdown())
    return scheduler
