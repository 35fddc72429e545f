import os
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from smartmark.extensions import db
from smartmark.models import FeedEvent, utcnow


scheduler = BackgroundScheduler()


def prune_feed_events(app) -> int:
    """Delete change-log rows older than ``FEED_RETENTION_HOURS``."""
    with app.app_context():
        cutoff = utcnow() - timedelta(hours=app.config["FEED_RETENTION_HOURS"])
        removed = (
            FeedEvent.query.filter(FeedEvent.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.session.commit()
        if removed:
            app.logger.info("Pruned %s feed events older than %s", removed, cutoff)
        return removed


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["FEED_PRUNE_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            prune_feed_events,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="feed_prune",
            replace_existing=True,
        )
        scheduler.start()
