import os
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from app.extensions import db
from app.models import utcnow
from app.services.import_commit import fail_stale_imports


scheduler = BackgroundScheduler()


def run_stale_import_sweep(app):
    with app.app_context():
        older_than = utcnow() - timedelta(
            minutes=app.config["IMPORT_STALE_PENDING_MINUTES"]
        )
        swept = fail_stale_imports(db.session, older_than)
        if swept:
            app.logger.warning("Marked %s stale pending imports as failed", swept)
        return swept


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["IMPORT_STALE_SWEEP_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_stale_import_sweep,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="stale_import_sweep",
            replace_existing=True,
        )
        scheduler.start()
