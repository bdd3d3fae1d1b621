"""
Periodic status sweeps.

Statuses are recomputed on every read; the sweeps make sure records nobody
reads still move on time. Each item is committed on its own, so one failing
record is logged and the rest of the batch continues.
"""

import logging
import os

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import or_

from backend import status_engine
from backend.work_items import expire_attempt
from models import ATTEMPT_IN_PROGRESS, Lecture, QuizAttempt, StudentAssignment, StudentQuiz, db, utcnow

logger = logging.getLogger(__name__)

scheduler = None

LECTURE_SWEEP_MINUTES = 5


def expire_quiz_attempts(now=None):
    """Auto-submit in-progress attempts whose due date or time limit has passed."""
    now = now or utcnow()
    expired, failed = 0, 0
    attempt_ids = [row.id for row in QuizAttempt.query.filter_by(status=ATTEMPT_IN_PROGRESS).with_entities(QuizAttempt.id)]
    for attempt_id in attempt_ids:
        attempt = db.session.get(QuizAttempt, attempt_id)
        try:
            if attempt is None or attempt.expires_at() > now:
                continue
            expire_attempt(attempt, now)
            db.session.commit()
            expired += 1
        except Exception as exc:
            db.session.rollback()
            failed += 1
            logger.error(f"Failed to auto-submit quiz attempt {attempt_id}: {exc}")
    return expired, failed


def sweep_work_item_statuses(now=None):
    """Recompute every non-terminal assignment and quiz status; returns a summary dict."""
    now = now or utcnow()
    expired, failed = expire_quiz_attempts(now)
    summary = {'checked': 0, 'updated': 0, 'expired_attempts': expired, 'failed': failed}

    for model in (StudentAssignment, StudentQuiz):
        ids = [
            row.id for row in model.query.filter(
                or_(model.status.is_(None), model.status.in_(status_engine.NON_TERMINAL_STATUSES))
            ).with_entities(model.id)
        ]
        for record_id in ids:
            summary['checked'] += 1
            try:
                record = db.session.get(model, record_id)
                if record is not None and record.refresh_status(now):
                    db.session.commit()
                    summary['updated'] += 1
            except Exception as exc:
                db.session.rollback()
                summary['failed'] += 1
                logger.error(f"Status sweep failed for {model.__tablename__} {record_id}: {exc}")

    logger.info(
        f"Work item sweep: {summary['checked']} checked, {summary['updated']} updated, "
        f"{summary['expired_attempts']} attempts auto-submitted, {summary['failed']} failed"
    )
    return summary


def sweep_lecture_statuses(now=None):
    now = now or utcnow()
    summary = {'checked': 0, 'updated': 0, 'failed': 0}
    ids = [
        row.id for row in Lecture.query.filter(
            or_(
                Lecture.status.is_(None),
                Lecture.status.in_([status_engine.LECTURE_SCHEDULED, status_engine.LECTURE_ONGOING]),
            )
        ).with_entities(Lecture.id)
    ]
    for lecture_id in ids:
        summary['checked'] += 1
        try:
            lecture = db.session.get(Lecture, lecture_id)
            before = lecture.status
            if lecture.refresh_status(now) != before:
                db.session.commit()
                summary['updated'] += 1
        except Exception as exc:
            db.session.rollback()
            summary['failed'] += 1
            logger.error(f"Status sweep failed for lecture {lecture_id}: {exc}")
    logger.info(f"Lecture sweep: {summary['checked']} checked, {summary['updated']} updated, {summary['failed']} failed")
    return summary


def run_app_context_job(app, target):
    """Run a sweep inside the app context; an unexpected error is logged, never raised."""
    with app.app_context():
        try:
            return target()
        except Exception as exc:
            app.logger.error(f"Background job {target.__name__} failed: {exc}")
            return None


def start_scheduler(app):
    """Start the sweep scheduler once per process."""
    global scheduler
    if not app.config.get('ENABLE_STATUS_SWEEPS'):
        return None
    if scheduler and scheduler.running:
        return scheduler
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return None
    scheduler = BackgroundScheduler(timezone=pytz.UTC)
    scheduler.add_job(
        run_app_context_job, 'interval',
        minutes=app.config.get('STATUS_SWEEP_MINUTES', 1),
        args=[app, sweep_work_item_statuses],
        id='work_item_status_sweep', replace_existing=True, coalesce=True, max_instances=1,
    )
    scheduler.add_job(
        run_app_context_job, 'interval',
        minutes=LECTURE_SWEEP_MINUTES,
        args=[app, sweep_lecture_statuses],
        id='lecture_status_sweep', replace_existing=True, coalesce=True, max_instances=1,
    )
    scheduler.start()
    app.logger.info('Status sweep scheduler started')
    return scheduler


def scheduler_running():
    return bool(scheduler and scheduler.running)
