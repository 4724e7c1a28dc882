"""
    Background jobs for Libris: the nightly overdue sweep, the morning
    due-soon reminders and draining of the notification outbox.
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from libris.configs import TIMEZONE, DUE_SOON_DAYS, OUTBOX_INTERVAL_MINUTES
from libris.core.db import SessionLocal
from libris.core.events import EventDispatcher
from libris.core.loans import LoanLedger

logger = logging.getLogger(__name__)

JOB_DEFAULTS = {'max_instances': 1, 'coalesce': True}


def _run(name, job):
    db = SessionLocal()
    try:
        result = job(db)
        logger.info(f"Job {name} finished: {result}")
        return result
    except Exception:
        db.rollback()
        logger.exception(f"Job {name} failed")
    finally:
        db.close()


def check_overdue_loans():
    def job(db):
        flagged = LoanLedger.notify_overdue(db)
        EventDispatcher.dispatch(db)
        return flagged
    return _run('check_overdue_loans', job)


def remind_due_soon():
    def job(db):
        reminded = LoanLedger.notify_due_soon(db, days=DUE_SOON_DAYS)
        EventDispatcher.dispatch(db)
        return reminded
    return _run('remind_due_soon', job)


def drain_outbox():
    return _run('drain_outbox', EventDispatcher.dispatch)


def create_scheduler():
    scheduler = BackgroundScheduler(timezone=TIMEZONE, job_defaults=JOB_DEFAULTS)
    scheduler.add_job(check_overdue_loans, CronTrigger(hour=0, minute=5, timezone=TIMEZONE),
                      id='check_overdue_loans', replace_existing=True)
    scheduler.add_job(remind_due_soon, CronTrigger(hour=9, minute=0, timezone=TIMEZONE),
                      id='remind_due_soon', replace_existing=True)
    scheduler.add_job(drain_outbox, 'interval', minutes=OUTBOX_INTERVAL_MINUTES,
                      id='drain_outbox', replace_existing=True)
    return scheduler
