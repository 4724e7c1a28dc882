#!/usr/bin/env python

"""
    Domain events for Libris.

    Workflows record an OutboxEvent in the same transaction as the state
    change they describe. The EventDispatcher later turns pending events
    into notifications; delivery problems stay inside the dispatcher and
    never reach the workflow that emitted the event.

    :copyright: (c) 2025 by AUTHORS
    :license: see LICENSE for more details
"""

import logging
from fastapi.encoders import jsonable_encoder
from sqlalchemy import update
from libris.configs import OUTBOX_MAX_ATTEMPTS
from libris.core.models import OutboxEvent, EventType
from libris.core.notifications import NotificationSink
from libris.core.utils import utcnow

logger = logging.getLogger(__name__)


def emit(db, event_type: EventType, user_id: int, **payload) -> OutboxEvent:
    """Stages an event on the session; it is committed with the workflow."""
    event = OutboxEvent(
        type=EventType(event_type).value,
        user_id=user_id,
        payload=jsonable_encoder(payload),
    )
    db.add(event)
    return event


class EventDispatcher:

    sink = NotificationSink
    BATCH_SIZE = 100

    @classmethod
    def pending(cls, db, limit=None):
        return (db.query(OutboxEvent)
                .filter(OutboxEvent.dispatched_at.is_(None),
                        OutboxEvent.attempts < OUTBOX_MAX_ATTEMPTS)
                .order_by(OutboxEvent.id)
                .limit(limit or cls.BATCH_SIZE)
                .all())

    @classmethod
    def _claim(cls, db, event_id) -> bool:
        """Marks the event delivered in the open transaction, but only if
        no other dispatcher got there first. A failed delivery rolls the
        mark back with everything else."""
        result = db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id, OutboxEvent.dispatched_at.is_(None))
            .values(dispatched_at=utcnow(), attempts=OutboxEvent.attempts + 1)
            .execution_options(synchronize_session=False))
        return result.rowcount == 1

    @classmethod
    def dispatch(cls, db, limit=None) -> int:
        """Delivers pending events one at a time and returns how many
        were delivered. A failing event is rolled back on its own,
        marked with the error and left for a later run.
        """
        delivered = 0
        for event_id in [e.id for e in cls.pending(db, limit=limit)]:
            if not cls._claim(db, event_id):
                logger.info(f"Event {event_id} already taken by another dispatcher")
                continue
            event = db.get(OutboxEvent, event_id, populate_existing=True)
            try:
                cls.sink.notify(db, event.user_id, event.type, event.payload or {})
                db.commit()
                delivered += 1
            except Exception as e:
                db.rollback()
                logger.exception(f"Failed to deliver event {event_id} ({event.type})")
                cls._record_failure(db, event_id, e)
        return delivered

    @classmethod
    def _record_failure(cls, db, event_id, error):
        try:
            event = db.get(OutboxEvent, event_id)
            event.attempts += 1
            event.last_error = str(error)[:1000]
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"Could not record failure for event {event_id}")

    @classmethod
    def dispatch_quietly(cls, db, limit=None) -> int:
        """Used right after a workflow commits: never raises."""
        try:
            return cls.dispatch(db, limit=limit)
        except Exception:
            db.rollback()
            logger.exception("Event dispatch failed; events stay queued")
            return 0
