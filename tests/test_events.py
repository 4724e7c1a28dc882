import pytest
from unittest.mock import patch
from libris.core.exceptions import NotificationNotFoundError
from libris.core.events import emit, EventDispatcher
from libris.core.models import EventType, Notification, NotificationPriority, OutboxEvent
from libris.core.notifications import NotificationSink
from libris.configs import OUTBOX_MAX_ATTEMPTS


def test_dispatch_creates_notifications(db_session, reader):
    emit(db_session, EventType.LOAN_APPROVED, reader.id, loan_id=1, loan_code="LOAN-123456-ABCD")
    db_session.commit()

    assert EventDispatcher.dispatch(db_session) == 1
    notification = db_session.query(Notification).one()
    assert notification.user_id == reader.id
    assert notification.type == "LOAN_APPROVED"
    assert "LOAN-123456-ABCD" in notification.message
    assert notification.is_read is False

    event = db_session.query(OutboxEvent).one()
    assert event.dispatched_at is not None
    assert event.attempts == 1
    # Already delivered
    assert EventDispatcher.dispatch(db_session) == 0


def test_failed_delivery_is_kept_for_retry(db_session, reader):
    emit(db_session, EventType.FINE_ISSUED, reader.id, loan_code="L", fine_type="LATE_RETURN",
         amount="5000", currency="VND")
    db_session.commit()

    with patch.object(NotificationSink, 'notify', side_effect=RuntimeError("sink down")):
        assert EventDispatcher.dispatch_quietly(db_session) == 0
    event = db_session.query(OutboxEvent).one()
    assert event.dispatched_at is None
    assert event.attempts == 1
    assert "sink down" in event.last_error
    assert db_session.query(Notification).count() == 0

    assert EventDispatcher.dispatch(db_session) == 1
    assert db_session.query(Notification).one().priority == NotificationPriority.HIGH


def test_event_being_delivered_is_skipped_by_another_dispatcher(db_session, reader):
    emit(db_session, EventType.LOAN_APPROVED, reader.id, loan_id=1, loan_code="L")
    db_session.commit()
    deliver = NotificationSink.notify
    overlapping = []

    def notify_while_drain_runs(db, user_id, event_type, payload):
        if not overlapping:
            overlapping.append(EventDispatcher.dispatch(db))
        return deliver(db, user_id, event_type, payload)

    with patch.object(NotificationSink, 'notify', side_effect=notify_while_drain_runs):
        assert EventDispatcher.dispatch(db_session) == 1
    assert overlapping == [0]
    assert db_session.query(Notification).count() == 1
    assert db_session.query(OutboxEvent).one().attempts == 1


def test_gives_up_after_max_attempts(db_session, reader):
    event = emit(db_session, EventType.LOAN_DUE_SOON, reader.id, loan_code="L", due_date="2030-01-01")
    db_session.commit()
    event.attempts = OUTBOX_MAX_ATTEMPTS
    db_session.commit()
    assert EventDispatcher.pending(db_session) == []


def test_missing_placeholders_render_as_dash():
    title, message, priority = NotificationSink.render("LOAN_REJECTED", {"loan_code": "L-1"})
    assert title == "Loan request rejected"
    assert message.endswith("Reason: -")
    assert priority == NotificationPriority.MEDIUM


def test_mark_read_is_scoped_to_owner(db_session, make_user, reader):
    NotificationSink.notify(db_session, reader.id, EventType.FINE_PAID,
                            {"amount": "5000", "currency": "VND"})
    db_session.commit()
    notification = db_session.query(Notification).one()
    stranger = make_user()
    with pytest.raises(NotificationNotFoundError):
        NotificationSink.mark_read(db_session, stranger.id, notification.id)
    assert NotificationSink.mark_read(db_session, reader.id, notification.id).is_read is True
    items, total = NotificationSink.list_for_user(db_session, reader.id, unread_only=True)
    assert total == 0
