import logging
from libris.core.models import Notification, NotificationPriority, EventType

logger = logging.getLogger(__name__)


TEMPLATES = {
    EventType.LOAN_APPROVED: (
        "Loan request approved",
        "Your loan request {loan_code} was approved. You can pick up your books at the library.",
        NotificationPriority.MEDIUM),
    EventType.LOAN_REJECTED: (
        "Loan request rejected",
        "Your loan request {loan_code} was rejected. Reason: {reason}",
        NotificationPriority.MEDIUM),
    EventType.LOAN_OVERDUE: (
        "Loan overdue",
        "Loan {loan_code} is {overdue_days} day(s) overdue. Please return your books to avoid further fines.",
        NotificationPriority.HIGH),
    EventType.LOAN_DUE_SOON: (
        "Loan due soon",
        "Loan {loan_code} is due on {due_date}.",
        NotificationPriority.MEDIUM),
    EventType.FINE_ISSUED: (
        "New fine",
        "A {fine_type} fine of {amount} {currency} was issued for loan {loan_code}.",
        NotificationPriority.HIGH),
    EventType.FINE_PAID: (
        "Fine paid",
        "Your fine of {amount} {currency} has been paid.",
        NotificationPriority.LOW),
    EventType.FINE_WAIVED: (
        "Fine waived",
        "Your fine of {amount} {currency} was waived. Reason: {reason}",
        NotificationPriority.LOW),
    EventType.EXTENSION_APPROVED: (
        "Extension approved",
        "Loan {loan_code} is now due on {new_due_date}.",
        NotificationPriority.MEDIUM),
    EventType.EXTENSION_REJECTED: (
        "Extension rejected",
        "Your extension request for loan {loan_code} was rejected.",
        NotificationPriority.MEDIUM),
}


class _Defaults(dict):
    def __missing__(self, key):
        return "-"


class NotificationSink:
    """Stores in-app notifications; delivery transports are out of scope."""

    @classmethod
    def render(cls, event_type, payload):
        title, message, priority = TEMPLATES[EventType(event_type)]
        return title, message.format_map(_Defaults(payload)), priority

    @classmethod
    def notify(cls, db, user_id, event_type, payload):
        title, message, priority = cls.render(event_type, payload)
        notification = Notification(
            user_id=user_id,
            type=EventType(event_type).value,
            title=title,
            message=message,
            data=payload,
            priority=priority,
        )
        db.add(notification)
        db.flush()
        logger.info(f"Created notification for user {user_id}: {notification.type}")
        return notification

    @classmethod
    def list_for_user(cls, db, user_id, unread_only=False, offset=None, limit=None):
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        total = query.count()
        items = query.order_by(Notification.created_at.desc(), Notification.id.desc()) \
            .offset(offset).limit(limit).all()
        return items, total

    @classmethod
    def mark_read(cls, db, user_id, notification_id):
        notification = Notification.get_or_raise(db, notification_id)
        if notification.user_id != user_id:
            raise Notification.not_found_error(f"Notification {notification_id} not found")
        notification.is_read = True
        db.commit()
        return notification
