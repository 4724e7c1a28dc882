from datetime import timedelta
from unittest.mock import patch
from libris.core.extensions import ExtensionDesk
from libris.core.loans import LoanLedger
from libris.core.models import Loan, LoanStatus, OutboxEvent
from libris.core import scheduler
from libris.core.utils import utcnow
from helpers import loan_items, return_items, in_days


def _borrow(db_session, reader, librarian, book, due_in_days):
    return LoanLedger.create_for_reader(db_session, librarian, reader.id, in_days(due_in_days),
                                        loan_items((book.id, 1)))


def test_overdue_loans_are_reported_once(db_session, reader, librarian, make_book):
    book = make_book()
    late_id = _borrow(db_session, reader, librarian, book, 3).id
    returned_id = _borrow(db_session, reader, librarian, book, 3).id
    now = Loan.get(db_session, late_id).due_date + timedelta(days=1)

    # Only the first loan is still out, the second one came back
    LoanLedger.return_items(db_session, returned_id, librarian, return_items((book.id, 1)))
    assert LoanLedger.notify_overdue(db_session, now=now) == 1
    event = db_session.query(OutboxEvent).filter(OutboxEvent.type == "LOAN_OVERDUE").one()
    assert event.payload["loan_id"] == late_id
    assert event.payload["overdue_days"] == 1

    assert LoanLedger.notify_overdue(db_session, now=now) == 0
    loan = LoanLedger.get_for(db_session, late_id, librarian)
    # The stored status is never rewritten
    assert loan.status == LoanStatus.BORROWED


def test_extension_rearms_the_overdue_report(db_session, reader, librarian, make_book):
    loan = _borrow(db_session, reader, librarian, make_book(), 1)
    now = utcnow() + timedelta(days=20)
    assert LoanLedger.notify_overdue(db_session, now=now) == 1
    extension = ExtensionDesk.request(db_session, loan.id, reader, 5)
    ExtensionDesk.approve(db_session, extension.id, librarian)
    # Still past due after five more days, so it is reported again
    assert LoanLedger.notify_overdue(db_session, now=now) == 1


def test_due_soon_reminders(db_session, reader, librarian, make_book):
    book = make_book()
    _borrow(db_session, reader, librarian, book, 1)
    _borrow(db_session, reader, librarian, book, 10)
    assert LoanLedger.notify_due_soon(db_session, days=2) == 1
    event = db_session.query(OutboxEvent).one()
    assert event.type == "LOAN_DUE_SOON"


def test_scheduled_jobs(db_session):
    sched = scheduler.create_scheduler()
    jobs = {job.id: job for job in sched.get_jobs()}
    assert set(jobs) == {'check_overdue_loans', 'remind_due_soon', 'drain_outbox'}
    assert str(jobs['check_overdue_loans'].trigger.fields[5]) == '0'
    assert str(jobs['check_overdue_loans'].trigger.fields[6]) == '5'
    assert str(jobs['remind_due_soon'].trigger.fields[5]) == '9'


def test_job_failures_are_logged_not_raised(db_session):
    with patch.object(LoanLedger, 'notify_overdue', side_effect=RuntimeError("db gone")), \
            patch('libris.core.scheduler.SessionLocal', return_value=db_session):
        assert scheduler.check_overdue_loans() is None
