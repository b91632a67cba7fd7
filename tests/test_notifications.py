from datetime import datetime, timedelta, timezone

import pytest

from bookbase.exceptions import ExternalServiceError
from bookbase.notifications import run_due_soon_job, run_overdue_job
from bookbase.services.email_service import EmailResult

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


class FakeEmailService:
    def __init__(self, succeed=True):
        self.succeed = succeed
        self.due_soon = []
        self.overdue = []

    def send_due_soon_notification(self, email, name, checkouts, now=None):
        self.due_soon.append((email, name, [c.id for c in checkouts]))
        return EmailResult(success=self.succeed, message_id="<1@test>" if self.succeed else None)

    def send_overdue_notification(self, librarian_email, checkouts, now=None):
        self.overdue.append((librarian_email, [c.id for c in checkouts]))
        return EmailResult(success=self.succeed, error=None if self.succeed else "smtp down")


@pytest.fixture
def second_book(lib):
    return lib.create_book({"title": "SICP", "isbn": "9780262510875", "authors": ["Abelson"], "total_copies": 2})


def _lend(circulation, book, user, days_ago, role="reader"):
    # A loan started `days_ago` days before NOW
    return circulation.checkout_book(book.id, user.id, role, now=NOW - timedelta(days=days_ago))["checkout"]


def test_due_soon_nothing_due(circulation):
    fake = FakeEmailService()
    result = run_due_soon_job(circulation, fake, now=NOW)
    assert result == {"success": True, "message": "No books due soon found"}
    assert fake.due_soon == []


def test_due_soon_groups_by_user(circulation, book, second_book, reader, librarian):
    # Loans of 10 days started 8 days ago fall due in 2 days
    a = _lend(circulation, book, reader, 8)
    b = _lend(circulation, second_book, reader, 8)
    c = _lend(circulation, book, librarian, 8, role="librarian")
    _lend(circulation, second_book, librarian, 3, role="librarian")

    fake = FakeEmailService()
    result = run_due_soon_job(circulation, fake, now=NOW)

    assert result["success"] is True
    assert result["details"] == {"total_books": 3, "emails_sent": 2, "emails_failed": 0, "total_users": 2}
    sent = {email: (name, set(ids)) for email, name, ids in fake.due_soon}
    assert sent["reader@example.com"] == ("Rita Reader", {a["id"], b["id"]})
    assert sent["librarian@example.com"] == ("Libby Rarian", {c["id"]})


def test_due_soon_counts_failures(circulation, book, reader):
    _lend(circulation, book, reader, 8)
    result = run_due_soon_job(circulation, FakeEmailService(succeed=False), now=NOW)
    assert result["details"]["emails_sent"] == 0
    assert result["details"]["emails_failed"] == 1


def test_overdue_nothing_overdue(circulation, book, reader):
    _lend(circulation, book, reader, 1)
    result = run_overdue_job(circulation, FakeEmailService(), librarian_email="boss@example.com", now=NOW)
    assert result == {"success": True, "message": "No overdue books found"}


def test_overdue_report_sent_and_flagged(circulation, book, reader):
    late = _lend(circulation, book, reader, 12)
    fake = FakeEmailService()

    result = run_overdue_job(circulation, fake, librarian_email="boss@example.com", now=NOW)

    assert result["message"] == "Sent overdue notification for 1 books"
    assert result["details"] == {"total_overdue_books": 1, "librarian_email": "boss@example.com"}
    assert fake.overdue == [("boss@example.com", [late["id"]])]
    assert circulation.get_checkout(late["id"]).librarian_notification_sent is True


def test_overdue_requires_librarian_email(circulation, book, reader, monkeypatch):
    from bookbase.config import settings
    monkeypatch.setattr(settings, "librarian_email", None)
    _lend(circulation, book, reader, 12)
    with pytest.raises(ValueError, match="LIBRARIAN_EMAIL"):
        run_overdue_job(circulation, FakeEmailService(), now=NOW)


def test_overdue_send_failure(circulation, book, reader):
    late = _lend(circulation, book, reader, 12)
    with pytest.raises(ExternalServiceError):
        run_overdue_job(circulation, FakeEmailService(succeed=False), librarian_email="boss@example.com", now=NOW)
    assert circulation.get_checkout(late["id"]).librarian_notification_sent is False


def test_returned_loans_are_ignored(circulation, book, reader):
    late = _lend(circulation, book, reader, 12)
    circulation.checkin_book(late["id"], reader.id, "reader")
    fake = FakeEmailService()
    assert run_overdue_job(circulation, fake, librarian_email="boss@example.com", now=NOW)["message"] == \
        "No overdue books found"
    assert fake.overdue == []
