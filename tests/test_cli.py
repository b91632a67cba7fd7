import json
import sys
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

import bookbase.main as main
from bookbase.database import utc_now
from bookbase.main import app
from bookbase.services.email_service import EmailResult
from bookbase.utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    # --output writes to os.environ; monkeypatch restores it afterwards
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")


def test_books_empty(lib):
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_books_plain(book):
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert ("9780262033848 - Introduction to Algorithms by Thomas H. Cormen, Charles E. Leiserson (2/2)"
            in result.stdout)


def test_books_filters(book, lib):
    lib.create_book({"title": "Fluent Python", "isbn": "9781491950357", "authors": ["Luciano Ramalho"],
                     "genre": "Programming"})

    result = runner.invoke(app, ["books", "--genre", "Programming"])
    assert "Fluent Python" in result.stdout
    assert "Introduction to Algorithms" not in result.stdout

    result = runner.invoke(app, ["books", "-a"])
    assert "Fluent Python" in result.stdout
    assert "Introduction to Algorithms" in result.stdout


def test_books_json(book):
    result = runner.invoke(app, ["--output", "json", "books"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data[0]["isbn"] == "9780262033848"


def test_stats(book):
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Total Copies: 2" in result.stdout
    assert "Overdue Checkouts: 0" in result.stdout


def test_init_db(db):
    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0
    assert f"Database ready at {db}" in result.stdout


def test_create_librarian(db, accounts):
    result = runner.invoke(
        app,
        ["create-librarian", "-e", "Boss@Example.com", "--first-name", "Ada", "--last-name", "Boss"],
        input="secret123\nsecret123\n",
    )
    assert result.exit_code == 0
    assert "Librarian created: boss@example.com" in result.stdout
    assert accounts.login("boss@example.com", "secret123")["user"]["role"] == "librarian"


def test_create_librarian_duplicate(librarian):
    result = runner.invoke(
        app,
        ["create-librarian", "-e", "librarian@example.com", "--first-name", "A", "--last-name", "B"],
        input="secret123\nsecret123\n",
    )
    assert result.exit_code == 1
    assert "Error: User already exists" in result.stdout


def test_overdue_empty(db):
    result = runner.invoke(app, ["overdue"])
    assert result.exit_code == 0
    assert "No overdue books." in result.stdout


def test_overdue_lists_loans(book, reader, circulation):
    circulation.checkout_book(book.id, reader.id, "reader", now=utc_now() - timedelta(days=13))
    result = runner.invoke(app, ["overdue"])
    assert result.exit_code == 0
    assert "Introduction to Algorithms - Rita Reader <reader@example.com>" in result.stdout
    assert "(3 days overdue)" in result.stdout


def test_remind_due_soon(db, monkeypatch):
    job = MagicMock(return_value={
        "success": True,
        "message": "Sent due soon notification for 1 books to 1 users",
        "details": {"total_books": 1, "emails_sent": 1},
    })
    monkeypatch.setattr(main, "run_due_soon_job", job)

    result = runner.invoke(app, ["remind", "due-soon"])
    assert result.exit_code == 0
    assert "Sent due soon notification for 1 books to 1 users" in result.stdout
    assert "  emails_sent: 1" in result.stdout
    job.assert_called_once_with()


def test_remind_overdue_error(db, monkeypatch):
    monkeypatch.setattr(main, "run_overdue_job",
                        MagicMock(side_effect=ValueError("LIBRARIAN_EMAIL environment variable not set")))
    result = runner.invoke(app, ["remind", "overdue"])
    assert result.exit_code == 1
    assert "Error: LIBRARIAN_EMAIL environment variable not set" in result.stdout


def test_remind_rejects_unknown_kind(db):
    result = runner.invoke(app, ["remind", "weekly"])
    assert result.exit_code != 0


def test_send_test_email(monkeypatch):
    service = MagicMock()
    service.return_value.send.return_value = EmailResult(success=True, message_id="<abc@bookbase>")
    monkeypatch.setattr(main, "EmailService", service)

    result = runner.invoke(app, ["send-test-email", "me@example.com"])
    assert result.exit_code == 0
    assert "Test email sent to me@example.com (<abc@bookbase>)" in result.stdout
    assert service.return_value.send.call_args.args[0] == "me@example.com"


def test_send_test_email_failure(monkeypatch):
    service = MagicMock()
    service.return_value.send.return_value = EmailResult(success=False, error="SMTP credentials not configured")
    monkeypatch.setattr(main, "EmailService", service)

    result = runner.invoke(app, ["send-test-email", "me@example.com"])
    assert result.exit_code == 1
    assert "Error: SMTP credentials not configured" in result.stdout


@patch("bookbase.main.subprocess.run")
def test_serve(run_mock):
    result = runner.invoke(app, ["serve", "--host", "0.0.0.0", "--port", "9000", "--reload"])
    assert result.exit_code == 0
    assert "Starting API on http://0.0.0.0:9000/" in result.stdout
    run_mock.assert_called_once_with(
        [sys.executable, "-m", "uvicorn", "bookbase.api:app", "--host", "0.0.0.0", "--port", "9000", "--reload"],
        check=True,
    )
