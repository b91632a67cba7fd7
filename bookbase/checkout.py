from __future__ import annotations

import json
import math
from datetime import datetime, timedelta

from bookbase.config import settings
from bookbase.database import parse_iso, utc_now

SECONDS_PER_DAY = 24 * 60 * 60


def calculate_due_date(checkout_date: datetime | None = None, loan_days: int | None = None) -> datetime:
    """Expected return date for a loan starting at checkout_date."""
    start = checkout_date or utc_now()
    days = settings.loan_period_days if loan_days is None else loan_days
    return start + timedelta(days=days)


def days_remaining(expected_return_date: str | datetime, now: datetime | None = None) -> int:
    """Whole days left until the due date, rounded up; negative once overdue."""
    due = parse_iso(expected_return_date) if isinstance(expected_return_date, str) else expected_return_date
    delta = due - (now or utc_now())
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def is_overdue(expected_return_date: str | datetime, now: datetime | None = None) -> bool:
    due = parse_iso(expected_return_date) if isinstance(expected_return_date, str) else expected_return_date
    return due < (now or utc_now())


class Checkout:
    """One borrowed copy of a book, from checkout until it is returned."""

    def __init__(self, id: str, book_id: str, user_id: str, checkout_date: str,
                 expected_return_date: str, actual_return_date: str | None = None,
                 is_returned: bool = False, overdue_notification_sent: bool = False,
                 librarian_notification_sent: bool = False, created_at: str | None = None,
                 updated_at: str | None = None, book: dict | None = None,
                 user: dict | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.user_id = user_id
        self.checkout_date = checkout_date
        self.expected_return_date = expected_return_date
        self.actual_return_date = actual_return_date
        self.is_returned = bool(is_returned)
        self.overdue_notification_sent = bool(overdue_notification_sent)
        self.librarian_notification_sent = bool(librarian_notification_sent)
        self.created_at = created_at
        self.updated_at = updated_at
        self.book = book
        self.user = user

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        title = (self.book or {}).get("title", self.book_id)
        return f"{title} -> {self.user_id} (due {self.expected_return_date})"

    @property
    def user_name(self) -> str:
        user = self.user or {}
        return f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()

    def days_remaining(self, now: datetime | None = None) -> int:
        return days_remaining(self.expected_return_date, now)

    def is_overdue(self, now: datetime | None = None) -> bool:
        return not self.is_returned and is_overdue(self.expected_return_date, now)

    def to_dict(self, now: datetime | None = None, include_overdue_days: bool = False) -> dict:
        now = now or utc_now()
        remaining = self.days_remaining(now)
        data = {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "checkout_date": self.checkout_date,
            "expected_return_date": self.expected_return_date,
            "actual_return_date": self.actual_return_date,
            "is_returned": self.is_returned,
            "overdue_notification_sent": self.overdue_notification_sent,
            "librarian_notification_sent": self.librarian_notification_sent,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "book": self.book,
            "user": self.user,
            "days_remaining": remaining,
            "is_overdue": self.is_overdue(now),
        }
        if include_overdue_days:
            data["days_overdue"] = abs(remaining)
        return data

    @staticmethod
    def from_row(row: dict) -> "Checkout":
        """Build a Checkout from a checkouts row joined with its book and user."""
        book = None
        if row.get("book_title") is not None:
            authors = row.get("book_authors")
            if isinstance(authors, str):
                try:
                    authors = json.loads(authors)
                except ValueError:
                    authors = [authors]
            book = {
                "id": row["book_id"],
                "title": row["book_title"],
                "isbn": row.get("book_isbn"),
                "authors": authors or [],
                "cover_image_url": row.get("book_cover_image_url"),
            }
        user = None
        if row.get("user_email") is not None:
            user = {
                "id": row["user_id"],
                "first_name": row.get("user_first_name"),
                "last_name": row.get("user_last_name"),
                "email": row["user_email"],
                "phone": row.get("user_phone"),
            }
        return Checkout(
            id=row["id"],
            book_id=row["book_id"],
            user_id=row["user_id"],
            checkout_date=row["checkout_date"],
            expected_return_date=row["expected_return_date"],
            actual_return_date=row.get("actual_return_date"),
            is_returned=row.get("is_returned", False),
            overdue_notification_sent=row.get("overdue_notification_sent", False),
            librarian_notification_sent=row.get("librarian_notification_sent", False),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            book=book,
            user=user,
        )
