import logging
import sqlite3
import uuid
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from bookbase.checkout import Checkout, calculate_due_date
from bookbase.config import settings
from bookbase.database import get_db_connection, to_iso, utc_now
from bookbase.exceptions import ConflictError
from bookbase.user import LIBRARIAN, require_librarian

logger = logging.getLogger(__name__)

CHECKOUT_SELECT = """
    SELECT c.*,
           b.title AS book_title,
           b.isbn AS book_isbn,
           b.authors AS book_authors,
           b.cover_image_url AS book_cover_image_url,
           u.first_name AS user_first_name,
           u.last_name AS user_last_name,
           u.email AS user_email,
           u.phone AS user_phone
    FROM checkouts c
    JOIN books b ON b.id = c.book_id
    JOIN users u ON u.id = c.user_id
"""


def _fetch(query: str, params: Iterable[Any] = ()) -> List[Checkout]:
    conn = get_db_connection()
    try:
        rows = conn.execute(query, tuple(params)).fetchall()
    finally:
        conn.close()
    return [Checkout.from_row(dict(row)) for row in rows]


class Circulation:
    """Lending copies out and taking them back."""

    def checkout_book(self, book_id: str, user_id: str, user_role: str,
                      for_user_id: Optional[str] = None,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
        """Lend one copy of a book.

        Librarians may lend to another member through ``for_user_id``. The
        availability check and decrement are a single guarded UPDATE inside
        the same write transaction as the insert, so the last copy can only
        be lent once.
        """
        borrower_id = for_user_id or user_id
        if borrower_id != user_id and user_role != LIBRARIAN:
            raise PermissionError("Only librarians can check out books for other users")

        now = now or utc_now()
        checkout_id = str(uuid.uuid4())
        stamp = to_iso(now)

        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            book = conn.execute("SELECT available_copies FROM books WHERE id = ?", (book_id,)).fetchone()
            if not book:
                raise LookupError("Book not found")
            if book["available_copies"] <= 0:
                raise ConflictError("Book is not available for checkout")
            if not conn.execute("SELECT id FROM users WHERE id = ?", (borrower_id,)).fetchone():
                raise LookupError("User not found")
            existing = conn.execute(
                "SELECT id FROM checkouts WHERE book_id = ? AND user_id = ? AND is_returned = 0",
                (book_id, borrower_id),
            ).fetchone()
            if existing:
                raise ConflictError("User already has this book checked out")

            updated = conn.execute(
                "UPDATE books SET available_copies = available_copies - 1, updated_at = ? "
                "WHERE id = ? AND available_copies > 0",
                (stamp, book_id),
            )
            if updated.rowcount == 0:
                raise ConflictError("Book is not available for checkout")

            conn.execute("""
                INSERT INTO checkouts (
                    id, book_id, user_id, checkout_date, expected_return_date,
                    is_returned, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            """, (checkout_id, book_id, borrower_id, stamp, to_iso(calculate_due_date(now)), stamp, stamp))
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ConflictError("User already has this book checked out") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Book %s checked out to %s (checkout %s)", book_id, borrower_id, checkout_id)
        return {
            "checkout": self.get_checkout(checkout_id).to_dict(now),
            "message": "Book checked out successfully",
        }

    def checkin_book(self, checkout_id: str, user_id: str, user_role: str,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        stamp = to_iso(now)

        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT book_id, user_id, is_returned FROM checkouts WHERE id = ?", (checkout_id,)
            ).fetchone()
            if not row:
                raise LookupError("Checkout record not found")
            if row["is_returned"]:
                raise ConflictError("Book has already been returned")
            if user_role != LIBRARIAN and row["user_id"] != user_id:
                raise PermissionError("You can only return your own books")

            conn.execute(
                "UPDATE checkouts SET actual_return_date = ?, is_returned = 1, updated_at = ? "
                "WHERE id = ? AND is_returned = 0",
                (stamp, stamp, checkout_id),
            )
            conn.execute(
                "UPDATE books SET available_copies = MIN(total_copies, available_copies + 1), updated_at = ? "
                "WHERE id = ?",
                (stamp, row["book_id"]),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Checkout %s returned", checkout_id)
        return {
            "checkout": self.get_checkout(checkout_id).to_dict(now),
            "message": "Book returned successfully",
        }

    # ------------------------- Listings ------------------------- #
    def get_checkout(self, checkout_id: str) -> Checkout:
        found = _fetch(f"{CHECKOUT_SELECT} WHERE c.id = ?", (checkout_id,))
        if not found:
            raise LookupError("Checkout record not found")
        return found[0]

    def user_checkouts(self, user_id: str, requester_id: str, requester_role: str) -> List[Checkout]:
        if requester_role != LIBRARIAN and user_id != requester_id:
            raise PermissionError("Access denied")
        return _fetch(
            f"{CHECKOUT_SELECT} WHERE c.user_id = ? ORDER BY c.checkout_date DESC", (user_id,)
        )

    def all_checkouts(self, user_role: str) -> List[Checkout]:
        require_librarian(user_role)
        return _fetch(f"{CHECKOUT_SELECT} ORDER BY c.checkout_date DESC")

    def overdue_checkouts(self, user_role: str, now: Optional[datetime] = None) -> List[Checkout]:
        require_librarian(user_role)
        return self.overdue_for_report(now)

    def active_checkouts(self, user_role: str, user_id: str) -> List[Checkout]:
        if user_role == LIBRARIAN:
            return _fetch(f"{CHECKOUT_SELECT} WHERE c.is_returned = 0 ORDER BY c.expected_return_date")
        return _fetch(
            f"{CHECKOUT_SELECT} WHERE c.is_returned = 0 AND c.user_id = ? ORDER BY c.expected_return_date",
            (user_id,),
        )

    # ------------------------- Reminder queries ------------------------- #
    def checkouts_due_soon(self, now: Optional[datetime] = None) -> List[Checkout]:
        """Open loans due on the UTC calendar day ``due_soon_days`` from now."""
        now = now or utc_now()
        target_day = (now.astimezone(timezone.utc) + timedelta(days=settings.due_soon_days)).date()
        start = datetime.combine(target_day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        return _fetch(
            f"{CHECKOUT_SELECT} WHERE c.is_returned = 0 "
            "AND c.expected_return_date >= ? AND c.expected_return_date < ? "
            "ORDER BY c.user_id, c.expected_return_date",
            (to_iso(start), to_iso(end)),
        )

    def overdue_for_report(self, now: Optional[datetime] = None) -> List[Checkout]:
        now = now or utc_now()
        return _fetch(
            f"{CHECKOUT_SELECT} WHERE c.is_returned = 0 AND c.expected_return_date < ? "
            "ORDER BY c.expected_return_date",
            (to_iso(now),),
        )

    def mark_librarian_notified(self, checkout_ids: Iterable[str]) -> int:
        ids = list(checkout_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                f"UPDATE checkouts SET librarian_notification_sent = 1, updated_at = ? WHERE id IN ({placeholders})",
                [to_iso(utc_now())] + ids,
            )
            conn.commit()
            updated = cursor.rowcount
        finally:
            conn.close()
        return updated
