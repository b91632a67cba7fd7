import json
import logging
import math
import sqlite3
import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Union

import bookbase.database as database
from bookbase.book import Book
from bookbase.config import settings
from bookbase.database import get_db_connection, initialize_database, to_iso, utc_now
from bookbase.exceptions import ConflictError
from bookbase.user import require_librarian
from bookbase.utils.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

BOOK_SELECT = """
    SELECT b.*,
           u.first_name AS added_by_first_name,
           u.last_name AS added_by_last_name,
           u.email AS added_by_email
    FROM books b
    LEFT JOIN users u ON u.id = b.added_by
"""

# Columns a caller may change through update_book
UPDATABLE_FIELDS = (
    "title", "isbn", "revision_number", "published_date", "publisher",
    "authors", "genre", "cover_image_url", "description",
)
# NOT NULL columns; a null for these is ignored
REQUIRED_FIELDS = ("title", "isbn", "authors")


def _like_pattern(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped.lower()}%"


def _day(value: Union[str, date]) -> str:
    return str(value)[:10]


class Library:
    """The book catalog and its copy counts."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # Tests and the CLI point the whole process at a different file this way
        if db_file:
            database.DATABASE_FILE = db_file
        initialize_database()

    # ------------------------- Catalog changes ------------------------- #
    def create_book(self, data: Dict[str, Any], user_id: Optional[str] = None) -> Book:
        """Add a title with all of its copies on the shelf."""
        title = (data.get("title") or "").strip()
        if not title:
            raise ValueError("Title is required")
        isbn = self._clean_isbn(data.get("isbn"))
        authors = self._clean_authors(data.get("authors"))
        total_copies = data.get("total_copies")
        if total_copies is None:
            total_copies = 1
        if total_copies < 1:
            raise ValueError("Must have at least 1 copy")

        now = to_iso(utc_now())
        book = Book(
            id=str(uuid.uuid4()),
            title=title,
            isbn=isbn,
            authors=authors,
            revision_number=data.get("revision_number"),
            published_date=data.get("published_date"),
            publisher=data.get("publisher"),
            genre=data.get("genre"),
            cover_image_url=data.get("cover_image_url") or None,
            description=data.get("description"),
            total_copies=total_copies,
            available_copies=total_copies,
            date_added_to_library=now,
            created_at=now,
            updated_at=now,
            added_by=user_id,
        )

        conn = get_db_connection()
        try:
            conn.execute("""
                INSERT INTO books (
                    id, title, isbn, revision_number, published_date, publisher, authors,
                    genre, cover_image_url, description, total_copies, available_copies,
                    date_added_to_library, created_at, updated_at, added_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                book.id, book.title, book.isbn, book.revision_number, book.published_date,
                book.publisher, json.dumps(book.authors), book.genre, book.cover_image_url,
                book.description, book.total_copies, book.available_copies,
                book.date_added_to_library, book.created_at, book.updated_at, book.added_by,
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Book with ISBN {isbn} already exists.") from e
        finally:
            conn.close()

        logger.info("Book created: %s (%s) by user %s", book.title, book.id, user_id)
        return self.get_book(book.id)

    def update_book(self, book_id: str, data: Dict[str, Any], user_role: str) -> Book:
        """Apply a partial update. Changing total_copies keeps loaned copies on loan."""
        require_librarian(user_role)
        self.get_book(book_id)

        changes: Dict[str, Any] = {}
        for field_name in UPDATABLE_FIELDS:
            if field_name not in data:
                continue
            if data[field_name] is None and field_name in REQUIRED_FIELDS:
                continue
            value = data[field_name]
            if field_name == "title":
                if TextValidator.is_blank(value):
                    raise ValueError("Title is required")
                value = value.strip()
            elif field_name == "isbn":
                value = self._clean_isbn(value)
            elif field_name == "authors":
                value = json.dumps(self._clean_authors(value))
            elif field_name == "cover_image_url":
                value = value or None
            changes[field_name] = value

        total_copies = data.get("total_copies")
        if total_copies is not None and total_copies < 1:
            raise ValueError("Must have at least 1 copy")

        if not changes and total_copies is None:
            raise ValueError("Nothing to update.")

        assignments = [f"{name} = ?" for name in changes]
        params: List[Any] = list(changes.values())
        if total_copies is not None:
            # Evaluated against the row's current values inside the same statement
            assignments.append("available_copies = MAX(0, ? - (total_copies - available_copies))")
            assignments.append("total_copies = ?")
            params.extend([total_copies, total_copies])
        assignments.append("updated_at = ?")
        params.append(to_iso(utc_now()))
        params.append(book_id)

        conn = get_db_connection()
        try:
            conn.execute(f"UPDATE books SET {', '.join(assignments)} WHERE id = ?", params)
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Book with ISBN {changes.get('isbn')} already exists.") from e
        finally:
            conn.close()

        logger.info("Book updated: %s fields=%s", book_id, sorted(changes) + (["total_copies"] if total_copies else []))
        return self.get_book(book_id)

    def delete_book(self, book_id: str, user_role: str) -> Dict[str, str]:
        require_librarian(user_role)

        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT id FROM books WHERE id = ?", (book_id,)).fetchone()
            if not row:
                raise LookupError("Book not found")
            active = conn.execute(
                "SELECT COUNT(*) FROM checkouts WHERE book_id = ? AND is_returned = 0", (book_id,)
            ).fetchone()[0]
            if active:
                raise ConflictError("Cannot delete book with active checkouts")
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Book deleted: %s", book_id)
        return {"message": "Book deleted successfully"}

    # ------------------------- Reads ------------------------- #
    def get_book(self, book_id: str) -> Book:
        conn = get_db_connection()
        try:
            row = conn.execute(f"{BOOK_SELECT} WHERE b.id = ?", (book_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            raise LookupError("Book not found")
        return Book.from_dict(dict(row))

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        norm = ISBNValidator.normalize_isbn(isbn)
        conn = get_db_connection()
        try:
            row = conn.execute(f"{BOOK_SELECT} WHERE b.isbn = ?", (norm,)).fetchone()
        finally:
            conn.close()
        return Book.from_dict(dict(row)) if row else None

    def search_books(self, title: Optional[str] = None, isbn: Optional[str] = None,
                     publisher: Optional[str] = None, genre: Optional[str] = None,
                     date_added_from: Optional[Union[str, date]] = None,
                     date_added_to: Optional[Union[str, date]] = None,
                     page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        """Filter the catalog, newest first, one page at a time."""
        limit = limit or settings.default_page_size
        if page < 1:
            raise ValueError("page must be at least 1")
        if limit < 1 or limit > settings.max_page_size:
            raise ValueError(f"limit must be between 1 and {settings.max_page_size}")

        clauses: List[str] = []
        params: List[Any] = []
        if title:
            clauses.append("LOWER(b.title) LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(title))
        if isbn:
            clauses.append("LOWER(b.isbn) LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(ISBNValidator.normalize_isbn(isbn) or isbn))
        if publisher:
            clauses.append("LOWER(b.publisher) LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(publisher))
        if genre:
            clauses.append("b.genre = ?")
            params.append(genre)
        if date_added_from:
            clauses.append("substr(b.date_added_to_library, 1, 10) >= ?")
            params.append(_day(date_added_from))
        if date_added_to:
            clauses.append("substr(b.date_added_to_library, 1, 10) <= ?")
            params.append(_day(date_added_to))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        offset = (page - 1) * limit
        conn = get_db_connection()
        try:
            total = conn.execute(f"SELECT COUNT(*) FROM books b{where}", params).fetchone()[0]
            rows = conn.execute(
                f"{BOOK_SELECT}{where} ORDER BY b.created_at DESC, b.title LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()
        finally:
            conn.close()

        return {
            "books": [Book.from_dict(dict(row)) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit) if total else 0,
            },
        }

    def list_books(self) -> List[Book]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"{BOOK_SELECT} ORDER BY b.title").fetchall()
        finally:
            conn.close()
        return [Book.from_dict(dict(row)) for row in rows]

    def books_by_genre(self, genre: str) -> List[Book]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"{BOOK_SELECT} WHERE b.genre = ? ORDER BY b.title", (genre,)).fetchall()
        finally:
            conn.close()
        return [Book.from_dict(dict(row)) for row in rows]

    def available_books(self) -> List[Book]:
        conn = get_db_connection()
        try:
            rows = conn.execute(f"{BOOK_SELECT} WHERE b.available_copies > 0 ORDER BY b.title").fetchall()
        finally:
            conn.close()
        return [Book.from_dict(dict(row)) for row in rows]

    def get_statistics(self) -> Dict[str, Any]:
        """Catalog and circulation totals."""
        now = to_iso(utc_now())
        conn = get_db_connection()
        try:
            books = conn.execute("""
                SELECT COUNT(*) AS total_books,
                       COALESCE(SUM(total_copies), 0) AS total_copies,
                       COALESCE(SUM(available_copies), 0) AS available_copies,
                       COUNT(DISTINCT genre) AS genres
                FROM books
            """).fetchone()
            total_users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            active = conn.execute("SELECT COUNT(*) FROM checkouts WHERE is_returned = 0").fetchone()[0]
            overdue = conn.execute(
                "SELECT COUNT(*) FROM checkouts WHERE is_returned = 0 AND expected_return_date < ?", (now,)
            ).fetchone()[0]
        finally:
            conn.close()
        return {
            "total_books": books["total_books"],
            "total_copies": books["total_copies"],
            "available_copies": books["available_copies"],
            "genres": books["genres"],
            "total_users": total_users,
            "active_checkouts": active,
            "overdue_checkouts": overdue,
        }

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _clean_isbn(raw: Optional[str]) -> str:
        if TextValidator.is_blank(raw):
            raise ValueError("ISBN is required")
        isbn = ISBNValidator.normalize_isbn(raw)
        if not ISBNValidator.is_valid_isbn(isbn):
            raise ValueError("Invalid ISBN format.")
        return isbn

    @staticmethod
    def _clean_authors(authors: Any) -> List[str]:
        if isinstance(authors, str):
            authors = [authors]
        cleaned = [a.strip() for a in (authors or []) if a and a.strip()]
        if not cleaned:
            raise ValueError("At least one author is required")
        return cleaned

    def close(self) -> None:
        """Connections are opened per call, so there is nothing to release."""
        return None
