import logging
import sqlite3
from datetime import datetime, timezone

from bookbase.config import settings

logger = logging.getLogger(__name__)

# Default database file. Library(db_file=...) and tests may override it.
DATABASE_FILE = settings.database_file

# Seconds to wait on a locked database before giving up.
BUSY_TIMEOUT = 10.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime the way every timestamp column stores it.

    Second precision and an explicit UTC offset keep the strings the same
    length, so SQL string comparison orders them chronologically.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_db_connection() -> sqlite3.Connection:
    """Open a connection to the SQLite database."""
    conn = sqlite3.connect(DATABASE_FILE, timeout=BUSY_TIMEOUT)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables() -> None:
    """Create the tables if they are missing and bring older files up to date."""
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'reader' CHECK(role IN ('librarian', 'reader')),
                profile_photo_url TEXT,
                phone TEXT,
                address TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                isbn TEXT UNIQUE NOT NULL,
                revision_number TEXT,
                published_date TEXT,
                publisher TEXT,
                authors TEXT NOT NULL,
                genre TEXT,
                cover_image_url TEXT,
                description TEXT,
                total_copies INTEGER NOT NULL DEFAULT 1 CHECK(total_copies >= 1),
                available_copies INTEGER NOT NULL DEFAULT 1
                    CHECK(available_copies >= 0 AND available_copies <= total_copies),
                date_added_to_library TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                added_by TEXT REFERENCES users(id) ON DELETE SET NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS checkouts (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                checkout_date TEXT NOT NULL,
                expected_return_date TEXT NOT NULL,
                actual_return_date TEXT,
                is_returned INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Columns added after the first release
        cursor.execute("PRAGMA table_info(checkouts)")
        columns = [column[1] for column in cursor.fetchall()]
        if "overdue_notification_sent" not in columns:
            cursor.execute("ALTER TABLE checkouts ADD COLUMN overdue_notification_sent INTEGER NOT NULL DEFAULT 0")
        if "librarian_notification_sent" not in columns:
            cursor.execute("ALTER TABLE checkouts ADD COLUMN librarian_notification_sent INTEGER NOT NULL DEFAULT 0")

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_genre ON books(genre)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_checkouts_user ON checkouts(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_checkouts_book ON checkouts(book_id)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_checkouts_open_due "
            "ON checkouts(is_returned, expected_return_date)"
        )
        # At most one unreturned checkout per user and book
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_checkouts_one_open "
            "ON checkouts(book_id, user_id) WHERE is_returned = 0"
        )

        conn.commit()
    finally:
        conn.close()


def initialize_database() -> None:
    """Create or migrate the schema in the current DATABASE_FILE."""
    create_tables()
    logger.debug("Database ready at %s", DATABASE_FILE)
