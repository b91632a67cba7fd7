import os
import tempfile

# Point every module at throwaway locations before bookbase reads its settings
_TMP_DIR = tempfile.mkdtemp(prefix="bookbase-tests-")
os.environ["LIBRARY_DB_FILE"] = os.path.join(_TMP_DIR, "import.db")
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ.pop("STORAGE_URL", None)
os.environ.pop("CRON_SECRET", None)
for _name in ("SMTP_HOST", "SMTP_USERNAME", "SMTP_PASSWORD", "LIBRARIAN_EMAIL"):
    os.environ.pop(_name, None)

import pytest

import bookbase.database as database
from bookbase.accounts import Accounts
from bookbase.circulation import Circulation
from bookbase.library import Library


@pytest.fixture
def db(tmp_path, request, monkeypatch):
    # A fresh database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", db_file)
    database.initialize_database()
    yield db_file


@pytest.fixture
def lib(db):
    lib = Library()
    yield lib
    lib.close()


@pytest.fixture
def accounts(db):
    return Accounts()


@pytest.fixture
def circulation(db):
    return Circulation()


@pytest.fixture
def librarian(accounts):
    return accounts.create_librarian("librarian@example.com", "secret123", "Libby", "Rarian")


@pytest.fixture
def reader(accounts):
    result = accounts.register({
        "email": "reader@example.com",
        "password": "secret123",
        "first_name": "Rita",
        "last_name": "Reader",
    })
    return accounts.get_user_record(result["user"]["id"])


@pytest.fixture
def book(lib, librarian):
    return lib.create_book({
        "title": "Introduction to Algorithms",
        "isbn": "9780262033848",
        "authors": ["Thomas H. Cormen", "Charles E. Leiserson"],
        "publisher": "MIT Press",
        "genre": "Computer Science",
        "total_copies": 2,
    }, librarian.id)
