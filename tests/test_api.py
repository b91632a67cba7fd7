from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from bookbase import api as api_module
from bookbase.auth import create_access_token
from bookbase.config import settings
from bookbase.database import utc_now


@pytest.fixture
def client(db):
    with TestClient(api_module.app) as test_client:
        yield test_client


@pytest.fixture
def librarian_headers(librarian):
    return {"Authorization": f"Bearer {create_access_token(librarian.id, librarian.role)}"}


@pytest.fixture
def reader_headers(reader):
    return {"Authorization": f"Bearer {create_access_token(reader.id, reader.role)}"}


BOOK_PAYLOAD = {
    "title": "Fluent Python",
    "isbn": "978-1-4919-5035-7",
    "authors": ["Luciano Ramalho"],
    "publisher": "O'Reilly",
    "genre": "Programming",
    "total_copies": 2,
}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True
    assert "timestamp" in body


def test_register_login_profile(client):
    response = client.post("/api/auth/register", json={
        "email": "new@example.com", "password": "secret123", "first_name": "New", "last_name": "User",
    })
    assert response.status_code == 201
    assert response.json()["user"]["role"] == "reader"

    response = client.post("/api/auth/login", json={"email": "new@example.com", "password": "secret123"})
    assert response.status_code == 200
    token = response.json()["token"]

    response = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "new@example.com"
    assert "password_hash" not in response.json()["user"]


def test_register_validation_and_conflict(client, reader):
    response = client.post("/api/auth/register", json={
        "email": "bad", "password": "secret123", "first_name": "A", "last_name": "B",
    })
    assert response.status_code == 422

    response = client.post("/api/auth/register", json={
        "email": "reader@example.com", "password": "secret123", "first_name": "A", "last_name": "B",
    })
    assert response.status_code == 409
    assert response.json() == {"detail": "User already exists"}


def test_login_wrong_password(client, reader):
    response = client.post("/api/auth/login", json={"email": "reader@example.com", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


def test_auth_required(client):
    response = client.get("/api/auth/profile")
    assert response.status_code == 401
    assert response.json()["detail"] == "Authorization required"

    response = client.get("/api/auth/profile", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


def test_book_crud(client, librarian_headers):
    response = client.post("/api/books", json=BOOK_PAYLOAD, headers=librarian_headers)
    assert response.status_code == 201
    book = response.json()
    assert book["isbn"] == "9781491950357"
    assert book["available_copies"] == 2
    assert book["added_by_user"]["email"] == "librarian@example.com"

    response = client.get(f"/api/books/{book['id']}")
    assert response.status_code == 200

    response = client.put(f"/api/books/{book['id']}", json={"genre": "Python"}, headers=librarian_headers)
    assert response.status_code == 200
    assert response.json()["genre"] == "Python"

    response = client.get("/api/books/genre/Python")
    assert [b["id"] for b in response.json()] == [book["id"]]

    response = client.delete(f"/api/books/{book['id']}", headers=librarian_headers)
    assert response.status_code == 200
    assert response.json() == {"message": "Book deleted successfully"}
    assert client.get(f"/api/books/{book['id']}").status_code == 404


def test_book_errors(client, librarian_headers, reader_headers):
    assert client.post("/api/books", json=BOOK_PAYLOAD, headers=reader_headers).status_code == 403
    assert client.post("/api/books", json=BOOK_PAYLOAD).status_code == 401

    bad_isbn = dict(BOOK_PAYLOAD, isbn="9781491950358")
    response = client.post("/api/books", json=bad_isbn, headers=librarian_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid ISBN format."

    assert client.post("/api/books", json=dict(BOOK_PAYLOAD, authors=[]), headers=librarian_headers).status_code == 422

    client.post("/api/books", json=BOOK_PAYLOAD, headers=librarian_headers)
    assert client.post("/api/books", json=BOOK_PAYLOAD, headers=librarian_headers).status_code == 409


def test_update_book_null_clears_genre(client, book, librarian_headers):
    response = client.put(f"/api/books/{book.id}", json={"genre": None}, headers=librarian_headers)
    assert response.status_code == 200
    assert response.json()["genre"] is None
    assert response.json()["title"] == "Introduction to Algorithms"


def test_reader_cannot_edit_books(client, book, reader_headers):
    assert client.put(f"/api/books/{book.id}", json={"title": "X"}, headers=reader_headers).status_code == 403
    assert client.delete(f"/api/books/{book.id}", headers=reader_headers).status_code == 403


def test_search_books(client, lib):
    lib.create_book(dict(BOOK_PAYLOAD))
    lib.create_book({"title": "SICP", "isbn": "9780262510875", "authors": ["Abelson"], "genre": "Lisp"})

    body = client.get("/api/books", params={"title": "fluent"}).json()
    assert [b["title"] for b in body["books"]] == ["Fluent Python"]
    assert body["pagination"] == {"page": 1, "limit": settings.default_page_size, "total": 1, "total_pages": 1}

    body = client.get("/api/books", params={"limit": 1, "page": 2}).json()
    assert body["pagination"]["total"] == 2
    assert len(body["books"]) == 1

    today = utc_now().date().isoformat()
    assert client.get("/api/books", params={"date_added_from": today}).json()["pagination"]["total"] == 2
    assert client.get("/api/books", params={"page": 0}).status_code == 422
    assert client.get("/api/books", params={"limit": 1000}).status_code == 400


def test_checkout_flow(client, book, reader, reader_headers, librarian_headers):
    response = client.post("/api/checkouts", json={"book_id": book.id}, headers=reader_headers)
    assert response.status_code == 201
    checkout = response.json()["checkout"]
    assert response.json()["message"] == "Book checked out successfully"
    assert checkout["days_remaining"] == 10

    again = client.post("/api/checkouts", json={"book_id": book.id}, headers=reader_headers)
    assert again.status_code == 409

    assert [c["id"] for c in client.get("/api/checkouts/my-checkouts", headers=reader_headers).json()] == [
        checkout["id"]
    ]
    assert len(client.get("/api/checkouts/active", headers=reader_headers).json()) == 1
    assert len(client.get("/api/checkouts", headers=librarian_headers).json()) == 1
    assert client.get("/api/checkouts", headers=reader_headers).status_code == 403
    assert client.get(f"/api/checkouts/user/{reader.id}", headers=librarian_headers).status_code == 200
    assert client.get(f"/api/books/{book.id}").json()["available_copies"] == 1

    response = client.post("/api/checkouts/checkin", json={"checkout_id": checkout["id"]}, headers=reader_headers)
    assert response.status_code == 200
    assert response.json()["checkout"]["is_returned"] is True
    assert client.get(f"/api/books/{book.id}").json()["available_copies"] == 2

    again = client.post("/api/checkouts/checkin", json={"checkout_id": checkout["id"]}, headers=reader_headers)
    assert again.status_code == 409
    assert again.json()["detail"] == "Book has already been returned"


def test_checkout_unknown_book(client, reader_headers):
    response = client.post("/api/checkouts", json={"book_id": "missing"}, headers=reader_headers)
    assert response.status_code == 404


def test_overdue_listing(client, book, reader, circulation, librarian_headers):
    circulation.checkout_book(book.id, reader.id, "reader", now=utc_now() - timedelta(days=13))
    response = client.get("/api/checkouts/overdue", headers=librarian_headers)
    assert response.status_code == 200
    (entry,) = response.json()
    assert entry["is_overdue"] is True
    assert entry["days_overdue"] == 3


def test_users_routes(client, reader, librarian, reader_headers, librarian_headers):
    assert client.get("/api/users", headers=reader_headers).status_code == 403
    assert len(client.get("/api/users", headers=librarian_headers).json()) == 2

    response = client.put("/api/users/profile", json={"phone": "555-0100"}, headers=reader_headers)
    assert response.status_code == 200
    assert response.json()["user"]["phone"] == "555-0100"

    assert client.get(f"/api/users/{librarian.id}", headers=reader_headers).status_code == 403
    assert client.get(f"/api/users/{reader.id}", headers=reader_headers).status_code == 200

    response = client.post("/api/users/change-password", headers=reader_headers, json={
        "current_password": "secret123", "new_password": "newsecret", "confirm_password": "different",
    })
    assert response.status_code == 422
    response = client.post("/api/users/change-password", headers=reader_headers, json={
        "current_password": "secret123", "new_password": "newsecret", "confirm_password": "newsecret",
    })
    assert response.status_code == 200

    assert client.delete(f"/api/users/{reader.id}", headers=reader_headers).status_code == 403
    assert client.delete(f"/api/users/{reader.id}", headers=librarian_headers).status_code == 200
    assert client.get(f"/api/users/{reader.id}", headers=librarian_headers).status_code == 404


def test_upload_profile_image(client, tmp_path, monkeypatch):
    monkeypatch.setattr(api_module.storage, "upload_dir", tmp_path)
    response = client.post(
        "/api/users/upload-image",
        files={"file": ("me.png", b"\x89PNG\r\n\x1a\n", "image/png")},
    )
    assert response.status_code == 200
    assert (tmp_path / "profile-images" / response.json()["path"]).exists()

    response = client.post("/api/users/upload-image", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400
    assert response.json()["detail"] == "File must be an image"


def test_upload_book_image_needs_librarian(client, reader_headers):
    response = client.post(
        "/api/books/upload-image",
        files={"file": ("cover.png", b"\x89PNG\r\n\x1a\n", "image/png")},
        headers=reader_headers,
    )
    assert response.status_code == 403


def test_stats(client, book):
    body = client.get("/stats").json()
    assert body["total_books"] == 1
    assert body["total_copies"] == 2


def test_cron_endpoints(client, monkeypatch):
    due_soon = MagicMock(return_value={"success": True, "message": "No books due soon found"})
    monkeypatch.setattr(api_module, "run_due_soon_job", due_soon)
    monkeypatch.setattr(api_module, "run_overdue_job", MagicMock(side_effect=ValueError("LIBRARIAN_EMAIL environment variable not set")))

    response = client.get("/api/cron/due-soon")
    assert response.status_code == 200
    assert response.json()["message"] == "No books due soon found"

    response = client.get("/api/cron/overdue")
    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to send overdue notifications",
        "details": "LIBRARIAN_EMAIL environment variable not set",
    }

    assert client.get("/api/cron/test", params={"type": "due-soon"}).status_code == 200
    assert due_soon.call_count == 2

    response = client.get("/api/cron/test", params={"type": "weekly"})
    assert response.status_code == 400
    assert len(response.json()["examples"]) == 2


def test_cron_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", "s3cret")
    monkeypatch.setattr(api_module, "run_due_soon_job", MagicMock(return_value={"success": True, "message": "ok"}))

    assert client.get("/api/cron/due-soon").status_code == 401
    response = client.get("/api/cron/due-soon", headers={"Authorization": "Bearer s3cret"})
    assert response.status_code == 200


def test_due_soon_cron_runs_against_database(client, book, reader, circulation, monkeypatch):
    circulation.checkout_book(book.id, reader.id, "reader", now=utc_now() - timedelta(days=8))
    sent = MagicMock(return_value=MagicMock(success=True))
    monkeypatch.setattr("bookbase.services.email_service.EmailService.send_due_soon_notification", sent)

    body = client.get("/api/cron/due-soon").json()
    assert body["details"]["total_books"] == 1
    assert sent.call_args.args[0] == "reader@example.com"
