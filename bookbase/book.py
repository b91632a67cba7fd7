from __future__ import annotations

import json


class Book:
    """A catalog title and the physical copies the library owns of it."""

    def __init__(self, id: str, title: str, isbn: str, authors: list | None = None,
                 revision_number: str | None = None, published_date: str | None = None,
                 publisher: str | None = None, genre: str | None = None,
                 cover_image_url: str | None = None, description: str | None = None,
                 total_copies: int = 1, available_copies: int | None = None,
                 date_added_to_library: str | None = None, created_at: str | None = None,
                 updated_at: str | None = None, added_by: str | None = None,
                 added_by_user: dict | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.isbn = isbn.strip()
        self.authors = authors or []
        self.revision_number = revision_number
        self.published_date = published_date
        self.publisher = publisher
        self.genre = genre
        self.cover_image_url = cover_image_url
        self.description = description
        self.total_copies = total_copies
        self.available_copies = total_copies if available_copies is None else available_copies
        self.date_added_to_library = date_added_to_library
        self.created_at = created_at
        self.updated_at = updated_at
        self.added_by = added_by
        self.added_by_user = added_by_user

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {', '.join(self.authors)} (ISBN: {self.isbn})"

    @property
    def checked_out_copies(self) -> int:
        return self.total_copies - self.available_copies

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "isbn": self.isbn,
            "authors": self.authors,
            "revision_number": self.revision_number,
            "published_date": self.published_date,
            "publisher": self.publisher,
            "genre": self.genre,
            "cover_image_url": self.cover_image_url,
            "description": self.description,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "date_added_to_library": self.date_added_to_library,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "added_by": self.added_by,
            "added_by_user": self.added_by_user,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        # SQLite keeps the author list as a JSON string
        authors = data.get("authors")
        if isinstance(authors, str):
            try:
                authors = json.loads(authors)
            except ValueError:
                authors = [authors] if authors else []

        added_by_user = data.get("added_by_user")
        if added_by_user is None and data.get("added_by_email"):
            added_by_user = {
                "first_name": data.get("added_by_first_name"),
                "last_name": data.get("added_by_last_name"),
                "email": data.get("added_by_email"),
            }

        return Book(
            id=data["id"],
            title=data["title"],
            isbn=data["isbn"],
            authors=authors,
            revision_number=data.get("revision_number"),
            published_date=data.get("published_date"),
            publisher=data.get("publisher"),
            genre=data.get("genre"),
            cover_image_url=data.get("cover_image_url"),
            description=data.get("description"),
            total_copies=data.get("total_copies", 1),
            available_copies=data.get("available_copies"),
            date_added_to_library=data.get("date_added_to_library"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            added_by=data.get("added_by"),
            added_by_user=added_by_user,
        )
