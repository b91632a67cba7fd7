from __future__ import annotations

LIBRARIAN = "librarian"
READER = "reader"
ROLES = (LIBRARIAN, READER)


class User:
    """A registered library member; librarians manage, readers borrow."""

    def __init__(self, id: str, email: str, first_name: str, last_name: str,
                 role: str = READER, password_hash: str | None = None,
                 profile_photo_url: str | None = None, phone: str | None = None,
                 address: str | None = None, created_at: str | None = None,
                 updated_at: str | None = None) -> None:
        self.id = id
        self.email = email
        self.first_name = first_name
        self.last_name = last_name
        self.role = role
        self.password_hash = password_hash
        self.profile_photo_url = profile_photo_url
        self.phone = phone
        self.address = address
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.full_name} <{self.email}> ({self.role})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_librarian(self) -> bool:
        return self.role == LIBRARIAN

    def to_dict(self) -> dict:
        """Public representation; the password hash never leaves the database layer."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "profile_photo_url": self.profile_photo_url,
            "phone": self.phone,
            "address": self.address,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data["id"],
            email=data["email"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            role=data.get("role", READER),
            password_hash=data.get("password_hash"),
            profile_photo_url=data.get("profile_photo_url"),
            phone=data.get("phone"),
            address=data.get("address"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


def require_librarian(role: str) -> None:
    if role != LIBRARIAN:
        raise PermissionError("Librarian access required")
