import logging
import sqlite3
import uuid
from typing import Any, Dict, List, Optional

from bookbase.auth import create_access_token, hash_password, verify_password
from bookbase.config import settings
from bookbase.database import get_db_connection, to_iso, utc_now
from bookbase.exceptions import AuthenticationError, ConflictError
from bookbase.user import LIBRARIAN, READER, ROLES, User, require_librarian
from bookbase.utils.validators import EmailValidator, TextValidator

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

# Columns a member may change on their own profile
PROFILE_FIELDS = ("first_name", "last_name", "phone", "address", "profile_photo_url")


class Accounts:
    """Registration, login and profile management for library members."""

    def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        role = data.get("role") or READER
        if role == LIBRARIAN and not settings.allow_librarian_registration:
            raise PermissionError("Librarian accounts must be created by an administrator")
        user = self._create_user(data, role)
        logger.info("Registered %s account %s", user.role, user.id)
        return {"user": user.to_dict(), "token": create_access_token(user.id, user.role)}

    def create_librarian(self, email: str, password: str, first_name: str, last_name: str) -> User:
        """Operator path for bootstrapping staff accounts."""
        user = self._create_user(
            {"email": email, "password": password, "first_name": first_name, "last_name": last_name},
            LIBRARIAN,
        )
        logger.info("Created librarian account %s", user.id)
        return user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self._find_by_email(email)
        # Same message for both cases so the response does not reveal which emails exist
        if not user or not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        return {"user": user.to_dict(), "token": create_access_token(user.id, user.role)}

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        return {"user": self.get_user_record(user_id).to_dict()}

    def update_profile(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.get_user_record(user_id)

        changes: Dict[str, Any] = {}
        for field_name in PROFILE_FIELDS:
            if field_name not in data:
                continue
            if data[field_name] is None and field_name in ("first_name", "last_name"):
                continue
            value = data[field_name]
            if field_name in ("first_name", "last_name"):
                if TextValidator.is_blank(value):
                    raise ValueError(f"{field_name.replace('_', ' ').capitalize()} is required")
                value = value.strip()
            changes[field_name] = value

        if changes:
            changes["updated_at"] = to_iso(utc_now())
            set_clause = ", ".join(f"{name} = ?" for name in changes)
            conn = get_db_connection()
            try:
                conn.execute(f"UPDATE users SET {set_clause} WHERE id = ?", list(changes.values()) + [user_id])
                conn.commit()
            finally:
                conn.close()

        return {"user": self.get_user_record(user_id).to_dict(), "message": "Profile updated successfully"}

    def change_password(self, user_id: str, current_password: str, new_password: str) -> Dict[str, str]:
        user = self.get_user_record(user_id)
        if not verify_password(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        self._check_password(new_password)

        conn = get_db_connection()
        try:
            conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (hash_password(new_password), to_iso(utc_now()), user_id),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Password changed for user %s", user_id)
        return {"message": "Password changed successfully"}

    def list_users(self, requester_role: str) -> List[User]:
        require_librarian(requester_role)
        conn = get_db_connection()
        try:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at DESC, email").fetchall()
        finally:
            conn.close()
        return [User.from_dict(dict(row)) for row in rows]

    def get_user(self, user_id: str, requester_id: str, requester_role: str) -> Dict[str, Any]:
        if requester_role != LIBRARIAN and user_id != requester_id:
            raise PermissionError("Access denied")
        return {"user": self.get_user_record(user_id).to_dict(), "message": "User retrieved successfully"}

    def delete_user(self, user_id: str, requester_role: str) -> Dict[str, str]:
        require_librarian(requester_role)

        conn = get_db_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT id FROM users WHERE id = ?", (user_id,)).fetchone()
            if not row:
                raise LookupError("User not found")
            active = conn.execute(
                "SELECT COUNT(*) FROM checkouts WHERE user_id = ? AND is_returned = 0", (user_id,)
            ).fetchone()[0]
            if active:
                raise ConflictError("Cannot delete user with books still checked out")
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("User deleted: %s", user_id)
        return {"message": "User deleted successfully"}

    def get_user_record(self, user_id: str) -> User:
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            raise LookupError("User not found")
        return User.from_dict(dict(row))

    # ------------------------- Helpers ------------------------- #
    def _create_user(self, data: Dict[str, Any], role: str) -> User:
        if role not in ROLES:
            raise ValueError("Role must be librarian or reader")
        email = EmailValidator.normalize(data.get("email"))
        if not EmailValidator.is_valid(email):
            raise ValueError("Invalid email address")
        password = data.get("password") or ""
        self._check_password(password)
        first_name = (data.get("first_name") or "").strip()
        last_name = (data.get("last_name") or "").strip()
        if not first_name:
            raise ValueError("First name is required")
        if not last_name:
            raise ValueError("Last name is required")

        if self._find_by_email(email):
            raise ConflictError("User already exists")

        now = to_iso(utc_now())
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=role,
            password_hash=hash_password(password),
            profile_photo_url=data.get("profile_photo_url"),
            phone=data.get("phone"),
            address=data.get("address"),
            created_at=now,
            updated_at=now,
        )
        conn = get_db_connection()
        try:
            conn.execute("""
                INSERT INTO users (
                    id, email, password_hash, first_name, last_name, role,
                    profile_photo_url, phone, address, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                user.id, user.email, user.password_hash, user.first_name, user.last_name, user.role,
                user.profile_photo_url, user.phone, user.address, user.created_at, user.updated_at,
            ))
            conn.commit()
        except sqlite3.IntegrityError as e:
            # Lost a race with a concurrent registration of the same email
            raise ConflictError("User already exists") from e
        finally:
            conn.close()
        return user

    def _find_by_email(self, email: Optional[str]) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (EmailValidator.normalize(email),)
            ).fetchone()
        finally:
            conn.close()
        return User.from_dict(dict(row)) if row else None

    @staticmethod
    def _check_password(password: str) -> None:
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
