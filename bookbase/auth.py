"""Password hashing and access tokens."""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from bookbase.config import settings
from bookbase.database import utc_now
from bookbase.exceptions import AuthenticationError
from bookbase.user import ROLES

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


@dataclass
class TokenData:
    user_id: str
    role: str


def hash_password(password: str) -> str:
    raw = password.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValueError("Password must be at most 72 bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    raw = password.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(raw, password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        logger.warning("Stored password hash could not be parsed")
        return False


def create_access_token(user_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    now = utc_now()
    minutes = settings.jwt_expiration_minutes if expires_minutes is None else expires_minutes
    claims = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenData:
    """Validate a token and return who it was issued to."""
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise AuthenticationError("Invalid token") from exc

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in ROLES:
        raise AuthenticationError("Invalid token")
    return TokenData(user_id=user_id, role=role)
