from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from bookbase.utils.validators import EmailValidator, TextValidator


def _check_email(value: str) -> str:
    if not EmailValidator.is_valid(value):
        raise ValueError("Invalid email address")
    return EmailValidator.normalize(value)


def _check_optional_url(value: Optional[str]) -> Optional[str]:
    # Forms send an empty string to clear an image
    if value in (None, ""):
        return value
    if not TextValidator.is_http_url(value):
        raise ValueError("Must be a valid http(s) URL")
    return value


# --- Auth ---
class RegisterModel(BaseModel):
    email: str
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    role: Literal["librarian", "reader"] = "reader"
    phone: str | None = None
    address: str | None = None
    profile_photo_url: str | None = None

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("profile_photo_url")
    @classmethod
    def valid_photo_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_optional_url(value)


class LoginModel(BaseModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def valid_email(cls, value: str) -> str:
        return _check_email(value)


class UserModel(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    profile_photo_url: str | None = None
    phone: str | None = None
    address: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class AuthResponse(BaseModel):
    user: UserModel
    token: str


class UserResponse(BaseModel):
    user: UserModel
    message: str | None = None


# --- Users ---
class ProfileUpdateModel(BaseModel):
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = Field(default=None, min_length=1)
    phone: str | None = None
    address: str | None = None
    profile_photo_url: str | None = None

    @field_validator("profile_photo_url")
    @classmethod
    def valid_photo_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_optional_url(value)


class ChangePasswordModel(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


# --- Books ---
class BookCreateModel(BaseModel):
    title: str = Field(min_length=1)
    isbn: str = Field(min_length=1)
    authors: List[str] = Field(min_length=1)
    revision_number: str | None = None
    published_date: str | None = None
    publisher: str | None = None
    genre: str | None = None
    cover_image_url: str | None = None
    description: str | None = None
    total_copies: int = Field(default=1, ge=1)

    @field_validator("cover_image_url")
    @classmethod
    def valid_cover_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_optional_url(value)


class BookUpdateModel(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    isbn: str | None = None
    authors: List[str] | None = None
    revision_number: str | None = None
    published_date: str | None = None
    publisher: str | None = None
    genre: str | None = None
    cover_image_url: str | None = None
    description: str | None = None
    total_copies: int | None = Field(default=None, ge=1)

    @field_validator("cover_image_url")
    @classmethod
    def valid_cover_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_optional_url(value)


class BookModel(BaseModel):
    id: str
    title: str
    isbn: str
    authors: List[str]
    revision_number: str | None = None
    published_date: str | None = None
    publisher: str | None = None
    genre: str | None = None
    cover_image_url: str | None = None
    description: str | None = None
    total_copies: int
    available_copies: int
    date_added_to_library: str
    created_at: str | None = None
    updated_at: str | None = None
    added_by: str | None = None
    added_by_user: Dict[str, Any] | None = None


class PaginationModel(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class BookListResponse(BaseModel):
    books: List[BookModel]
    pagination: PaginationModel


# --- Checkouts ---
class CheckoutCreateModel(BaseModel):
    book_id: str = Field(min_length=1)
    # Librarians may lend to someone else
    user_id: str | None = None


class CheckinModel(BaseModel):
    checkout_id: str = Field(min_length=1)


class CheckoutModel(BaseModel):
    id: str
    book_id: str
    user_id: str
    checkout_date: str
    expected_return_date: str
    actual_return_date: str | None = None
    is_returned: bool
    overdue_notification_sent: bool = False
    librarian_notification_sent: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    book: Dict[str, Any] | None = None
    user: Dict[str, Any] | None = None
    days_remaining: int
    is_overdue: bool
    days_overdue: int | None = None


class CheckoutResponse(BaseModel):
    checkout: CheckoutModel
    message: str


# --- Misc ---
class MessageModel(BaseModel):
    message: str


class UploadResponse(BaseModel):
    url: str
    path: str


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    available_copies: int
    genres: int
    total_users: int
    active_checkouts: int
    overdue_checkouts: int
