import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.staticfiles import StaticFiles

from bookbase.accounts import Accounts
from bookbase.auth import TokenData, decode_access_token
from bookbase.circulation import Circulation
from bookbase.config import settings
from bookbase.database import get_db_connection, to_iso, utc_now
from bookbase.exceptions import AuthenticationError, ConflictError, ExternalServiceError
from bookbase.library import Library
from bookbase.notifications import run_due_soon_job, run_overdue_job
from bookbase.schemas import (
    AuthResponse,
    BookCreateModel,
    BookListResponse,
    BookModel,
    BookUpdateModel,
    ChangePasswordModel,
    CheckinModel,
    CheckoutCreateModel,
    CheckoutModel,
    CheckoutResponse,
    LoginModel,
    MessageModel,
    ProfileUpdateModel,
    RegisterModel,
    StatsModel,
    UploadResponse,
    UserModel,
    UserResponse,
)
from bookbase.scheduler import shutdown_scheduler, start_scheduler
from bookbase.services.http_client import cleanup_http_client, get_http_client
from bookbase.services.storage_service import BOOK_IMAGES, PROFILE_IMAGES, StorageService
from bookbase.user import require_librarian

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

library = Library()
accounts = Accounts()
circulation = Circulation()
storage = StorageService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_http_client()
    if settings.enable_scheduler:
        start_scheduler()
    try:
        yield
    finally:
        if settings.enable_scheduler:
            shutdown_scheduler()
        await cleanup_http_client()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Local uploads ---
os.makedirs(settings.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


# --- Errors ---
DOMAIN_ERRORS = (ValueError, LookupError, PermissionError, AuthenticationError, ExternalServiceError)


def _http_error(e: Exception) -> HTTPException:
    """Translate a controller exception into the matching HTTP status."""
    if isinstance(e, ConflictError):
        status_code = 409
    elif isinstance(e, ValueError):
        status_code = 400
    elif isinstance(e, LookupError):
        status_code = 404
    elif isinstance(e, PermissionError):
        status_code = 403
    elif isinstance(e, AuthenticationError):
        status_code = 401
    else:
        status_code = 502
    return HTTPException(status_code=status_code, detail=str(e))


# --- Security ---
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> TokenData:
    """Dependency that resolves the bearer token to the calling user."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authorization required",
                            headers={"WWW-Authenticate": "Bearer"})
    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e), headers={"WWW-Authenticate": "Bearer"}) from e


def get_librarian(current: TokenData = Depends(get_current_user)) -> TokenData:
    try:
        require_librarian(current.role)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    return current


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Cron routes are open unless CRON_SECRET is configured."""
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


# --- Health ---
@app.get("/health")
def health():
    db_ok = True
    try:
        conn = get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except sqlite3.Error:
        logger.exception("Database health check failed")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": to_iso(utc_now()),
        "version": settings.app_version,
        "db": db_ok,
        "scheduler": settings.enable_scheduler,
    }


@app.get("/stats", response_model=StatsModel)
def get_stats():
    return library.get_statistics()


# --- Auth ---
@app.post("/api/auth/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterModel):
    try:
        return accounts.register(payload.model_dump())
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.post("/api/auth/login", response_model=AuthResponse)
def login(payload: LoginModel):
    try:
        return accounts.login(payload.email, payload.password)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.get("/api/auth/profile", response_model=UserResponse)
def get_profile(current: TokenData = Depends(get_current_user)):
    try:
        return accounts.get_profile(current.user_id)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


# --- Books ---
@app.get("/api/books", response_model=BookListResponse)
def search_books(
    title: Optional[str] = None,
    isbn: Optional[str] = None,
    publisher: Optional[str] = None,
    genre: Optional[str] = None,
    date_added_from: Optional[date] = None,
    date_added_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
):
    try:
        result = library.search_books(
            title=title, isbn=isbn, publisher=publisher, genre=genre,
            date_added_from=date_added_from, date_added_to=date_added_to,
            page=page, limit=limit,
        )
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e
    return {"books": [b.to_dict() for b in result["books"]], "pagination": result["pagination"]}


@app.post("/api/books", response_model=BookModel, status_code=201)
def create_book(payload: BookCreateModel, current: TokenData = Depends(get_librarian)):
    try:
        return library.create_book(payload.model_dump(), current.user_id).to_dict()
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.get("/api/books/available", response_model=List[BookModel])
def available_books():
    return [b.to_dict() for b in library.available_books()]


@app.get("/api/books/genre/{genre}", response_model=List[BookModel])
def books_by_genre(genre: str):
    return [b.to_dict() for b in library.books_by_genre(genre)]


@app.post("/api/books/upload-image", response_model=UploadResponse)
async def upload_book_image(file: UploadFile = File(...), current: TokenData = Depends(get_librarian)):
    content = await file.read()
    try:
        return await storage.upload_image(BOOK_IMAGES, file.filename, content, file.content_type)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.get("/api/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    try:
        return library.get_book(book_id).to_dict()
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.put("/api/books/{book_id}", response_model=BookModel)
def update_book(book_id: str, payload: BookUpdateModel, current: TokenData = Depends(get_current_user)):
    try:
        return library.update_book(book_id, payload.model_dump(exclude_unset=True), current.role).to_dict()
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.delete("/api/books/{book_id}", response_model=MessageModel)
def delete_book(book_id: str, current: TokenData = Depends(get_current_user)):
    try:
        return library.delete_book(book_id, current.role)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


# --- Checkouts ---
@app.get("/api/checkouts", response_model=List[CheckoutModel])
def all_checkouts(current: TokenData = Depends(get_librarian)):
    return [c.to_dict() for c in circulation.all_checkouts(current.role)]


@app.post("/api/checkouts", response_model=CheckoutResponse, status_code=201)
def checkout_book(payload: CheckoutCreateModel, current: TokenData = Depends(get_current_user)):
    try:
        return circulation.checkout_book(payload.book_id, current.user_id, current.role, for_user_id=payload.user_id)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.post("/api/checkouts/checkin", response_model=CheckoutResponse)
def checkin_book(payload: CheckinModel, current: TokenData = Depends(get_current_user)):
    try:
        return circulation.checkin_book(payload.checkout_id, current.user_id, current.role)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.get("/api/checkouts/active", response_model=List[CheckoutModel])
def active_checkouts(current: TokenData = Depends(get_current_user)):
    return [c.to_dict() for c in circulation.active_checkouts(current.role, current.user_id)]


@app.get("/api/checkouts/my-checkouts", response_model=List[CheckoutModel])
def my_checkouts(current: TokenData = Depends(get_current_user)):
    return [c.to_dict() for c in circulation.user_checkouts(current.user_id, current.user_id, current.role)]


@app.get("/api/checkouts/overdue", response_model=List[CheckoutModel])
def overdue_checkouts(current: TokenData = Depends(get_librarian)):
    return [c.to_dict(include_overdue_days=True) for c in circulation.overdue_checkouts(current.role)]


@app.get("/api/checkouts/user/{user_id}", response_model=List[CheckoutModel])
def user_checkouts(user_id: str, current: TokenData = Depends(get_current_user)):
    try:
        return [c.to_dict() for c in circulation.user_checkouts(user_id, current.user_id, current.role)]
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


# --- Users ---
@app.get("/api/users", response_model=List[UserModel])
def list_users(current: TokenData = Depends(get_librarian)):
    return [u.to_dict() for u in accounts.list_users(current.role)]


@app.put("/api/users/profile", response_model=UserResponse)
def update_profile(payload: ProfileUpdateModel, current: TokenData = Depends(get_current_user)):
    try:
        return accounts.update_profile(current.user_id, payload.model_dump(exclude_unset=True))
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.post("/api/users/change-password", response_model=MessageModel)
def change_password(payload: ChangePasswordModel, current: TokenData = Depends(get_current_user)):
    try:
        return accounts.change_password(current.user_id, payload.current_password, payload.new_password)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.post("/api/users/upload-image", response_model=UploadResponse)
async def upload_profile_image(file: UploadFile = File(...)):
    # Open to anonymous callers so the registration form can attach a photo
    content = await file.read()
    try:
        return await storage.upload_image(PROFILE_IMAGES, file.filename, content, file.content_type)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.get("/api/users/{user_id}", response_model=UserResponse)
def get_user(user_id: str, current: TokenData = Depends(get_current_user)):
    try:
        return accounts.get_user(user_id, current.user_id, current.role)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


@app.delete("/api/users/{user_id}", response_model=MessageModel)
def delete_user(user_id: str, current: TokenData = Depends(get_current_user)):
    try:
        return accounts.delete_user(user_id, current.role)
    except DOMAIN_ERRORS as e:
        raise _http_error(e) from e


# --- Scheduled jobs ---
def _run_job(name: str):
    try:
        if name == "due-soon":
            return run_due_soon_job(circulation)
        return run_overdue_job(circulation)
    except Exception as e:
        logger.exception("Cron job %s failed", name)
        label = "due soon" if name == "due-soon" else "overdue"
        return JSONResponse(
            status_code=500,
            content={"error": f"Failed to send {label} notifications", "details": str(e)},
        )


@app.get("/api/cron/due-soon", dependencies=[Depends(verify_cron_secret)])
def cron_due_soon():
    return _run_job("due-soon")


@app.get("/api/cron/overdue", dependencies=[Depends(verify_cron_secret)])
def cron_overdue():
    return _run_job("overdue")


@app.get("/api/cron/test", dependencies=[Depends(verify_cron_secret)])
def cron_test(type: Optional[str] = None):
    if type in ("due-soon", "overdue"):
        return _run_job(type)
    base_url = settings.public_base_url.rstrip("/")
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid type. Use ?type=due-soon or ?type=overdue",
            "examples": [
                f"{base_url}/api/cron/test?type=due-soon",
                f"{base_url}/api/cron/test?type=overdue",
            ],
        },
    )
