import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Application
    app_name: str = os.getenv("APP_NAME", "BookBase")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    environment: str = os.getenv("ENVIRONMENT", "development")
    debug: bool = _env_bool("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # API
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    public_base_url: str = os.getenv(
        "PUBLIC_BASE_URL",
        f"http://{os.getenv('API_HOST', '127.0.0.1')}:{os.getenv('API_PORT', '8000')}",
    )

    # Database
    database_file: str = os.getenv("LIBRARY_DB_FILE", "bookbase.db")

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "10080"))  # 7 days
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    allow_librarian_registration: bool = _env_bool("ALLOW_LIBRARIAN_REGISTRATION", "True")

    # Circulation
    loan_period_days: int = int(os.getenv("LOAN_PERIOD_DAYS", "10"))
    due_soon_days: int = int(os.getenv("DUE_SOON_DAYS", "2"))

    # Pagination
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))

    # Email
    smtp_host: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    # False while smtp_host is only the built-in default
    smtp_host_set: bool = bool(os.getenv("SMTP_HOST"))
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: Optional[str] = os.getenv("SMTP_USERNAME")
    smtp_password: Optional[str] = os.getenv("SMTP_PASSWORD")
    smtp_use_tls: bool = _env_bool("SMTP_USE_TLS", "True")
    smtp_timeout: float = float(os.getenv("SMTP_TIMEOUT", "10"))
    smtp_from_email: str = os.getenv("SMTP_FROM_EMAIL") or os.getenv("SMTP_USERNAME") or "noreply@bookbase.local"
    smtp_from_name: str = os.getenv("SMTP_FROM_NAME", "Library System")
    librarian_email: Optional[str] = os.getenv("LIBRARIAN_EMAIL")
    enable_email_notifications: bool = _env_bool("ENABLE_EMAIL_NOTIFICATIONS", "True")

    # Scheduled jobs
    enable_scheduler: bool = _env_bool("ENABLE_SCHEDULER", "False")
    due_soon_hour: int = int(os.getenv("DUE_SOON_HOUR", "9"))
    overdue_hour: int = int(os.getenv("OVERDUE_REPORT_HOUR", "18"))
    cron_secret: Optional[str] = os.getenv("CRON_SECRET")

    # Uploads
    max_upload_size: int = int(os.getenv("MAX_UPLOAD_SIZE", "5242880"))  # 5MB
    allowed_image_extensions: list = field(default_factory=lambda: [".jpg", ".jpeg", ".png", ".gif", ".webp"])
    upload_dir: str = os.getenv("UPLOAD_DIR", "uploads")
    storage_url: Optional[str] = os.getenv("STORAGE_URL")
    storage_service_key: Optional[str] = os.getenv("STORAGE_SERVICE_KEY")
    storage_timeout: float = float(os.getenv("STORAGE_TIMEOUT", "15"))


settings = Settings()
