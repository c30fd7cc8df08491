import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEV_JWT_SECRET = "change-me-wallet-development-secret-key"
DEV_ADMIN_PASSWORD = "ChangeMe123!"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_env: str = "development"
    database_url: str = "sqlite:///database.db"
    jwt_secret: str = DEV_JWT_SECRET
    token_ttl_hours: int = 24
    session_cookie_name: str = "token"
    client_url: str = "http://localhost:5173"
    uploads_dir: Path = Path("uploads")
    backup_dir: Path = Path("backups")
    backup_enabled: bool = True
    backup_hour: int = 3
    backup_retention_days: int = 30
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    smtp_use_ssl: bool = True
    smtp_user: str | None = None
    smtp_password: str | None = None
    backup_email: str | None = None
    expiry_warning_days: int = 30
    admin_username: str = "admin"
    admin_name: str = "Administrator"
    admin_email: str = "admin@wallet.local"
    admin_password: str = DEV_ADMIN_PASSWORD
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def backup_recipient(self) -> str | None:
        return self.backup_email or self.smtp_user


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        app_env=os.getenv("APP_ENV", "development").strip().lower(),
        database_url=os.getenv("DATABASE_URL", "sqlite:///database.db"),
        jwt_secret=os.getenv("JWT_SECRET", DEV_JWT_SECRET),
        token_ttl_hours=int(os.getenv("TOKEN_TTL_HOURS", "24")),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "token"),
        client_url=os.getenv("CLIENT_URL", "http://localhost:5173"),
        uploads_dir=Path(os.getenv("UPLOADS_DIR", "uploads")),
        backup_dir=Path(os.getenv("BACKUP_DIR", "backups")),
        backup_enabled=_env_bool("BACKUP_ENABLED", True),
        backup_hour=int(os.getenv("BACKUP_HOUR", "3")),
        backup_retention_days=int(os.getenv("BACKUP_RETENTION_DAYS", "30")),
        smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
        smtp_port=int(os.getenv("SMTP_PORT", "465")),
        smtp_use_ssl=_env_bool("SMTP_USE_SSL", True),
        smtp_user=os.getenv("SMTP_USER") or None,
        smtp_password=os.getenv("SMTP_PASS") or None,
        backup_email=os.getenv("BACKUP_EMAIL") or None,
        expiry_warning_days=int(os.getenv("EXPIRY_WARNING_DAYS", "30")),
        admin_username=os.getenv("ADMIN_USERNAME", "admin"),
        admin_name=os.getenv("ADMIN_NAME", "Administrator"),
        admin_email=os.getenv("ADMIN_EMAIL", "admin@wallet.local"),
        admin_password=os.getenv("ADMIN_PASSWORD", DEV_ADMIN_PASSWORD),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
