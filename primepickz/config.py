"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    # SQLite dev fallback stored under /db/app.db to keep repo tidy
    fallback_path = BASE_DIR / "db" / "app.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Storefront
    SITE_URL: Final[str] = os.getenv("SITE_URL", "https://primepickz.com").rstrip("/")
    DEFAULT_CART_SESSION: Final[str] = os.getenv("DEFAULT_CART_SESSION", "default-session")

    # Meta catalog integration
    META_ACCESS_TOKEN: Final[str] = os.getenv("META_ACCESS_TOKEN", "")
    META_CATALOG_ID: Final[str] = os.getenv("META_CATALOG_ID", "")
    META_BUSINESS_ID: Final[str] = os.getenv("META_BUSINESS_ID", "")
    META_API_VERSION: Final[str] = os.getenv("META_API_VERSION", "v21.0")
    META_API_TIMEOUT_SECONDS: Final[int] = int(os.getenv("META_API_TIMEOUT_SECONDS", "30"))
    META_MAX_RETRIES: Final[int] = int(os.getenv("META_MAX_RETRIES", "5"))
    META_RATE_LIMIT_PER_HOUR: Final[int] = int(os.getenv("META_RATE_LIMIT_PER_HOUR", "200"))

    # Catalog sync pipeline; disabled only by an explicit "false"
    SYNC_ENABLED: Final[bool] = os.getenv("SYNC_ENABLED", "true").strip().lower() != "false"
    SYNC_MAX_RETRIES: Final[int] = int(os.getenv("SYNC_MAX_RETRIES", "5"))
    SYNC_ALL_BATCH_SIZE: Final[int] = int(os.getenv("SYNC_ALL_BATCH_SIZE", "50"))
    RECONCILIATION_BATCH_SIZE: Final[int] = int(os.getenv("RECONCILIATION_BATCH_SIZE", "10"))
    CRON_SECRET: Final[str] = os.getenv("CRON_SECRET", "")

    # Alerting (Resend)
    RESEND_API_KEY: Final[str] = os.getenv("RESEND_API_KEY", "")
    ALERT_EMAIL: Final[str] = os.getenv("ALERT_EMAIL") or os.getenv("ADMIN_EMAIL") or "admin@primepickz.com"
    FROM_EMAIL: Final[str] = os.getenv("FROM_EMAIL", "PrimePickz Catalog Sync <noreply@primepickz.com>")

    # Payments
    STRIPE_WEBHOOK_SECRET: Final[str] = os.getenv("STRIPE_WEBHOOK_SECRET", "")

    # Auth
    JWT_SECRET: Final[str] = os.getenv("JWT_SECRET") or SECRET_KEY
    TOKEN_MAX_AGE_SECONDS: Final[int] = int(os.getenv("TOKEN_MAX_AGE_SECONDS", str(24 * 60 * 60)))
    REMEMBER_ME_MAX_AGE_SECONDS: Final[int] = int(
        os.getenv("REMEMBER_ME_MAX_AGE_SECONDS", str(7 * 24 * 60 * 60))
    )
    LOGIN_RATE_LIMIT_ATTEMPTS: Final[int] = int(os.getenv("LOGIN_RATE_LIMIT_ATTEMPTS", "5"))
    LOGIN_RATE_LIMIT_WINDOW_SECONDS: Final[int] = int(os.getenv("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "900"))
    ADMIN_USERNAME: Final[str] = os.getenv("ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD: Final[str] = os.getenv("ADMIN_PASSWORD", "change-me-admin")

    # Observability and reliability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    OBSERVABILITY_ENABLED: Final[bool] = _str_to_bool(os.getenv("OBSERVABILITY_ENABLED"), default=True)

    @classmethod
    def meta_api_base(cls) -> str:
        return f"https://graph.facebook.com/{cls.META_API_VERSION}"

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["SYNC_ENABLED"] = cls.SYNC_ENABLED
        app.config["SITE_URL"] = cls.SITE_URL
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["OBSERVABILITY_ENABLED"] = cls.OBSERVABILITY_ENABLED
