"""Centralized application configuration for the storefront backend."""
from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Runtime environment wins over values from the .env file
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

    fallback_path = BASE_DIR / "db" / "storefront.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Pet Storefront")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # PayPal (payment verification, create/capture)
    PAYPAL_CLIENT_ID: Final[str] = os.getenv("PAYPAL_CLIENT_ID", "")
    PAYPAL_CLIENT_SECRET: Final[str] = os.getenv("PAYPAL_CLIENT_SECRET", "")
    PAYPAL_API_URL: Final[str] = os.getenv("PAYPAL_API_URL", "https://api-m.sandbox.paypal.com")
    PAYPAL_TIMEOUT_SECONDS: Final[float] = float(os.getenv("PAYPAL_TIMEOUT_SECONDS", "10"))
    PAYMENT_AMOUNT_TOLERANCE: Final[Decimal] = Decimal(os.getenv("PAYMENT_AMOUNT_TOLERANCE", "0.01"))
    CURRENCY_CODE: Final[str] = os.getenv("CURRENCY_CODE", "USD")

    # Orders
    ORDER_NUMBER_PREFIX: Final[str] = os.getenv("ORDER_NUMBER_PREFIX", "ORD")

    # Coupons
    COUPON_DEFAULT_VALID_DAYS: Final[int] = int(os.getenv("COUPON_DEFAULT_VALID_DAYS", "30"))

    # Affiliate program
    AFFILIATE_COMMISSION_RATE: Final[Decimal] = Decimal(os.getenv("AFFILIATE_COMMISSION_RATE", "0.15"))
    AFFILIATE_COOKIE_NAME: Final[str] = os.getenv("AFFILIATE_COOKIE_NAME", "affiliate_id")
    AFFILIATE_COOKIE_MAX_AGE_DAYS: Final[int] = int(os.getenv("AFFILIATE_COOKIE_MAX_AGE_DAYS", "30"))
    AFFILIATE_SALES_PAGE_SIZE: Final[int] = int(os.getenv("AFFILIATE_SALES_PAGE_SIZE", "50"))

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    METRICS_MAX_EVENTS: Final[int] = int(os.getenv("METRICS_MAX_EVENTS", "100"))

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["AFFILIATE_COOKIE_NAME"] = cls.AFFILIATE_COOKIE_NAME
        app.config["JSON_SORT_KEYS"] = False
