"""Storefront settings, read once from the environment (and an optional .env file)."""
from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Process environment wins over .env values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_money(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def _database_url() -> str:
    """
    DATABASE_URL if set, else a PostgreSQL URL assembled from DB_HOST/DB_NAME/...,
    else a SQLite file under db/ so a fresh checkout runs without a server.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    parts = {key: os.getenv(f"DB_{key.upper()}") for key in ("username", "password", "host", "port", "name")}
    if all(parts.values()):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return "{driver}://{username}:{password}@{host}:{port}/{name}".format(driver=driver, **parts)

    sqlite_path = BASE_DIR / "db" / "nursery.db"
    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{sqlite_path.as_posix()}"


class Config:
    """Settings shared by the Flask app, the services and run.py."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Camellia Nursery Storefront")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")
    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _env_flag("FLASK_DEBUG", default=APP_ENV == "development")
    TESTING: Final[bool] = _env_flag("FLASK_TESTING")
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = _env_int("FLASK_RUN_PORT", 5000)

    # Catalog and pricing matrix database
    DATABASE_URL: Final[str] = _database_url()
    SQL_ECHO: Final[bool] = _env_flag("SQL_ECHO")
    DB_POOL_SIZE: Final[int] = _env_int("DB_POOL_SIZE", 10)
    DB_MAX_OVERFLOW: Final[int] = _env_int("DB_MAX_OVERFLOW", 20)
    # Seconds before a price lookup gives up and the fallback formula is used
    DB_CONNECT_TIMEOUT: Final[int] = _env_int("DB_CONNECT_TIMEOUT", 3)

    # Cart snapshot location
    CART_STORAGE_KEY: Final[str] = os.getenv("CART_STORAGE_KEY", "cart-storage")
    CART_STORAGE_DIR: Final[Path] = Path(os.getenv("CART_STORAGE_DIR", (BASE_DIR / "db" / "carts").as_posix()))

    # Checkout
    CURRENCY: Final[str] = os.getenv("CURRENCY", "EUR")
    VAT_RATE: Final[Decimal] = _env_money("VAT_RATE", "0.19")
    SHIPPING_FEE: Final[Decimal] = _env_money("SHIPPING_FEE", "9.99")
    FREE_SHIPPING_THRESHOLD: Final[Decimal] = _env_money("FREE_SHIPPING_THRESHOLD", "50.00")
    # Nachnahmegebühr, charged only for cash on delivery
    COD_FEE: Final[Decimal] = _env_money("COD_FEE", "5.00")
    DEFAULT_LOCALE: Final[str] = os.getenv("DEFAULT_LOCALE", "de")

    # Logging and metrics
    STRUCTURED_LOGS_ENABLED: Final[bool] = _env_flag("STRUCTURED_LOGS_ENABLED", default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    OBSERVABILITY_ENABLED: Final[bool] = _env_flag("OBSERVABILITY_ENABLED", default=True)

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Copy the settings the request handlers read into ``app.config``."""
        app.config.update(
            SECRET_KEY=cls.SECRET_KEY,
            DEBUG=cls.DEBUG,
            TESTING=cls.TESTING,
            CART_STORAGE_KEY=cls.CART_STORAGE_KEY,
            DEFAULT_LOCALE=cls.DEFAULT_LOCALE,
            OBSERVABILITY_ENABLED=cls.OBSERVABILITY_ENABLED,
        )
