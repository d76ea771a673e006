# src/database.py
from typing import Any, Dict

from flask import g
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from src.config import Config

IN_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": Config.SQL_ECHO, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if url in IN_MEMORY_SQLITE_URLS:
            # every session must see the same in-memory database
            options["poolclass"] = StaticPool
        return options

    connect_args: Dict[str, Any] = {"connect_timeout": Config.DB_CONNECT_TIMEOUT}
    if url.startswith("postgresql"):
        # milliseconds; bounds queries on an already open connection
        connect_args["options"] = f"-c statement_timeout={Config.DB_CONNECT_TIMEOUT * 1000}"
    options.update(
        pool_size=Config.DB_POOL_SIZE,
        max_overflow=Config.DB_MAX_OVERFLOW,
        connect_args=connect_args,
    )
    return options


engine = create_engine(Config.DATABASE_URL, **_engine_options(Config.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session, closed by ``close_db`` on app context teardown."""
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def close_db(exc=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()
