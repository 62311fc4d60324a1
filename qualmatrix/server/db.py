"""Engine and session setup for the result store.

SQLite under ``~/.config/qualmatrix`` unless a URL is configured; any
SQLAlchemy URL works.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path("~/.config/qualmatrix").expanduser()
_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def default_db_url() -> str:
    _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{_CONFIG_DIR / 'qualmatrix.db'}"


def get_engine(db_url: str | None = None) -> Engine:
    """Create an engine for *db_url*, or for the default SQLite file.

    ``"sqlite://"`` gives an in-memory database shared by every session
    of the engine (tests).
    """
    url = db_url or default_db_url()
    if url in _MEMORY_URLS:
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        # The API runs sync endpoints in a thread pool
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
    """WAL lets `qualmatrix show` read while an analysis writes."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine)


def init_db(engine: Engine) -> None:
    """Create missing tables; existing ones are left alone."""
    from qualmatrix.server import models  # noqa: F401  (registers all tables)

    Base.metadata.create_all(bind=engine)


def ping(engine: Engine) -> bool:
    """True when the database answers a trivial query."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database %s unreachable: %s", engine.url, exc)
        return False
    return True
