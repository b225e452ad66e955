"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _enable_sqlite_foreign_keys(engine) -> None:
    """Register a ``connect`` listener that turns on SQLite FK enforcement.

    SQLite ignores ``ON DELETE CASCADE`` unless ``PRAGMA foreign_keys`` is
    enabled on every connection.
    """

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(database_url: str, **kwargs):
    """Create an engine with the SQLite connection tweaks this app relies on."""
    connect_args = kwargs.pop("connect_args", {})
    if database_url.startswith("sqlite"):
        # Sync workers run on a thread pool
        connect_args.setdefault("check_same_thread", False)

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
        **kwargs,
    )
    if database_url.startswith("sqlite"):
        _enable_sqlite_foreign_keys(engine)
    return engine


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    engine = create_db_engine(settings.DATABASE_URL)
    logger.info("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine.

    ``expire_on_commit`` is disabled so rows loaded by the repository stay
    readable after their session closes; sync workers pass them between
    short-lived sessions.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=get_engine(),
    )


def init_db() -> None:
    """Create all tables that do not exist yet."""
    import models  # noqa: F401  (registers mappers on Base.metadata)

    Base.metadata.create_all(bind=get_engine())

