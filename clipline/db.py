"""Database engine, declarative base and session factory."""

import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

_engines: dict[str, Engine] = {}


class Base(DeclarativeBase):
    pass


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(database_url: str) -> Engine:
    """Return a cached engine for a database URL.

    SQLite engines are shared across the background job threads, so
    same-thread checking is disabled, and foreign keys are switched on for
    every connection so clip rows cannot outlive their video. In-memory
    databases use a single static connection so every session sees the
    same data.
    """
    engine = _engines.get(database_url)
    if engine is not None:
        return engine

    kwargs: dict = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url:
            kwargs["poolclass"] = StaticPool
        else:
            db_path = database_url.split("///", 1)[-1]
            if db_path:
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(database_url, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    _engines[database_url] = engine
    return engine


def init_db(database_url: str) -> Engine:
    """Create all tables that don't exist yet."""
    # Import models so they register on Base.metadata
    from clipline.models import clip, clip_job, migration, video  # noqa: F401

    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    logger.debug("Database initialized at %s", database_url)
    return engine


def get_session_factory(database_url: str) -> sessionmaker:
    return sessionmaker(bind=get_engine(database_url), expire_on_commit=False)
