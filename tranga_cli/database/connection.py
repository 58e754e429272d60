"""
Database connection management for Tranga CLI.

Engines are created per database URL and handed to whoever needs them;
the job store owns its own engine so tests can point it at a temporary
SQLite file.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

SQLITE_PREFIX = "sqlite:///"


def get_db_path(database_url: str) -> Optional[Path]:
    """
    Get the database file path for a SQLite URL.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Path to the SQLite database file, or None for other backends
    """
    if database_url.startswith(SQLITE_PREFIX):
        path = database_url[len(SQLITE_PREFIX):]
        if path and path != ":memory:":
            return Path(path)
    return None


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine.

    The parent directory of a SQLite database file is created if needed.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured SQLAlchemy engine
    """
    db_path = get_db_path(database_url)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,  # Worker threads share the engine
            "timeout": 30,
        }

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=echo,
    )

    if database_url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """Enable SQLite foreign key support."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.debug(f"Database engine initialized: {database_url}")
    return engine


def get_session_maker(engine: Engine) -> sessionmaker:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Transactional session context manager.

    Usage:
        with session_scope(SessionLocal) as session:
            jobs = JobRepository(session).get_all()

    Commits on success, rolls back and re-raises on error.
    """
    session = session_factory()

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """Create all database tables that do not exist yet."""
    from tranga_cli.database.models import Base

    Base.metadata.create_all(bind=engine)
    logger.debug("Database tables created")


def drop_tables(engine: Engine) -> None:
    """
    Drop all database tables.

    WARNING: This will delete all data!
    """
    from tranga_cli.database.models import Base

    Base.metadata.drop_all(bind=engine)
    logger.warning("Database tables dropped")
