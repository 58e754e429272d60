"""Database layer for the SQLAlchemy job store."""

from tranga_cli.database.connection import (
    create_db_engine,
    create_tables,
    drop_tables,
    get_session_maker,
    session_scope,
)
from tranga_cli.database.models import Base, ScheduledJob

__all__ = [
    "Base",
    "ScheduledJob",
    "create_db_engine",
    "create_tables",
    "drop_tables",
    "get_session_maker",
    "session_scope",
]
