"""
Database Module
===============

Async SQL client shared by every durable store.

Usage:
    from shared.database import DatabaseClient, db_session

    async with db_session() as session:
        result = await session.execute(select(CommitmentIndexModel))
        ...
"""

from shared.database.sql import (
    Base,
    DatabaseClient,
    UTCDateTime,
    db_session,
    get_db_session,
)


__all__ = [
    "Base",
    "DatabaseClient",
    "UTCDateTime",
    "db_session",
    "get_db_session",
]
