"""Async SQLAlchemy engine.

Learn: SQLAlchemy 2.0 async mode: create_async_engine for connection
pooling. The relay only runs Core statements, so there is no ORM
session factory here; the data backend checks out a connection per
operation.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from rowcast.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Connection pool: min 5, max 20 connections. echo=True in debug."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=15,
        pool_pre_ping=True,
    )
