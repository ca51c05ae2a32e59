"""Database engine and session factory for the document store.

Provides SQLAlchemy async engine creation and table setup.
SQLite (aiosqlite) in development and tests, any async driver in production.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.models import Base


def create_store_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the given database URL.

    Args:
        database_url: SQLAlchemy async URL (e.g., "sqlite+aiosqlite:///./billing.db")
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    if not database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo, pool_pre_ping=True)

    # Concurrent batch tasks wait on SQLite's write lock instead of failing fast
    engine = create_async_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # The sqlite driver's own BEGIN handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create all tables registered on Base (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = ["create_store_engine", "create_session_factory", "init_models"]
