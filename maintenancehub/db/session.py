"""
db/session.py
-------------
Async SQLAlchemy engine and session factory.

Design decisions:
  - AsyncEngine with asyncpg driver for non-blocking I/O.
  - Connection pool sized for typical SaaS workloads (DB_POOL_SIZE +
    DB_MAX_OVERFLOW concurrent DB connections).
  - pool_pre_ping=True: validates connections before checkout to handle
    stale connections after DB restarts or idle timeouts.
  - expire_on_commit=False: avoids lazy-load errors after commit in async
    context (attributes are already loaded, no implicit SELECT needed).
  - SQLite (local runs, tests) ignores SELECT ... FOR UPDATE. Connections run
    in WAL mode with foreign keys on, and a transaction started with the
    IMMEDIATE_TRANSACTION execution option opens with BEGIN IMMEDIATE, which
    takes the database write lock up front. That is what serializes
    concurrent seat mutators there.
"""

from typing import Any, Dict

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from maintenancehub.core.config import settings

# Execution options for a transaction that must hold the write lock from its
# first statement. PostgreSQL ignores the key; it relies on row locks.
IMMEDIATE_TRANSACTION: Dict[str, Any] = {"immediate_transaction": True}


def configure_sqlite_locking(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # The driver's own deferred BEGIN is replaced by _on_begin below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get("immediate_transaction"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def build_engine(url: str, **overrides: Any) -> AsyncEngine:
    kwargs: Dict[str, Any] = {"echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=3600,             # Recycle connections every hour
        )
    kwargs.update(overrides)

    new_engine = create_async_engine(url, **kwargs)
    if new_engine.dialect.name == "sqlite":
        configure_sqlite_locking(new_engine)
    return new_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# ── Engine ────────────────────────────────────────────────────────────────────
engine = build_engine(settings.DATABASE_URL)

# ── Session Factory ───────────────────────────────────────────────────────────
AsyncSessionLocal = build_session_factory(engine)


async def get_db() -> AsyncSession:  # type: ignore[return]
    """
    FastAPI dependency that yields a database session.
    The session is automatically closed when the request finishes,
    and rolled back on exceptions.

    Usage:
        @router.get("/example")
        async def handler(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    FastAPI dependency for code that owns its transactions.

    The seat mutators open a fresh session per attempt (so a retried attempt
    re-reads committed state) instead of sharing the request session.
    """
    return AsyncSessionLocal
