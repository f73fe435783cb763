from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .db import Base
from ..inventory.model import Product  # noqa: F401
from ..orders.model import Order, OrderItem  # noqa: F401


# connection option asking SQLite for the write lock at BEGIN
WRITE_LOCK_OPTION = "storefront_write_lock"


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for ``url`` (defaults to ``settings.DB_URL``).

    SQLite gets foreign keys switched on. Transactions opened by
    :func:`transaction` start with ``BEGIN IMMEDIATE``, so concurrent writers
    queue on the write lock instead of racing; plain reads use a deferred
    ``BEGIN`` and never wait on a checkout. Other backends rely on
    ``SELECT ... FOR UPDATE``.
    """
    url = url or settings.DB_URL
    if not _is_sqlite(url):
        return create_async_engine(url, future=True, echo=False, pool_pre_ping=True)

    engine = create_async_engine(
        url,
        future=True,
        echo=False,
        connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # take over BEGIN from the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block atomically on ``session``.

    Opens a transaction and commits it on success, rolling back on any
    exception. When the caller already holds a transaction on the session the
    block runs in a savepoint, and committing stays the caller's job.
    """
    if session.in_transaction():
        async with session.begin_nested():
            yield session
    else:
        async with session.begin():
            await session.connection(execution_options={WRITE_LOCK_OPTION: True})
            yield session
