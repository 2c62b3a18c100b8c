# wristpass/infra/sql.py
"""
Async engine setup plus the DB gate.

Every store function takes a GatedAsyncSession and wraps each of its
transactions in

    async with db.gated():
        async with db.session.begin():
            ...

The gate bounds the transactions in flight to the pool size, so a burst of
buyers queues in the event loop instead of timing out on the pool.
"""
import os
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
)

Gated = Callable[[], AsyncContextManager[None]]


@dataclass
class GatedAsyncSession:
    """A session plus the gate every transaction on it must pass through."""
    session: AsyncSession
    gated: Gated


@dataclass
class Database:
    engine: AsyncEngine
    SessionAsync: async_sessionmaker
    gated: Gated

    @asynccontextmanager
    async def open(self) -> AsyncIterator[GatedAsyncSession]:
        async with self.SessionAsync() as session:
            yield GatedAsyncSession(session=session, gated=self.gated)

    async def dispose(self) -> None:
        await self.engine.dispose()


def normalize_async_url(url: str) -> str:
    # sync driver URLs as found in .env files -> async drivers
    for prefix, driver in (("sqlite://", "sqlite+aiosqlite://"),
                           ("postgresql://", "postgresql+asyncpg://"),
                           ("postgres://", "postgresql+asyncpg://")):
        if url.startswith(prefix):
            return driver + url[len(prefix):]
    return url


@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    async with sem:
        yield


def _sqlite_pragmas(dbapi_connection, _):
    # WAL lets readers run beside the single writer; writers wait on
    # busy_timeout instead of failing with "database is locked"
    cur = dbapi_connection.cursor()
    for pragma in ("journal_mode=WAL", "busy_timeout=5000",
                   "synchronous=NORMAL", "foreign_keys=ON"):
        cur.execute(f"PRAGMA {pragma};")
    cur.close()


def open_database(database_url: str) -> Database:
    db_url = normalize_async_url(database_url)
    kw = dict(future=True, pool_pre_ping=True)

    pool_size = None
    if db_url.startswith("postgresql+asyncpg://"):
        pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        kw.update(
            pool_size=pool_size,
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
        )

    engine = create_async_engine(db_url, **kw)
    if db_url.startswith("sqlite+aiosqlite://"):
        event.listen(engine.sync_engine, "connect", _sqlite_pragmas)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    # default to the pool size on PostgreSQL
    gate_limit = int(os.getenv("DB_GATE_LIMIT", str(pool_size or 10)))
    db_gate = asyncio.Semaphore(max(1, gate_limit))

    def gated():
        return _gated(db_gate)

    return Database(engine=engine, SessionAsync=SessionAsync, gated=gated)
