# credit_engine/core/database.py
import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger("credit-engine.database")

T = TypeVar("T")

SessionFactory = async_sessionmaker[AsyncSession]


class Base(DeclarativeBase):
    pass


def create_engine_for(db_url: str) -> AsyncEngine:
    # Configure engine based on database type
    if "sqlite" in db_url:
        engine = create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        _serialize_sqlite_writers(engine)
    else:
        engine = create_async_engine(
            db_url,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return engine


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """
    pysqlite defers BEGIN until the first write, so two sessions can both read a
    balance before either locks it. Take the write lock at BEGIN instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(engine: AsyncEngine) -> None:
    # Register every table on Base.metadata
    import credit_engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _backoff(attempt: int, base_delay: float = 0.05, max_delay: float = 1.0) -> float:
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    # jitter so retrying writers don't collide again
    return delay * (0.5 + random.random() * 0.5)


async def run_in_transaction(
        session_factory: SessionFactory,
        fn: Callable[[AsyncSession], Awaitable[T]],
        attempts: int = 5,
) -> T:
    """
    Run fn(session) inside a single transaction.

    Lock, deadlock and busy errors roll the whole unit back and run it again.
    So does a unique-key violation: a concurrent writer won the race, and the
    re-run observes its row (e.g. as an idempotent replay).
    When attempts run out LedgerConflict is raised; nothing is ever half-applied.
    Domain errors raised by fn roll back and propagate unchanged.
    """
    from credit_engine.services.errors import LedgerConflict

    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await fn(session)
        except (OperationalError, IntegrityError) as exc:
            last_exc = exc
            if attempt == attempts:
                break
            delay = _backoff(attempt)
            logger.warning(
                "Transaction attempt %d/%d hit a write conflict: %s. Retrying in %.2fs",
                attempt, attempts, exc.orig, delay,
            )
            await asyncio.sleep(delay)

    logger.error("Transaction gave up after %d attempts", attempts)
    raise LedgerConflict(f"Storage write conflict persisted after {attempts} attempts") from last_exc
