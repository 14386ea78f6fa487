"""
config/database.py
Async SQLAlchemy engine, session factory, base model and the
transaction helper every multi-row state change goes through.
Uses asyncpg for PostgreSQL; aiosqlite is accepted for local runs and tests.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import settings
from shared.exceptions import StoreConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Engine ────────────────────────────────────────────────────
def _engine_options() -> dict:
    if settings.is_sqlite:
        # One connection per session so concurrent writers really contend
        return {"poolclass": NullPool, "echo": settings.DEBUG}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,          # Detect stale connections
        "pool_recycle": 3600,           # Recycle connections every hour
        "echo": settings.DEBUG,         # Log SQL in debug mode
    }


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())

# ── Session Factory ───────────────────────────────────────────
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,      # Don't expire after commit (async-safe)
    autocommit=False,
    autoflush=False,
)


# ── Base Model ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """All ORM models inherit from this."""
    pass


# ── Dependency ────────────────────────────────────────────────
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: yields an async database session.
    Auto-commits on success, rolls back on error.

    Usage:
        @router.get("/addresses")
        async def list_addresses(db: AsyncSession = Depends(get_db)):
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


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager version for use outside of FastAPI routes."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Transactions ──────────────────────────────────────────────
async def run_in_transaction(
    db: AsyncSession,
    work: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    """
    Run `work(db)` as one all-or-nothing unit and commit it.

    `work` must re-read every precondition it depends on, since it may run
    more than once: transient store conflicts (lock timeouts, deadlocks,
    "database is locked") roll back and retry with exponential backoff.
    Any other exception rolls back and propagates unchanged. When every
    attempt conflicts the caller gets StoreConflict.

    ORM instances loaded before the call are expired by a rollback, so pass
    plain ids into `work`, not model objects.
    """
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(settings.DB_TRANSACTION_RETRIES),
            wait=wait_exponential(multiplier=0.05, max=1),
        ):
            with attempt:
                try:
                    result = await work(db)
                    await db.commit()
                except OperationalError:
                    await db.rollback()
                    logger.warning(
                        f"Transaction conflict, attempt {attempt.retry_state.attempt_number}"
                    )
                    raise
                except Exception:
                    await db.rollback()
                    raise
    except RetryError as e:
        logger.error(
            f"Transaction gave up after {e.last_attempt.attempt_number} conflicting attempts"
        )
        raise StoreConflict() from e.last_attempt.exception()
    return result


async def init_db() -> None:
    """Create all tables. Run during app startup."""
    # Import models so every table is registered on Base.metadata
    import shared.models.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose engine. Run during app shutdown."""
    await engine.dispose()
