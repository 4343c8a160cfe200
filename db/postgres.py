"""PostgreSQL storage for decisions.

Optional: without DATABASE_URL the service keeps decisions in memory. When
configured, one pool is shared by the whole process and every repository read
runs through ``with_retry`` so a dropped connection or failover does not
surface as a failed request.

Settings:
- POSTGRES_POOL_MIN_SIZE / POSTGRES_POOL_MAX_SIZE / POSTGRES_POOL_RECYCLE
- POSTGRES_MAX_RETRIES / POSTGRES_RETRY_DELAY
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config import get_settings
from utils.logging import get_logger

logger = get_logger(__name__)

engine: AsyncEngine | None = None
async_session_maker: async_sessionmaker[AsyncSession] | None = None

T = TypeVar("T")

TRANSIENT_DB_ERRORS = (
    OperationalError,
    InterfaceError,
    DBAPIError,  # only when the connection was invalidated
    SQLAlchemyTimeoutError,
    ConnectionError,
    TimeoutError,
    OSError,
)

MAX_BACKOFF_SECONDS = 8.0


class Base(DeclarativeBase):
    pass


def is_transient(exc: Exception) -> bool:
    """True for connection-level failures worth retrying."""
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        # Constraint violations, bad SQL and the like will fail again
        return exc.connection_invalidated
    return isinstance(exc, TRANSIENT_DB_ERRORS)


def backoff_delay(attempt: int, base_delay: float) -> float:
    return min(base_delay * (2**attempt), MAX_BACKOFF_SECONDS) + random.uniform(0, 1)


async def with_retry(
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int | None = None,
    base_delay: float | None = None,
    operation_name: str = "database operation",
    **kwargs: Any,
) -> T:
    """Run an async database operation, retrying transient connection failures.

    Retry budget and base delay default to the POSTGRES_MAX_RETRIES and
    POSTGRES_RETRY_DELAY settings.

    Raises:
        The operation's own exception once it is non-transient or retries run out
    """
    settings = get_settings()
    if max_retries is None:
        max_retries = settings.postgres_max_retries
    if base_delay is None:
        base_delay = settings.postgres_retry_delay

    attempt = 0
    while True:
        try:
            return await operation(*args, **kwargs)
        except Exception as e:
            if not is_transient(e):
                logger.error(f"Non-retryable error in {operation_name}: {type(e).__name__}: {e}")
                raise
            if attempt >= max_retries:
                logger.error(
                    f"{operation_name} failed after {attempt + 1} attempts: {type(e).__name__}: {e}"
                )
                raise

            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"{operation_name} attempt {attempt + 1}/{max_retries + 1} failed: "
                f"{type(e).__name__}. Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1


async def init_postgres() -> async_sessionmaker[AsyncSession]:
    """Open the pool and make sure the decisions table exists."""
    global engine, async_session_maker
    settings = get_settings()

    logger.info(
        "Initializing PostgreSQL pool",
        extra={
            "pool_min": settings.postgres_pool_min_size,
            "pool_max": settings.postgres_pool_max_size,
            "pool_recycle": settings.postgres_pool_recycle,
        },
    )
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=settings.postgres_pool_min_size,
        max_overflow=settings.postgres_pool_max_size - settings.postgres_pool_min_size,
        pool_recycle=settings.postgres_pool_recycle,
    )
    async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    # Registers DecisionRecord on Base.metadata
    import models.postgres  # noqa: F401

    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    await with_retry(create_tables, operation_name="create decisions table")
    return async_session_maker


async def check_connection() -> bool:
    """Readiness probe: can the pool run a trivial query?"""
    if engine is None:
        return False
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"PostgreSQL health check failed: {type(e).__name__}: {e}")
        return False


async def close_postgres() -> None:
    global engine, async_session_maker
    if engine is not None:
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("PostgreSQL pool closed")
