"""Async engine, session factory, and explicit transaction helpers.

Integration writes are grouped into one transaction per onboarding call.
Side effects that must only happen once the data is durable (analytics,
worker dispatch) are registered with :func:`after_commit` and run by
:func:`commit_transaction` after the commit succeeds.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

AfterCommitCallback = Callable[[], Awaitable[None]]

_AFTER_COMMIT_KEY = "integrahub.after_commit"


async def init_db(database_url: str) -> AsyncEngine:
    """Create and return an async SQLAlchemy engine."""
    engine = create_async_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False,
    )
    return engine


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create and return an async session factory bound to the given engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the async engine and release all connections."""
    await engine.dispose()


async def create_transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncSession:
    """Open a session with an active transaction.

    The returned session must be finished with either
    :func:`commit_transaction` or :func:`rollback_transaction`.
    """
    session = session_factory()
    await session.begin()
    return session


def after_commit(transaction: AsyncSession, callback: AfterCommitCallback) -> None:
    """Register ``callback`` to run once ``transaction`` has committed."""
    transaction.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


async def commit_transaction(transaction: AsyncSession) -> None:
    """Commit and close the transaction, then run its after-commit callbacks.

    If the commit fails the transaction is rolled back, the callbacks are
    discarded and the original error is re-raised. Every callback runs
    even when an earlier one fails; the first failure is then raised to
    the caller. The data is already committed at that point.
    """
    callbacks: list[AfterCommitCallback] = transaction.info.pop(_AFTER_COMMIT_KEY, [])
    try:
        await transaction.commit()
    except Exception:
        await transaction.rollback()
        await transaction.close()
        raise
    await transaction.close()

    failures: list[Exception] = []
    for callback in callbacks:
        try:
            await callback()
        except Exception as exc:
            failures.append(exc)

    if failures:
        if len(failures) > 1:
            logger.error(
                "%d of %d after-commit callbacks failed, raising the first",
                len(failures),
                len(callbacks),
            )
        raise failures[0]


async def rollback_transaction(transaction: AsyncSession) -> None:
    """Roll back and close the transaction, discarding after-commit callbacks."""
    discarded = transaction.info.pop(_AFTER_COMMIT_KEY, [])
    if discarded:
        logger.debug("Discarding %d after-commit callbacks on rollback", len(discarded))
    await transaction.rollback()
    await transaction.close()
