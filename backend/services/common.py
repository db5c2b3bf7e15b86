import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import PersistenceUnavailable

logger = logging.getLogger("inventory.db")


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime columns
    return datetime.utcnow()


async def _rollback(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError as e:
        logger.warning("Rollback failed: %r", e)


@asynccontextmanager
async def unit_of_work(db: AsyncSession, action: str) -> AsyncIterator[AsyncSession]:
    """
    Commit everything done inside the block, or nothing.

    Storage connectivity failures surface as `PersistenceUnavailable`; every
    other error is re-raised unchanged after the rollback.
    """
    try:
        yield db
        await db.commit()
    except (OperationalError, InterfaceError) as e:
        await _rollback(db)
        logger.error("[inventory] %s failed, storage unavailable: %r", action, e)
        raise PersistenceUnavailable(f"Storage unavailable while trying to {action}") from e
    except BaseException:
        await _rollback(db)
        raise


@asynccontextmanager
async def read_only(db: AsyncSession, action: str) -> AsyncIterator[AsyncSession]:
    """Read paths: no commit, same translation of storage failures."""
    try:
        yield db
    except (OperationalError, InterfaceError) as e:
        await _rollback(db)
        logger.error("[inventory] %s failed, storage unavailable: %r", action, e)
        raise PersistenceUnavailable(f"Storage unavailable while trying to {action}") from e
