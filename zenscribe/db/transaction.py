from contextlib import asynccontextmanager

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from zenscribe.core.exceptions import BaseAPIException, DatabaseError


@asynccontextmanager
async def transaction(db: AsyncSession):
    """
    Context manager for database transactions

    Usage:
        async with transaction(db):
            # database operations

    API errors raised inside the block roll back and propagate unchanged.

    Raises:
        DatabaseError: If there's an error during the transaction
    """
    try:
        yield
        await db.commit()
    except BaseAPIException:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.error(f"Transaction error: {str(e)}")
        raise DatabaseError("Database operation failed")
