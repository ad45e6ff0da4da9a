"""Atomic transaction utilities for multi-row marketplace writes"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def async_atomic_transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for atomic database transactions with proper rollback.

    Every write made through the session inside the block commits together or
    not at all. Nested use defers the commit to the outermost block.
    """
    transaction_depth = getattr(session, '_atomic_transaction_depth', 0)
    try:
        setattr(session, '_atomic_transaction_depth', transaction_depth + 1)

        if transaction_depth > 0:
            logger.debug(f"Nested async transaction detected (depth: {transaction_depth + 1})")

        yield session

        if transaction_depth == 0:
            await session.commit()
            logger.debug("Outermost async transaction committed successfully")

    except Exception as e:
        # Always rollback on error, regardless of nesting
        await session.rollback()
        logger.error(f"Async transaction rolled back due to error (depth: {transaction_depth + 1}): {e}")
        raise
    finally:
        current_depth = getattr(session, '_atomic_transaction_depth', 1)
        setattr(session, '_atomic_transaction_depth', max(0, current_depth - 1))
