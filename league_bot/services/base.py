"""
Shared plumbing for the league services.

Every service is built from the Database session factory. Methods accept an
optional caller session so several services can take part in one
transaction (the matchmaker claim, reconciliation, resets).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BaseService:
    """Session handling common to all league services."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Own session: committed on success, rolled back on any error."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def in_session(
        self,
        func: Callable[[AsyncSession], Awaitable[T]],
        session: Optional[AsyncSession] = None,
    ) -> T:
        """Run func inside the caller's session, or in a fresh committed one."""
        if session is not None:
            return await func(session)
        async with self.get_session() as own:
            return await func(own)

    async def execute_with_retry(self, func: Callable[[], Awaitable[T]], max_retries: int = 3) -> T:
        """Retry func when sqlite reports the database as locked or busy."""
        delay = 0.1
        for attempt in range(1, max_retries + 1):
            try:
                return await func()
            except OperationalError as e:
                if attempt == max_retries:
                    logger.error(f"{func.__name__} failed after {max_retries} attempts: {e}")
                    raise
                logger.warning(f"{func.__name__} hit {e.orig!r}, retrying in {delay:.1f}s ({attempt}/{max_retries})")
                await asyncio.sleep(delay)
                delay *= 2
