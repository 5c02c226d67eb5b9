from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal

logger = get_logger(__name__)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one AsyncSession per request.

    Services commit their own units of work; whatever is still open when
    the request fails is rolled back here.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as exc:
            if session.in_transaction():
                logger.warning(
                    "Rolling back open transaction after %s", type(exc).__name__
                )
                await session.rollback()
            raise
