"""Database dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.container import ServiceContainer, get_container
from src.database.client import session_scope


async def get_db_session(container: ServiceContainer = Depends(get_container)) -> AsyncGenerator[AsyncSession]:
    """Get a request-scoped database session from the service container.

    The session commits when the handler returns and rolls back if it raises.
    """
    async with session_scope(container.session_factory) as session:
        yield session
