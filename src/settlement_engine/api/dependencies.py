"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_engine.database import init_db
from settlement_engine.services.reconciliation_engine import ReconciliationEngine


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, session_factory = init_db()
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_reconciliation_engine(db: DbSession) -> ReconciliationEngine:
    """Engine bound to the request's session."""
    return ReconciliationEngine(db)


# Type aliases for cleaner dependency injection
EngineDep = Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)]
