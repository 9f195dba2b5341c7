"""
Database engine management.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel

from slotguard.core.config import get_settings


def create_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, future=True)


settings = get_settings()

engine = create_engine(settings.database_url, echo=settings.debug)


async def init_db(bind: AsyncEngine | None = None):
    """Create all tables (development and tests; production uses migrations)."""
    import slotguard.models  # noqa: F401  populate metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
