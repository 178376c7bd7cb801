from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from tickr.config import settings
from tickr.db.base import Base

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)
# Units of work go through tickr.repositories.sql.SqlRepositoryProvider
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create missing tables (development); production schemas come from Alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
