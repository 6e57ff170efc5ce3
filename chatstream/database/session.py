from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from ..core.config import settings
 
engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)
AsyncSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine, class_=AsyncSession, expire_on_commit=False
)


async def init_models() -> None:
    """Creates missing tables. Schema migrations are out of scope, so this is additive only."""
    from ..models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
