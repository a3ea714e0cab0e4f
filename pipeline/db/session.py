"""Database engine and the session factory shared by the store."""

from sqlalchemy.engine.url import URL
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from pipeline.config import settings
from pipeline.db.models import Base

DATABASE_URL = URL.create(
    drivername="postgresql+asyncpg",
    username=settings.db_user,
    password=settings.db_password,
    host=settings.db_host,
    port=settings.db_port,
    database=settings.db_name,
)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Records outlive their session: the processor reads them after commit
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_async_engine(
    DATABASE_URL,
    echo=settings.log_level.upper() == "DEBUG",
    pool_pre_ping=True,
)

async_session = make_session_factory(engine)


async def init_db(bind: AsyncEngine = engine):
    """Create tables if they don't exist (safe to call on every startup)."""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
