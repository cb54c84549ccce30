"""Index database engine + session factory"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from db.models import Base


def create_index_engine(url: str) -> AsyncEngine:
    # SQLite writers wait on the file lock instead of failing immediately
    connect_args = {"timeout": 5} if url.startswith("sqlite") else {}
    return create_async_engine(url, echo=False, connect_args=connect_args)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


# Create all tables
async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
