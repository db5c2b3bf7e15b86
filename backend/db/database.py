from collections.abc import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from core.config import settings

DATABASE_URL = settings.database_url


class Base(DeclarativeBase):
    pass


def make_engine(url: str = DATABASE_URL, echo: bool = settings.database_echo) -> AsyncEngine:
    if url.startswith("sqlite"):
        # aiosqlite: wait on the file lock instead of failing fast under concurrent writers
        return create_async_engine(url, echo=echo, connect_args={"timeout": 30})
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def make_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, expire_on_commit=False)


engine = make_engine()
async_session_maker = make_session_maker(engine)


def load_models() -> None:
    """Import every model module so `Base.metadata` knows all tables."""
    import db.inventory  # noqa: F401
    import db.menu_item  # noqa: F401
    import db.recipe_ingredient  # noqa: F401
    import db.reservation  # noqa: F401


async def create_db_and_tables(bind: AsyncEngine = engine):
    load_models()
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session
