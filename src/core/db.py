import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.core import config
from src.core.models import Base

logger = logging.getLogger(__name__)

ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def async_database_url(url: str) -> str:
    """Pin a bare database URL to the async driver the engine needs.

    URLs that already name a driver (`postgresql+asyncpg://`) pass through.
    """
    scheme, sep, rest = url.partition("://")
    if not sep or "+" in scheme or scheme not in ASYNC_DRIVERS:
        return url
    return f"{ASYNC_DRIVERS[scheme]}://{rest}"


DATABASE_URL = async_database_url(config.DATABASE_URL)

# Users, friend edges and favorites only; lobbies and votes stay in memory
engine = create_async_engine(DATABASE_URL, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    """Create the users, friends and favorite_games tables if missing."""
    async with engine.begin() as conn:
        logger.info(f"Creating tables: {sorted(Base.metadata.tables)}")
        await conn.run_sync(Base.metadata.create_all)
    safe_url = make_url(DATABASE_URL).render_as_string(hide_password=True)
    logger.info(f"Database ready at {safe_url}")
