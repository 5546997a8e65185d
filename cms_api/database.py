from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from cms_api.config import settings
import structlog

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def _get_db_url() -> str:
    """Strip sslmode from URL since asyncpg uses connect_args for SSL."""
    url = settings.DATABASE_URL
    url = url.replace("?sslmode=require", "").replace("&sslmode=require", "")
    return url


engine: AsyncEngine = create_async_engine(
    _get_db_url(),
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=30,
    pool_recycle=settings.DB_POOL_RECYCLE,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args={"ssl": "require"} if settings.DB_SSL else {},
)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("db_connected")


async def close_db():
    await engine.dispose()
    logger.info("db_disconnected")
