from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
import structlog

from po_lifecycle.config import settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(url: str) -> AsyncEngine:
    """asyncpg takes SSL through connect_args, so sslmode is stripped from the URL."""
    url = url.replace("?sslmode=require", "").replace("&sslmode=require", "")
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DEBUG)

    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        connect_args={"ssl": "require"} if settings.DB_SSL else {},
    )


engine = build_engine(settings.DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """Plain request-scoped session for reads outside the lifecycle engine."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db():
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("db_connected", dialect=engine.dialect.name)


async def close_db():
    await engine.dispose()
    logger.info("db_disconnected")
