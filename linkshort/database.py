import asyncio

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from .config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=settings.ENVIRONMENT == "development")
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Driver-level connect failures (refused, DNS, connect timeout) reach callers
# unwrapped, so they are listed next to SQLAlchemy's own errors
STORE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

class Base(DeclarativeBase):
    pass

async def get_db():
    async with AsyncSessionLocal() as session:
        yield session

async def ping(db: AsyncSession) -> None:
    await db.execute(text("SELECT 1"))
