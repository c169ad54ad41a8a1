# File: database.py
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
import logging

from core.config import settings
from models.models import Base

logger = logging.getLogger(__name__)

def build_engine(database_url: str = None, **kwargs):
    """Create the async engine; pooling options only apply to server databases"""
    database_url = database_url or settings.DATABASE_URL
    engine_kwargs = {"echo": settings.DB_ECHO, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(pool_size=20, max_overflow=30, pool_recycle=3600)
    engine_kwargs.update(kwargs)
    return create_async_engine(database_url, **engine_kwargs)

# Create engine
engine = build_engine()

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

async def get_db():
    """
    Dependency to get DB session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def init_db(bind=None):
    """
    Initialize database (create tables)
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")

async def drop_db(bind=None):
    """
    Drop all tables (for development/testing)
    """
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.warning("All tables dropped")
