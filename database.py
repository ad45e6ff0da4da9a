"""
Database Configuration and Session Management
============================================

One Database object owns the async engine and session factory for the whole
process. The API builds it at startup and hands it to handlers and background
jobs; nothing opens its own engine.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base

logger = logging.getLogger(__name__)


def to_async_database_url(database_url: str) -> str:
    """Convert a plain PostgreSQL URL into its asyncpg form"""
    async_url = database_url
    if async_url.startswith('postgres://'):
        async_url = async_url.replace('postgres://', 'postgresql://', 1)
    if async_url.startswith('postgresql://'):
        async_url = async_url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    # asyncpg uses 'ssl' instead of 'sslmode' parameter
    async_url = async_url.replace('sslmode=require', 'ssl=require')
    async_url = async_url.replace('sslmode=prefer', 'ssl=prefer')
    async_url = async_url.replace('sslmode=disable', 'ssl=disable')
    return async_url


class Database:
    """Process-wide connection pool plus session factory"""

    def __init__(self, database_url: Optional[str] = None, engine: Optional[AsyncEngine] = None):
        if engine is None:
            database_url = database_url or Config.DATABASE_URL
            if not database_url:
                raise ValueError("DATABASE_URL environment variable is required")
            engine = self._build_engine(to_async_database_url(database_url))

        self.engine = engine
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            autoflush=False,
            expire_on_commit=False  # ORM objects stay readable after commit in handlers and jobs
        )

    @staticmethod
    def _build_engine(async_url: str) -> AsyncEngine:
        if async_url.startswith('sqlite'):
            # In-memory SQLite must share a single connection across sessions
            return create_async_engine(
                async_url,
                echo=Config.DB_ECHO,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )

        return create_async_engine(
            async_url,
            pool_size=Config.DB_POOL_SIZE,
            max_overflow=Config.DB_MAX_OVERFLOW,
            pool_pre_ping=True,    # Validate connections before use
            pool_recycle=3600,     # Recycle connections every hour
            pool_timeout=30,
            echo=Config.DB_ECHO,
            connect_args={
                "server_settings": {
                    "application_name": "studex_api",  # For monitoring in pg_stat_activity
                },
                "timeout": 10,
                "command_timeout": 30,
            }
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Unit-of-work session for background jobs and scripts.

        Commits on clean exit, rolls back on any exception.

        Usage:
            async with db.session() as session:
                sale = await session.get(Sale, sale_id)
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self):
        """Create all database tables if they don't exist"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables created/verified")

    async def drop_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def ping(self) -> bool:
        """Cheap reachability check used by /health"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"❌ Database ping failed: {e}")
            return False

    async def dispose(self):
        await self.engine.dispose()
        logger.info("🔌 Database connection pool disposed")


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding one session per request from the app's Database.

    Handlers commit explicitly; anything left uncommitted is rolled back when
    the session closes.
    """
    db: Database = request.app.state.db
    async with db.session_factory() as session:
        yield session
