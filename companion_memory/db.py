import asyncpg
from typing import Optional, List, Any, Dict
import logging
from .config import get_settings

logger = logging.getLogger(__name__)


class Database:
    """Lazily created asyncpg pool with dict-returning helpers."""

    def __init__(self, dsn: Optional[str] = None):
        self.pool: Optional[asyncpg.Pool] = None
        self.settings = get_settings()
        self.dsn = dsn

    async def get_pool(self) -> asyncpg.Pool:
        if not self.pool:
            logger.info("Initializing database connection pool")
            try:
                self.pool = await asyncpg.create_pool(
                    self.dsn or self.settings.get_database_url(),
                    min_size=self.settings.db_pool_min_size,
                    max_size=self.settings.db_pool_max_size,
                    command_timeout=30
                )
                logger.info("Database connection pool created successfully")
            except Exception as e:
                logger.error(f"Failed to create database pool: {e}")
                raise
        return self.pool

    async def execute(self, query: str, *args) -> str:
        pool = await self.get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.execute(query, *args)
        except Exception as e:
            logger.error(f"Database execute error: {e}")
            raise

    async def fetch(self, query: str, *args) -> List[Dict[str, Any]]:
        pool = await self.get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
                return [dict(row) for row in rows]
        except Exception as e:
            logger.error(f"Database fetch error: {e}")
            raise

    async def fetchone(self, query: str, *args) -> Optional[Dict[str, Any]]:
        pool = await self.get_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None
        except Exception as e:
            logger.error(f"Database fetchone error: {e}")
            raise

    async def close(self):
        if self.pool:
            logger.info("Closing database connection pool")
            try:
                await self.pool.close()
            finally:
                self.pool = None
