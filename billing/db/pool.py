import asyncpg
from typing import Optional
import logging

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None


async def init_pool(database_url: str, min_size: int = 1, max_size: int = 10) -> asyncpg.Pool:
    """Создает пул соединений с PostgreSQL (сессии в UTC)"""
    global _pool
    _pool = await asyncpg.create_pool(
        database_url,
        min_size=min_size,
        max_size=max_size,
        command_timeout=60,
        server_settings={'application_name': 'pix-billing', 'timezone': 'UTC'}
    )
    logger.info("✅ Подключение к базе данных установлено")
    return _pool


async def close_pool() -> None:
    """Закрывает пул соединений"""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("🔒 Соединение с базой данных закрыто")
