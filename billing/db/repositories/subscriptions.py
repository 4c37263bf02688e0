from datetime import datetime
from typing import Optional
import uuid
import asyncpg
import logging

from billing.errors import ConflictError
from billing.models.subscription import SubscriptionRecord, SubscriptionStatus

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, user_id, status, current_period_start, current_period_end,
    cancel_at_period_end, updated_at, version
"""


def _to_record(row) -> SubscriptionRecord:
    record = dict(row)
    record['id'] = str(record['id'])
    return record  # type: ignore


class SubscriptionRepository:
    """Репозиторий для работы с PIX-подписками в БД"""
    
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool
    
    async def get_by_user_id(self, user_id: str) -> Optional[SubscriptionRecord]:
        """Получает подписку пользователя"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM subscriptions WHERE user_id = $1",
                user_id
            )
            return _to_record(row) if row else None
    
    async def get_by_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        """Получает подписку по ID"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM subscriptions WHERE id = $1",
                uuid.UUID(subscription_id)
            )
            return _to_record(row) if row else None
    
    async def create(
        self,
        user_id: str,
        status: str,
        current_period_start: Optional[datetime],
        current_period_end: Optional[datetime],
        updated_at: datetime
    ) -> SubscriptionRecord:
        """
        Создает подписку пользователя
        
        Raises:
            ConflictError: если подписку этого пользователя уже создали параллельно
        """
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO subscriptions (id, user_id, status, current_period_start,
                                               current_period_end, cancel_at_period_end,
                                               updated_at, version)
                    VALUES ($1, $2, $3, $4, $5, FALSE, $6, 0)
                    RETURNING {_COLUMNS}
                    """,
                    uuid.uuid4(), user_id, status, current_period_start,
                    current_period_end, updated_at
                )
            except asyncpg.UniqueViolationError:
                raise ConflictError(f"Подписка пользователя {user_id} уже существует")
            return _to_record(row)
    
    async def update(self, subscription: SubscriptionRecord) -> SubscriptionRecord:
        """
        Сохраняет подписку с проверкой версии
        
        Raises:
            ConflictError: если запись успели изменить после чтения
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE subscriptions
                SET status = $3, current_period_start = $4, current_period_end = $5,
                    cancel_at_period_end = $6, updated_at = $7, version = version + 1
                WHERE id = $1 AND version = $2
                RETURNING {_COLUMNS}
                """,
                uuid.UUID(subscription['id']), subscription['version'], subscription['status'],
                subscription['current_period_start'], subscription['current_period_end'],
                subscription['cancel_at_period_end'], subscription['updated_at']
            )
            if row is None:
                raise ConflictError(f"Подписка {subscription['id']} изменена параллельно")
            return _to_record(row)
    
    async def list_active_ended_before(self, cutoff: datetime) -> list[SubscriptionRecord]:
        """Получает ACTIVE подписки, чей период закончился раньше cutoff"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS}
                FROM subscriptions
                WHERE status = $1 AND current_period_end < $2
                ORDER BY current_period_end
                """,
                SubscriptionStatus.ACTIVE.value, cutoff
            )
            return [_to_record(row) for row in rows]
