"""Репозиторий связей пользователь -> клиент Stripe"""
import asyncpg
from datetime import datetime
from typing import Optional

from billing.models.subscription import BillingCustomerRecord


class CustomerRepository:
    """Хранит постоянное соответствие user_id и stripe_customer_id"""
    
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool
    
    async def get_by_user_id(self, user_id: str) -> Optional[BillingCustomerRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, email, stripe_customer_id, created_at, updated_at
                FROM billing_customers
                WHERE user_id = $1
                """,
                user_id
            )
            return dict(row) if row else None  # type: ignore
    
    async def save(
        self,
        user_id: str,
        email: Optional[str],
        stripe_customer_id: str,
        now: datetime
    ) -> BillingCustomerRecord:
        """Создает или обновляет связь"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO billing_customers (user_id, email, stripe_customer_id, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $4)
                ON CONFLICT (user_id)
                DO UPDATE SET email = COALESCE($2, billing_customers.email),
                              stripe_customer_id = $3, updated_at = $4
                RETURNING user_id, email, stripe_customer_id, created_at, updated_at
                """,
                user_id, email, stripe_customer_id, now
            )
            return dict(row)  # type: ignore
