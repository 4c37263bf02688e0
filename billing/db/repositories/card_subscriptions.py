"""Репозиторий подписок Stripe"""
import asyncpg
from typing import Optional

from billing.models.subscription import CardSubscriptionRecord

_COLUMNS = """
    stripe_subscription_id, user_id, stripe_customer_id, status, price_id, product_id,
    latest_invoice_id, default_payment_method, current_period_start, current_period_end,
    cancel_at, cancel_at_period_end, created_at, updated_at, version
"""


class CardSubscriptionRepository:
    """Репозиторий подписок Stripe"""
    
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool
    
    async def get_by_stripe_id(self, stripe_subscription_id: str) -> Optional[CardSubscriptionRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM card_subscriptions WHERE stripe_subscription_id = $1",
                stripe_subscription_id
            )
            return dict(row) if row else None  # type: ignore
    
    async def save(self, record: CardSubscriptionRecord) -> CardSubscriptionRecord:
        """
        Создает или обновляет запись по stripe_subscription_id
        
        Stripe сам упорядочивает состояние подписки, поэтому здесь
        последняя запись побеждает, а версия только увеличивается.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO card_subscriptions (
                    stripe_subscription_id, user_id, stripe_customer_id, status, price_id,
                    product_id, latest_invoice_id, default_payment_method, current_period_start,
                    current_period_end, cancel_at, cancel_at_period_end, created_at, updated_at,
                    version
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, 0)
                ON CONFLICT (stripe_subscription_id) DO UPDATE SET
                    status = $4, price_id = $5, product_id = $6, latest_invoice_id = $7,
                    default_payment_method = $8, current_period_start = $9,
                    current_period_end = $10, cancel_at = $11, cancel_at_period_end = $12,
                    updated_at = $14, version = card_subscriptions.version + 1
                RETURNING {_COLUMNS}
                """,
                record['stripe_subscription_id'], record['user_id'], record['stripe_customer_id'],
                record['status'], record['price_id'], record['product_id'],
                record['latest_invoice_id'], record['default_payment_method'],
                record['current_period_start'], record['current_period_end'],
                record['cancel_at'], record['cancel_at_period_end'],
                record['created_at'], record['updated_at']
            )
            return dict(row)  # type: ignore
