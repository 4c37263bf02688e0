"""Схема базы данных (создается при старте, идемпотентно)"""
import logging
import asyncpg

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS payments (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    txid VARCHAR(35) NOT NULL UNIQUE,
    end_to_end_id VARCHAR(50),
    amount NUMERIC(12, 2) NOT NULL,
    status VARCHAR(20) NOT NULL,
    pix_payload TEXT NOT NULL,
    qr_png_base64 TEXT,
    created_at TIMESTAMPTZ NOT NULL,
    confirmed_at TIMESTAMPTZ,
    expires_at TIMESTAMPTZ NOT NULL,
    version BIGINT NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_payments_user ON payments (user_id);
CREATE INDEX IF NOT EXISTS idx_payments_status_expires ON payments (status, expires_at);
CREATE INDEX IF NOT EXISTS idx_payments_e2e ON payments (end_to_end_id);

CREATE TABLE IF NOT EXISTS subscriptions (
    id UUID PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE,
    status VARCHAR(20) NOT NULL,
    current_period_start TIMESTAMPTZ,
    current_period_end TIMESTAMPTZ,
    cancel_at_period_end BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL,
    version BIGINT NOT NULL DEFAULT 0,
    CHECK (current_period_end IS NULL OR current_period_start IS NULL
           OR current_period_end >= current_period_start)
);
CREATE INDEX IF NOT EXISTS idx_subscriptions_status_period_end
    ON subscriptions (status, current_period_end);

CREATE TABLE IF NOT EXISTS billing_customers (
    user_id TEXT PRIMARY KEY,
    email TEXT,
    stripe_customer_id TEXT NOT NULL UNIQUE,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS card_subscriptions (
    stripe_subscription_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    stripe_customer_id TEXT NOT NULL,
    status VARCHAR(30) NOT NULL,
    price_id TEXT,
    product_id TEXT,
    latest_invoice_id TEXT,
    default_payment_method TEXT,
    current_period_start TIMESTAMPTZ,
    current_period_end TIMESTAMPTZ,
    cancel_at TIMESTAMPTZ,
    cancel_at_period_end BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    version BIGINT NOT NULL DEFAULT 0
);
"""


async def init_schema(pool: asyncpg.Pool) -> None:
    """Создает таблицы, если их еще нет"""
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA)
    logger.info("✅ Схема базы данных проверена")
