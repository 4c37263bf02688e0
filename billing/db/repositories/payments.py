"""Репозиторий для работы с платежами"""
import asyncpg
from typing import Optional
from decimal import Decimal
from datetime import datetime

from billing.errors import ConflictError
from billing.models.payment import PaymentRecord, PaymentStatus

_COLUMNS = """
    id, user_id, txid, end_to_end_id, amount, status, pix_payload, qr_png_base64,
    created_at, confirmed_at, expires_at, version
"""


class PaymentRepository:
    """Репозиторий для работы с платежами"""
    
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool
    
    async def create(
        self,
        user_id: str,
        txid: str,
        amount: Decimal,
        pix_payload: str,
        qr_png_base64: Optional[str],
        created_at: datetime,
        expires_at: datetime
    ) -> PaymentRecord:
        """
        Создать новый платеж в статусе PENDING
        
        Args:
            user_id: ID пользователя
            txid: Уникальный идентификатор транзакции
            amount: Сумма платежа
            pix_payload: Строка "copia e cola"
            qr_png_base64: QR-код в base64
            created_at: Время создания
            expires_at: Время истечения
        
        Returns:
            Созданная запись платежа
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO payments (user_id, txid, amount, status, pix_payload, qr_png_base64,
                                      created_at, expires_at, version)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, 0)
                RETURNING {_COLUMNS}
                """,
                user_id, txid, amount, PaymentStatus.PENDING.value, pix_payload, qr_png_base64,
                created_at, expires_at
            )
            return dict(row)  # type: ignore
    
    async def get_by_txid(self, txid: str) -> Optional[PaymentRecord]:
        """Получить платеж по txid"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM payments WHERE txid = $1",
                txid
            )
            return dict(row) if row else None  # type: ignore
    
    async def get_by_id(self, payment_id: int) -> Optional[PaymentRecord]:
        """Получить платеж по ID"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM payments WHERE id = $1",
                payment_id
            )
            return dict(row) if row else None  # type: ignore
    
    async def get_by_end_to_end_id(self, end_to_end_id: str) -> Optional[PaymentRecord]:
        """Получить платеж по endToEndId"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM payments WHERE end_to_end_id = $1 LIMIT 1",
                end_to_end_id
            )
            return dict(row) if row else None  # type: ignore
    
    async def find_pending_by_amount(self, amount: Decimal, now: datetime) -> Optional[PaymentRecord]:
        """Самый свежий неистекший PENDING платеж на сумму (статический QR)"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {_COLUMNS}
                FROM payments
                WHERE status = $1 AND amount = $2 AND expires_at >= $3
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                PaymentStatus.PENDING.value, amount, now
            )
            return dict(row) if row else None  # type: ignore

    async def update(self, payment: PaymentRecord) -> PaymentRecord:
        """
        Сохранить изменения статуса с проверкой версии
        
        Raises:
            ConflictError: если запись успели изменить после чтения
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE payments
                SET status = $3, confirmed_at = $4, end_to_end_id = $5, version = version + 1
                WHERE id = $1 AND version = $2
                RETURNING {_COLUMNS}
                """,
                payment['id'], payment['version'], payment['status'],
                payment['confirmed_at'], payment['end_to_end_id']
            )
            if row is None:
                raise ConflictError(f"Платеж {payment['txid']} изменен параллельно")
            return dict(row)  # type: ignore
    
    async def list_expired_pending(self, now: datetime) -> list[PaymentRecord]:
        """Получить PENDING платежи с истекшим сроком"""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS}
                FROM payments
                WHERE status = $1 AND expires_at < $2
                ORDER BY expires_at
                """,
                PaymentStatus.PENDING.value, now
            )
            return [dict(row) for row in rows]  # type: ignore
