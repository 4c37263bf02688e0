"""Соответствие пользователь -> клиент Stripe"""
import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Optional

from billing.errors import ValidationError
from billing.utils.stripe_objects import as_dict
from billing.utils.time import utc_now

logger = logging.getLogger(__name__)

METADATA_USER_ID = "userId"


def _escape(value: str) -> str:
    """Экранирует строку для query-синтаксиса Stripe"""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _metadata(customer: Any) -> Mapping:
    return as_dict(as_dict(customer).get("metadata"))


class CustomerService:
    """
    Находит или создает клиента Stripe для пользователя

    Кэш в памяти только ускоряет повторные запросы, постоянное
    соответствие хранится в таблице billing_customers.
    """

    def __init__(self, client, repository, clock: Callable[[], datetime] = utc_now):
        self.client = client
        self.repository = repository
        self.clock = clock
        self._cache: dict[str, str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        return self._locks.setdefault(user_id, asyncio.Lock())

    async def find_or_create(self, user_id: str, email: Optional[str] = None) -> str:
        """
        Возвращает stripe_customer_id пользователя

        Порядок поиска: кэш, БД, Stripe по metadata['userId'],
        Stripe по e-mail, иначе создание с ключом идемпотентности.
        """
        if not user_id or not user_id.strip():
            raise ValidationError("userId обязателен")

        cached = self._cache.get(user_id)
        if cached:
            return cached

        async with self._lock_for(user_id):
            customer_id = self._cache.get(user_id) or await self._resolve(user_id, email)
            self._cache[user_id] = customer_id
        # После заполнения кэша лок пользователя больше не нужен
        self._locks.pop(user_id, None)
        return customer_id

    async def _resolve(self, user_id: str, email: Optional[str]) -> str:
        stored = await self.repository.get_by_user_id(user_id)
        if stored:
            return stored['stripe_customer_id']

        existing = await self._find_by_metadata(user_id)
        if existing is None and email:
            existing = await self._find_best_by_email(email)

        if existing is not None:
            await self._ensure_metadata(existing, user_id)
            customer_id = existing.id
            logger.info(f"[BILL][CUSTOMER] FOUND userId={user_id} -> {customer_id}")
        else:
            created = await self.client.create_customer(
                metadata={METADATA_USER_ID: user_id},
                email=email,
                idempotency_key=f"customer-{user_id}"
            )
            customer_id = created.id
            logger.info(f"[BILL][CUSTOMER] CREATED userId={user_id} -> {customer_id}")

        await self.repository.save(user_id, email, customer_id, self.clock())
        return customer_id

    async def _find_by_metadata(self, user_id: str) -> Optional[Any]:
        found = await self.client.search_customers(
            f"metadata['{METADATA_USER_ID}']:'{_escape(user_id)}'"
        )
        if not found:
            return None
        # Берем самого свежего
        return max(found, key=lambda c: getattr(c, "created", 0) or 0)

    async def _find_best_by_email(self, email: str) -> Optional[Any]:
        found = await self.client.search_customers(f"email:'{_escape(email)}'")
        if not found:
            return None
        # Предпочитаем клиентов, у которых уже есть userId, затем самых свежих
        return max(
            found,
            key=lambda c: (METADATA_USER_ID in _metadata(c), getattr(c, "created", 0) or 0)
        )

    async def _ensure_metadata(self, customer: Any, user_id: str) -> None:
        current = _metadata(customer).get(METADATA_USER_ID)
        if current == user_id:
            return
        await self.client.update_customer_metadata(customer.id, {METADATA_USER_ID: user_id})
        logger.info(f"[BILL][CUSTOMER] UPDATED metadata customerId={customer.id} ({current} -> {user_id})")
