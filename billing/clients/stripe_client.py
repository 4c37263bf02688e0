"""Клиент для работы со Stripe"""
import asyncio
import logging
from typing import Any, Optional

import stripe

from billing.errors import ExternalProcessorError, WebhookSignatureError

logger = logging.getLogger(__name__)


class StripeClient:
    """
    Асинхронная обертка над stripe SDK

    Вызовы SDK синхронные, поэтому выполняются в отдельном потоке.
    Любая ошибка Stripe превращается в ExternalProcessorError.
    """

    def __init__(
        self,
        secret_key: str,
        webhook_secret: Optional[str] = None,
        webhook_tolerance: int = 300
    ):
        stripe.api_key = secret_key
        stripe.set_app_info("pix-billing", version="1.0.0")
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance

    async def _call(self, operation: str, func, *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Ошибка Stripe ({operation}): {e}")
            raise ExternalProcessorError(f"Stripe отклонил {operation}: {e}", e) from e

    async def search_customers(self, query: str, limit: int = 20) -> list:
        """Поиск клиентов по query-синтаксису Stripe"""
        result = await self._call("customer.search", stripe.Customer.search, query=query, limit=limit)
        return list(result.data)

    async def create_customer(
        self,
        metadata: dict,
        email: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> stripe.Customer:
        params: dict[str, Any] = {"metadata": metadata}
        if email:
            params["email"] = email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return await self._call("customer.create", stripe.Customer.create, **params)

    async def update_customer_metadata(self, customer_id: str, metadata: dict) -> stripe.Customer:
        return await self._call("customer.modify", stripe.Customer.modify, customer_id, metadata=metadata)

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        metadata: Optional[dict] = None,
        idempotency_key: Optional[str] = None
    ) -> stripe.Subscription:
        """
        Создает подписку в статусе default_incomplete

        Args:
            customer_id: ID клиента Stripe
            price_id: ID цены
            metadata: Метаданные подписки
            idempotency_key: Ключ идемпотентности

        Returns:
            Подписка с раскрытым latest_invoice.payment_intent
        """
        params: dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.payment_intent"],
        }
        if metadata:
            params["metadata"] = metadata
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return await self._call("subscription.create", stripe.Subscription.create, **params)

    async def retrieve_subscription(
        self,
        subscription_id: str,
        expand: Optional[list[str]] = None
    ) -> stripe.Subscription:
        return await self._call(
            "subscription.retrieve",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=expand or []
        )

    async def update_subscription_price(
        self,
        subscription_id: str,
        item_id: str,
        price_id: str,
        proration_behavior: str
    ) -> stripe.Subscription:
        return await self._call(
            "subscription.modify",
            stripe.Subscription.modify,
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior=proration_behavior
        )

    async def retrieve_invoice(self, invoice_id: str, expand: Optional[list[str]] = None) -> stripe.Invoice:
        return await self._call("invoice.retrieve", stripe.Invoice.retrieve, invoice_id, expand=expand or [])

    async def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        return await self._call("payment_intent.retrieve", stripe.PaymentIntent.retrieve, payment_intent_id)

    async def list_payment_intents(self, customer_id: str, limit: int = 10) -> list:
        """Последние PaymentIntent клиента, от новых к старым"""
        result = await self._call(
            "payment_intent.list",
            stripe.PaymentIntent.list,
            customer=customer_id,
            limit=limit
        )
        return list(result.data)

    async def create_ephemeral_key(self, customer_id: str, stripe_version: str) -> stripe.EphemeralKey:
        """Ephemeral key для мобильного SDK (версия API задается клиентом)"""
        return await self._call(
            "ephemeral_key.create",
            stripe.EphemeralKey.create,
            customer=customer_id,
            stripe_version=stripe_version
        )

    def construct_event(self, payload: bytes, signature: Optional[str]) -> stripe.Event:
        """
        Проверяет подпись webhook и собирает событие

        Raises:
            WebhookSignatureError: если подписи нет или она не совпала
        """
        if not self.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET не настроен")
        if not signature:
            raise WebhookSignatureError("Нет заголовка Stripe-Signature")
        try:
            return stripe.Webhook.construct_event(
                payload,
                signature,
                self.webhook_secret,
                tolerance=self.webhook_tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Неверная подпись: {e.user_message or 'signature mismatch'}") from e
        except ValueError as e:
            raise WebhookSignatureError(f"Некорректное тело webhook: {e}") from e
