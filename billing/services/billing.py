"""Подписки по карте через Stripe"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from billing.config import Config
from billing.errors import ConfigurationError, ExternalProcessorError, NotFoundError, ValidationError
from billing.models.subscription import CardSubscriptionRecord, CardSubscriptionStatus
from billing.services.customers import CustomerService, METADATA_USER_ID
from billing.services.reconciliation import resolve_client_secret
from billing.utils.time import from_epoch, utc_now

logger = logging.getLogger(__name__)

PRORATION_BEHAVIORS = ("create_prorations", "none", "always_invoice")

INVOICE_EVENTS = ("invoice.payment_succeeded", "invoice.paid", "invoice.payment_failed")
SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)


def _get(resource: Any, name: str) -> Any:
    # Сначала по ключу: у объектов stripe атрибут "items" - это метод dict
    try:
        return resource[name]
    except (KeyError, TypeError):
        return getattr(resource, name, None)


def _id_of(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


def _first_item(subscription: Any) -> Any:
    items = _get(subscription, "items")
    data = _get(items, "data") if items is not None else None
    return data[0] if data else None


def _period(subscription: Any, field: str) -> Optional[datetime]:
    """current_period_* в новых версиях API переехали в элементы подписки"""
    value = _get(subscription, field)
    if value is None:
        item = _first_item(subscription)
        value = _get(item, field) if item is not None else None
    return from_epoch(value)


def _status_of(subscription: Any) -> str:
    raw = (_get(subscription, "status") or "").upper()
    try:
        return CardSubscriptionStatus(raw).value
    except ValueError:
        raise ExternalProcessorError(f"Неизвестный статус подписки Stripe: {raw!r}")


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    """ID подписки инвойса (в новых версиях API - parent.subscription_details)"""
    direct = _id_of(_get(invoice, "subscription"))
    if direct:
        return direct
    parent = _get(invoice, "parent")
    details = _get(parent, "subscription_details") if parent is not None else None
    return _id_of(_get(details, "subscription")) if details is not None else None


def idempotency_key(*parts: str) -> str:
    return ":".join(parts)


class BillingService:
    """Старт, статус и синхронизация подписок Stripe"""

    def __init__(
        self,
        config: Config,
        client,
        customers: CustomerService,
        repository,
        clock: Callable[[], datetime] = utc_now
    ):
        missing = config.stripe_settings_missing()
        if missing:
            raise ConfigurationError(f"Не установлены параметры Stripe: {', '.join(missing)}")
        self.config = config
        self.client = client
        self.customers = customers
        self.repository = repository
        self.clock = clock

    def _to_record(
        self,
        subscription: Any,
        user_id: str,
        customer_id: str,
        existing: Optional[CardSubscriptionRecord] = None,
        invoice: Any = None
    ) -> CardSubscriptionRecord:
        now = self.clock()
        item = _first_item(subscription)
        price = _get(item, "price") if item is not None else None
        latest_invoice_id = _id_of(invoice) or _id_of(_get(subscription, "latest_invoice"))
        if latest_invoice_id is None and existing:
            latest_invoice_id = existing['latest_invoice_id']

        return {
            'stripe_subscription_id': _get(subscription, "id"),
            'user_id': user_id,
            'stripe_customer_id': customer_id,
            'status': _status_of(subscription),
            'price_id': _id_of(price) or (existing['price_id'] if existing else None),
            'product_id': _id_of(_get(price, "product")) if price is not None else None,
            'latest_invoice_id': latest_invoice_id,
            'default_payment_method': _id_of(_get(subscription, "default_payment_method")),
            'current_period_start': _period(subscription, "current_period_start"),
            'current_period_end': _period(subscription, "current_period_end"),
            'cancel_at': from_epoch(_get(subscription, "cancel_at")),
            'cancel_at_period_end': bool(_get(subscription, "cancel_at_period_end")),
            'created_at': existing['created_at'] if existing else now,
            'updated_at': now,
            'version': existing['version'] if existing else 0,
        }

    async def start_subscription(
        self,
        user_id: str,
        email: Optional[str],
        price_id: Optional[str] = None,
        stripe_version: Optional[str] = None
    ) -> dict:
        """
        Создает подписку Stripe и возвращает данные для мобильного SDK

        Args:
            user_id: ID пользователя
            email: E-mail (для поиска/создания клиента)
            price_id: Цена, по умолчанию STRIPE_PRICE_BASIC
            stripe_version: Версия API мобильного SDK для ephemeral key

        Returns:
            publishableKey, customerId, subscriptionId,
            paymentIntentClientSecret (может быть None), ephemeralKeySecret
        """
        customer_id = await self.customers.find_or_create(user_id, email)
        price = price_id or self.config.stripe_price_basic
        today = self.clock().date().isoformat()

        subscription = await self.client.create_subscription(
            customer_id,
            price,
            metadata={METADATA_USER_ID: user_id},
            idempotency_key=idempotency_key("sub", customer_id, price, today)
        )
        ephemeral_key = await self.client.create_ephemeral_key(
            customer_id,
            stripe_version or self.config.stripe_mobile_api_version
        )

        existing = await self.repository.get_by_stripe_id(subscription.id)
        await self.repository.save(self._to_record(subscription, user_id, customer_id, existing))

        client_secret = await resolve_client_secret(
            self.client,
            subscription,
            customer_id,
            self.config.stripe_secret_wait_seconds
        )

        logger.info(
            f"[BILL][RES] subscribe subscriptionId={subscription.id}, customerId={customer_id}, "
            f"hasPI={client_secret is not None}"
        )
        return {
            'publishableKey': self.config.stripe_publishable_key,
            'customerId': customer_id,
            'subscriptionId': subscription.id,
            'paymentIntentClientSecret': client_secret,
            'ephemeralKeySecret': ephemeral_key.secret,
        }

    async def get_status(self, subscription_id: str) -> dict:
        record = await self.repository.get_by_stripe_id(subscription_id)
        if record is None:
            raise NotFoundError(f"Подписка {subscription_id} не найдена")
        return {
            'subscriptionId': subscription_id,
            'status': record['status'],
            'currentPeriodEnd': record['current_period_end'],
            'cancelAtPeriodEnd': record['cancel_at_period_end'],
        }

    async def apply_webhook_update(
        self,
        subscription: Any,
        invoice: Any = None
    ) -> Optional[CardSubscriptionRecord]:
        """Обновляет уже известную подписку по данным Stripe"""
        subscription_id = _get(subscription, "id")
        existing = await self.repository.get_by_stripe_id(subscription_id)
        if existing is None:
            logger.info(f"[BILL][WEBHOOK] подписка {subscription_id} неизвестна, пропускаем")
            return None

        record = self._to_record(
            subscription,
            existing['user_id'],
            existing['stripe_customer_id'],
            existing,
            invoice
        )
        saved = await self.repository.save(record)
        logger.info(f"[BILL][WEBHOOK] подписка {subscription_id} -> {saved['status']}")
        return saved

    async def change_plan(
        self,
        subscription_id: str,
        new_price_id: str,
        proration_behavior: Optional[str] = None
    ) -> Optional[CardSubscriptionRecord]:
        """Меняет цену подписки (create_prorations | none | always_invoice)"""
        if not subscription_id or not new_price_id:
            raise ValidationError("subscriptionId и newPriceId обязательны")
        behavior = (proration_behavior or "create_prorations").strip().lower()
        if behavior not in PRORATION_BEHAVIORS:
            raise ValidationError(f"Неизвестный prorationBehavior: {proration_behavior}")
        if await self.repository.get_by_stripe_id(subscription_id) is None:
            raise NotFoundError(f"Подписка {subscription_id} не найдена")

        subscription = await self.client.retrieve_subscription(subscription_id)
        item = _first_item(subscription)
        if item is None:
            raise ExternalProcessorError(f"У подписки {subscription_id} нет элементов")

        updated = await self.client.update_subscription_price(
            subscription_id,
            _get(item, "id"),
            new_price_id,
            behavior
        )
        return await self.apply_webhook_update(updated)

    async def handle_event(self, event_type: str, data_object: Any) -> bool:
        """
        Применяет событие Stripe

        Returns:
            True если тип события обработан, False если проигнорирован
        """
        if event_type in INVOICE_EVENTS:
            subscription_id = _invoice_subscription_id(data_object)
            if subscription_id:
                subscription = await self.client.retrieve_subscription(subscription_id)
                await self.apply_webhook_update(subscription, data_object)
            return True

        if event_type in SUBSCRIPTION_EVENTS:
            await self.apply_webhook_update(data_object)
            return True

        logger.debug(f"[BILL][WEBHOOK] необрабатываемое событие: {event_type}")
        return False
