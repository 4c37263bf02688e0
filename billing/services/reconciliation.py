"""
Получение client_secret для только что созданной подписки Stripe

Сразу после создания подписки Stripe может еще не заполнить вложенные
объекты (latest_invoice -> payment_intent -> client_secret). Здесь мы
ограниченное время перечитываем граф объектов и пробуем несколько
стратегий по порядку: от самых дешевых и прямых к поиску по списку
PaymentIntent клиента. Функция только читает и никогда не пишет.
"""
import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from billing.constants import (
    RECONCILE_BACKOFF_STEP_SECONDS,
    RECONCILE_BACKOFF_CAP_SECONDS,
    RECONCILE_INTENT_LIST_LIMIT,
)
from billing.utils.stripe_objects import as_dict

logger = logging.getLogger(__name__)

SUBSCRIPTION_EXPAND = ["latest_invoice.payment_intent"]
INVOICE_EXPAND = ["payment_intent"]


@dataclass
class ReconcileContext:
    """Текущий снимок подписки и клиента для стратегий"""
    subscription: Any
    customer_id: str


SecretStrategy = Callable[[Any, ReconcileContext], Awaitable[Optional[str]]]


def _id_of(value: Any) -> Optional[str]:
    """ID из строки или из раскрытого объекта"""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        return value.get("id")
    return getattr(value, "id", None)


def _secret_in_body(body: Mapping) -> Optional[str]:
    """client_secret в теле инвойса: payment_intent или confirmation_secret"""
    for field in ("payment_intent", "confirmation_secret"):
        secret = as_dict(body.get(field)).get("client_secret")
        if secret:
            return secret
    return None


def _latest_invoice(subscription: Any) -> Any:
    return getattr(subscription, "latest_invoice", None)


async def _intent_secret_of_invoice(client, invoice: Any) -> Optional[str]:
    if invoice is None or isinstance(invoice, str):
        return None
    payment_intent_id = _id_of(getattr(invoice, "payment_intent", None))
    if not payment_intent_id:
        return None
    payment_intent = await client.retrieve_payment_intent(payment_intent_id)
    return getattr(payment_intent, "client_secret", None)


async def fresh_payment_intent(client, context: ReconcileContext) -> Optional[str]:
    """PaymentIntent инвойса, перечитанный по ID"""
    return await _intent_secret_of_invoice(client, _latest_invoice(context.subscription))


async def invoice_body(client, context: ReconcileContext) -> Optional[str]:
    """Сырое тело раскрытого инвойса (если типизированного поля нет в версии SDK)"""
    invoice = _latest_invoice(context.subscription)
    if isinstance(invoice, str):
        return None
    return _secret_in_body(as_dict(invoice))


async def subscription_body(client, context: ReconcileContext) -> Optional[str]:
    """Сырое тело самой подписки"""
    invoice = as_dict(context.subscription).get("latest_invoice")
    if isinstance(invoice, str):
        return None
    return _secret_in_body(as_dict(invoice))


async def refetched_invoice(client, context: ReconcileContext) -> Optional[str]:
    """Инвойс, перечитанный напрямую по ID с раскрытым PaymentIntent"""
    invoice_id = _id_of(_latest_invoice(context.subscription))
    if not invoice_id:
        return None
    invoice = await client.retrieve_invoice(invoice_id, expand=INVOICE_EXPAND)
    secret = await _intent_secret_of_invoice(client, invoice)
    return secret or _secret_in_body(as_dict(invoice))


async def customer_intents(client, context: ReconcileContext) -> Optional[str]:
    """
    Поиск среди последних PaymentIntent клиента

    Берем intent, чей инвойс совпадает с latest_invoice подписки, иначе
    самый свежий intent с любым инвойсом, и перечитываем его по ID.
    """
    intents = await client.list_payment_intents(context.customer_id, limit=RECONCILE_INTENT_LIST_LIMIT)
    invoice_id = _id_of(_latest_invoice(context.subscription))

    with_invoice = [pi for pi in intents if _id_of(as_dict(pi).get("invoice"))]
    chosen = None
    if invoice_id:
        chosen = next((pi for pi in with_invoice if _id_of(as_dict(pi).get("invoice")) == invoice_id), None)
    if chosen is None and with_invoice:
        chosen = max(with_invoice, key=lambda pi: as_dict(pi).get("created") or 0)
    if chosen is None:
        return None

    payment_intent = await client.retrieve_payment_intent(_id_of(chosen))
    return getattr(payment_intent, "client_secret", None)


STRATEGIES: tuple[tuple[str, SecretStrategy], ...] = (
    ("fresh_payment_intent", fresh_payment_intent),
    ("invoice_body", invoice_body),
    ("subscription_body", subscription_body),
    ("refetched_invoice", refetched_invoice),
    ("customer_intents", customer_intents),
)


def backoff_delay(attempt: int) -> float:
    """Линейная задержка с потолком: min(2s, 0.25s * attempt)"""
    return min(RECONCILE_BACKOFF_CAP_SECONDS, RECONCILE_BACKOFF_STEP_SECONDS * attempt)


async def _attempt(
    client,
    context: ReconcileContext,
    subscription_id: Optional[str],
    attempt: int,
    strategies: tuple[tuple[str, SecretStrategy], ...]
) -> Optional[str]:
    """Одна попытка: перечитать подписку и пройти стратегии по порядку"""
    if subscription_id:
        try:
            context.subscription = await client.retrieve_subscription(
                subscription_id,
                expand=SUBSCRIPTION_EXPAND
            )
        except Exception as e:
            # Работаем с предыдущим снимком подписки
            logger.debug(f"[RECONCILE] попытка {attempt}: подписка не перечитана: {e}")

    for name, strategy in strategies:
        try:
            secret = await strategy(client, context)
        except Exception as e:
            logger.debug(f"[RECONCILE] попытка {attempt}: стратегия {name} упала: {e}")
            continue
        if secret:
            logger.info(f"🔑 client_secret найден: subscription={subscription_id}, стратегия={name}, попытка {attempt}")
            return secret
    return None


async def resolve_client_secret(
    client,
    subscription: Any,
    customer_id: str,
    max_wait: float,
    strategies: tuple[tuple[str, SecretStrategy], ...] = STRATEGIES
) -> Optional[str]:
    """
    Ждет client_secret для подписки не дольше max_wait секунд

    Args:
        client: StripeClient (или совместимый объект)
        subscription: Подписка, только что созданная в Stripe
        customer_id: ID клиента Stripe
        max_wait: Бюджет времени в секундах

    Returns:
        client_secret или None, если за отведенное время он не появился.
        None - штатный результат: клиенту нужно повторить запрос позже.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_wait
    subscription_id = _id_of(subscription)
    context = ReconcileContext(subscription=subscription, customer_id=customer_id)
    attempt = 0

    while True:
        attempt += 1

        # Медленный вызов Stripe не должен выводить за дедлайн
        try:
            secret = await asyncio.wait_for(
                _attempt(client, context, subscription_id, attempt, strategies),
                timeout=max(deadline - loop.time(), 0)
            )
        except asyncio.TimeoutError:
            logger.debug(f"[RECONCILE] попытка {attempt} прервана по дедлайну")
            break
        if secret:
            return secret

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(backoff_delay(attempt), remaining))
        if loop.time() >= deadline:
            break

    logger.info(f"⏳ client_secret пока недоступен: subscription={subscription_id}, попыток {attempt}")
    return None
