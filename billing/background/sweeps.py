import asyncio
import logging
from datetime import timedelta

from billing.services.payments import PaymentService
from billing.services.subscriptions import SubscriptionService

logger = logging.getLogger(__name__)


async def payment_expiry_task(payments: PaymentService, interval_seconds: int):
    """Фоновая задача: переводит просроченные PENDING платежи в EXPIRED"""
    logger.info("🔄 Запущена фоновая задача истечения платежей")

    try:
        while True:
            try:
                await asyncio.sleep(interval_seconds)

                expired = await payments.sweep_expired(payments.clock())
                if expired:
                    logger.info(f"⌛ Истекло платежей: {len(expired)}")

            except asyncio.CancelledError:
                logger.info("🛑 Задача истечения платежей остановлена")
                raise

            except Exception as e:
                logger.error(f"Ошибка в задаче истечения платежей: {e}")

    except asyncio.CancelledError:
        logger.info("✅ Задача истечения платежей завершена")
        raise


async def subscription_sweep_task(
    subscriptions: SubscriptionService,
    interval_seconds: int,
    grace_period_hours: int
):
    """Фоновая задача: закрывает подписки с закончившимся периодом"""
    logger.info("🔄 Запущена фоновая задача проверки подписок")
    grace = timedelta(hours=grace_period_hours)

    try:
        while True:
            try:
                await asyncio.sleep(interval_seconds)

                changed = await subscriptions.sweep_period_ends(subscriptions.clock(), grace)
                if changed:
                    logger.info(f"⏰ Подписок с закончившимся периодом: {len(changed)}")

            except asyncio.CancelledError:
                logger.info("🛑 Задача проверки подписок остановлена")
                raise

            except Exception as e:
                logger.error(f"Ошибка в задаче проверки подписок: {e}")

    except asyncio.CancelledError:
        logger.info("✅ Задача проверки подписок завершена")
        raise
