import asyncio
import logging
import signal

from aiohttp import web

from billing.config import Config, setup_logging
from billing.db.pool import init_pool, close_pool
from billing.db.schema import init_schema
from billing.db.repositories.payments import PaymentRepository
from billing.db.repositories.subscriptions import SubscriptionRepository
from billing.db.repositories.customers import CustomerRepository
from billing.db.repositories.card_subscriptions import CardSubscriptionRepository
from billing.clients.stripe_client import StripeClient
from billing.services.payments import PaymentService
from billing.services.subscriptions import SubscriptionService
from billing.services.customers import CustomerService
from billing.services.billing import BillingService
from billing.background.sweeps import payment_expiry_task, subscription_sweep_task
from billing.web.app import create_app

logger = logging.getLogger(__name__)


async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: остается KeyboardInterrupt
            pass
    await stop.wait()


async def main():
    """Главная функция запуска сервиса"""
    config = Config.from_env()
    setup_logging(config.log_level)
    logger.info("🚀 Запуск сервиса биллинга...")

    # Инициализация базы данных
    pool = await init_pool(config.database_url)
    await init_schema(pool)

    subscriptions = SubscriptionService(SubscriptionRepository(pool))
    payments = PaymentService(config, PaymentRepository(pool), subscriptions)

    billing = None
    stripe_client = None
    if config.stripe_enabled:
        stripe_client = StripeClient(
            config.stripe_secret_key,
            config.stripe_webhook_secret,
            config.stripe_webhook_tolerance_seconds
        )
        customers = CustomerService(stripe_client, CustomerRepository(pool))
        billing = BillingService(config, stripe_client, customers, CardSubscriptionRepository(pool))
        logger.info("💳 Stripe подключен")

    app = create_app(config, payments, subscriptions, billing, stripe_client)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.http_host, config.http_port)
    await site.start()

    # Фоновые задачи
    tasks = [
        asyncio.create_task(payment_expiry_task(payments, config.payment_expiry_interval_seconds)),
        asyncio.create_task(subscription_sweep_task(
            subscriptions,
            config.subscription_sweep_interval_seconds,
            config.subscription_grace_period_hours
        )),
    ]

    logger.info(f"✅ HTTP сервер слушает {config.http_host}:{config.http_port}")

    try:
        await _wait_for_shutdown()
    finally:
        # Очистка ресурсов
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await runner.cleanup()
        await close_pool()
        logger.info("👋 Сервис остановлен")


if __name__ == "__main__":
    asyncio.run(main())
