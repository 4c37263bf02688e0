"""Сборка aiohttp приложения"""
import logging
from typing import Optional

from aiohttp import web

from billing.config import Config
from billing.services.billing import BillingService
from billing.services.payments import PaymentService
from billing.services.subscriptions import SubscriptionService
from billing.web import pix, stripe_routes
from billing.web.responses import error_middleware

logger = logging.getLogger(__name__)


def create_app(
    config: Config,
    payments: PaymentService,
    subscriptions: SubscriptionService,
    billing: Optional[BillingService] = None,
    stripe_client=None
) -> web.Application:
    """Создает aiohttp приложение со всеми маршрутами"""
    app = web.Application(middlewares=[error_middleware])
    app['config'] = config
    app['payments'] = payments
    app['subscriptions'] = subscriptions

    app.router.add_post('/api/payments/checkout', pix.handle_checkout)
    app.router.add_get('/api/payments/status/{txid}', pix.handle_payment_status)
    app.router.add_post('/api/pix/webhook', pix.handle_pix_webhook)
    app.router.add_get('/api/subscriptions/{user_id}/status', pix.handle_subscription_status)
    app.router.add_post('/api/subscriptions/{user_id}/cancel-at-period-end', pix.handle_cancel_at_period_end)

    if config.enable_test_endpoints:
        app.router.add_post('/api/pix/_test/confirm/{txid}', pix.handle_test_confirm)
        logger.warning("🧪 Тестовый эндпоинт ручного подтверждения включен")

    if not config.pix_webhook_secret:
        logger.warning("⚠️ PIX_WEBHOOK_SECRET не задан, PIX webhook принимается без подписи")

    if billing is not None and stripe_client is not None:
        app['billing'] = billing
        app['stripe_client'] = stripe_client
        app.router.add_post('/api/billing/subscribe', stripe_routes.handle_subscribe)
        app.router.add_get('/api/billing/subscriptions/{subscription_id}', stripe_routes.handle_card_subscription_status)
        app.router.add_post('/api/billing/change-plan', stripe_routes.handle_change_plan)
        app.router.add_post('/api/stripe/webhook', stripe_routes.handle_stripe_webhook)
    else:
        logger.info("Stripe не настроен, маршруты подписки по карте не зарегистрированы")

    return app
