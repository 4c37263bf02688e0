"""HTTP обработчики подписки по карте (Stripe)"""
import logging

from aiohttp import web

from billing.web.responses import json_response, read_json, require_field

logger = logging.getLogger(__name__)


async def handle_subscribe(request: web.Request) -> web.Response:
    """
    Старт подписки по карте для мобильного SDK

    Тело: {userId, email?, priceId?, stripeVersion?}
    """
    data = await read_json(request)
    user_id = require_field(data, 'userId')
    logger.info(f"[BILL][REQ] subscribe userId={user_id}, priceId={data.get('priceId')}")

    result = await request.app['billing'].start_subscription(
        user_id,
        data.get('email'),
        price_id=data.get('priceId'),
        stripe_version=data.get('stripeVersion') or request.headers.get('Stripe-Version')
    )
    return json_response(result)


async def handle_card_subscription_status(request: web.Request) -> web.Response:
    subscription_id = request.match_info['subscription_id']
    return json_response(await request.app['billing'].get_status(subscription_id))


async def handle_change_plan(request: web.Request) -> web.Response:
    """Тело: {subscriptionId, newPriceId, prorationBehavior?}"""
    data = await read_json(request)
    subscription_id = require_field(data, 'subscriptionId')
    new_price_id = require_field(data, 'newPriceId')

    billing = request.app['billing']
    await billing.change_plan(subscription_id, new_price_id, data.get('prorationBehavior'))
    return json_response(await billing.get_status(subscription_id))


async def handle_stripe_webhook(request: web.Request) -> web.Response:
    """Webhook Stripe: сначала подпись, затем событие"""
    payload = await request.read()
    event = request.app['stripe_client'].construct_event(payload, request.headers.get('Stripe-Signature'))

    event_type = event['type']
    handled = await request.app['billing'].handle_event(event_type, event['data']['object'])
    logger.info(f"[STRIPE WEBHOOK] {event_type} ({event['id']}) handled={handled}")
    return json_response({'received': True})
