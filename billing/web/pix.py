"""HTTP обработчики PIX: счет, статус, webhook и подписки"""
import hmac
import json
import logging

from aiohttp import web

from billing.errors import ValidationError, WebhookSignatureError
from billing.models.payment import PixWebhookEvent
from billing.models.subscription import SubscriptionStatus
from billing.pix.payload import format_amount
from billing.utils.signature import verify_body_signature
from billing.web.responses import json_response, read_json, require_field

logger = logging.getLogger(__name__)


async def handle_checkout(request: web.Request) -> web.Response:
    """Создает PENDING платеж и возвращает payload "copia e cola" и QR"""
    data = await read_json(request)
    user_id = require_field(data, 'userId')

    payment = await request.app['payments'].create_pending(user_id)
    return json_response({
        'txid': payment['txid'],
        'encodedPayload': payment['pix_payload'],
        'qrImage': payment['qr_png_base64'],
        'amount': format_amount(payment['amount']),
        'expiresAt': payment['expires_at'],
    })


async def handle_payment_status(request: web.Request) -> web.Response:
    txid = request.match_info['txid']
    status = await request.app['payments'].get_status(txid)
    return json_response(status)


async def handle_pix_webhook(request: web.Request) -> web.Response:
    """
    Уведомление PSP о PIX-платеже

    Ответы: 200 - событие применено (в том числе повтор),
    202 - платеж неизвестен, 400 - некорректный запрос или подпись.
    """
    body = await request.read()

    secret = request.app['config'].pix_webhook_secret
    if secret and not verify_body_signature(body, request.headers.get('X-Signature'), secret):
        raise WebhookSignatureError("Неверная подпись PIX webhook")

    try:
        data = json.loads(body)
    except ValueError:
        raise ValidationError("Тело webhook не является корректным JSON")

    event = PixWebhookEvent.model_validate(data)
    if not event.txid and not event.end_to_end_id:
        raise ValidationError("Нужен txid или endToEndId")

    logger.info(f"[PIX WEBHOOK] txid={event.txid}, e2e={event.end_to_end_id}, status={event.status}")

    payment = await request.app['payments'].apply_event(
        event.txid,
        event.status,
        event.end_to_end_id,
        event.occurred_at,
        event.amount
    )
    if payment is None:
        return json_response({'accepted': True, 'txid': event.txid, 'paymentStatus': None}, status=202)

    return json_response({
        'accepted': True,
        'txid': payment['txid'],
        'paymentStatus': payment['status'],
    })


async def handle_test_confirm(request: web.Request) -> web.Response:
    """Ручное подтверждение txid (регистрируется только при ENABLE_TEST_ENDPOINTS)"""
    expected = request.app['config'].admin_token
    provided = request.headers.get('X-Admin-Token', '')
    if not expected or not hmac.compare_digest(expected, provided):
        raise web.HTTPForbidden(text="forbidden")

    txid = request.match_info['txid']
    payment = await request.app['payments'].confirm_manual(txid)
    logger.warning(f"🧪 Ручное подтверждение txid={txid}")
    return json_response({'txid': payment['txid'], 'paymentStatus': payment['status']})


def _subscription_view(user_id: str, subscription) -> dict:
    if subscription is None:
        return {
            'userId': user_id,
            'status': SubscriptionStatus.INACTIVE.value,
            'currentPeriodStart': None,
            'currentPeriodEnd': None,
            'cancelAtPeriodEnd': False,
        }
    return {
        'userId': user_id,
        'status': subscription['status'],
        'currentPeriodStart': subscription['current_period_start'],
        'currentPeriodEnd': subscription['current_period_end'],
        'cancelAtPeriodEnd': subscription['cancel_at_period_end'],
    }


async def handle_subscription_status(request: web.Request) -> web.Response:
    user_id = request.match_info['user_id']
    subscription = await request.app['subscriptions'].get_by_user(user_id)
    return json_response(_subscription_view(user_id, subscription))


async def handle_cancel_at_period_end(request: web.Request) -> web.Response:
    user_id = request.match_info['user_id']
    subscription = await request.app['subscriptions'].request_cancel_at_period_end(user_id)
    return json_response(_subscription_view(user_id, subscription))
