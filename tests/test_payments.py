"""
Tests for the PIX payment ledger.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from billing.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from billing.models.payment import PixWebhookEvent
from billing.pix.payload import parse_tlv, verify_checksum
from billing.services.payments import PaymentService
from conftest import NOW, make_config


@pytest.mark.asyncio
async def test_create_pending(payment_service):
    payment = await payment_service.create_pending("U1")

    assert payment['status'] == "PENDING"
    assert payment['user_id'] == "U1"
    assert payment['amount'] == Decimal("49.90")
    assert payment['expires_at'] == NOW + timedelta(minutes=30)
    assert payment['qr_png_base64'] == "UVItUE5H"
    assert verify_checksum(payment['pix_payload'])
    additional = dict(parse_tlv(dict(parse_tlv(payment['pix_payload']))["62"]))
    assert additional["05"] == payment['txid']


@pytest.mark.asyncio
async def test_create_pending_requires_user(payment_service):
    with pytest.raises(ValidationError):
        await payment_service.create_pending("   ")


@pytest.mark.asyncio
async def test_create_pending_without_pix_config(payment_repo, subscription_service, clock):
    service = PaymentService(make_config(pix_key=None), payment_repo, subscription_service, clock=clock)
    with pytest.raises(ConfigurationError):
        await service.create_pending("U1")
    assert payment_repo.rows == {}


@pytest.mark.asyncio
async def test_confirmation_activates_one_month(payment_service, subscription_repo):
    payment = await payment_service.create_pending("U1")
    occurred = datetime(2024, 5, 10, 12, 1, tzinfo=timezone.utc)

    confirmed = await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E123", occurred)

    assert confirmed['status'] == "CONFIRMED"
    assert confirmed['confirmed_at'] == occurred
    assert confirmed['end_to_end_id'] == "E2E123"

    subscription = await subscription_repo.get_by_user_id("U1")
    assert subscription['status'] == "ACTIVE"
    assert subscription['current_period_start'] == NOW
    assert subscription['current_period_end'] == datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)
    assert subscription['cancel_at_period_end'] is False


@pytest.mark.asyncio
async def test_replayed_confirmation_is_idempotent(payment_service, payment_repo, subscription_repo):
    payment = await payment_service.create_pending("U1")

    first = await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E123")
    second = await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E123")

    assert second == first
    assert payment_repo.updates == 1
    assert subscription_repo.creates == 1
    assert subscription_repo.updates == 0


@pytest.mark.asyncio
async def test_paid_is_an_alias_for_confirmed(payment_service):
    payment = await payment_service.create_pending("U1")
    result = await payment_service.apply_event(payment['txid'], " paid ")
    assert result['status'] == "CONFIRMED"


@pytest.mark.asyncio
async def test_failed_payment_does_not_activate(payment_service, subscription_repo):
    payment = await payment_service.create_pending("U1")

    failed = await payment_service.apply_event(payment['txid'], "FAILED")
    late = await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E999")

    assert failed['status'] == "FAILED"
    assert late['status'] == "FAILED"
    assert await subscription_repo.get_by_user_id("U1") is None


@pytest.mark.asyncio
async def test_unknown_status_leaves_payment_pending(payment_service, payment_repo):
    payment = await payment_service.create_pending("U1")
    result = await payment_service.apply_event(payment['txid'], "PROCESSING")
    assert result['status'] == "PENDING"
    assert payment_repo.updates == 0


@pytest.mark.asyncio
async def test_unknown_txid_returns_none(payment_service):
    assert await payment_service.apply_event("NOPE", "CONFIRMED") is None


@pytest.mark.asyncio
async def test_static_reference_falls_back_to_end_to_end_id(payment_service):
    payment = await payment_service.create_pending("U1")
    await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E123")

    replay = await payment_service.apply_event("***", "CONFIRMED", "E2E123")
    assert replay['txid'] == payment['txid']


@pytest.fixture
def static_payment_service(payment_repo, subscription_service, clock):
    config = make_config(pix_qr_dynamic=False)
    return PaymentService(config, payment_repo, subscription_service, qr_renderer=lambda payload: "", clock=clock)


@pytest.mark.asyncio
async def test_static_qr_confirms_newest_pending_by_amount(static_payment_service, payment_repo, subscription_repo, clock):
    older = await static_payment_service.create_pending("U1")
    clock.advance(minutes=1)
    newer = await static_payment_service.create_pending("U2")
    assert "0503***" in newer['pix_payload']

    confirmed = await static_payment_service.apply_event("***", "CONFIRMED", "E2E-PSP-1")

    assert confirmed['txid'] == newer['txid']
    assert confirmed['status'] == "CONFIRMED"
    assert confirmed['end_to_end_id'] == "E2E-PSP-1"
    assert (await subscription_repo.get_by_user_id("U2"))['status'] == "ACTIVE"
    assert payment_repo.rows[older['id']]['status'] == "PENDING"

    # The replay is found by endToEndId and changes nothing
    writes = subscription_repo.creates + subscription_repo.updates
    replay = await static_payment_service.apply_event("***", "CONFIRMED", "E2E-PSP-1")
    assert replay['txid'] == newer['txid']
    assert subscription_repo.creates + subscription_repo.updates == writes
    assert payment_repo.rows[older['id']]['status'] == "PENDING"


@pytest.mark.asyncio
async def test_static_qr_uses_reported_amount(static_payment_service, payment_repo):
    payment = await static_payment_service.create_pending("U1")

    assert await static_payment_service.apply_event("", "CONFIRMED", "E2E-1", amount=Decimal("10.00")) is None
    assert payment_repo.rows[payment['id']]['status'] == "PENDING"

    confirmed = await static_payment_service.apply_event("", "CONFIRMED", "E2E-2", amount=Decimal("49.9"))
    assert confirmed['txid'] == payment['txid']


@pytest.mark.asyncio
async def test_static_qr_skips_expired_payments(static_payment_service, payment_repo, clock):
    payment = await static_payment_service.create_pending("U1")
    clock.advance(minutes=31)

    assert await static_payment_service.apply_event("***", "CONFIRMED", "E2E-LATE") is None
    assert payment_repo.rows[payment['id']]['status'] == "PENDING"


@pytest.mark.asyncio
async def test_static_qr_failure_is_not_matched_by_amount(static_payment_service, payment_repo):
    payment = await static_payment_service.create_pending("U1")

    assert await static_payment_service.apply_event("***", "FAILED", "E2E-X") is None
    assert payment_repo.rows[payment['id']]['status'] == "PENDING"


@pytest.mark.asyncio
async def test_unknown_txid_is_not_matched_by_amount(payment_service, payment_repo):
    payment = await payment_service.create_pending("U1")

    assert await payment_service.apply_event("NOPE", "CONFIRMED", "E2E-X") is None
    assert payment_repo.rows[payment['id']]['status'] == "PENDING"


@pytest.mark.asyncio
async def test_conflict_is_retried(payment_service, payment_repo, subscription_repo):
    payment = await payment_service.create_pending("U1")
    payment_repo.fail_next_updates = 1

    confirmed = await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E123")

    assert confirmed['status'] == "CONFIRMED"
    assert subscription_repo.creates == 1


@pytest.mark.asyncio
async def test_persistent_conflict_raises(payment_service, payment_repo, subscription_repo):
    payment = await payment_service.create_pending("U1")
    payment_repo.fail_next_updates = 10

    with pytest.raises(ConflictError):
        await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E123")
    assert subscription_repo.creates == 0


@pytest.mark.asyncio
async def test_confirm_manual(payment_service):
    payment = await payment_service.create_pending("U1")
    confirmed = await payment_service.confirm_manual(payment['txid'])
    assert confirmed['status'] == "CONFIRMED"
    assert confirmed['end_to_end_id'] == f"MANUAL-{payment['txid']}"

    with pytest.raises(NotFoundError):
        await payment_service.confirm_manual("UNKNOWN")


@pytest.mark.asyncio
async def test_get_status(payment_service):
    payment = await payment_service.create_pending("U1")

    before = await payment_service.get_status(payment['txid'])
    assert before == {'txid': payment['txid'], 'paymentStatus': "PENDING", 'subscriptionStatus': "INACTIVE"}

    await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E123")
    after = await payment_service.get_status(payment['txid'])
    assert after['paymentStatus'] == "CONFIRMED"
    assert after['subscriptionStatus'] == "ACTIVE"

    with pytest.raises(NotFoundError):
        await payment_service.get_status("UNKNOWN")


@pytest.mark.asyncio
async def test_sweep_expires_only_pending(payment_service, clock):
    stale = await payment_service.create_pending("U1")
    paid = await payment_service.create_pending("U2")
    await payment_service.apply_event(paid['txid'], "CONFIRMED", "E2E2")
    clock.advance(minutes=10)
    fresh = await payment_service.create_pending("U3")

    expired = await payment_service.sweep_expired(clock.advance(minutes=25))

    assert [p['txid'] for p in expired] == [stale['txid']]
    assert (await payment_service.get_status(paid['txid']))['paymentStatus'] == "CONFIRMED"
    assert (await payment_service.get_status(fresh['txid']))['paymentStatus'] == "PENDING"


@pytest.mark.asyncio
async def test_sweep_rereads_before_writing(payment_service, payment_repo, clock):
    payment = await payment_service.create_pending("U1")
    snapshot = await payment_repo.list_expired_pending(clock.advance(minutes=31))
    assert len(snapshot) == 1

    # Confirmed between the listing and the write
    await payment_service.apply_event(payment['txid'], "CONFIRMED", "E2E1")

    async def stale_listing(now):
        return snapshot

    payment_repo.list_expired_pending = stale_listing
    assert await payment_service.sweep_expired(clock()) == []
    assert (await payment_repo.get_by_txid(payment['txid']))['status'] == "CONFIRMED"


@pytest.mark.unit
def test_webhook_event_fields():
    event = PixWebhookEvent.model_validate({
        'txid': "***",
        'endToEndId': "E2E-1",
        'valor': "49.90",
        'status': " paid ",
        'occurredAt': "2024-05-10T09:01:00-03:00",
    })

    assert event.end_to_end_id == "E2E-1"
    assert event.amount == Decimal("49.90")
    assert event.status == "PAID"
    assert set(PixWebhookEvent.model_fields) == {'txid', 'end_to_end_id', 'amount', 'status', 'occurred_at'}
