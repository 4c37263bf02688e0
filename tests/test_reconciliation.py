"""
Tests for client secret resolution against an eventually consistent Stripe.
"""
import time

import pytest
import stripe

from billing.services.reconciliation import (
    ReconcileContext,
    backoff_delay,
    customer_intents,
    invoice_body,
    refetched_invoice,
    resolve_client_secret,
    subscription_body,
)
from fakes import FailingStripeClient, FakeStripeClient, HangingStripeClient, resource


@pytest.mark.unit
def test_backoff_is_linear_with_cap():
    assert backoff_delay(1) == 0.25
    assert backoff_delay(4) == 1.0
    assert backoff_delay(8) == 2.0
    assert backoff_delay(50) == 2.0


@pytest.mark.asyncio
async def test_resolves_from_fresh_payment_intent():
    client = FakeStripeClient()
    subscription = await client.create_subscription("cus_1", "price_basic")

    secret = await resolve_client_secret(client, subscription, "cus_1", max_wait=1.0)

    assert secret == "pi_1_secret"


@pytest.mark.asyncio
async def test_keeps_previous_snapshot_when_refetch_fails():
    client = FakeStripeClient()
    subscription = await client.create_subscription("cus_1", "price_basic")
    client.fail_subscription_retrieve = True

    assert await resolve_client_secret(client, subscription, "cus_1", max_wait=1.0) == "pi_1_secret"


@pytest.mark.asyncio
async def test_gives_up_at_deadline_without_writes():
    client = FakeStripeClient(secrets_ready=False)
    subscription = await client.create_subscription("cus_1", "price_basic")
    writes_before = len(client.write_calls)

    started = time.monotonic()
    secret = await resolve_client_secret(client, subscription, "cus_1", max_wait=0.2)
    elapsed = time.monotonic() - started

    assert secret is None
    assert 0.19 <= elapsed < 0.45
    assert len(client.write_calls) == writes_before


@pytest.mark.asyncio
async def test_erroring_stripe_returns_none_at_deadline():
    client = FailingStripeClient()
    subscription = resource(id="sub_1", status="incomplete", latest_invoice="in_1")

    started = time.monotonic()
    secret = await resolve_client_secret(client, subscription, "cus_1", max_wait=0.2)
    elapsed = time.monotonic() - started

    assert secret is None
    assert 0.19 <= elapsed < 0.45
    assert client.calls
    assert {name for name, *_ in client.calls} <= {
        "retrieve_subscription", "retrieve_invoice", "retrieve_payment_intent", "list_payment_intents"
    }


@pytest.mark.asyncio
async def test_slow_stripe_call_does_not_overrun_deadline():
    client = HangingStripeClient(delay=5.0)
    subscription = await client.create_subscription("cus_1", "price_basic")

    started = time.monotonic()
    secret = await resolve_client_secret(client, subscription, "cus_1", max_wait=0.2)
    elapsed = time.monotonic() - started

    assert secret is None
    assert elapsed < 0.45
    assert client.calls[-1] == ("retrieve_subscription", subscription.id)


@pytest.mark.asyncio
async def test_reads_secret_from_real_stripe_objects():
    subscription = stripe.Subscription.construct_from({
        "id": "sub_1",
        "object": "subscription",
        "latest_invoice": {
            "id": "in_1",
            "object": "invoice",
            "confirmation_secret": {"client_secret": "pi_1_secret", "type": "payment_intent"},
        },
    }, "sk_test_fake")
    context = ReconcileContext(subscription=subscription, customer_id="cus_1")

    assert await subscription_body(FakeStripeClient(), context) == "pi_1_secret"
    assert await invoice_body(FakeStripeClient(), context) == "pi_1_secret"


@pytest.mark.asyncio
async def test_retries_until_secret_appears():
    client = FakeStripeClient()
    attempts = []

    async def appears_on_third_attempt(client, context):
        attempts.append(1)
        return "late_secret" if len(attempts) >= 3 else None

    secret = await resolve_client_secret(
        client,
        resource(id="sub_x"),
        "cus_1",
        max_wait=2.0,
        strategies=(("late", appears_on_third_attempt),)
    )

    assert secret == "late_secret"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_failing_strategy_does_not_stop_the_chain():
    client = FakeStripeClient()

    async def broken(client, context):
        raise RuntimeError("boom")

    async def working(client, context):
        return "from_second"

    secret = await resolve_client_secret(
        client,
        resource(id="sub_x"),
        "cus_1",
        max_wait=0.5,
        strategies=(("broken", broken), ("working", working))
    )
    assert secret == "from_second"


@pytest.mark.asyncio
async def test_invoice_body_reads_confirmation_secret():
    invoice = resource(id="in_1", confirmation_secret={"client_secret": "cs_from_body"})
    context = ReconcileContext(subscription=resource(id="sub_1", latest_invoice=invoice), customer_id="cus_1")

    assert await invoice_body(FakeStripeClient(), context) == "cs_from_body"


@pytest.mark.asyncio
async def test_subscription_body_reads_raw_mapping():
    raw = {"id": "sub_1", "latest_invoice": {"id": "in_1", "payment_intent": {"client_secret": "pi_raw"}}}
    context = ReconcileContext(subscription=raw, customer_id="cus_1")

    assert await subscription_body(FakeStripeClient(), context) == "pi_raw"


@pytest.mark.asyncio
async def test_refetched_invoice_by_id():
    client = FakeStripeClient()
    client.invoices["in_7"] = resource(id="in_7", payment_intent="pi_7")
    client.add_payment_intent("pi_7", "in_7")
    context = ReconcileContext(subscription=resource(id="sub_1", latest_invoice="in_7"), customer_id="cus_1")

    assert await refetched_invoice(client, context) == "pi_7_secret"


@pytest.mark.asyncio
async def test_customer_intents_prefers_matching_invoice():
    client = FakeStripeClient()
    client.add_payment_intent("pi_a", "in_1", created=5)
    client.add_payment_intent("pi_b", "in_2", created=1)
    client.add_payment_intent("pi_c", None, created=10)
    context = ReconcileContext(subscription=resource(id="sub_1", latest_invoice="in_2"), customer_id="cus_1")

    assert await customer_intents(client, context) == "pi_b_secret"


@pytest.mark.asyncio
async def test_customer_intents_falls_back_to_newest_with_invoice():
    client = FakeStripeClient()
    client.add_payment_intent("pi_a", "in_1", created=5)
    client.add_payment_intent("pi_b", "in_2", created=1)
    client.add_payment_intent("pi_c", None, created=10)
    context = ReconcileContext(subscription=resource(id="sub_1", latest_invoice="in_9"), customer_id="cus_1")

    assert await customer_intents(client, context) == "pi_a_secret"


@pytest.mark.asyncio
async def test_full_chain_reaches_customer_listing():
    client = FakeStripeClient(secrets_ready=False)
    subscription = await client.create_subscription("cus_1", "price_basic")
    # Intent shows up only in the customer's listing, linked to the invoice
    client.add_payment_intent("pi_listed", "in_1", created=3)

    secret = await resolve_client_secret(client, subscription, "cus_1", max_wait=1.0)

    assert secret == "pi_listed_secret"
