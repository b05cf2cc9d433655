from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import stripe

from backend.app.billing import (
    BillingConfig,
    ChangeIntent,
    GatewayError,
    Integration,
    IntegrationNotConfigured,
    IntegrationType,
    IntentMode,
    Signal,
)
from backend.app.billing.models import EffectiveStrategy
from backend.app.billing.preview import NO_BASE_LINE_REASON
from backend.app.billing.proration import REMAINING_TIME_DESCRIPTION, UNUSED_TIME_DESCRIPTION
from backend.app.integrations import StripeGateway
from backend.app.integrations.stripe_client import SKIPPED_INTENT_ID
from backend.tests.factories import ORGANIZATION_ID, make_line, make_price, make_session

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _ts(value: datetime) -> int:
    return int(value.timestamp())


class RecordingService:
    """Stands in for one ``StripeClient`` service such as ``client.subscriptions``."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def _call(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if self.error is not None:
            raise self.error
        return self.result

    def retrieve(self, *args, **kwargs):
        return self._call("retrieve", *args, **kwargs)

    def create(self, *args, **kwargs):
        return self._call("create", *args, **kwargs)

    def update(self, *args, **kwargs):
        return self._call("update", *args, **kwargs)

    def list(self, *args, **kwargs):
        return self._call("list", *args, **kwargs)

    def create_preview(self, *args, **kwargs):
        return self._call("create_preview", *args, **kwargs)


def _raw_subscription(status="active", *, trial_end=None, unit_amount=1000, quantity=1):
    return {
        "id": "sub_1",
        "status": status,
        "customer": "cus_1",
        "currency": "usd",
        "trial_end": _ts(trial_end) if trial_end else None,
        "items": {
            "data": [
                {
                    "id": "si_1",
                    "quantity": quantity,
                    "current_period_start": _ts(NOW - timedelta(days=15)),
                    "current_period_end": _ts(NOW + timedelta(days=15)),
                    "price": {
                        "id": "price_basic",
                        "unit_amount": unit_amount,
                        "currency": "usd",
                        "recurring": {"interval": "month"},
                        "product": {"id": "prod_pro", "name": "Pro plan"},
                    },
                }
            ]
        },
    }


@pytest.fixture
def client():
    return SimpleNamespace(
        subscriptions=RecordingService(result=_raw_subscription()),
        customers=RecordingService(result={"id": "cus_new", "email": "buyer@example.com"}),
        payment_intents=RecordingService(
            result={"id": "pi_1", "client_secret": "pi_1_secret", "status": "requires_payment_method"}
        ),
        setup_intents=RecordingService(
            result={"id": "seti_1", "client_secret": "seti_1_secret", "status": "requires_payment_method"}
        ),
        payment_methods=RecordingService(
            result={
                "data": [
                    {
                        "id": "pm_1",
                        "type": "card",
                        "card": {"brand": "visa", "last4": "4242", "exp_month": 12, "exp_year": 2030},
                    }
                ]
            }
        ),
        coupons=RecordingService(result={"id": "SPRING", "name": "Spring", "valid": True, "percent_off": 25.0}),
        invoices=RecordingService(error=stripe.StripeError("Invoice preview unavailable")),
    )


@pytest.fixture
def stripe_gateway(client):
    return StripeGateway(client, clock=lambda: NOW)


def _change_session():
    return make_session(
        lines=[make_line(make_price(2, 2000, gateway_price_id="price_pro"))],
        subscription_id="sub_1",
    )


def test_retrieve_subscription_maps_items(stripe_gateway, client):
    subscription = stripe_gateway.retrieve_subscription("sub_1", expand=["items.data.price.product"])

    assert client.subscriptions.calls[0][1] == ("sub_1",)
    assert client.subscriptions.calls[0][2] == {"params": {"expand": ["items.data.price.product"]}}
    assert subscription.status == "active"
    [item] = subscription.items
    assert item.price.product == "prod_pro"
    assert item.price.product_name == "Pro plan"
    assert item.price.is_recurring
    assert subscription.current_period_end == NOW + timedelta(days=15)


def test_retrieve_subscription_wraps_stripe_errors(stripe_gateway, client):
    client.subscriptions.error = stripe.StripeError("No such subscription: 'sub_1'")

    with pytest.raises(GatewayError) as excinfo:
        stripe_gateway.retrieve_subscription("sub_1")

    assert excinfo.value.message == "No such subscription: 'sub_1'"


def test_zero_amount_payment_is_skipped(stripe_gateway, client):
    intent = stripe_gateway.create_intent(
        mode=IntentMode.PAYMENT,
        customer_reference="cus_1",
        payment_methods=["card"],
        amount=0,
        currency="usd",
        metadata={},
    )

    assert intent.id == SKIPPED_INTENT_ID
    assert intent.client_secret == SKIPPED_INTENT_ID
    assert client.payment_intents.calls == []


def test_payment_intent_params(stripe_gateway, client):
    stripe_gateway.create_intent(
        mode=IntentMode.PAYMENT,
        customer_reference="cus_1",
        payment_methods=["card", "apple_pay", "klarna"],
        amount=5000,
        currency="USD",
        metadata={"checkout_session_id": "1"},
        idempotency_key="checkout-1-abc",
    )

    _, _, kwargs = client.payment_intents.calls[0]
    assert kwargs["params"]["payment_method_types"] == ["card", "klarna"]
    assert kwargs["params"]["amount"] == 5000
    assert kwargs["params"]["currency"] == "usd"
    assert kwargs["options"] == {"idempotency_key": "checkout-1-abc"}


def test_setup_intent_is_off_session(stripe_gateway, client):
    intent = stripe_gateway.create_intent(
        mode=IntentMode.SETUP,
        customer_reference="cus_1",
        payment_methods=["card"],
        amount=2000,
        currency="usd",
        metadata={},
    )

    _, _, kwargs = client.setup_intents.calls[0]
    assert kwargs["params"]["usage"] == "off_session"
    assert "amount" not in kwargs["params"]
    assert intent.id == "seti_1"
    assert intent.mode == IntentMode.SETUP


def test_list_payment_methods(stripe_gateway):
    [method] = stripe_gateway.list_payment_methods(customer_reference="cus_1")

    assert method.id == "pm_1"
    assert method.properties["last4"] == "4242"


def test_get_discount(stripe_gateway, client):
    discount = stripe_gateway.get_discount("SPRING")
    assert discount.id == "SPRING"
    assert discount.percent_off == 25.0

    client.coupons.error = stripe.StripeError("No such coupon: 'NOPE'")
    with pytest.raises(GatewayError):
        stripe_gateway.get_discount("NOPE")


def test_preview_change_uses_invoice_preview(stripe_gateway, client):
    client.invoices = RecordingService(
        result={
            "currency": "usd",
            "amount_due": 987,
            "lines": {
                "data": [
                    {
                        "id": "il_1",
                        "description": "Remaining time on Pro plan",
                        "amount": 987,
                        "currency": "usd",
                        "proration": True,
                        "period": {"start": _ts(NOW), "end": _ts(NOW + timedelta(days=15))},
                    }
                ]
            },
        }
    )
    intent = ChangeIntent(signal=Signal.UPGRADE, target_local_price_id=2, effective_at=NOW)

    preview = stripe_gateway.preview_change(_change_session(), intent)

    assert preview.enabled
    assert preview.totals.due_now == 987
    assert preview.lines[0].proration
    _, _, kwargs = client.invoices.calls[0]
    details = kwargs["params"]["subscription_details"]
    assert details["items"] == [{"id": "si_1", "price": "price_pro", "quantity": 1}]
    assert details["proration_date"] == _ts(NOW)
    assert preview.commit_descriptor["items"] == details["items"]
    assert preview.operations[0].current.price == "price_basic"
    assert preview.operations[0].future.price == "price_pro"


def test_preview_change_falls_back_to_synthetic_proration(stripe_gateway):
    intent = ChangeIntent(signal=Signal.UPGRADE, target_local_price_id=2, effective_at=NOW)

    preview = stripe_gateway.preview_change(_change_session(), intent)

    assert preview.effective.strategy == EffectiveStrategy.AT_DATE
    assert [line.description for line in preview.lines] == [UNUSED_TIME_DESCRIPTION, REMAINING_TIME_DESCRIPTION]
    assert [line.amount for line in preview.lines] == [-500, 1000]
    assert preview.totals.due_now == 500
    assert preview.actions["swap_now"]["due_now"] == 500
    assert preview.actions["swap_at_period_end"]["next_period_amount"] == 2000
    assert "expand_at_trial_end" not in preview.actions


def test_preview_change_at_trial_end_charges_nothing(stripe_gateway, client):
    trial_end = NOW + timedelta(days=5)
    client.subscriptions.result = _raw_subscription("trialing", trial_end=trial_end)
    intent = ChangeIntent(signal=Signal.SWITCH, target_local_price_id=2, quantity_delta=1)

    preview = stripe_gateway.preview_change(_change_session(), intent)

    assert preview.effective.strategy == EffectiveStrategy.AT_TRIAL_END
    assert preview.totals.due_now == 0
    assert preview.lines == []
    assert preview.commit_descriptor["trial_end"] == _ts(trial_end)
    assert preview.operations[0].future.quantity == 2
    assert "expand_at_trial_end" in preview.actions
    assert client.invoices.calls == []


def test_preview_change_unknown_target_price(stripe_gateway):
    intent = ChangeIntent(signal=Signal.UPGRADE, target_local_price_id=99)

    preview = stripe_gateway.preview_change(_change_session(), intent)

    assert not preview.enabled
    assert preview.reason == "Target price not found"


def test_preview_change_without_recurring_line_is_disabled(stripe_gateway, client):
    session = make_session(
        lines=[make_line(make_price(5, 3000, recurring=False))],
        subscription_id="sub_1",
    )
    intent = ChangeIntent(signal=Signal.UPGRADE, target_local_price_id=5)

    preview = stripe_gateway.preview_change(session, intent)

    assert not preview.enabled
    assert preview.reason == NO_BASE_LINE_REASON
    assert preview.commit_descriptor == {}
    assert client.subscriptions.calls == []


def test_commit_change_replays_descriptor(stripe_gateway, client):
    intent = ChangeIntent(signal=Signal.UPGRADE, target_local_price_id=2, effective_at=NOW)
    session = _change_session()
    preview = stripe_gateway.preview_change(session, intent)
    client.subscriptions.result = {"id": "sub_1", "status": "active"}

    result = stripe_gateway.commit_change(session, preview)

    name, args, kwargs = client.subscriptions.calls[-1]
    assert name == "update"
    assert args == ("sub_1",)
    assert kwargs["params"]["items"] == [{"id": "si_1", "price": "price_pro", "quantity": 1}]
    assert kwargs["params"]["proration_behavior"] == "create_prorations"
    assert "trial_end" not in kwargs["params"]
    assert result.to_payload() == {
        "signal": "Upgrade",
        "status": "succeeded",
        "receipt": {"subscription_id": "sub_1", "status": "active"},
    }


def test_from_integration_requires_a_key():
    config = BillingConfig(
        trial_days=14,
        default_currency="usd",
        app_base_url="http://localhost:8000",
        stripe_secret_key=None,
        stripe_account=None,
        stripe_api_timeout=30.0,
        stripe_max_network_retries=0,
    )
    integration = Integration(id=1, organization_id=ORGANIZATION_ID, type=IntegrationType.STRIPE)

    with pytest.raises(IntegrationNotConfigured):
        StripeGateway.from_integration(integration, config)
