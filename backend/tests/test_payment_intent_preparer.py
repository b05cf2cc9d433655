from __future__ import annotations

from datetime import datetime, timezone

import pytest

from backend.app.billing import GatewayError, IntentMode
from backend.app.billing.gateway import SavedPaymentMethod
from backend.app.checkout import (
    CheckoutAuditEventType,
    CheckoutError,
    CheckoutSessionStatus,
    PaymentIntentPreparer,
    list_saved_payment_methods,
    record_redirect_return,
)
from backend.tests.factories import make_customer, make_line, make_price, make_session

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
APP_ROUTES = {"/checkout/1", "/offers/pro"}


@pytest.fixture
def preparer(repository, registry, event_logger):
    return PaymentIntentPreparer(
        repository,
        registry,
        route_matcher=lambda path: path in APP_ROUTES,
        callback_url=lambda session_id: f"https://app.test/api/checkout/{session_id}/callback",
        event_logger=event_logger,
        clock=lambda: NOW,
    )


def _one_time_session(**overrides):
    return make_session(lines=[make_line(make_price(1, 5000, recurring=False))], **overrides)


def test_one_time_purchase_uses_payment_intent(preparer, repository, gateway, event_logger):
    session = repository.add_session(_one_time_session())

    preparation = preparer.prepare(session, email="buyer@example.com", current_url="https://app.test/checkout/1")

    assert preparation.intent_type == IntentMode.PAYMENT
    assert preparation.intent_id == "pi_1"
    assert gateway.intents[0]["mode"] == IntentMode.PAYMENT
    assert gateway.intents[0]["amount"] == 5000
    assert gateway.intents[0]["idempotency_key"].startswith("checkout-1-")
    assert event_logger.events[0].event_type == CheckoutAuditEventType.PAYMENT_PREPARED


def test_any_recurring_line_forces_setup_intent(preparer, repository, gateway):
    session = repository.add_session(
        make_session(lines=[make_line(make_price(1, 5000, recurring=False)), make_line(make_price(2, 2000))])
    )

    preparation = preparer.prepare(session, email="buyer@example.com", current_url="https://app.test/checkout/1")

    assert preparation.intent_type == IntentMode.SETUP
    assert preparation.intent_id.startswith("seti_")
    assert gateway.intents[0]["mode"] == IntentMode.SETUP


def test_intent_details_are_persisted(preparer, repository):
    session = repository.add_session(_one_time_session())

    preparer.prepare(
        session,
        email="buyer@example.com",
        payment_type="card",
        current_url="https://app.test/checkout/1",
    )

    stored = repository.sessions[session.id]
    assert stored.intent_id == "pi_1"
    assert stored.intent_type == IntentMode.PAYMENT
    assert stored.client_secret == "pi_1_secret"
    assert stored.customer.reference_id == "cus_1"
    assert stored.metadata["current_url"] == "https://app.test/checkout/1"
    assert stored.metadata["selected_payment_method"] == "card"
    assert stored.metadata["payment_method_selected_at"] == NOW.isoformat()
    assert stored.properties["email"] == "buyer@example.com"


def test_existing_customer_is_reused(preparer, repository, gateway):
    session = repository.add_session(_one_time_session(customer=make_customer()))

    preparer.prepare(session, email=None, current_url="https://app.test/checkout/1")

    assert gateway.customers == []
    assert gateway.intents[0]["customer"] == "cus_existing"
    assert repository.customers == []


def test_missing_email_without_customer_fails(preparer, repository, gateway):
    session = repository.add_session(_one_time_session())

    with pytest.raises(CheckoutError) as excinfo:
        preparer.prepare(session, email=None, current_url="https://app.test/checkout/1")

    assert excinfo.value.code == "customer_missing"
    assert gateway.intents == []


def test_app_route_stores_no_return_url(preparer, repository):
    session = repository.add_session(_one_time_session())

    preparation = preparer.prepare(session, email="buyer@example.com", current_url="https://app.test/checkout/1")

    assert repository.sessions[session.id].return_url is None
    assert preparation.return_url == "https://app.test/checkout/1"
    assert not preparation.is_redirect_method


def test_external_page_is_stored_as_return_url(preparer, repository):
    session = repository.add_session(_one_time_session())

    preparer.prepare(session, email="buyer@example.com", current_url="https://shop.example.com/pricing")

    assert repository.sessions[session.id].return_url == "https://shop.example.com/pricing"


def test_redirect_method_returns_callback_url(preparer, repository):
    session = repository.add_session(
        _one_time_session(enabled_payment_methods=["card", "klarna"])
    )

    preparation = preparer.prepare(
        session,
        email="buyer@example.com",
        payment_type="klarna",
        current_url="https://app.test/checkout/1",
    )

    assert preparation.is_redirect_method
    assert preparation.return_url == "https://app.test/api/checkout/1/callback"


def test_methods_are_filtered_by_amount(preparer, repository, gateway):
    session = repository.add_session(
        make_session(
            lines=[make_line(make_price(1, 250000, recurring=False))],
            enabled_payment_methods=["card", "afterpay_clearpay"],
        )
    )

    preparer.prepare(session, email="buyer@example.com", current_url="https://app.test/checkout/1")

    assert gateway.intents[0]["payment_methods"] == ["card"]


@pytest.mark.parametrize(
    ("overrides", "code"),
    [
        ({"status": CheckoutSessionStatus.CLOSED}, "session_closed"),
        ({"payment_confirmed_at": NOW}, "payment_confirmed"),
    ],
)
def test_preconditions(preparer, repository, gateway, overrides, code):
    session = repository.add_session(_one_time_session(**overrides))

    with pytest.raises(CheckoutError) as excinfo:
        preparer.prepare(session, email="buyer@example.com", current_url="https://app.test/checkout/1")

    assert excinfo.value.code == code
    assert gateway.intents == []


def test_gateway_failure_is_reported(preparer, repository, gateway):
    session = repository.add_session(_one_time_session(customer=make_customer()))
    gateway.fail_with = GatewayError("Your card was declined.")

    with pytest.raises(CheckoutError) as excinfo:
        preparer.prepare(session, email="buyer@example.com", current_url="https://app.test/checkout/1")

    assert excinfo.value.code == "intent_failed"
    assert excinfo.value.message == "Your card was declined."


def test_saved_payment_methods(registry, gateway):
    gateway.saved_methods = [SavedPaymentMethod(id="pm_1", type="card", properties={"last4": "4242"})]

    assert list_saved_payment_methods(registry, make_session()) == []
    methods = list_saved_payment_methods(registry, make_session(customer=make_customer()))
    assert [method.id for method in methods] == ["pm_1"]

    gateway.fail_with = GatewayError("boom")
    assert list_saved_payment_methods(registry, make_session(customer=make_customer())) == []


def test_redirect_return_success(repository):
    session = repository.add_session(_one_time_session(return_url="https://shop.example.com/pricing"))

    redirect = record_redirect_return(repository, session, {"redirect_status": "succeeded"}, now=NOW)

    assert redirect.succeeded
    assert redirect.redirect_url == "https://shop.example.com/pricing"
    stored = repository.sessions[session.id]
    assert stored.metadata["redirect_completed_at"] == NOW.isoformat()
    assert stored.metadata["redirect_params"] == {"redirect_status": "succeeded"}


def test_redirect_return_failure(repository):
    session = repository.add_session(_one_time_session(metadata={"current_url": "https://app.test/checkout/1"}))

    redirect = record_redirect_return(repository, session, {"redirect_status": "failed"}, now=NOW)

    assert not redirect.succeeded
    assert redirect.redirect_url == "https://app.test/checkout/1?checkout-state=payment_failed&reason=failed"
    assert "redirect_completed_at" not in repository.sessions[session.id].metadata
