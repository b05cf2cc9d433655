"""Stripe-backed payment gateway."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence

import stripe

from ..billing.config import BillingConfig
from ..billing.gateway import (
    GatewayCustomer,
    GatewayError,
    GatewayIntent,
    GatewayPrice,
    GatewaySubscription,
    GatewaySubscriptionItem,
    Integration,
    IntegrationNotConfigured,
    SavedPaymentMethod,
    SUBSCRIPTION_EXPAND,
)
from ..billing.models import (
    ChangeIntent,
    ChangePreview,
    ChangeResult,
    Discount,
    EffectiveStrategy,
    IntentMode,
    Money,
    OperationDelta,
    OperationSide,
    PreviewLine,
    PreviewOperation,
    PreviewTotals,
)
from ..billing.preview import NO_BASE_LINE_REASON
from ..billing.proration import change_actions, prorate_change
from ..billing.resolver import resolve_effective_timing, resolve_existing_base_item, resolve_new_base_line
from ..checkout.payment_methods import without_wallets

if TYPE_CHECKING:
    from ..checkout.models import CheckoutSession

logger = logging.getLogger(__name__)

SKIPPED_INTENT_ID = "skipped"


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _epoch(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp()) if value is not None else None


def _to_price(raw: Any) -> Optional[GatewayPrice]:
    if raw is None:
        return None
    product = _get(raw, "product")
    if isinstance(product, str) or product is None:
        product_id, product_name = product, None
    else:
        product_id, product_name = _get(product, "id"), _get(product, "name")
    recurring = _get(raw, "recurring")
    return GatewayPrice(
        id=_get(raw, "id"),
        unit_amount=int(_get(raw, "unit_amount") or 0),
        currency=_get(raw, "currency"),
        recurring=dict(recurring) if recurring else None,
        product=product_id,
        product_name=product_name,
    )


def _to_subscription(raw: Any) -> GatewaySubscription:
    items = [
        GatewaySubscriptionItem(
            id=_get(item, "id"),
            price=_to_price(_get(item, "price")),
            quantity=int(_get(item, "quantity") or 1),
            current_period_start=_timestamp(_get(item, "current_period_start")),
            current_period_end=_timestamp(_get(item, "current_period_end")),
        )
        for item in _get(_get(raw, "items"), "data", []) or []
    ]
    # Newer API versions report billing periods on items only.
    first_item = items[0] if items else None
    customer = _get(raw, "customer")
    return GatewaySubscription(
        id=_get(raw, "id"),
        status=_get(raw, "status") or "unknown",
        customer=customer if isinstance(customer, str) or customer is None else _get(customer, "id"),
        currency=_get(raw, "currency"),
        items=items,
        trial_end=_timestamp(_get(raw, "trial_end")),
        current_period_start=_timestamp(_get(raw, "current_period_start"))
        or (first_item.current_period_start if first_item else None),
        current_period_end=_timestamp(_get(raw, "current_period_end"))
        or (first_item.current_period_end if first_item else None),
    )


def _line_is_proration(line: Any) -> bool:
    if _get(line, "proration") is not None:
        return bool(_get(line, "proration"))
    details = _get(_get(line, "parent"), "subscription_item_details")
    return bool(_get(details, "proration", False))


def _to_preview_line(line: Any) -> PreviewLine:
    period = _get(line, "period")
    return PreviewLine(
        id=_get(line, "id"),
        description=_get(line, "description"),
        amount=int(_get(line, "amount") or 0),
        currency=_get(line, "currency"),
        proration=_line_is_proration(line),
        period=(
            {
                "start": _timestamp(_get(period, "start")).isoformat() if _get(period, "start") else None,
                "end": _timestamp(_get(period, "end")).isoformat() if _get(period, "end") else None,
            }
            if period
            else None
        ),
    )


class StripeGateway:
    """Every gateway capability, implemented on ``stripe.StripeClient``."""

    def __init__(
        self,
        client: stripe.StripeClient,
        *,
        default_currency: str = "usd",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._client = client
        self._default_currency = default_currency
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_integration(cls, integration: Integration, config: BillingConfig) -> "StripeGateway":
        api_key = integration.secret or config.stripe_secret_key
        if not api_key:
            raise IntegrationNotConfigured(f"Stripe secret key missing for integration {integration.id}")
        client = stripe.StripeClient(
            api_key,
            stripe_account=integration.account or config.stripe_account,
            max_network_retries=config.stripe_max_network_retries,
            http_client=stripe.RequestsClient(timeout=config.stripe_api_timeout),
        )
        return cls(client, default_currency=config.default_currency)

    def retrieve_subscription(self, subscription_id: str, *, expand: Sequence[str] = ()) -> GatewaySubscription:
        params: Dict[str, Any] = {"expand": list(expand)} if expand else {}
        try:
            raw = self._client.subscriptions.retrieve(subscription_id, params=params)
        except stripe.StripeError as exc:
            raise GatewayError(exc.user_message or str(exc), code=exc.code) from exc
        return _to_subscription(raw)

    def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> GatewayCustomer:
        try:
            raw = self._client.customers.create(params={"email": email, "metadata": dict(metadata)})
        except stripe.StripeError as exc:
            raise GatewayError(exc.user_message or str(exc), code=exc.code) from exc
        return GatewayCustomer(id=_get(raw, "id"), email=_get(raw, "email"))

    def create_intent(
        self,
        *,
        mode: IntentMode,
        customer_reference: str,
        payment_methods: Sequence[str],
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        if mode == IntentMode.PAYMENT and amount <= 0:
            return GatewayIntent(
                id=SKIPPED_INTENT_ID,
                client_secret=SKIPPED_INTENT_ID,
                status="succeeded",
                mode=mode,
            )

        params: Dict[str, Any] = {
            "customer": customer_reference,
            "payment_method_types": without_wallets(payment_methods) or ["card"],
            "metadata": dict(metadata),
        }
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        try:
            if mode == IntentMode.SETUP:
                params["usage"] = "off_session"
                raw = self._client.setup_intents.create(params=params, options=options)
            else:
                params.update({"amount": amount, "currency": currency.lower()})
                raw = self._client.payment_intents.create(params=params, options=options)
        except stripe.StripeError as exc:
            raise GatewayError(exc.user_message or str(exc), code=exc.code) from exc

        return GatewayIntent(
            id=_get(raw, "id"),
            client_secret=_get(raw, "client_secret"),
            status=_get(raw, "status") or "requires_payment_method",
            mode=mode,
        )

    def list_payment_methods(self, *, customer_reference: str, limit: int = 10) -> List[SavedPaymentMethod]:
        try:
            raw = self._client.payment_methods.list(
                params={"customer": customer_reference, "type": "card", "limit": limit}
            )
        except stripe.StripeError as exc:
            raise GatewayError(exc.user_message or str(exc), code=exc.code) from exc

        methods = []
        for method in _get(raw, "data", []) or []:
            card = _get(method, "card")
            methods.append(
                SavedPaymentMethod(
                    id=_get(method, "id"),
                    type=_get(method, "type") or "card",
                    properties={
                        "brand": _get(card, "brand"),
                        "last4": _get(card, "last4"),
                        "exp_month": _get(card, "exp_month"),
                        "exp_year": _get(card, "exp_year"),
                    },
                )
            )
        return methods

    def get_discount(self, code: str) -> Discount:
        try:
            coupon = self._client.coupons.retrieve(code)
        except stripe.StripeError as exc:
            raise GatewayError(exc.user_message or str(exc), code=exc.code) from exc
        return Discount(
            id=_get(coupon, "id"),
            name=_get(coupon, "name"),
            valid=bool(_get(coupon, "valid", False)),
            percent_off=_get(coupon, "percent_off"),
            amount_off=_get(coupon, "amount_off"),
            currency=_get(coupon, "currency"),
        )

    def preview_change(self, session: "CheckoutSession", intent: ChangeIntent) -> ChangePreview:
        """Price ``intent`` with an invoice preview, or synthetically when Stripe cannot.

        Changes deferred to the trial end always use the synthetic quote so that
        nothing is shown as due now.
        """

        base_line = resolve_new_base_line(session)
        if base_line is None:
            return ChangePreview.disabled(intent.signal, NO_BASE_LINE_REASON)

        subscription = self.retrieve_subscription(session.subscription_id, expand=SUBSCRIPTION_EXPAND)
        existing = resolve_existing_base_item(subscription.items, base_line.product_gateway_id)
        if existing is None or existing.price is None:
            return ChangePreview.disabled(intent.signal, "No current base subscription item found")

        target_price = None
        if intent.target_local_price_id is not None:
            target_price = next(
                (
                    line.price
                    for line in session.active_line_items
                    if line.price is not None
                    and line.price.is_recurring
                    and line.price.id == intent.target_local_price_id
                ),
                None,
            )
            if target_price is None:
                return ChangePreview.disabled(intent.signal, "Target price not found")

        now = self._clock()
        currency = (subscription.currency or session.currency or self._default_currency).lower()
        current_qty = existing.quantity
        future_qty = max(1, current_qty + intent.quantity_delta)
        current_unit = existing.price.unit_amount
        future_unit = target_price.amount if target_price is not None else current_unit
        future_price_id = (
            target_price.gateway_price_id if target_price is not None else existing.price.id
        )
        current_per_period = Money(amount=current_unit * current_qty, currency=currency)
        future_per_period = Money(amount=future_unit * future_qty, currency=currency)

        timing = resolve_effective_timing(
            intent.effective_at, subscription.trial_end, subscription.current_period_end, now
        )
        trial_end_ts = (
            _epoch(subscription.trial_end)
            if subscription.trial_end is not None and timing.at == subscription.trial_end
            else None
        )
        desired_items = []
        for item in subscription.items:
            if item.id == existing.id:
                entry = {"id": item.id, "price": future_price_id, "quantity": future_qty}
            else:
                entry = {"id": item.id, "price": item.price.id if item.price else None, "quantity": item.quantity}
            desired_items.append({key: value for key, value in entry.items() if value is not None})

        commit_descriptor = {
            "subscription_id": subscription.id,
            "items": desired_items,
            "proration_behavior": "create_prorations",
            "proration_date": _epoch(timing.at),
            "trial_end": trial_end_ts,
        }

        upcoming = None
        if timing.strategy != EffectiveStrategy.AT_TRIAL_END:
            upcoming = self._invoice_preview(subscription, desired_items, timing.at, trial_end_ts)

        if upcoming is None:
            quote = prorate_change(
                current_per_period,
                future_per_period,
                timing=timing,
                period_start=subscription.current_period_start,
                period_end=subscription.current_period_end,
                trial_end=subscription.trial_end,
            )
            lines, due_now = quote.lines, quote.due_now
        else:
            currency = (_get(upcoming, "currency") or currency).lower()
            lines = [_to_preview_line(line) for line in _get(_get(upcoming, "lines"), "data", []) or []]
            due_now = int(_get(upcoming, "amount_due") or 0)

        return ChangePreview(
            signal=intent.signal,
            effective=timing,
            totals=PreviewTotals(due_now=due_now, currency=currency),
            lines=lines,
            operations=[
                PreviewOperation(
                    signal=intent.signal,
                    current=OperationSide(price=existing.price.id, quantity=current_qty),
                    future=OperationSide(price=future_price_id, quantity=future_qty),
                    delta=OperationDelta(currency=currency, amount_due_now=due_now),
                )
            ],
            commit_descriptor=commit_descriptor,
            actions=change_actions(
                due_now=due_now,
                next_period_amount=future_per_period.amount,
                currency=currency,
                trial_end=subscription.trial_end,
                now=now,
            ),
        )

    def _invoice_preview(
        self,
        subscription: GatewaySubscription,
        desired_items: List[Dict[str, Any]],
        effective_at: datetime,
        trial_end_ts: Optional[int],
    ) -> Any:
        details: Dict[str, Any] = {
            "items": desired_items,
            "proration_behavior": "create_prorations",
            "proration_date": _epoch(effective_at),
        }
        if trial_end_ts is not None:
            details["trial_end"] = trial_end_ts
        params: Dict[str, Any] = {"subscription": subscription.id, "subscription_details": details}
        if subscription.customer:
            params["customer"] = subscription.customer
        try:
            return self._client.invoices.create_preview(params=params)
        except stripe.StripeError as exc:
            logger.info("Invoice preview unavailable for %s, using synthetic proration: %s", subscription.id, exc)
            return None

    def commit_change(self, session: "CheckoutSession", preview: ChangePreview) -> ChangeResult:
        descriptor = preview.commit_descriptor
        subscription_id = descriptor.get("subscription_id") or session.subscription_id
        if not subscription_id:
            raise GatewayError("Commit descriptor does not reference a subscription")

        update = {
            key: value
            for key, value in {
                "items": descriptor.get("items") or [],
                "proration_behavior": descriptor.get("proration_behavior") or "create_prorations",
                "proration_date": descriptor.get("proration_date"),
                "trial_end": descriptor.get("trial_end"),
            }.items()
            if value
        }
        try:
            updated = self._client.subscriptions.update(subscription_id, params=update)
        except stripe.StripeError as exc:
            raise GatewayError(exc.user_message or str(exc), code=exc.code) from exc

        return ChangeResult(
            signal=preview.signal,
            status="succeeded",
            receipt={"subscription_id": _get(updated, "id"), "status": _get(updated, "status")},
            provider={"raw": dict(updated) if isinstance(updated, Mapping) else updated},
        )


__all__ = ["SKIPPED_INTENT_ID", "StripeGateway"]
