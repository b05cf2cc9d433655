"""Change preview engine for checkouts that create or modify a subscription."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Optional

from .config import DEFAULT_TRIAL_DAYS
from .gateway import SUBSCRIPTION_EXPAND, IntegrationNotConfigured, IntegrationRegistry
from .models import (
    ChangeIntent,
    ChangePreview,
    EffectiveStrategy,
    EffectiveTiming,
    OperationDelta,
    OperationSide,
    PreviewDisabled,
    PreviewEnabled,
    PreviewLine,
    PreviewOperation,
    PreviewResult,
    PreviewTotals,
    Signal,
)
from .resolver import (
    BaseLine,
    resolve_desired_quantity,
    resolve_existing_base_item,
    resolve_new_base_line,
)
from .signals import classify_signal

if TYPE_CHECKING:
    from ..checkout.models import CheckoutSession

logger = logging.getLogger(__name__)

NO_BASE_LINE_REASON = "No recurring base line item found in checkout"
NO_SUBSCRIBER_STATE_REASON = "Integration cannot retrieve subscriber state to classify signal"
NO_BASE_ITEM_REASON = "Unable to resolve current base subscription item"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangePreviewService:
    """Quote what a checkout would do to the customer's subscription.

    Sessions without a linked subscription get a synthetic trial quote. Sessions
    linked to a live subscription are classified against the gateway's view of
    that subscription and the gateway prices the change. Every expected dead end,
    gateway failures included, comes back as :class:`PreviewDisabled`.
    """

    def __init__(
        self,
        registry: IntegrationRegistry,
        *,
        trial_days: int = DEFAULT_TRIAL_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._registry = registry
        self._trial_days = trial_days
        self._clock = clock or _utcnow

    def preview(self, session: "CheckoutSession", effective_at: Optional[datetime] = None) -> PreviewResult:
        base_line = resolve_new_base_line(session)
        if base_line is None:
            return PreviewDisabled(reason=NO_BASE_LINE_REASON)

        if not session.subscription_id:
            return PreviewEnabled(preview=self._trial_preview(session, base_line, effective_at))

        return self._subscription_change_preview(session, base_line, effective_at)

    def _trial_preview(
        self, session: "CheckoutSession", base_line: BaseLine, effective_at: Optional[datetime]
    ) -> ChangePreview:
        now = self._clock()
        trial_end = now + timedelta(days=self._trial_days)
        quantity = resolve_desired_quantity(session, base_line.local_price_id)
        intent = ChangeIntent(
            signal=Signal.ACQUISITION,
            target_local_price_id=base_line.local_price_id,
            quantity_delta=quantity - 1,
            effective_at=effective_at,
        )
        currency = base_line.currency
        after_trial = base_line.amount * quantity
        product_label = base_line.product_name or "subscription"

        return ChangePreview(
            signal=intent.signal,
            effective=EffectiveTiming(strategy=EffectiveStrategy.TRIAL_START, at=now, is_future=False),
            totals=PreviewTotals(due_now=0, currency=currency),
            lines=[
                PreviewLine(description=f"{self._trial_days}-day free trial", amount=0, currency=currency),
                PreviewLine(description=f"After trial: {product_label}", amount=after_trial, currency=currency),
            ],
            operations=[
                PreviewOperation(
                    signal=intent.signal,
                    current=OperationSide(price=None, quantity=0),
                    future=OperationSide(price=base_line.gateway_price_id, quantity=quantity),
                    delta=OperationDelta(currency=currency, amount_due_now=0),
                )
            ],
            commit_descriptor={
                "trial_days": self._trial_days,
                "trial_end": int(trial_end.timestamp()),
                "price_id": base_line.gateway_price_id,
                "quantity": quantity,
            },
            actions={
                "start_trial": {
                    "due_now": 0,
                    "currency": currency,
                    "trial_days": self._trial_days,
                    "trial_end": trial_end.isoformat(),
                },
                "skip_trial": {"due_now": after_trial, "currency": currency},
            },
        )

    def _subscription_change_preview(
        self, session: "CheckoutSession", base_line: BaseLine, effective_at: Optional[datetime]
    ) -> PreviewResult:
        try:
            capabilities = self._registry.capabilities_for(session.integration)
        except IntegrationNotConfigured as exc:
            return PreviewDisabled(reason=str(exc))
        if capabilities.previewer is None:
            return PreviewDisabled(reason=NO_SUBSCRIBER_STATE_REASON)

        try:
            subscription = capabilities.gateway.retrieve_subscription(
                session.subscription_id, expand=SUBSCRIPTION_EXPAND
            )
        except Exception as exc:  # gateway boundary
            logger.warning(
                "Subscription %s lookup failed for checkout %s: %s",
                session.subscription_id,
                session.id,
                exc,
            )
            return PreviewDisabled(reason=str(exc) or exc.__class__.__name__)

        existing = resolve_existing_base_item(subscription.items, base_line.product_gateway_id)
        if existing is None or existing.price is None:
            return PreviewDisabled(reason=NO_BASE_ITEM_REASON)

        desired_quantity = resolve_desired_quantity(session, base_line.local_price_id)
        signal = classify_signal(
            subscription.status,
            existing.price.unit_amount,
            base_line.amount,
            existing.quantity,
            desired_quantity,
        )
        intent = ChangeIntent(
            signal=signal,
            target_local_price_id=base_line.local_price_id,
            quantity_delta=desired_quantity - existing.quantity,
            effective_at=effective_at,
        )

        try:
            preview = capabilities.previewer.preview_change(session, intent)
        except Exception as exc:  # gateway boundary
            logger.warning("Change preview failed for checkout %s (%s): %s", session.id, signal.value, exc)
            return PreviewDisabled(reason=str(exc) or exc.__class__.__name__)

        if not preview.enabled:
            return PreviewDisabled(reason=preview.reason or "Change preview is not available")
        return PreviewEnabled(preview=preview)


__all__ = [
    "ChangePreviewService",
    "NO_BASE_ITEM_REASON",
    "NO_BASE_LINE_REASON",
    "NO_SUBSCRIBER_STATE_REASON",
]
