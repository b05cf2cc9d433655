"""Locate the base recurring plan in checkouts and live subscriptions."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Sequence, Union

from .gateway import GatewaySubscriptionItem
from .models import EffectiveStrategy, EffectiveTiming, OfferItemType, Price, RenewInterval

if TYPE_CHECKING:
    from ..checkout.models import CheckoutLineItem, CheckoutSession


@dataclass(frozen=True)
class BaseLine:
    """Projection of the checkout line carrying the primary recurring plan."""

    local_price_id: int
    gateway_price_id: Optional[str]
    currency: str
    amount: int
    interval: Optional[RenewInterval]
    product_gateway_id: Optional[str]
    product_name: Optional[str]


def _is_flagged_base(line: "CheckoutLineItem") -> bool:
    offer_item = line.offer_item
    return bool(
        offer_item is not None
        and offer_item.type == OfferItemType.STANDARD
        and offer_item.is_required
        and line.price is not None
        and line.price.is_recurring
    )


def _project(price: Price) -> BaseLine:
    product = price.product
    return BaseLine(
        local_price_id=price.id,
        gateway_price_id=price.gateway_price_id,
        currency=price.currency,
        amount=price.amount,
        interval=price.renew_interval,
        product_gateway_id=product.gateway_product_id if product else None,
        product_name=product.name if product else None,
    )


def resolve_new_base_line(session: "CheckoutSession") -> Optional[BaseLine]:
    """Return the base recurring line of ``session`` or ``None`` when it has none."""

    lines = session.active_line_items
    for line in lines:
        if _is_flagged_base(line):
            return _project(line.price)
    for line in lines:
        if line.price is not None and line.price.is_recurring:
            return _project(line.price)
    return None


def resolve_existing_base_item(
    items: Sequence[GatewaySubscriptionItem], target_product_id: Optional[str]
) -> Optional[GatewaySubscriptionItem]:
    recurring = [item for item in items if item.price is not None and item.price.is_recurring]
    if target_product_id:
        for item in recurring:
            if item.price is not None and item.price.product == target_product_id:
                return item
    return recurring[0] if recurring else None


def resolve_desired_quantity(session: "CheckoutSession", local_price_id: int) -> int:
    for line in session.active_line_items:
        if line.price_id == local_price_id:
            return line.quantity
    return 1


def resolve_effective_timing(
    effective_at: Optional[datetime],
    trial_end: Optional[datetime],
    period_end: Optional[datetime],
    now: Optional[datetime] = None,
) -> EffectiveTiming:
    """Pick when a change applies.

    An explicit date wins. Otherwise a future trial end, then a future period
    end, then the current moment.
    """

    now = now or datetime.now(timezone.utc)
    if effective_at is not None:
        return EffectiveTiming(strategy=EffectiveStrategy.AT_DATE, at=effective_at, is_future=effective_at > now)
    if trial_end is not None and trial_end > now:
        return EffectiveTiming(strategy=EffectiveStrategy.AT_TRIAL_END, at=trial_end, is_future=True)
    if period_end is not None and period_end > now:
        return EffectiveTiming(strategy=EffectiveStrategy.AT_PERIOD_END, at=period_end, is_future=True)
    return EffectiveTiming(strategy=EffectiveStrategy.AT_DATE, at=now, is_future=False)


def parse_effective_at(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a caller-supplied timestamp; unparseable input means no override."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    text = value.strip()
    if not text:
        return None
    if text.isdigit():
        try:
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


__all__ = [
    "BaseLine",
    "parse_effective_at",
    "resolve_desired_quantity",
    "resolve_effective_timing",
    "resolve_existing_base_item",
    "resolve_new_base_line",
]
