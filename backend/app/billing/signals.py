"""Classification of subscription changes into business signals."""
from __future__ import annotations

from typing import Union

from .models import Signal, SubscriptionStatus

RESUMABLE_STATUSES = frozenset(
    {
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.UNPAID,
        SubscriptionStatus.INCOMPLETE_EXPIRED,
    }
)
_RESUMABLE_VALUES = frozenset(status.value for status in RESUMABLE_STATUSES)


def classify_signal(
    current_status: Union[SubscriptionStatus, str],
    current_unit_amount: int,
    future_unit_amount: int,
    current_quantity: int,
    future_quantity: int,
) -> Signal:
    """Return the single signal describing a move from the current to the future state.

    Checks run in a fixed order and the first match wins. A dead subscription
    always resumes regardless of amounts or quantities.
    """

    status = current_status.value if isinstance(current_status, SubscriptionStatus) else current_status
    if status in _RESUMABLE_VALUES:
        return Signal.RESUME

    if status == SubscriptionStatus.TRIALING.value:
        if future_unit_amount != current_unit_amount:
            return Signal.SWITCH
        if future_quantity > current_quantity:
            return Signal.EXPANSION
        if future_quantity < current_quantity:
            return Signal.CONTRACTION
        return Signal.CONVERT

    if future_unit_amount > current_unit_amount:
        return Signal.UPGRADE
    if future_unit_amount < current_unit_amount:
        return Signal.DOWNGRADE
    if future_quantity > current_quantity:
        return Signal.EXPANSION
    if future_quantity < current_quantity:
        return Signal.CONTRACTION
    return Signal.RENEWAL


__all__ = ["RESUMABLE_STATUSES", "classify_signal"]
