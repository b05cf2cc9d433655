"""Synthetic proration for gateways that cannot quote a change themselves."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .models import EffectiveStrategy, EffectiveTiming, Money, PreviewLine

UNUSED_TIME_DESCRIPTION = "Unused time credit (current plan)"
REMAINING_TIME_DESCRIPTION = "Remaining time charge (new plan)"


@dataclass(frozen=True)
class ProrationQuote:
    lines: List[PreviewLine] = field(default_factory=list)
    due_now: int = 0


def defers_charge(timing: EffectiveTiming, trial_end: Optional[datetime]) -> bool:
    """Whether a change at ``timing`` waits for the period or trial boundary."""

    if timing.strategy in (EffectiveStrategy.AT_PERIOD_END, EffectiveStrategy.AT_TRIAL_END):
        return True
    return trial_end is not None and timing.at == trial_end


def remaining_ratio(effective_at: datetime, period_start: datetime, period_end: datetime) -> Decimal:
    duration = max(1, int((period_end - period_start).total_seconds()))
    remaining = max(0, int((period_end - effective_at).total_seconds()))
    return min(Decimal(1), Decimal(remaining) / Decimal(duration))


def prorate_change(
    current_per_period: Money,
    future_per_period: Money,
    *,
    timing: EffectiveTiming,
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    trial_end: Optional[datetime] = None,
) -> ProrationQuote:
    """Credit unused time on the current plan and charge remaining time on the new one.

    Nothing is due when the change is deferred to a boundary. Without usable
    period bounds the full per-period difference is used.
    """

    if defers_charge(timing, trial_end):
        return ProrationQuote()

    if period_start is None or period_end is None or period_end <= period_start:
        delta = future_per_period.minus(current_per_period)
        return ProrationQuote(due_now=max(0, delta.amount))

    ratio = remaining_ratio(timing.at, period_start, period_end)
    credit = current_per_period.prorate(ratio)
    charge = future_per_period.prorate(ratio)
    period = {"start": timing.at.isoformat(), "end": period_end.isoformat()}
    lines = [
        PreviewLine(
            description=UNUSED_TIME_DESCRIPTION,
            amount=-abs(credit.amount),
            currency=credit.currency,
            proration=True,
            period=period,
        ),
        PreviewLine(
            description=REMAINING_TIME_DESCRIPTION,
            amount=abs(charge.amount),
            currency=charge.currency,
            proration=True,
            period=period,
        ),
    ]
    return ProrationQuote(lines=lines, due_now=max(0, charge.minus(credit).amount))


def change_actions(
    *,
    due_now: int,
    next_period_amount: int,
    currency: str,
    trial_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Dict[str, Any]]:
    actions: Dict[str, Dict[str, Any]] = {
        "swap_now": {"due_now": due_now, "currency": currency},
        "swap_at_period_end": {
            "due_now": 0,
            "next_period_amount": next_period_amount,
            "currency": currency,
        },
    }
    if trial_end is not None and (now is None or trial_end > now):
        actions["expand_at_trial_end"] = {
            "due_now": 0,
            "trial_end": trial_end.isoformat(),
            "next_period_amount": next_period_amount,
            "currency": currency,
        }
    return actions


__all__ = [
    "ProrationQuote",
    "REMAINING_TIME_DESCRIPTION",
    "UNUSED_TIME_DESCRIPTION",
    "change_actions",
    "defers_charge",
    "prorate_change",
    "remaining_ratio",
]
