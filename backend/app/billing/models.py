"""Domain models for the catalog and subscription change previews."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

_CURRENCY_SYMBOLS = {
    "usd": "$",
    "cad": "C$",
    "aud": "A$",
    "nzd": "NZ$",
    "gbp": "£",
    "eur": "€",
    "chf": "CHF ",
}

# Rendered without decimals even though amounts are still stored in minor units.
_WHOLE_UNIT_DISPLAY = frozenset({"czk", "dkk", "nok", "pln", "ron", "sek"})


class Money(BaseModel):
    """An amount expressed in minor units of a single currency."""

    amount: int
    currency: str = Field(min_length=3, max_length=3)

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(amount=0, currency=currency)

    def plus(self, other: "Money") -> "Money":
        self._require_same_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def minus(self, other: "Money") -> "Money":
        self._require_same_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def times(self, quantity: int) -> "Money":
        return Money(amount=self.amount * quantity, currency=self.currency)

    def prorate(self, ratio: Union[float, Decimal]) -> "Money":
        """Scale the amount by ``ratio``, rounding halves away from zero."""

        scaled = (Decimal(self.amount) * Decimal(str(ratio))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return Money(amount=int(scaled), currency=self.currency)

    def format(self) -> str:
        units = Decimal(self.amount) / 100
        if self.currency in _WHOLE_UNIT_DISPLAY:
            return f"{units:,.0f} {self.currency.upper()}"
        symbol = _CURRENCY_SYMBOLS.get(self.currency)
        if symbol is not None:
            return f"{symbol}{units:,.2f}"
        return f"{units:,.2f} {self.currency.upper()}"

    def _require_same_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise ValueError(f"Currency mismatch: {self.currency} != {other.currency}")


class Signal(str, Enum):
    """Business meaning of a subscription change."""

    ACQUISITION = "Acquisition"
    UPGRADE = "Upgrade"
    DOWNGRADE = "Downgrade"
    EXPANSION = "Expansion"
    CONTRACTION = "Contraction"
    CONVERT = "Convert"
    RESUME = "Resume"
    RENEWAL = "Renewal"
    SWITCH = "Switch"

    @property
    def category(self) -> str:
        return _SIGNAL_CATEGORIES[self]


_SIGNAL_CATEGORIES = {
    Signal.ACQUISITION: "conversion",
    Signal.CONVERT: "conversion",
    Signal.SWITCH: "plan_change",
    Signal.UPGRADE: "plan_change",
    Signal.DOWNGRADE: "plan_change",
    Signal.EXPANSION: "usage_change",
    Signal.CONTRACTION: "usage_change",
    Signal.RESUME: "subscription_state",
    Signal.RENEWAL: "billing",
}


class SubscriptionStatus(str, Enum):
    """Subscription statuses reported by the payment gateway."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    PAUSED = "paused"


class ChargeType(str, Enum):
    """How a catalog price is charged."""

    ONE_TIME = "one_time"
    RECURRING = "recurring"

    @classmethod
    def recurring_types(cls) -> List["ChargeType"]:
        return [cls.RECURRING]

    @property
    def is_recurring(self) -> bool:
        return self in self.recurring_types()


class RenewInterval(str, Enum):
    """Billing period of a recurring price."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class OfferItemType(str, Enum):
    """Role of an item within an offer."""

    STANDARD = "standard"
    OPTIONAL = "optional"
    ADDON = "addon"


class IntentMode(str, Enum):
    """Gateway intent used to collect payment for a checkout."""

    PAYMENT = "payment"
    SETUP = "setup"


class Product(BaseModel):
    """Catalog product owned by an organization."""

    id: int
    organization_id: int
    name: str
    gateway_product_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Price(BaseModel):
    """Catalog price for a product."""

    id: int
    organization_id: int
    product_id: int
    currency: str = Field(min_length=3, max_length=3)
    amount: int = Field(ge=0)
    type: ChargeType = ChargeType.ONE_TIME
    renew_interval: Optional[RenewInterval] = None
    gateway_price_id: Optional[str] = None
    lookup_key: Optional[str] = None
    is_active: bool = True
    product: Optional[Product] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.lower()

    @property
    def is_recurring(self) -> bool:
        return self.type.is_recurring

    @property
    def money(self) -> Money:
        return Money(amount=self.amount, currency=self.currency)


class Discount(BaseModel):
    """Coupon applied to a checkout session."""

    id: str
    name: Optional[str] = None
    valid: bool = True
    percent_off: Optional[float] = None
    amount_off: Optional[int] = None
    currency: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ChangeIntent(BaseModel):
    """Requested modification of a live subscription."""

    signal: Signal
    target_local_price_id: Optional[int] = None
    quantity_delta: int = 0
    credits_delta: Optional[int] = None
    effective_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class EffectiveStrategy(str, Enum):
    """When a previewed change takes effect."""

    AT_TRIAL_END = "at_trial_end"
    AT_PERIOD_END = "at_period_end"
    AT_DATE = "at_date"
    TRIAL_START = "trial_start"


class EffectiveTiming(BaseModel):
    strategy: EffectiveStrategy
    at: datetime
    is_future: bool = False

    model_config = ConfigDict(frozen=True)


class PreviewTotals(BaseModel):
    due_now: int
    currency: str

    model_config = ConfigDict(frozen=True)


class PreviewLine(BaseModel):
    """Itemized line of a change preview."""

    id: Optional[str] = None
    description: Optional[str] = None
    amount: int
    currency: Optional[str] = None
    proration: bool = False
    period: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(frozen=True)


class OperationSide(BaseModel):
    price: Optional[str] = None
    quantity: int = 0

    model_config = ConfigDict(frozen=True)


class OperationDelta(BaseModel):
    currency: str
    amount_due_now: int = 0

    model_config = ConfigDict(frozen=True)


class PreviewOperation(BaseModel):
    """Structured before/after view of the base item."""

    signal: Signal
    current: OperationSide
    future: OperationSide
    delta: OperationDelta

    model_config = ConfigDict(frozen=True)


class ChangePreview(BaseModel):
    """Financial effect of a subscription change, as quoted by a gateway."""

    enabled: bool = True
    signal: Signal
    effective: Optional[EffectiveTiming] = None
    totals: Optional[PreviewTotals] = None
    lines: List[PreviewLine] = Field(default_factory=list)
    operations: List[PreviewOperation] = Field(default_factory=list)
    commit_descriptor: Dict[str, Any] = Field(default_factory=dict)
    actions: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def disabled(cls, signal: Signal, reason: str) -> "ChangePreview":
        return cls(enabled=False, signal=signal, reason=reason)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class PreviewDisabled(BaseModel):
    """Preview outcome when there is nothing to quote."""

    enabled: Literal[False] = False
    reason: str

    model_config = ConfigDict(frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        return {"enabled": False, "reason": self.reason}


class PreviewEnabled(BaseModel):
    enabled: Literal[True] = True
    preview: ChangePreview

    model_config = ConfigDict(frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.preview.to_payload()


PreviewResult = Union[PreviewEnabled, PreviewDisabled]


class ChangeResult(BaseModel):
    """Outcome of replaying a previewed change against the gateway."""

    signal: Signal
    status: str
    receipt: Dict[str, Any] = Field(default_factory=dict)
    provider: Dict[str, Any] = Field(default_factory=dict)
    committed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "signal": self.signal.value,
            "status": self.status,
            "receipt": dict(self.receipt),
        }
