"""Checkout session read model, orders and audit events."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing.gateway import Integration
from ..billing.models import Discount, IntentMode, OfferItemType, Price


class CheckoutSessionStatus(str, Enum):
    """Lifecycle of a checkout session; closing is one-way."""

    OPEN = "open"
    CLOSED = "closed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class OfferItem(BaseModel):
    id: int
    organization_id: int
    offer_id: Optional[int] = None
    name: Optional[str] = None
    type: OfferItemType = OfferItemType.STANDARD
    is_required: bool = False
    default_price_id: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutLineItem(BaseModel):
    """Priced item within a checkout session."""

    id: Optional[int] = None
    checkout_session_id: int
    organization_id: int
    price_id: Optional[int] = None
    offer_item_id: Optional[int] = None
    quantity: int = Field(default=1, ge=1)
    total_amount: int = Field(default=0, ge=0)
    deleted_at: Optional[datetime] = None
    price: Optional[Price] = None
    offer_item: Optional[OfferItem] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def is_recurring(self) -> bool:
        return self.price is not None and self.price.is_recurring


class Customer(BaseModel):
    """Local record of a gateway customer."""

    id: Optional[int] = None
    organization_id: int
    integration_id: Optional[int] = None
    reference_id: str
    email: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Order(BaseModel):
    """Immutable record produced when a checkout session is committed."""

    id: Optional[int] = None
    organization_id: int
    checkout_session_id: int
    customer_id: Optional[int] = None
    status: OrderStatus = OrderStatus.PENDING
    currency: str = Field(min_length=3, max_length=3)
    total_amount: int = Field(default=0, ge=0)
    discounts: List[Discount] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class OrderItem(BaseModel):
    id: Optional[int] = None
    order_id: int
    organization_id: int
    price_id: Optional[int] = None
    offer_item_id: Optional[int] = None
    quantity: int = Field(default=1, ge=1)
    total_amount: int = Field(default=0, ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class CheckoutSession(BaseModel):
    """Fully loaded checkout session.

    Line items carry their price, product and offer item, and the session carries
    its customer, payments integration and order, so services work on plain data.
    """

    id: int
    organization_id: int
    offer_id: Optional[int] = None
    status: CheckoutSessionStatus = CheckoutSessionStatus.OPEN
    default_currency: str = "usd"
    line_items: List[CheckoutLineItem] = Field(default_factory=list)
    discounts: List[Discount] = Field(default_factory=list)
    properties: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    enabled_payment_methods: List[str] = Field(default_factory=lambda: ["card"])
    intent_id: Optional[str] = None
    intent_type: Optional[IntentMode] = None
    client_secret: Optional[str] = None
    return_url: Optional[str] = None
    customer_id: Optional[int] = None
    customer: Optional[Customer] = None
    subscription_id: Optional[str] = None
    intent_tag: Optional[str] = None
    integration: Optional[Integration] = None
    order: Optional[Order] = None
    payment_confirmed_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def active_line_items(self) -> List[CheckoutLineItem]:
        return [line for line in self.line_items if line.deleted_at is None]

    @property
    def subtotal(self) -> int:
        return sum(line.total_amount for line in self.active_line_items)

    @property
    def discount_amount(self) -> int:
        subtotal = Decimal(self.subtotal)
        amount = Decimal(0)
        for discount in self.discounts:
            if discount.percent_off:
                amount += (subtotal * Decimal(str(discount.percent_off)) / 100).quantize(
                    Decimal("1"), rounding=ROUND_HALF_UP
                )
            elif discount.amount_off:
                amount += discount.amount_off
        return int(amount)

    @property
    def total(self) -> int:
        return max(0, self.subtotal - self.discount_amount)

    @property
    def currency(self) -> str:
        for line in self.active_line_items:
            if line.price is not None:
                return line.price.currency
        return self.default_currency.lower()

    @property
    def intent_mode(self) -> IntentMode:
        """Recurring charges need a saved method, so any recurring line forces setup."""

        if any(line.is_recurring for line in self.active_line_items):
            return IntentMode.SETUP
        return IntentMode.PAYMENT

    @property
    def is_closed(self) -> bool:
        return self.status == CheckoutSessionStatus.CLOSED

    @property
    def has_completed_order(self) -> bool:
        return self.is_closed and self.order is not None

    @property
    def has_subscription_items(self) -> bool:
        return any(line.is_recurring for line in self.active_line_items)


class CheckoutAuditEventType(str, Enum):
    """Audit trail events emitted by checkout services."""

    PAYMENT_PREPARED = "checkout.payment_prepared"
    ORDER_COMMITTED = "checkout.order_committed"
    SUBSCRIPTION_CHANGE_COMMITTED = "checkout.subscription_change_committed"
    DISCOUNT_APPLIED = "checkout.discount_applied"


class CheckoutAuditEvent(BaseModel):
    event_type: CheckoutAuditEventType
    checkout_session_id: int
    organization_id: int
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True, frozen=True)


__all__ = [
    "CheckoutAuditEvent",
    "CheckoutAuditEventType",
    "CheckoutLineItem",
    "CheckoutSession",
    "CheckoutSessionStatus",
    "Customer",
    "OfferItem",
    "Order",
    "OrderItem",
    "OrderStatus",
]
