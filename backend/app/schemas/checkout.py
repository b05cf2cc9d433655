"""API schemas for checkout endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..billing import Discount, IntentMode
from ..billing.gateway import SavedPaymentMethod
from ..checkout import (
    CheckoutLineItem,
    CheckoutSession,
    CheckoutSessionStatus,
    PaymentPreparation,
    RedirectReturn,
    SubscriptionChangeOutcome,
)


class CheckoutMutationRequest(BaseModel):
    """Body of ``POST /api/checkout/{session_id}``; fields used depend on ``action``."""

    action: str
    metadata: Optional[Dict[str, Any]] = None
    properties: Union[str, Dict[str, Any], None] = None
    offer_item_id: Optional[int] = Field(default=None, alias="offerItemId")
    price_id: Optional[str] = Field(default=None, alias="priceId")
    quantity: Optional[int] = Field(default=None, ge=1)
    required: Optional[bool] = None
    discount: Optional[str] = None
    email: Optional[str] = None
    payment_type: Optional[str] = Field(default=None, alias="paymentType")
    current_url: Optional[str] = Field(default=None, alias="currentUrl")
    effective_at: Optional[str] = Field(default=None, alias="effectiveAt")

    model_config = ConfigDict(populate_by_name=True)


class CheckoutLineItemResponse(BaseModel):
    id: Optional[int] = None
    price_id: Optional[int] = Field(default=None, alias="priceId")
    offer_item_id: Optional[int] = Field(default=None, alias="offerItemId")
    quantity: int
    total_amount: int = Field(alias="totalAmount")
    currency: Optional[str] = None
    is_recurring: bool = Field(alias="isRecurring")
    product_name: Optional[str] = Field(default=None, alias="productName")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_line(cls, line: CheckoutLineItem) -> "CheckoutLineItemResponse":
        price = line.price
        return cls(
            id=line.id,
            price_id=line.price_id,
            offer_item_id=line.offer_item_id,
            quantity=line.quantity,
            total_amount=line.total_amount,
            currency=price.currency if price else None,
            is_recurring=line.is_recurring,
            product_name=price.product.name if price and price.product else None,
        )


class CheckoutSessionResponse(BaseModel):
    id: int
    status: CheckoutSessionStatus
    currency: str
    subtotal: int
    total: int
    intent_mode: IntentMode = Field(alias="intentMode")
    line_items: List[CheckoutLineItemResponse] = Field(alias="lineItems")
    discounts: List[Discount] = Field(default_factory=list)
    properties: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    return_url: Optional[str] = Field(default=None, alias="returnUrl")
    order_id: Optional[int] = Field(default=None, alias="orderId")
    finalized_at: Optional[datetime] = Field(default=None, alias="finalizedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_session(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        return cls(
            id=session.id,
            status=session.status,
            currency=session.currency,
            subtotal=session.subtotal,
            total=session.total,
            intent_mode=session.intent_mode,
            line_items=[CheckoutLineItemResponse.from_line(line) for line in session.active_line_items],
            discounts=list(session.discounts),
            properties=dict(session.properties),
            metadata=dict(session.metadata),
            return_url=session.return_url,
            order_id=session.order.id if session.order else None,
            finalized_at=session.finalized_at,
        )


class PaymentPreparationResponse(BaseModel):
    intent_state: str
    intent_id: str
    intent_type: IntentMode
    client_secret: Optional[str] = None
    return_url: Optional[str] = None
    is_redirect_method: bool = False

    @classmethod
    def from_preparation(cls, preparation: PaymentPreparation) -> "PaymentPreparationResponse":
        return cls(**preparation.to_payload())


class CommitResponse(BaseModel):
    message: str
    checkout_session: CheckoutSessionResponse = Field(alias="checkoutSession")
    signal: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_order(cls, session: CheckoutSession) -> "CommitResponse":
        return cls(message="Commit successful", checkout_session=CheckoutSessionResponse.from_session(session))

    @classmethod
    def from_change(cls, outcome: SubscriptionChangeOutcome) -> "CommitResponse":
        return cls(
            message="Commit successful",
            checkout_session=CheckoutSessionResponse.from_session(outcome.session),
            signal=outcome.signal.value,
            result=outcome.result.to_payload(),
        )


class SavedPaymentMethodsResponse(BaseModel):
    payment_methods: List[SavedPaymentMethod] = Field(alias="paymentMethods")

    model_config = ConfigDict(populate_by_name=True)


class RedirectCallbackResponse(BaseModel):
    status: Optional[str] = None
    succeeded: bool
    redirect_url: Optional[str] = Field(default=None, alias="redirectUrl")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_return(cls, redirect: RedirectReturn) -> "RedirectCallbackResponse":
        return cls(status=redirect.status, succeeded=redirect.succeeded, redirect_url=redirect.redirect_url)
