"""Checkout domain package: sessions, payment preparation and commit."""

from .commit import CheckoutCommitService, SubscriptionChangeOutcome
from .exceptions import CheckoutError
from .models import (
    CheckoutAuditEvent,
    CheckoutAuditEventType,
    CheckoutLineItem,
    CheckoutSession,
    CheckoutSessionStatus,
    Customer,
    OfferItem,
    Order,
    OrderItem,
    OrderStatus,
)
from .payments import (
    PaymentIntentPreparer,
    PaymentPreparation,
    RedirectReturn,
    list_saved_payment_methods,
    record_redirect_return,
)
from .service import CheckoutEventLogger, CheckoutRepository, CheckoutService

__all__ = [
    "CheckoutAuditEvent",
    "CheckoutAuditEventType",
    "CheckoutCommitService",
    "CheckoutError",
    "CheckoutEventLogger",
    "CheckoutLineItem",
    "CheckoutRepository",
    "CheckoutService",
    "CheckoutSession",
    "CheckoutSessionStatus",
    "Customer",
    "OfferItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentIntentPreparer",
    "PaymentPreparation",
    "RedirectReturn",
    "SubscriptionChangeOutcome",
    "list_saved_payment_methods",
    "record_redirect_return",
]
