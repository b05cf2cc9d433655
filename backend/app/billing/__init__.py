"""Billing domain package: signals, change previews and payment gateway capabilities."""

from .config import BillingConfig, load_billing_config
from .gateway import (
    ChangeCommitter,
    ChangePreviewer,
    DiscountProvider,
    GatewayCapabilities,
    GatewayError,
    Integration,
    IntegrationNotConfigured,
    IntegrationRegistry,
    IntegrationType,
    PaymentGateway,
)
from .models import (
    ChangeIntent,
    ChangePreview,
    ChangeResult,
    ChargeType,
    Discount,
    IntentMode,
    Money,
    OfferItemType,
    PreviewDisabled,
    PreviewEnabled,
    PreviewResult,
    Price,
    Product,
    RenewInterval,
    Signal,
    SubscriptionStatus,
)
from .preview import ChangePreviewService
from .signals import classify_signal

__all__ = [
    "BillingConfig",
    "ChangeCommitter",
    "ChangeIntent",
    "ChangePreview",
    "ChangePreviewService",
    "ChangePreviewer",
    "ChangeResult",
    "ChargeType",
    "Discount",
    "DiscountProvider",
    "GatewayCapabilities",
    "GatewayError",
    "IntentMode",
    "Integration",
    "IntegrationNotConfigured",
    "IntegrationRegistry",
    "IntegrationType",
    "Money",
    "OfferItemType",
    "PaymentGateway",
    "PreviewDisabled",
    "PreviewEnabled",
    "PreviewResult",
    "Price",
    "Product",
    "RenewInterval",
    "Signal",
    "SubscriptionStatus",
    "classify_signal",
    "load_billing_config",
]
