"""Payment gateway capabilities and the registry that resolves them per integration."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from pydantic import BaseModel, ConfigDict, Field

from .models import ChangeIntent, ChangePreview, ChangeResult, Discount, IntentMode

if TYPE_CHECKING:
    from ..checkout.models import CheckoutSession

logger = logging.getLogger(__name__)

SUBSCRIPTION_EXPAND: Tuple[str, ...] = ("items.data.price.product",)


class GatewayError(Exception):
    """Raised when a call to the payment gateway fails."""

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class IntegrationNotConfigured(LookupError):
    """Raised when a session has no usable payments integration."""


class IntegrationType(str, Enum):
    """Payment integrations an organization can connect."""

    STRIPE = "stripe"
    STRIPE_TEST = "stripe_test"
    SANDBOX = "sandbox"


class Integration(BaseModel):
    """Connected payments integration of an organization."""

    id: int
    organization_id: int
    type: IntegrationType
    secret: Optional[str] = None
    account: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class GatewayPrice(BaseModel):
    id: Optional[str] = None
    unit_amount: int = 0
    currency: Optional[str] = None
    recurring: Optional[Dict[str, Any]] = None
    product: Optional[str] = None
    product_name: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurring)


class GatewaySubscriptionItem(BaseModel):
    id: str
    price: Optional[GatewayPrice] = None
    quantity: int = 1
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class GatewaySubscription(BaseModel):
    """Live subscription as reported by the gateway."""

    id: str
    status: str
    customer: Optional[str] = None
    currency: Optional[str] = None
    items: List[GatewaySubscriptionItem] = Field(default_factory=list)
    trial_end: Optional[datetime] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class GatewayCustomer(BaseModel):
    id: str
    email: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class GatewayIntent(BaseModel):
    id: str
    client_secret: Optional[str] = None
    status: str
    mode: IntentMode

    model_config = ConfigDict(frozen=True)


class SavedPaymentMethod(BaseModel):
    """Payment method stored on the gateway for a customer."""

    id: str
    type: str
    properties: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class PaymentGateway(Protocol):
    """Operations every payments integration supports."""

    def retrieve_subscription(
        self, subscription_id: str, *, expand: Sequence[str] = ()
    ) -> GatewaySubscription:
        ...

    def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> GatewayCustomer:
        ...

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
        ...

    def list_payment_methods(self, *, customer_reference: str, limit: int = 10) -> List[SavedPaymentMethod]:
        ...


@runtime_checkable
class ChangePreviewer(Protocol):
    def preview_change(self, session: "CheckoutSession", intent: ChangeIntent) -> ChangePreview:
        ...


@runtime_checkable
class ChangeCommitter(Protocol):
    def commit_change(self, session: "CheckoutSession", preview: ChangePreview) -> ChangeResult:
        ...


@runtime_checkable
class DiscountProvider(Protocol):
    def get_discount(self, code: str) -> Discount:
        ...


@dataclass(frozen=True)
class GatewayCapabilities:
    """A gateway client together with the optional capabilities it implements."""

    gateway: PaymentGateway
    previewer: Optional[ChangePreviewer] = None
    committer: Optional[ChangeCommitter] = None
    discounts: Optional[DiscountProvider] = None

    @classmethod
    def inspect(cls, client: PaymentGateway) -> "GatewayCapabilities":
        return cls(
            gateway=client,
            previewer=client if isinstance(client, ChangePreviewer) else None,
            committer=client if isinstance(client, ChangeCommitter) else None,
            discounts=client if isinstance(client, DiscountProvider) else None,
        )


GatewayFactory = Callable[[Integration], PaymentGateway]


class IntegrationRegistry:
    """Maps integration types to gateway factories.

    Capabilities are resolved once per integration and cached, so every service
    in a request sees the same client.
    """

    def __init__(self, factories: Optional[Mapping[IntegrationType, GatewayFactory]] = None) -> None:
        self._factories: Dict[IntegrationType, GatewayFactory] = dict(factories or {})
        self._resolved: Dict[Tuple[IntegrationType, int], GatewayCapabilities] = {}

    def register(self, integration_type: IntegrationType, factory: GatewayFactory) -> None:
        self._factories[integration_type] = factory
        self._resolved = {
            key: value for key, value in self._resolved.items() if key[0] != integration_type
        }

    def supports(self, integration_type: IntegrationType) -> bool:
        return integration_type in self._factories

    def capabilities_for(self, integration: Optional[Integration]) -> GatewayCapabilities:
        if integration is None:
            raise IntegrationNotConfigured("Payments integration not found for this checkout session")
        factory = self._factories.get(integration.type)
        if factory is None:
            raise IntegrationNotConfigured(f"Unsupported payments integration: {integration.type.value}")

        key = (integration.type, integration.id)
        capabilities = self._resolved.get(key)
        if capabilities is None:
            capabilities = GatewayCapabilities.inspect(factory(integration))
            self._resolved[key] = capabilities
            logger.debug(
                "Resolved %s integration %s (preview=%s, commit=%s, discounts=%s)",
                integration.type.value,
                integration.id,
                capabilities.previewer is not None,
                capabilities.committer is not None,
                capabilities.discounts is not None,
            )
        return capabilities


__all__ = [
    "ChangeCommitter",
    "ChangePreviewer",
    "DiscountProvider",
    "GatewayCapabilities",
    "GatewayCustomer",
    "GatewayError",
    "GatewayFactory",
    "GatewayIntent",
    "GatewayPrice",
    "GatewaySubscription",
    "GatewaySubscriptionItem",
    "Integration",
    "IntegrationNotConfigured",
    "IntegrationRegistry",
    "IntegrationType",
    "PaymentGateway",
    "SUBSCRIPTION_EXPAND",
    "SavedPaymentMethod",
]
