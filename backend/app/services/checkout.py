"""Application wiring for the checkout services."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import List, Mapping, Optional, Sequence
from uuid import uuid4

from ...app_context import match_route
from ..billing import (
    BillingConfig,
    ChangePreviewService,
    GatewayError,
    IntegrationRegistry,
    IntegrationType,
    IntentMode,
    PaymentGateway,
    load_billing_config,
)
from ..billing.gateway import GatewayCustomer, GatewayIntent, GatewaySubscription, Integration, SavedPaymentMethod
from ..checkout import (
    CheckoutAuditEvent,
    CheckoutCommitService,
    CheckoutEventLogger,
    CheckoutService,
    PaymentIntentPreparer,
)
from ..checkout.repository import PostgresCheckoutRepository
from ..integrations import StripeGateway

logger = logging.getLogger("billing")


class LoggingCheckoutEventLogger(CheckoutEventLogger):
    """Event logger forwarding checkout audit events to logging."""

    def log(self, event: CheckoutAuditEvent) -> None:
        logger.info(
            "Checkout event %s session=%s organization=%s metadata=%s",
            event.event_type.value,
            event.checkout_session_id,
            event.organization_id,
            event.metadata,
        )


class LocalSandboxGateway(PaymentGateway):
    """Minimal gateway for local development without Stripe credentials."""

    def retrieve_subscription(self, subscription_id: str, *, expand: Sequence[str] = ()) -> GatewaySubscription:
        raise GatewayError("Subscription lookups require a real billing provider integration")

    def create_customer(self, *, email: str, metadata: Mapping[str, str]) -> GatewayCustomer:
        return GatewayCustomer(id=f"cus_{uuid4().hex}", email=email)

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
        prefix = "seti" if mode == IntentMode.SETUP else "pi"
        intent_id = f"{prefix}_{uuid4().hex}"
        return GatewayIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:12]}",
            status="requires_payment_method",
            mode=mode,
        )

    def list_payment_methods(self, *, customer_reference: str, limit: int = 10) -> List[SavedPaymentMethod]:
        return []


@lru_cache(maxsize=1)
def get_billing_config() -> BillingConfig:
    return load_billing_config()


@lru_cache(maxsize=1)
def get_checkout_repository() -> PostgresCheckoutRepository:
    return PostgresCheckoutRepository()


@lru_cache(maxsize=1)
def get_integration_registry() -> IntegrationRegistry:
    config = get_billing_config()

    def stripe_factory(integration: Integration) -> PaymentGateway:
        return StripeGateway.from_integration(integration, config)

    registry = IntegrationRegistry(
        {
            IntegrationType.STRIPE: stripe_factory,
            IntegrationType.STRIPE_TEST: stripe_factory,
            IntegrationType.SANDBOX: lambda integration: LocalSandboxGateway(),
        }
    )
    if not config.stripe_enabled:
        logger.info("STRIPE_SECRET_KEY not set; Stripe integrations need their own secret")
    return registry


@lru_cache(maxsize=1)
def get_preview_service() -> ChangePreviewService:
    return ChangePreviewService(get_integration_registry(), trial_days=get_billing_config().trial_days)


@lru_cache(maxsize=1)
def get_checkout_service() -> CheckoutService:
    return CheckoutService(
        repository=get_checkout_repository(),
        registry=get_integration_registry(),
        event_logger=LoggingCheckoutEventLogger(),
    )


@lru_cache(maxsize=1)
def get_payment_preparer() -> PaymentIntentPreparer:
    return PaymentIntentPreparer(
        get_checkout_repository(),
        get_integration_registry(),
        route_matcher=match_route,
        callback_url=get_billing_config().callback_url,
        event_logger=LoggingCheckoutEventLogger(),
    )


@lru_cache(maxsize=1)
def get_commit_service() -> CheckoutCommitService:
    return CheckoutCommitService(
        get_checkout_repository(),
        get_integration_registry(),
        get_preview_service(),
        event_logger=LoggingCheckoutEventLogger(),
    )


__all__ = [
    "LocalSandboxGateway",
    "LoggingCheckoutEventLogger",
    "get_billing_config",
    "get_checkout_repository",
    "get_checkout_service",
    "get_commit_service",
    "get_integration_registry",
    "get_payment_preparer",
    "get_preview_service",
]
