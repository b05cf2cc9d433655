"""Payment intent preparation and the payment-side helpers around it."""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlencode, urlparse

from ..billing.gateway import (
    GatewayCapabilities,
    GatewayError,
    IntegrationNotConfigured,
    IntegrationRegistry,
    PaymentGateway,
    SavedPaymentMethod,
)
from ..billing.models import IntentMode
from .exceptions import CheckoutError
from .models import CheckoutAuditEvent, CheckoutAuditEventType, CheckoutSession, Customer
from .payment_methods import filter_payment_methods, is_redirect_method
from .service import CheckoutEventLogger, CheckoutRepository, ensure_payment_allowed

logger = logging.getLogger(__name__)

RouteMatcher = Callable[[str], bool]
CallbackUrlBuilder = Callable[[int], str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PaymentPreparation:
    """What the client needs to confirm the payment."""

    session: CheckoutSession
    intent_state: str
    intent_id: str
    intent_type: IntentMode
    client_secret: Optional[str]
    return_url: Optional[str]
    is_redirect_method: bool

    def to_payload(self) -> Dict[str, Any]:
        return {
            "intent_state": self.intent_state,
            "intent_id": self.intent_id,
            "intent_type": self.intent_type.value,
            "client_secret": self.client_secret,
            "return_url": self.return_url,
            "is_redirect_method": self.is_redirect_method,
        }


def intent_idempotency_key(session_id: int, customer_reference: str, mode: IntentMode, methods: List[str]) -> str:
    fingerprint = json.dumps(
        {"session": session_id, "customer": customer_reference, "mode": mode.value, "methods": methods},
        sort_keys=True,
    )
    return f"checkout-{session_id}-{hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()[:32]}"


def resolve_capabilities(registry: IntegrationRegistry, session: CheckoutSession) -> GatewayCapabilities:
    try:
        return registry.capabilities_for(session.integration)
    except IntegrationNotConfigured as exc:
        raise CheckoutError.capability_unsupported(str(exc)) from exc


class PaymentIntentPreparer:
    """Create the gateway intent a customer confirms to pay for a checkout."""

    def __init__(
        self,
        repository: CheckoutRepository,
        registry: IntegrationRegistry,
        *,
        route_matcher: RouteMatcher,
        callback_url: CallbackUrlBuilder,
        event_logger: Optional[CheckoutEventLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._route_matcher = route_matcher
        self._callback_url = callback_url
        self._event_logger = event_logger
        self._clock = clock or _utcnow

    def prepare(
        self,
        session: CheckoutSession,
        *,
        email: Optional[str],
        current_url: str,
        payment_type: Optional[str] = None,
    ) -> PaymentPreparation:
        ensure_payment_allowed(session)
        gateway = resolve_capabilities(self._registry, session).gateway

        submitted = {"email": email, "payment_type": payment_type, "current_url": current_url}
        session = session.model_copy(
            update={
                "properties": {
                    **session.properties,
                    **{key: value for key, value in submitted.items() if value is not None},
                }
            }
        )
        customer = self._find_or_create_customer(session, gateway, email)

        mode = session.intent_mode
        methods = filter_payment_methods(
            session.enabled_payment_methods,
            mode=mode,
            amount=session.total,
            currency=session.currency,
        )
        try:
            intent = gateway.create_intent(
                mode=mode,
                customer_reference=customer.reference_id,
                payment_methods=methods,
                amount=session.total,
                currency=session.currency,
                metadata={"checkout_session_id": str(session.id)},
                idempotency_key=intent_idempotency_key(session.id, customer.reference_id, mode, methods),
            )
        except GatewayError as exc:
            raise CheckoutError("intent_failed", exc.message) from exc

        now = self._clock()
        matches_app_route = self._route_matcher(urlparse(current_url).path or "/")
        session = self._repository.save_session(
            session.model_copy(
                update={
                    "customer_id": customer.id,
                    "customer": customer,
                    "intent_id": intent.id,
                    "intent_type": mode,
                    "client_secret": intent.client_secret,
                    "return_url": None if matches_app_route else current_url,
                    "metadata": {
                        **session.metadata,
                        "current_url": current_url,
                        "selected_payment_method": payment_type,
                        "payment_method_selected_at": now.isoformat(),
                    },
                    "updated_at": now,
                }
            )
        )

        redirect = is_redirect_method(payment_type)
        logger.info(
            "Prepared %s intent %s for checkout %s (methods=%s)",
            mode.value,
            intent.id,
            session.id,
            ",".join(methods),
        )
        if self._event_logger is not None:
            self._event_logger.log(
                CheckoutAuditEvent(
                    event_type=CheckoutAuditEventType.PAYMENT_PREPARED,
                    checkout_session_id=session.id,
                    organization_id=session.organization_id,
                    metadata={"intent_id": intent.id, "intent_type": mode.value},
                )
            )
        return PaymentPreparation(
            session=session,
            intent_state=intent.status,
            intent_id=intent.id,
            intent_type=mode,
            client_secret=intent.client_secret,
            return_url=self._callback_url(session.id) if redirect else current_url,
            is_redirect_method=redirect,
        )

    def _find_or_create_customer(
        self, session: CheckoutSession, gateway: PaymentGateway, email: Optional[str]
    ) -> Customer:
        if session.customer is not None:
            return session.customer
        if not email:
            raise CheckoutError.customer_missing()

        try:
            created = gateway.create_customer(
                email=email,
                metadata={"organization_id": str(session.organization_id)},
            )
        except GatewayError as exc:
            raise CheckoutError("intent_failed", exc.message) from exc

        return self._repository.save_customer(
            Customer(
                organization_id=session.organization_id,
                integration_id=session.integration.id if session.integration else None,
                reference_id=created.id,
                email=email,
            )
        )


def list_saved_payment_methods(
    registry: IntegrationRegistry, session: CheckoutSession, *, limit: int = 10
) -> List[SavedPaymentMethod]:
    """Saved card methods of the session's customer; empty when they cannot be fetched."""

    if session.customer is None:
        return []
    try:
        gateway = registry.capabilities_for(session.integration).gateway
        return list(gateway.list_payment_methods(customer_reference=session.customer.reference_id, limit=limit))
    except (GatewayError, IntegrationNotConfigured) as exc:
        logger.warning("Could not fetch saved payment methods for checkout %s: %s", session.id, exc)
        return []


@dataclass(frozen=True)
class RedirectReturn:
    session: CheckoutSession
    status: Optional[str]
    redirect_url: Optional[str]

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


def record_redirect_return(
    repository: CheckoutRepository,
    session: CheckoutSession,
    params: Mapping[str, str],
    *,
    now: Optional[datetime] = None,
) -> RedirectReturn:
    """Store what the payment provider sent back and work out where to send the customer."""

    now = now or _utcnow()
    status = params.get("redirect_status")
    metadata: Dict[str, Any] = {
        **session.metadata,
        "redirect_return_at": now.isoformat(),
        "redirect_status": status,
        "redirect_params": dict(params),
    }
    if status == "succeeded":
        metadata["redirect_completed_at"] = now.isoformat()

    updated = repository.save_session(session.model_copy(update={"metadata": metadata, "updated_at": now}))

    target = updated.return_url or updated.metadata.get("current_url")
    if target and status != "succeeded":
        target = _with_query(target, {"checkout-state": "payment_failed", "reason": status or "unknown"})
    return RedirectReturn(session=updated, status=status, redirect_url=target)


def _with_query(url: str, params: Mapping[str, str]) -> str:
    separator = "&" if urlparse(url).query else "?"
    return f"{url}{separator}{urlencode(params)}"


__all__ = [
    "PaymentIntentPreparer",
    "PaymentPreparation",
    "RedirectReturn",
    "intent_idempotency_key",
    "list_saved_payment_methods",
    "record_redirect_return",
    "resolve_capabilities",
]
