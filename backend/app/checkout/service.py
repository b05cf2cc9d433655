"""Checkout persistence contract and cart mutations."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ContextManager, Mapping, Optional, Protocol, Union

from ..billing.gateway import GatewayError, IntegrationNotConfigured, IntegrationRegistry
from ..billing.models import Price
from .exceptions import CheckoutError
from .models import (
    CheckoutAuditEvent,
    CheckoutAuditEventType,
    CheckoutLineItem,
    CheckoutSession,
    Customer,
    OfferItem,
    Order,
    OrderItem,
)

logger = logging.getLogger(__name__)


class CheckoutRepository(Protocol):
    """Persistence operations required by the checkout services."""

    def get_session(self, session_id: int) -> Optional[CheckoutSession]:
        ...

    def save_session(self, session: CheckoutSession) -> CheckoutSession:
        ...

    def claim_session(self, session_id: int) -> bool:
        """Close an open, unfinalized session; ``False`` when another caller got there first."""

    def release_session(self, session_id: int) -> None:
        """Reopen a session claimed but never finalized."""

    def upsert_line_item(self, line: CheckoutLineItem) -> CheckoutLineItem:
        """Create or revive the line for ``line.offer_item_id`` within its session."""

    def soft_delete_line_items(self, session_id: int, *, offer_item_id: int) -> int:
        ...

    def get_price(self, organization_id: int, price_id: int) -> Optional[Price]:
        ...

    def get_price_by_lookup_key(self, organization_id: int, lookup_key: str) -> Optional[Price]:
        ...

    def get_offer_item(self, organization_id: int, offer_item_id: int) -> Optional[OfferItem]:
        ...

    def save_customer(self, customer: Customer) -> Customer:
        ...

    def insert_order(self, order: Order) -> Optional[Order]:
        """Insert ``order`` unless its session already has one, in which case return ``None``."""

    def insert_order_item(self, item: OrderItem) -> OrderItem:
        ...

    def update_order(self, order: Order) -> Order:
        ...

    def atomic(self) -> ContextManager["CheckoutRepository"]:
        """Yield a repository whose writes commit or roll back together."""


class CheckoutEventLogger(Protocol):
    """Captures structured checkout audit events."""

    def log(self, event: CheckoutAuditEvent) -> None:
        ...


def ensure_session_open(session: CheckoutSession) -> None:
    if session.has_completed_order:
        raise CheckoutError.order_completed()
    if session.is_closed:
        raise CheckoutError.session_closed()


def ensure_payment_allowed(session: CheckoutSession) -> None:
    ensure_session_open(session)
    if session.payment_confirmed_at is not None:
        raise CheckoutError.payment_confirmed()


@dataclass(slots=True)
class CheckoutService:
    """Applies cart mutations to open checkout sessions."""

    repository: CheckoutRepository
    registry: IntegrationRegistry
    event_logger: Optional[CheckoutEventLogger] = None

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _reload(self, session: CheckoutSession) -> CheckoutSession:
        reloaded = self.repository.get_session(session.id)
        if reloaded is None:
            raise LookupError(f"Checkout session {session.id} not found")
        return reloaded

    def get_session(self, session_id: int) -> CheckoutSession:
        session = self.repository.get_session(session_id)
        if session is None:
            raise LookupError(f"Checkout session {session_id} not found")
        return session

    def set_fields(self, session: CheckoutSession, metadata: Optional[Mapping[str, Any]]) -> CheckoutSession:
        ensure_session_open(session)
        updated = session.model_copy(update={"metadata": dict(metadata or {}), "updated_at": self._now()})
        return self.repository.save_session(updated)

    def set_properties(
        self, session: CheckoutSession, properties: Union[str, Mapping[str, Any], None]
    ) -> CheckoutSession:
        ensure_session_open(session)
        if isinstance(properties, str):
            try:
                properties = json.loads(properties) if properties.strip() else {}
            except json.JSONDecodeError as exc:
                raise CheckoutError("invalid_properties", "Properties must be a JSON object") from exc
        if properties is None:
            properties = {}
        if not isinstance(properties, Mapping):
            raise CheckoutError("invalid_properties", "Properties must be a JSON object")

        updated = session.model_copy(
            update={"properties": {**session.properties, **properties}, "updated_at": self._now()}
        )
        return self.repository.save_session(updated)

    def set_item(
        self,
        session: CheckoutSession,
        *,
        offer_item_id: Optional[int],
        price_lookup_key: Optional[str] = None,
        quantity: Optional[int] = None,
        required: Optional[bool] = None,
    ) -> CheckoutSession:
        ensure_session_open(session)
        if offer_item_id is None:
            raise CheckoutError("offer_item_required", "Offer item ID is required")

        if required is False:
            self.repository.soft_delete_line_items(session.id, offer_item_id=offer_item_id)
            return self._reload(session)

        price = self._resolve_price(session, offer_item_id, price_lookup_key)
        if quantity is None:
            existing = next(
                (line for line in session.active_line_items if line.offer_item_id == offer_item_id),
                None,
            )
            quantity = existing.quantity if existing is not None else 1
        if quantity < 1:
            raise CheckoutError("invalid_quantity", "Quantity must be at least 1")

        self.repository.upsert_line_item(
            CheckoutLineItem(
                checkout_session_id=session.id,
                organization_id=session.organization_id,
                offer_item_id=offer_item_id,
                price_id=price.id,
                quantity=quantity,
                total_amount=price.amount * quantity,
            )
        )
        return self._reload(session)

    def _resolve_price(
        self, session: CheckoutSession, offer_item_id: int, price_lookup_key: Optional[str]
    ) -> Price:
        if price_lookup_key:
            price = self.repository.get_price_by_lookup_key(session.organization_id, price_lookup_key)
            if price is None:
                raise CheckoutError("price_not_found", f"No price found for '{price_lookup_key}'")
            return price

        offer_item = self.repository.get_offer_item(session.organization_id, offer_item_id)
        if offer_item is None:
            raise CheckoutError("offer_item_required", f"Offer item {offer_item_id} not found")
        if offer_item.default_price_id is None:
            raise CheckoutError("price_not_found", f"Offer item {offer_item_id} has no default price")
        price = self.repository.get_price(session.organization_id, offer_item.default_price_id)
        if price is None:
            raise CheckoutError("price_not_found", f"Offer item {offer_item_id} has no default price")
        return price

    def add_discount(self, session: CheckoutSession, code: Optional[str]) -> CheckoutSession:
        ensure_session_open(session)
        if not code:
            raise CheckoutError("invalid_discount", "Invalid coupon")
        try:
            capabilities = self.registry.capabilities_for(session.integration)
        except IntegrationNotConfigured as exc:
            raise CheckoutError.capability_unsupported(str(exc)) from exc
        if capabilities.discounts is None:
            raise CheckoutError.capability_unsupported("Integration does not support discounts")

        try:
            discount = capabilities.discounts.get_discount(code)
        except GatewayError as exc:
            raise CheckoutError("invalid_discount", f"No such coupon: '{code}'") from exc

        if not discount.valid:
            raise CheckoutError("invalid_discount", "Invalid coupon")
        if any(existing.id == discount.id for existing in session.discounts):
            raise CheckoutError("discount_exists", "Discount already added")

        updated = self.repository.save_session(
            session.model_copy(update={"discounts": [*session.discounts, discount], "updated_at": self._now()})
        )
        if self.event_logger is not None:
            self.event_logger.log(
                CheckoutAuditEvent(
                    event_type=CheckoutAuditEventType.DISCOUNT_APPLIED,
                    checkout_session_id=session.id,
                    organization_id=session.organization_id,
                    metadata={"discount_id": discount.id},
                )
            )
        return updated

    def remove_discount(self, session: CheckoutSession, discount_id: Optional[str]) -> CheckoutSession:
        ensure_session_open(session)
        remaining = [discount for discount in session.discounts if discount.id != discount_id]
        updated = session.model_copy(update={"discounts": remaining, "updated_at": self._now()})
        return self.repository.save_session(updated)


__all__ = [
    "CheckoutEventLogger",
    "CheckoutRepository",
    "CheckoutService",
    "ensure_payment_allowed",
    "ensure_session_open",
]
