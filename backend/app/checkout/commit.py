"""Turn an open checkout session into an order or a committed subscription change."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ..billing.gateway import IntegrationRegistry
from ..billing.models import ChangeResult, PreviewDisabled, Signal
from ..billing.preview import ChangePreviewService
from .exceptions import CheckoutError
from .models import (
    CheckoutAuditEvent,
    CheckoutAuditEventType,
    CheckoutSession,
    CheckoutSessionStatus,
    Order,
    OrderItem,
    OrderStatus,
)
from .payments import resolve_capabilities
from .service import CheckoutEventLogger, CheckoutRepository, ensure_session_open

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SubscriptionChangeOutcome:
    session: CheckoutSession
    signal: Signal
    result: ChangeResult


class CheckoutCommitService:
    """Finalize checkout sessions exactly once."""

    def __init__(
        self,
        repository: CheckoutRepository,
        registry: IntegrationRegistry,
        preview_service: ChangePreviewService,
        *,
        event_logger: Optional[CheckoutEventLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._preview_service = preview_service
        self._event_logger = event_logger
        self._clock = clock or _utcnow

    def commit(self, session: CheckoutSession) -> CheckoutSession:
        """Create the order for ``session`` and close it.

        The order insert is guarded by the storage layer so a concurrent second
        commit fails on the completed-order precondition instead of producing a
        second order.
        """

        ensure_session_open(session)
        if not session.intent_id or not session.client_secret:
            raise CheckoutError.intent_missing()
        if session.customer is None:
            raise CheckoutError.customer_missing()
        lines = session.active_line_items
        if not lines:
            raise CheckoutError("empty_checkout", "Checkout session has no line items")

        now = self._clock()
        with self._repository.atomic() as repository:
            order = repository.insert_order(
                Order(
                    organization_id=session.organization_id,
                    checkout_session_id=session.id,
                    customer_id=session.customer.id,
                    status=OrderStatus.PENDING,
                    currency=session.currency,
                    discounts=list(session.discounts),
                    created_at=now,
                )
            )
            if order is None or order.id is None:
                logger.warning("Rejected duplicate commit for checkout %s", session.id)
                raise CheckoutError.order_completed()

            items = [
                repository.insert_order_item(
                    OrderItem(
                        order_id=order.id,
                        organization_id=session.organization_id,
                        price_id=line.price_id,
                        offer_item_id=line.offer_item_id,
                        quantity=line.quantity,
                        total_amount=line.total_amount,
                    )
                )
                for line in lines
            ]
            order = repository.update_order(
                order.model_copy(
                    update={
                        "total_amount": sum(item.total_amount for item in items),
                        "status": OrderStatus.COMPLETED,
                        "completed_at": now,
                    }
                )
            )
            closed = repository.save_session(
                session.model_copy(
                    update={
                        "status": CheckoutSessionStatus.CLOSED,
                        "order": order,
                        "finalized_at": now,
                        "updated_at": now,
                    }
                )
            )

        logger.info(
            "Committed checkout %s as order %s (total=%s %s)",
            session.id,
            order.id,
            order.total_amount,
            order.currency,
        )
        self._log_event(
            CheckoutAuditEventType.ORDER_COMMITTED,
            closed,
            {"order_id": str(order.id), "total_amount": str(order.total_amount)},
        )
        return closed

    def commit_subscription_change(
        self, session: CheckoutSession, effective_at: Optional[datetime] = None
    ) -> SubscriptionChangeOutcome:
        """Replay a freshly quoted change against the gateway and close the session.

        The session is claimed in storage before the gateway is called, so a
        concurrent or retried commit is rejected instead of replaying the change.
        """

        ensure_session_open(session)
        if not session.subscription_id:
            raise CheckoutError("subscription_missing", "Checkout session is not linked to a subscription")

        capabilities = resolve_capabilities(self._registry, session)
        if capabilities.committer is None or capabilities.previewer is None:
            raise CheckoutError.capability_unsupported("Integration does not support subscription changes")

        result = self._preview_service.preview(session, effective_at)
        if isinstance(result, PreviewDisabled):
            raise CheckoutError(
                "preview_unavailable",
                f"Subscription change preview is not available: {result.reason}",
            )
        preview = result.preview

        if not self._repository.claim_session(session.id):
            logger.warning("Rejected duplicate subscription change commit for checkout %s", session.id)
            raise CheckoutError.session_closed()

        try:
            change = capabilities.committer.commit_change(session, preview)
        except Exception as exc:  # gateway boundary
            logger.warning("Subscription change failed for checkout %s: %s", session.id, exc)
            self._repository.release_session(session.id)
            raise CheckoutError("commit_failed", str(exc) or "Subscription change failed") from exc

        now = self._clock()
        closed = self._repository.save_session(
            session.model_copy(
                update={
                    "status": CheckoutSessionStatus.CLOSED,
                    "finalized_at": now,
                    "updated_at": now,
                    "metadata": {
                        **session.metadata,
                        "committed_at": now.isoformat(),
                        "change_signal": preview.signal.value,
                        "change_result": change.to_payload(),
                    },
                }
            )
        )

        logger.info("Committed %s change for checkout %s", preview.signal.value, session.id)
        self._log_event(
            CheckoutAuditEventType.SUBSCRIPTION_CHANGE_COMMITTED,
            closed,
            {"signal": preview.signal.value, "status": change.status},
        )
        return SubscriptionChangeOutcome(session=closed, signal=preview.signal, result=change)

    def _log_event(self, event_type: CheckoutAuditEventType, session: CheckoutSession, metadata: dict) -> None:
        if self._event_logger is None:
            return
        self._event_logger.log(
            CheckoutAuditEvent(
                event_type=event_type,
                checkout_session_id=session.id,
                organization_id=session.organization_id,
                metadata=metadata,
            )
        )


__all__ = ["CheckoutCommitService", "SubscriptionChangeOutcome"]
