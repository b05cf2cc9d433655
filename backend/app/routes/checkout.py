"""API routes for checkout sessions."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from pydantic import BaseModel

from ..billing.resolver import parse_effective_at
from ..checkout import (
    CheckoutError,
    CheckoutSession,
    list_saved_payment_methods,
    record_redirect_return,
)
from ..schemas.checkout import (
    CheckoutMutationRequest,
    CheckoutSessionResponse,
    CommitResponse,
    PaymentPreparationResponse,
    RedirectCallbackResponse,
    SavedPaymentMethodsResponse,
)
from ..services.checkout import (
    get_checkout_repository,
    get_checkout_service,
    get_commit_service,
    get_integration_registry,
    get_payment_preparer,
    get_preview_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checkout", tags=["checkout"])

MutationHandler = Callable[[CheckoutSession, CheckoutMutationRequest], BaseModel]


def _load_session(session_id: int) -> CheckoutSession:
    session = get_checkout_repository().get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": f"Checkout session {session_id} not found", "type": "not_found"},
        )
    return session


def _set_fields(session: CheckoutSession, payload: CheckoutMutationRequest) -> BaseModel:
    updated = get_checkout_service().set_fields(session, payload.metadata)
    return CheckoutSessionResponse.from_session(updated)


def _set_properties(session: CheckoutSession, payload: CheckoutMutationRequest) -> BaseModel:
    updated = get_checkout_service().set_properties(session, payload.properties)
    return CheckoutSessionResponse.from_session(updated)


def _set_item(session: CheckoutSession, payload: CheckoutMutationRequest) -> BaseModel:
    updated = get_checkout_service().set_item(
        session,
        offer_item_id=payload.offer_item_id,
        price_lookup_key=payload.price_id,
        quantity=payload.quantity,
        required=payload.required,
    )
    return CheckoutSessionResponse.from_session(updated)


def _add_discount(session: CheckoutSession, payload: CheckoutMutationRequest) -> BaseModel:
    updated = get_checkout_service().add_discount(session, payload.discount)
    return CheckoutSessionResponse.from_session(updated)


def _remove_discount(session: CheckoutSession, payload: CheckoutMutationRequest) -> BaseModel:
    updated = get_checkout_service().remove_discount(session, payload.discount)
    return CheckoutSessionResponse.from_session(updated)


def _commit(session: CheckoutSession, payload: CheckoutMutationRequest) -> BaseModel:
    service = get_commit_service()
    if session.subscription_id:
        outcome = service.commit_subscription_change(session, parse_effective_at(payload.effective_at))
        return CommitResponse.from_change(outcome)
    return CommitResponse.from_order(service.commit(session))


def _prepare_payment(session: CheckoutSession, payload: CheckoutMutationRequest) -> BaseModel:
    if not payload.current_url:
        raise CheckoutError("invalid_request", "current_url is required")
    preparation = get_payment_preparer().prepare(
        session,
        email=payload.email,
        payment_type=payload.payment_type,
        current_url=payload.current_url,
    )
    return PaymentPreparationResponse.from_preparation(preparation)


_MUTATIONS: Dict[str, MutationHandler] = {
    "setFields": _set_fields,
    "setProperties": _set_properties,
    "setItem": _set_item,
    "addDiscount": _add_discount,
    "removeDiscount": _remove_discount,
    "commit": _commit,
    "prepare_payment": _prepare_payment,
}


@router.post("/{session_id}")
def mutate_checkout_session(session_id: int, payload: CheckoutMutationRequest) -> Any:
    handler = _MUTATIONS.get(payload.action)
    if handler is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": f"Unknown action '{payload.action}'", "type": "unknown_action"},
        )

    session = _load_session(session_id)
    try:
        return handler(session, payload)
    except CheckoutError as exc:
        raise exc.to_http_exception() from exc
    except LookupError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": str(exc), "type": "not_found"},
        ) from exc
    except Exception as exc:
        logger.exception("Checkout action %s failed for session %s", payload.action, session_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Checkout request failed", "error": str(exc)},
        ) from exc


@router.get("/{session_id}/preview")
def preview_checkout_session(
    session_id: int,
    effective_at: Optional[str] = Query(default=None, alias="effectiveAt"),
) -> Dict[str, Any]:
    session = _load_session(session_id)
    result = get_preview_service().preview(session, parse_effective_at(effective_at))
    return result.to_payload()


@router.get("/{session_id}/payment-methods", response_model=SavedPaymentMethodsResponse)
def list_payment_methods(session_id: int) -> SavedPaymentMethodsResponse:
    session = _load_session(session_id)
    methods = list_saved_payment_methods(get_integration_registry(), session)
    return SavedPaymentMethodsResponse(payment_methods=methods)


@router.get("/{session_id}/callback", response_model=RedirectCallbackResponse)
def redirect_callback(session_id: int, request: Request) -> RedirectCallbackResponse:
    session = _load_session(session_id)
    redirect = record_redirect_return(get_checkout_repository(), session, dict(request.query_params))
    return RedirectCallbackResponse.from_return(redirect)
