"""Errors raised by checkout operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class CheckoutError(Exception):
    """A checkout request that cannot proceed; never retried automatically."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"message": self.message, "type": self.code}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))

    @classmethod
    def session_closed(cls) -> "CheckoutError":
        return cls("session_closed", "Checkout session is closed")

    @classmethod
    def order_completed(cls) -> "CheckoutError":
        return cls("order_completed", "Checkout session already has a completed order")

    @classmethod
    def payment_confirmed(cls) -> "CheckoutError":
        return cls("payment_confirmed", "Payment has already been confirmed for this checkout")

    @classmethod
    def customer_missing(cls) -> "CheckoutError":
        return cls("customer_missing", "Checkout session has no customer")

    @classmethod
    def intent_missing(cls) -> "CheckoutError":
        return cls("intent_missing", "Checkout session has no prepared payment intent")

    @classmethod
    def capability_unsupported(cls, message: str) -> "CheckoutError":
        return cls("capability_unsupported", message)


__all__ = ["CheckoutError"]
