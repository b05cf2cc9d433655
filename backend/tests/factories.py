"""Builders for checkout test data."""
from __future__ import annotations

from typing import Any, Optional, Sequence

from backend.app.billing import ChargeType, Integration, IntegrationType, OfferItemType, Price, Product, RenewInterval
from backend.app.checkout import CheckoutLineItem, CheckoutSession, Customer, OfferItem

ORGANIZATION_ID = 7

SANDBOX_INTEGRATION = Integration(id=3, organization_id=ORGANIZATION_ID, type=IntegrationType.SANDBOX)


def make_product(product_id: int = 1, name: str = "Pro plan", gateway_product_id: str = "prod_pro") -> Product:
    return Product(
        id=product_id,
        organization_id=ORGANIZATION_ID,
        name=name,
        gateway_product_id=gateway_product_id,
    )


def make_price(
    price_id: int,
    amount: int,
    *,
    recurring: bool = True,
    currency: str = "usd",
    gateway_price_id: Optional[str] = None,
    lookup_key: Optional[str] = None,
    product: Optional[Product] = None,
) -> Price:
    product = product or make_product()
    return Price(
        id=price_id,
        organization_id=ORGANIZATION_ID,
        product_id=product.id,
        currency=currency,
        amount=amount,
        type=ChargeType.RECURRING if recurring else ChargeType.ONE_TIME,
        renew_interval=RenewInterval.MONTH if recurring else None,
        gateway_price_id=gateway_price_id or f"price_{price_id}",
        lookup_key=lookup_key,
        product=product,
    )


def make_offer_item(
    offer_item_id: int,
    *,
    type: OfferItemType = OfferItemType.STANDARD,
    is_required: bool = True,
    default_price_id: Optional[int] = None,
) -> OfferItem:
    return OfferItem(
        id=offer_item_id,
        organization_id=ORGANIZATION_ID,
        offer_id=1,
        name=f"Item {offer_item_id}",
        type=type,
        is_required=is_required,
        default_price_id=default_price_id,
    )


def make_line(
    price: Price,
    *,
    session_id: int = 1,
    line_id: Optional[int] = None,
    quantity: int = 1,
    offer_item: Optional[OfferItem] = None,
) -> CheckoutLineItem:
    return CheckoutLineItem(
        id=line_id,
        checkout_session_id=session_id,
        organization_id=ORGANIZATION_ID,
        price_id=price.id,
        offer_item_id=offer_item.id if offer_item else None,
        quantity=quantity,
        total_amount=price.amount * quantity,
        price=price,
        offer_item=offer_item,
    )


def make_customer(customer_id: int = 11, reference_id: str = "cus_existing") -> Customer:
    return Customer(
        id=customer_id,
        organization_id=ORGANIZATION_ID,
        integration_id=SANDBOX_INTEGRATION.id,
        reference_id=reference_id,
        email="buyer@example.com",
    )


def make_session(
    session_id: int = 1,
    *,
    lines: Sequence[CheckoutLineItem] = (),
    integration: Optional[Integration] = SANDBOX_INTEGRATION,
    **overrides: Any,
) -> CheckoutSession:
    values: dict = {
        "id": session_id,
        "organization_id": ORGANIZATION_ID,
        "offer_id": 1,
        "line_items": list(lines),
        "integration": integration,
    }
    values.update(overrides)
    return CheckoutSession(**values)
