"""Persistence layer for checkout sessions and orders."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from ..billing.gateway import Integration
from ..billing.models import Discount, Price, Product
from .models import (
    CheckoutLineItem,
    CheckoutSession,
    Customer,
    OfferItem,
    Order,
    OrderItem,
)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_price(row: Dict[str, Any], product_row: Optional[Dict[str, Any]] = None) -> Price:
    return Price(
        id=int(row["id"]),
        organization_id=int(row["organization_id"]),
        product_id=int(row["product_id"]),
        currency=row["currency"].strip(),
        amount=int(row["amount"]),
        type=row["type"],
        renew_interval=row.get("renew_interval"),
        gateway_price_id=row.get("gateway_price_id"),
        lookup_key=row.get("lookup_key"),
        is_active=bool(row.get("is_active", True)),
        product=_row_to_product(product_row) if product_row else None,
    )


def _row_to_product(row: Dict[str, Any]) -> Product:
    return Product(
        id=int(row["id"]),
        organization_id=int(row["organization_id"]),
        name=row["name"],
        gateway_product_id=row.get("gateway_product_id"),
    )


def _row_to_offer_item(row: Dict[str, Any]) -> OfferItem:
    return OfferItem(
        id=int(row["id"]),
        organization_id=int(row["organization_id"]),
        offer_id=row.get("offer_id"),
        name=row.get("name"),
        type=row["type"],
        is_required=bool(row.get("is_required")),
        default_price_id=row.get("default_price_id"),
    )


def _row_to_line_item(row: Dict[str, Any]) -> CheckoutLineItem:
    price_row = row.get("price_row")
    offer_item_row = row.get("offer_item_row")
    return CheckoutLineItem(
        id=row["id"],
        checkout_session_id=row["checkout_session_id"],
        organization_id=row["organization_id"],
        price_id=row.get("price_id"),
        offer_item_id=row.get("offer_item_id"),
        quantity=int(row["quantity"]),
        total_amount=int(row["total_amount"]),
        deleted_at=row.get("deleted_at"),
        price=_row_to_price(price_row, row.get("product_row")) if price_row else None,
        offer_item=_row_to_offer_item(offer_item_row) if offer_item_row else None,
    )


def _row_to_customer(row: Dict[str, Any]) -> Customer:
    return Customer(
        id=row["id"],
        organization_id=row["organization_id"],
        integration_id=row.get("integration_id"),
        reference_id=row["reference_id"],
        email=row.get("email"),
    )


def _row_to_order(row: Dict[str, Any]) -> Order:
    return Order(
        id=row["id"],
        organization_id=row["organization_id"],
        checkout_session_id=row["checkout_session_id"],
        customer_id=row.get("customer_id"),
        status=row["status"],
        currency=row["currency"].strip(),
        total_amount=int(row["total_amount"]),
        discounts=[Discount(**discount) for discount in row.get("discounts") or []],
        created_at=row["created_at"],
        completed_at=row.get("completed_at"),
    )


def _row_to_order_item(row: Dict[str, Any]) -> OrderItem:
    return OrderItem(
        id=row["id"],
        order_id=row["order_id"],
        organization_id=row["organization_id"],
        price_id=row.get("price_id"),
        offer_item_id=row.get("offer_item_id"),
        quantity=int(row["quantity"]),
        total_amount=int(row["total_amount"]),
    )


def _row_to_integration(row: Dict[str, Any]) -> Integration:
    return Integration(
        id=row["id"],
        organization_id=row["organization_id"],
        type=row["type"],
        secret=row.get("secret"),
        account=row.get("account"),
    )


class PostgresCheckoutRepository:
    """Concrete repository persisting checkout models in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    @contextmanager
    def atomic(self) -> Iterator["PostgresCheckoutRepository"]:
        """Bind a repository to one connection for the duration of the block."""

        if self._conn is not None:
            yield self
            return
        with managed_connection() as (connection, _managed):
            yield PostgresCheckoutRepository(conn=connection)

    def get_session(self, session_id: int) -> Optional[CheckoutSession]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM checkout_sessions WHERE id = %s LIMIT 1", (session_id,))
            row = cursor.fetchone()
            if not row:
                return None

            cursor.execute(
                """
                SELECT li.*,
                       CASE WHEN p.id IS NULL THEN NULL ELSE to_jsonb(p) END AS price_row,
                       CASE WHEN pr.id IS NULL THEN NULL ELSE to_jsonb(pr) END AS product_row,
                       CASE WHEN oi.id IS NULL THEN NULL ELSE to_jsonb(oi) END AS offer_item_row
                FROM checkout_line_items li
                LEFT JOIN prices p ON p.id = li.price_id
                LEFT JOIN products pr ON pr.id = p.product_id
                LEFT JOIN offer_items oi ON oi.id = li.offer_item_id
                WHERE li.checkout_session_id = %s
                  AND li.deleted_at IS NULL
                ORDER BY li.id
                """,
                (session_id,),
            )
            lines = [_row_to_line_item(line) for line in cursor.fetchall()]

            customer = None
            if row.get("customer_id"):
                cursor.execute("SELECT * FROM customers WHERE id = %s", (row["customer_id"],))
                customer_row = cursor.fetchone()
                customer = _row_to_customer(customer_row) if customer_row else None

            integration = None
            if row.get("integration_id"):
                cursor.execute("SELECT * FROM integrations WHERE id = %s", (row["integration_id"],))
                integration_row = cursor.fetchone()
                integration = _row_to_integration(integration_row) if integration_row else None

            cursor.execute("SELECT * FROM orders WHERE checkout_session_id = %s LIMIT 1", (session_id,))
            order_row = cursor.fetchone()

        return CheckoutSession(
            id=row["id"],
            organization_id=row["organization_id"],
            offer_id=row.get("offer_id"),
            status=row["status"],
            default_currency=row["default_currency"].strip(),
            line_items=lines,
            discounts=[Discount(**discount) for discount in row.get("discounts") or []],
            properties=row.get("properties") or {},
            metadata=row.get("metadata") or {},
            enabled_payment_methods=row.get("enabled_payment_methods") or ["card"],
            intent_id=row.get("intent_id"),
            intent_type=row.get("intent_type"),
            client_secret=row.get("client_secret"),
            return_url=row.get("return_url"),
            customer_id=row.get("customer_id"),
            customer=customer,
            subscription_id=row.get("subscription_id"),
            intent_tag=row.get("intent_tag"),
            integration=integration,
            order=_row_to_order(order_row) if order_row else None,
            payment_confirmed_at=row.get("payment_confirmed_at"),
            finalized_at=row.get("finalized_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save_session(self, session: CheckoutSession) -> CheckoutSession:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE checkout_sessions
                SET status = %(status)s,
                    discounts = %(discounts)s,
                    properties = %(properties)s,
                    metadata = %(metadata)s,
                    intent_id = %(intent_id)s,
                    intent_type = %(intent_type)s,
                    client_secret = %(client_secret)s,
                    return_url = %(return_url)s,
                    customer_id = %(customer_id)s,
                    finalized_at = %(finalized_at)s,
                    updated_at = NOW()
                WHERE id = %(id)s
                RETURNING updated_at
                """,
                {
                    "id": session.id,
                    "status": session.status.value,
                    "discounts": psycopg2.extras.Json(
                        [discount.model_dump(mode="json") for discount in session.discounts]
                    ),
                    "properties": psycopg2.extras.Json(session.properties),
                    "metadata": psycopg2.extras.Json(session.metadata),
                    "intent_id": session.intent_id,
                    "intent_type": session.intent_type.value if session.intent_type else None,
                    "client_secret": session.client_secret,
                    "return_url": session.return_url,
                    "customer_id": session.customer.id if session.customer else session.customer_id,
                    "finalized_at": session.finalized_at,
                },
            )
            row = cursor.fetchone()
            if not row:
                raise LookupError(f"Checkout session {session.id} not found")
        return session.model_copy(update={"updated_at": row["updated_at"]})

    def claim_session(self, session_id: int) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE checkout_sessions
                SET status = 'closed',
                    updated_at = NOW()
                WHERE id = %s AND status = 'open' AND finalized_at IS NULL
                RETURNING id
                """,
                (session_id,),
            )
            return cursor.fetchone() is not None

    def release_session(self, session_id: int) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE checkout_sessions
                SET status = 'open',
                    updated_at = NOW()
                WHERE id = %s AND status = 'closed' AND finalized_at IS NULL
                """,
                (session_id,),
            )

    def upsert_line_item(self, line: CheckoutLineItem) -> CheckoutLineItem:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO checkout_line_items (
                    checkout_session_id,
                    organization_id,
                    price_id,
                    offer_item_id,
                    quantity,
                    total_amount
                )
                VALUES (%(checkout_session_id)s, %(organization_id)s, %(price_id)s,
                        %(offer_item_id)s, %(quantity)s, %(total_amount)s)
                ON CONFLICT (checkout_session_id, offer_item_id) WHERE offer_item_id IS NOT NULL
                DO UPDATE SET
                    price_id = EXCLUDED.price_id,
                    quantity = EXCLUDED.quantity,
                    total_amount = EXCLUDED.total_amount,
                    deleted_at = NULL,
                    updated_at = NOW()
                RETURNING *
                """,
                line.model_dump(
                    include={
                        "checkout_session_id",
                        "organization_id",
                        "price_id",
                        "offer_item_id",
                        "quantity",
                        "total_amount",
                    }
                ),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist checkout line item")
            return _row_to_line_item(row)

    def soft_delete_line_items(self, session_id: int, *, offer_item_id: int) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE checkout_line_items
                SET deleted_at = NOW(), updated_at = NOW()
                WHERE checkout_session_id = %s
                  AND offer_item_id = %s
                  AND deleted_at IS NULL
                """,
                (session_id, offer_item_id),
            )
            return cursor.rowcount

    def _fetch_price(self, where: str, params: tuple) -> Optional[Price]:
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT p.*,
                       CASE WHEN pr.id IS NULL THEN NULL ELSE to_jsonb(pr) END AS product_row
                FROM prices p
                LEFT JOIN products pr ON pr.id = p.product_id
                WHERE {where}
                LIMIT 1
                """,
                params,
            )
            row = cursor.fetchone()
            return _row_to_price(row, row.get("product_row")) if row else None

    def get_price(self, organization_id: int, price_id: int) -> Optional[Price]:
        return self._fetch_price("p.organization_id = %s AND p.id = %s", (organization_id, price_id))

    def get_price_by_lookup_key(self, organization_id: int, lookup_key: str) -> Optional[Price]:
        return self._fetch_price(
            "p.organization_id = %s AND p.lookup_key = %s AND p.is_active", (organization_id, lookup_key)
        )

    def get_offer_item(self, organization_id: int, offer_item_id: int) -> Optional[OfferItem]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM offer_items WHERE organization_id = %s AND id = %s LIMIT 1",
                (organization_id, offer_item_id),
            )
            row = cursor.fetchone()
            return _row_to_offer_item(row) if row else None

    def save_customer(self, customer: Customer) -> Customer:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO customers (organization_id, integration_id, reference_id, email)
                VALUES (%(organization_id)s, %(integration_id)s, %(reference_id)s, %(email)s)
                ON CONFLICT (organization_id, reference_id) DO UPDATE SET
                    email = COALESCE(EXCLUDED.email, customers.email)
                RETURNING *
                """,
                customer.model_dump(include={"organization_id", "integration_id", "reference_id", "email"}),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist customer")
            return _row_to_customer(row)

    def insert_order(self, order: Order) -> Optional[Order]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO orders (
                    organization_id,
                    checkout_session_id,
                    customer_id,
                    status,
                    currency,
                    total_amount,
                    discounts,
                    created_at
                )
                VALUES (%(organization_id)s, %(checkout_session_id)s, %(customer_id)s, %(status)s,
                        %(currency)s, %(total_amount)s, %(discounts)s, %(created_at)s)
                ON CONFLICT (checkout_session_id) DO NOTHING
                RETURNING *
                """,
                {
                    "organization_id": order.organization_id,
                    "checkout_session_id": order.checkout_session_id,
                    "customer_id": order.customer_id,
                    "status": order.status.value,
                    "currency": order.currency,
                    "total_amount": order.total_amount,
                    "discounts": psycopg2.extras.Json(
                        [discount.model_dump(mode="json") for discount in order.discounts]
                    ),
                    "created_at": order.created_at,
                },
            )
            row = cursor.fetchone()
            return _row_to_order(row) if row else None

    def insert_order_item(self, item: OrderItem) -> OrderItem:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO order_items (
                    order_id,
                    organization_id,
                    price_id,
                    offer_item_id,
                    quantity,
                    total_amount
                )
                VALUES (%(order_id)s, %(organization_id)s, %(price_id)s, %(offer_item_id)s,
                        %(quantity)s, %(total_amount)s)
                RETURNING *
                """,
                item.model_dump(
                    include={"order_id", "organization_id", "price_id", "offer_item_id", "quantity", "total_amount"}
                ),
            )
            row = cursor.fetchone()
            if not row:
                raise RuntimeError("Failed to persist order item")
            return _row_to_order_item(row)

    def update_order(self, order: Order) -> Order:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE orders
                SET status = %s, total_amount = %s, completed_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (order.status.value, order.total_amount, order.completed_at, order.id),
            )
            row = cursor.fetchone()
            if not row:
                raise LookupError(f"Order {order.id} not found")
            return _row_to_order(row)


__all__ = ["PostgresCheckoutRepository", "managed_connection"]
