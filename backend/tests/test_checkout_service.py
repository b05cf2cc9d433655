from __future__ import annotations

import pytest

from backend.app.billing import Discount
from backend.app.checkout import CheckoutAuditEventType, CheckoutError, CheckoutService, CheckoutSessionStatus
from backend.tests.factories import make_line, make_offer_item, make_price, make_session


@pytest.fixture
def service(repository, registry, event_logger):
    return CheckoutService(repository=repository, registry=registry, event_logger=event_logger)


@pytest.fixture
def catalog(repository):
    monthly = make_price(1, 2000, lookup_key="pro_monthly")
    yearly = make_price(2, 20000, lookup_key="pro_yearly")
    for price in (monthly, yearly):
        repository.prices[price.id] = price
    repository.offer_items[10] = make_offer_item(10, default_price_id=monthly.id)
    return repository


def test_set_fields_replaces_metadata(service, repository):
    session = repository.add_session(make_session(metadata={"old": "value"}))

    updated = service.set_fields(session, {"utm_source": "newsletter"})

    assert updated.metadata == {"utm_source": "newsletter"}


def test_set_properties_merges_json(service, repository):
    session = repository.add_session(make_session(properties={"company": "Acme"}))

    updated = service.set_properties(session, '{"seats": 5}')

    assert updated.properties == {"company": "Acme", "seats": 5}


def test_set_properties_rejects_invalid_json(service, repository):
    session = repository.add_session(make_session())

    with pytest.raises(CheckoutError) as excinfo:
        service.set_properties(session, "{not json")

    assert excinfo.value.code == "invalid_properties"


def test_set_item_uses_default_price(service, catalog):
    session = catalog.add_session(make_session())

    updated = service.set_item(session, offer_item_id=10)

    [line] = updated.active_line_items
    assert line.price_id == 1
    assert line.quantity == 1
    assert line.total_amount == 2000
    assert updated.total == 2000


def test_set_item_by_lookup_key_and_quantity(service, catalog):
    session = catalog.add_session(make_session())
    session = service.set_item(session, offer_item_id=10)

    updated = service.set_item(session, offer_item_id=10, price_lookup_key="pro_yearly", quantity=3)

    [line] = updated.active_line_items
    assert line.price_id == 2
    assert line.quantity == 3
    assert line.total_amount == 60000


def test_set_item_keeps_existing_quantity(service, catalog):
    session = catalog.add_session(make_session())
    session = service.set_item(session, offer_item_id=10, quantity=4)

    updated = service.set_item(session, offer_item_id=10, price_lookup_key="pro_yearly")

    assert updated.active_line_items[0].quantity == 4


def test_set_item_not_required_removes_line(service, catalog):
    session = catalog.add_session(make_session())
    session = service.set_item(session, offer_item_id=10)

    updated = service.set_item(session, offer_item_id=10, required=False)

    assert updated.active_line_items == []


def test_set_item_errors(service, catalog):
    session = catalog.add_session(make_session())

    with pytest.raises(CheckoutError) as excinfo:
        service.set_item(session, offer_item_id=None)
    assert excinfo.value.code == "offer_item_required"

    with pytest.raises(CheckoutError) as excinfo:
        service.set_item(session, offer_item_id=10, price_lookup_key="missing")
    assert excinfo.value.code == "price_not_found"


def test_add_discount(service, repository, gateway, event_logger):
    gateway.coupons["SPRING"] = Discount(id="SPRING", percent_off=25)
    session = repository.add_session(make_session(lines=[make_line(make_price(1, 2000))]))

    updated = service.add_discount(session, "SPRING")

    assert [discount.id for discount in updated.discounts] == ["SPRING"]
    assert updated.total == 1500
    assert event_logger.events[-1].event_type == CheckoutAuditEventType.DISCOUNT_APPLIED


def test_add_discount_rejections(service, repository, gateway):
    gateway.coupons["SPRING"] = Discount(id="SPRING", percent_off=25)
    gateway.coupons["EXPIRED"] = Discount(id="EXPIRED", valid=False, amount_off=500)
    session = repository.add_session(make_session(discounts=[Discount(id="SPRING", percent_off=25)]))

    with pytest.raises(CheckoutError) as excinfo:
        service.add_discount(session, "SPRING")
    assert excinfo.value.message == "Discount already added"

    with pytest.raises(CheckoutError) as excinfo:
        service.add_discount(session, "EXPIRED")
    assert excinfo.value.message == "Invalid coupon"

    with pytest.raises(CheckoutError) as excinfo:
        service.add_discount(session, "NOPE")
    assert excinfo.value.message == "No such coupon: 'NOPE'"


def test_add_discount_requires_capability(basic_registry, repository):
    service = CheckoutService(repository=repository, registry=basic_registry)
    session = repository.add_session(make_session())

    with pytest.raises(CheckoutError) as excinfo:
        service.add_discount(session, "SPRING")

    assert excinfo.value.code == "capability_unsupported"


def test_remove_discount(service, repository):
    session = repository.add_session(make_session(discounts=[Discount(id="SPRING", percent_off=25)]))

    updated = service.remove_discount(session, "SPRING")

    assert updated.discounts == []


def test_mutations_reject_closed_sessions(service, repository):
    session = repository.add_session(make_session(status=CheckoutSessionStatus.CLOSED))

    with pytest.raises(CheckoutError) as excinfo:
        service.set_fields(session, {"a": 1})

    assert excinfo.value.code == "session_closed"


def test_get_session_not_found(service):
    with pytest.raises(LookupError):
        service.get_session(404)
