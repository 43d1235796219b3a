"""API tests for the order submission endpoint.

These tests exercise the orders HTTP API for the main scenarios: successful
creation (with and without coupon), missing fields, payload validation
errors, coupon ownership and a coupon lost to a concurrent order. Coupons
live in the storefront database (``USE_HTTP_ADAPTERS = False``).
"""
import logging
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

import pytest
from django.utils import timezone

from apps.orders.models import CouponModel, OrderModel
from apps.orders.notifications import REGISTRY, SubscriberConnection

CREATE_URL = "/api/orders/"
U1 = {"HTTP_X_USER_ID": "U1", "HTTP_X_USER_ROLE": "customer"}
U2 = {"HTTP_X_USER_ID": "U2", "HTTP_X_USER_ROLE": "customer"}


def payload(**overrides):
    body = {
        "user_id": "U1",
        "items": [{"name": "Chicken Kottu", "price": "500.00", "quantity": 2}],
        "total": "1000.00",
        "address": {"line1": "12 Galle Road", "city": "Colombo"},
        "payment_method": "cash_on_delivery",
    }
    body.update(overrides)
    return body


def make_coupon(**kw):
    defaults = dict(
        code="SAVE10",
        assigned_to="U1",
        discount_type="percentage",
        value=Decimal("0.10"),
        expiry_date=timezone.now() + timedelta(days=7),
        prize_name="10% off",
    )
    defaults.update(kw)
    return CouponModel.objects.create(**defaults)


@pytest.mark.django_db
def test_create_order_persists_pending_order(client):
    r = client.post(CREATE_URL, data=payload(), content_type="application/json", **U1)
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Order placed successfully."
    oid = UUID(body["order_id"])

    row = OrderModel.objects.get(id=oid)
    assert row.status == "pending"
    assert row.total_amount == Decimal("1000.00")
    assert row.user_id == "U1"
    assert row.items == [{"name": "Chicken Kottu", "price": "500.00", "quantity": 2}]
    assert row.payment_method == "cash_on_delivery"
    assert row.coupon_id is None


@pytest.mark.django_db
def test_create_order_with_coupon_consumes_it_and_notifies_admins(client):
    coupon = make_coupon()
    admin = SubscriberConnection()
    REGISTRY.join("admin", admin)

    r = client.post(
        CREATE_URL,
        data=payload(total="900.00", coupon_id=str(coupon.id)),
        content_type="application/json",
        **U1,
    )
    assert r.status_code == 201
    oid = r.json()["order_id"]

    coupon.refresh_from_db()
    assert coupon.is_used is True

    # Published before the response was returned
    event = admin.next_event(0)
    assert event is not None
    assert event.order_id == oid
    assert event.total_amount == Decimal("900.00")
    assert event.message == f"New order #{oid[-6:]} received!"


@pytest.mark.django_db
def test_user_defaults_to_caller(client):
    body = payload()
    del body["user_id"]
    r = client.post(CREATE_URL, data=body, content_type="application/json", **U1)
    assert r.status_code == 201
    assert OrderModel.objects.get(id=r.json()["order_id"]).user_id == "U1"


@pytest.mark.django_db
@pytest.mark.parametrize("field", ["items", "total", "address", "payment_method"])
def test_missing_field_is_invalid_input(client, field):
    body = payload()
    del body[field]
    r = client.post(CREATE_URL, data=body, content_type="application/json", **U1)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_INPUT"
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_missing_user_without_caller_is_invalid_input(client):
    body = payload()
    del body["user_id"]
    r = client.post(CREATE_URL, data=body, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_INPUT"


@pytest.mark.django_db
def test_create_order_validation_error(client):
    """Returns 400 when the payload fails DTO validation."""
    body = payload(
        items=[{"name": "", "price": "-1", "quantity": 0}],
        payment_method="bitcoin",
    )
    r = client.post(CREATE_URL, data=body, content_type="application/json", **U1)
    assert r.status_code == 400


@pytest.mark.django_db
def test_used_coupon_is_rejected_and_no_order_is_created(client):
    coupon = make_coupon(is_used=True)
    r = client.post(
        CREATE_URL,
        data=payload(coupon_id=str(coupon.id)),
        content_type="application/json",
        **U1,
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "ALREADY_USED"
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_someone_elses_coupon_is_forbidden_and_stays_unused(client):
    coupon = make_coupon(assigned_to="U1")
    r = client.post(
        CREATE_URL,
        data=payload(user_id="U2", coupon_id=str(coupon.id)),
        content_type="application/json",
        **U2,
    )
    assert r.status_code == 403
    assert r.json()["detail"] == "NOT_AUTHORIZED"
    assert OrderModel.objects.count() == 0
    coupon.refresh_from_db()
    assert coupon.is_used is False


@pytest.mark.django_db
def test_ordering_as_another_user_is_forbidden(client):
    coupon = make_coupon(assigned_to="U1")
    r = client.post(
        CREATE_URL,
        data=payload(user_id="U1", coupon_id=str(coupon.id)),
        content_type="application/json",
        **U2,
    )
    assert r.status_code == 403
    assert OrderModel.objects.count() == 0
    coupon.refresh_from_db()
    assert coupon.is_used is False


@pytest.mark.django_db
def test_coupon_without_caller_is_forbidden(client):
    coupon = make_coupon()
    r = client.post(CREATE_URL, data=payload(coupon_id=str(coupon.id)), content_type="application/json")
    assert r.status_code == 403
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_unknown_coupon_is_not_found(client):
    r = client.post(
        CREATE_URL,
        data=payload(coupon_id="6f1c0d1e-0000-4000-8000-000000000000"),
        content_type="application/json",
        **U1,
    )
    assert r.status_code == 404
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_coupon_lost_to_concurrent_order_does_not_fail_the_order(client, caplog, monkeypatch):
    from apps.orders import repository

    coupon = make_coupon()
    monkeypatch.setattr(repository.CouponStore, "consume", lambda self, coupon_id, order_id: False)
    with caplog.at_level(logging.ERROR, logger="orders"):
        r = client.post(
            CREATE_URL,
            data=payload(coupon_id=str(coupon.id)),
            content_type="application/json",
            **U1,
        )
    assert r.status_code == 201
    assert "INTEGRITY_FAULT" not in r.content.decode()
    assert OrderModel.objects.filter(id=r.json()["order_id"]).exists()
    assert any(getattr(rec, "code", None) == "INTEGRITY_FAULT" for rec in caplog.records)


@pytest.mark.django_db
def test_repeated_consume_by_same_order_is_idempotent():
    from apps.orders.repository import CouponStore

    coupon = make_coupon()
    store = CouponStore()
    assert store.consume(str(coupon.id), "order-1") is True
    assert store.consume(str(coupon.id), "order-1") is True
    assert store.consume(str(coupon.id), "order-2") is False


@pytest.mark.django_db
def test_unexpected_persistence_fault_is_generic_500(client, monkeypatch):
    from apps.orders import repository

    def broken_create(self, order):
        raise RuntimeError("db down")

    monkeypatch.setattr(repository.OrderRepository, "create", broken_create)
    r = client.post(CREATE_URL, data=payload(), content_type="application/json", **U1)
    assert r.status_code == 500
    assert r.json()["detail"] == "SERVER_ERROR"
    assert "db down" not in r.content.decode()
