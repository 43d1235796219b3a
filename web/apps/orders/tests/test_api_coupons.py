"""API tests for the coupon preview endpoint (read-only)."""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from apps.orders.models import CouponModel

APPLY_URL = "/api/orders/coupons/apply/"
U1 = {"HTTP_X_USER_ID": "U1"}


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


def apply(client, code, total, who=U1):
    return client.post(APPLY_URL, data={"code": code, "cart_total": total}, content_type="application/json", **who)


@pytest.mark.django_db
def test_save10_on_1000(client):
    coupon = make_coupon()
    r = apply(client, "SAVE10", "1000.00")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert Decimal(body["discount"]) == Decimal("100.00")
    assert body["prize_name"] == "10% off"
    assert body["coupon_id"] == str(coupon.id)
    coupon.refresh_from_db()
    assert coupon.is_used is False


@pytest.mark.django_db
def test_freeburger_is_clamped_to_subtotal(client):
    make_coupon(code="FREEBURGER", discount_type="free_item", value=Decimal("0"), prize_name="Free burger")
    r = apply(client, "FREEBURGER", "250.00")
    assert r.status_code == 200
    assert Decimal(r.json()["discount"]) == Decimal("250.00")


@pytest.mark.django_db
def test_rejections_map_to_codes(client):
    make_coupon(code="THEIRS", assigned_to="U2")
    make_coupon(code="USED", is_used=True)
    make_coupon(code="OLD", expiry_date=timezone.now() - timedelta(minutes=1))

    assert apply(client, "NOPE", "10").status_code == 404
    theirs = apply(client, "THEIRS", "10")
    assert theirs.status_code == 403 and theirs.json()["detail"] == "NOT_AUTHORIZED"
    assert apply(client, "USED", "10").json()["detail"] == "ALREADY_USED"
    old = apply(client, "OLD", "10")
    assert old.status_code == 400 and old.json()["detail"] == "EXPIRED"


@pytest.mark.django_db
def test_code_and_total_are_required(client):
    r = client.post(APPLY_URL, data={"code": "SAVE10"}, content_type="application/json", **U1)
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_INPUT"


@pytest.mark.django_db
def test_anonymous_caller_is_rejected(client):
    make_coupon()
    r = client.post(APPLY_URL, data={"code": "SAVE10", "cart_total": "10"}, content_type="application/json")
    assert r.status_code == 403
