"""Unit tests for coupon validation and discount computation."""

import uuid
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

import pytest

from apps.orders.adapters import InMemoryCouponStore, InMemoryOrderRepository, RecordingPublisher
from apps.orders.domain import (
    AlreadyUsed,
    Caller,
    Coupon,
    CouponService,
    DiscountType,
    Expired,
    InvalidInput,
    NotAuthorized,
    NotFound,
    OrderItem,
    OrderService,
    check_coupon,
    compute_discount,
    utcnow,
)


def coupon(**kw):
    defaults = dict(
        id=str(uuid.uuid4()),
        code="SAVE10",
        assigned_to="U1",
        discount_type=DiscountType.PERCENTAGE,
        value=Decimal("0.10"),
        expiry_date=utcnow() + timedelta(days=1),
        prize_name="10% off",
    )
    defaults.update(kw)
    return Coupon(**defaults)


# ---- Validation ----

def test_check_coupon_passes_for_owner_of_unused_unexpired_coupon():
    c = coupon()
    assert check_coupon(c, "U1") is c


def test_checks_run_in_order():
    # Wrong owner wins over used and expired
    c = coupon(is_used=True, expiry_date=utcnow() - timedelta(days=1))
    with pytest.raises(NotFound):
        check_coupon(None, "U1")
    with pytest.raises(NotAuthorized):
        check_coupon(c, "U2")
    with pytest.raises(AlreadyUsed):
        check_coupon(c, "U1")
    with pytest.raises(Expired):
        check_coupon(coupon(expiry_date=utcnow() - timedelta(seconds=1)), "U1")


def test_expiry_must_be_strictly_after_now():
    now = utcnow()
    with pytest.raises(Expired):
        check_coupon(coupon(expiry_date=now), "U1", now=now)


def test_naive_expiry_is_treated_as_utc():
    c = coupon(expiry_date=(utcnow() + timedelta(hours=1)).replace(tzinfo=None))
    assert check_coupon(c, "U1") is c


# ---- Discounts ----

def test_save10_on_1000_is_100():
    assert compute_discount(DiscountType.PERCENTAGE, Decimal("0.10"), Decimal("1000.00")) == Decimal("100.00")


def test_free_item_is_clamped_to_subtotal():
    assert compute_discount(DiscountType.FREE_ITEM, 0, Decimal("250.00")) == Decimal("250.00")
    assert compute_discount(DiscountType.FREE_ITEM, 0, Decimal("1000.00")) == Decimal("300.00")


def test_flat_above_subtotal_is_clamped():
    assert compute_discount(DiscountType.FLAT, Decimal("500"), Decimal("120.50")) == Decimal("120.50")
    assert compute_discount(DiscountType.FLAT, Decimal("50"), Decimal("120.50")) == Decimal("50.00")


@pytest.mark.parametrize("value", ["0", "0.05", "0.125", "0.333", "1"])
@pytest.mark.parametrize("subtotal", ["0.00", "9.99", "1000.00", "1234.57"])
def test_percentage_rounds_to_cents_and_never_exceeds_subtotal(value, subtotal):
    got = compute_discount("percentage", Decimal(value), Decimal(subtotal))
    expected = (Decimal(subtotal) * Decimal(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    assert got == min(expected, Decimal(subtotal))
    assert got <= Decimal(subtotal)


def test_percentage_rounds_half_up():
    assert compute_discount("percentage", Decimal("0.125"), Decimal("10.00")) == Decimal("1.25")
    assert compute_discount("percentage", Decimal("0.5"), Decimal("0.05")) == Decimal("0.03")


# ---- Preview service ----

def test_apply_returns_quote_without_consuming():
    c = coupon()
    store = InMemoryCouponStore([c])
    quote = CouponService(store).apply("SAVE10", Caller("U1"), Decimal("1000.00"))
    assert quote.amount == Decimal("100.00")
    assert quote.prize_name == "10% off"
    assert quote.coupon_id == c.id
    assert store.get(c.id).is_used is False


def test_apply_requires_code_and_total():
    service = CouponService(InMemoryCouponStore())
    with pytest.raises(InvalidInput):
        service.apply("", Caller("U1"), Decimal("10"))
    with pytest.raises(InvalidInput):
        service.apply("SAVE10", Caller("U1"), None)


def test_apply_uses_configured_free_item_value():
    store = InMemoryCouponStore([coupon(code="FREEBURGER", discount_type=DiscountType.FREE_ITEM, value=Decimal("0"))])
    quote = CouponService(store, free_item_value=Decimal("150")).apply("FREEBURGER", Caller("U1"), Decimal("250"))
    assert quote.amount == Decimal("150.00")


def test_coupon_is_rejected_after_an_order_consumed_it():
    c = coupon()
    store = InMemoryCouponStore([c])
    previews = CouponService(store)
    orders = OrderService(InMemoryOrderRepository(), store, RecordingPublisher())

    quote = previews.apply("SAVE10", Caller("U1"), Decimal("1000.00"))
    orders.place_order(
        user_id="U1",
        items=[OrderItem("Family meal", Decimal("1000.00"), 1)],
        total=Decimal("1000.00") - quote.amount,
        address={"city": "Kandy"},
        payment_method="card",
        coupon_id=quote.coupon_id,
        caller=Caller("U1"),
    )

    with pytest.raises(AlreadyUsed):
        previews.apply("SAVE10", Caller("U1"), Decimal("1000.00"))
    with pytest.raises(AlreadyUsed):
        previews.apply("SAVE10", Caller("U1"), Decimal("1000.00"))
