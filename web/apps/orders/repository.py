"""Repository layer for persisting orders and coupons.

This module contains the Django ORM implementations of the domain ports
``OrderRepositoryPort`` and ``CouponStorePort``. It intentionally keeps a
thin interface so the domain layer is not coupled to Django ORM details:
every method takes and returns domain dataclasses.

Both conditional writes in the system live here:

- ``OrderRepository.transition_status`` only updates rows whose status is
  not terminal, so the delivered guard holds at write time.
- ``CouponStore.consume`` only flips ``is_used`` on rows where it is still
  false (compare-and-swap), so a lost race is reported instead of lost.
"""

from decimal import Decimal
from typing import List

from django.core.exceptions import ValidationError

from .domain import (
    Coupon,
    DiscountType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
)
from .models import CouponModel, OrderModel


def _item_to_json(item: OrderItem) -> dict:
    return {"name": item.name, "price": str(item.price), "quantity": item.quantity}


def _order_to_domain(obj: OrderModel) -> Order:
    return Order(
        id=obj.id,
        user_id=obj.user_id,
        items=[
            OrderItem(name=i["name"], price=Decimal(str(i["price"])), quantity=int(i["quantity"]))
            for i in obj.items
        ],
        total_amount=obj.total_amount,
        address=obj.address,
        payment_method=PaymentMethod(obj.payment_method),
        status=OrderStatus(obj.status),
        created_at=obj.created_at,
        coupon_id=obj.coupon_id,
    )


def _coupon_to_domain(obj: CouponModel) -> Coupon:
    return Coupon(
        id=str(obj.id),
        code=obj.code,
        assigned_to=obj.assigned_to,
        discount_type=DiscountType(obj.discount_type),
        value=obj.value,
        expiry_date=obj.expiry_date,
        is_used=obj.is_used,
        prize_name=obj.prize_name,
    )


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM."""

    def create(self, order: Order) -> Order:
        """Persist a new order record.

        Args:
            order: Domain `Order` instance to persist.

        Returns:
            The stored order with its UUID and creation timestamp.
        """
        obj = OrderModel.objects.create(
            user_id=order.user_id,
            items=[_item_to_json(i) for i in order.items],
            total_amount=order.total_amount,
            address=order.address,
            payment_method=order.payment_method.value,
            status=order.status.value,
            coupon_id=order.coupon_id,
        )
        return _order_to_domain(obj)

    def get(self, order_id) -> Order | None:
        try:
            return _order_to_domain(OrderModel.objects.get(id=order_id))
        except (OrderModel.DoesNotExist, ValidationError):
            return None

    def list_for_user(self, user_id: str) -> List[Order]:
        qs = OrderModel.objects.filter(user_id=user_id).order_by("-created_at", "-internal_id")
        return [_order_to_domain(o) for o in qs]

    def list_all(self) -> List[Order]:
        return [_order_to_domain(o) for o in OrderModel.objects.order_by("-created_at", "-internal_id")]

    def transition_status(self, order_id, status: OrderStatus) -> Order | None:
        """Update the status unless the row is already delivered.

        Returns:
            The updated order, or None when no row matched.
        """
        updated = (
            OrderModel.objects.filter(id=order_id)
            .exclude(status=OrderStatus.DELIVERED.value)
            .update(status=status.value)
        )
        if updated != 1:
            return None
        return self.get(order_id)

    def delete(self, order_id) -> bool:
        try:
            deleted, _ = OrderModel.objects.filter(id=order_id).delete()
        except ValidationError:
            return False
        return deleted > 0


class CouponStore:
    """Coupon store backed by the storefront's own database."""

    def get(self, coupon_id: str) -> Coupon | None:
        try:
            obj = CouponModel.objects.filter(id=coupon_id).first()
        except ValidationError:
            return None
        return _coupon_to_domain(obj) if obj else None

    def get_by_code(self, code: str) -> Coupon | None:
        obj = CouponModel.objects.filter(code=code).first()
        return _coupon_to_domain(obj) if obj else None

    def consume(self, coupon_id: str, order_id: str) -> bool:
        """Flip ``is_used`` to true only if it is currently false.

        Returns:
            True when ``order_id`` consumed the coupon, either in this call
            or in an earlier one.
        """
        try:
            rows = CouponModel.objects.filter(id=coupon_id)
            updated = rows.filter(is_used=False).update(is_used=True, consumed_by=str(order_id))
        except ValidationError:
            return False
        return updated == 1 or rows.filter(consumed_by=str(order_id)).exists()
