"""In-process stub adapters for the orders domain ports.

These stubs implement ``OrderRepositoryPort``, ``CouponStorePort`` and
``NotificationPublisherPort`` without a database or network. They are
intended for unit tests and local development where deterministic
behavior is useful. Each stub guards its state with a lock so the
conditional writes behave atomically under concurrent callers.
"""

import threading
import uuid
from dataclasses import replace
from typing import Dict, List, Tuple

from .domain import (
    Coupon,
    CouponStorePort,
    NewOrderNotification,
    NotificationPublisherPort,
    Order,
    OrderRepositoryPort,
    OrderStatus,
    utcnow,
)


class InMemoryOrderRepository(OrderRepositoryPort):
    """Stub implementation of ``OrderRepositoryPort`` kept in a dict."""

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: Dict[str, Order] = {}
        self._seq: Dict[str, int] = {}

    def create(self, order: Order) -> Order:
        with self._lock:
            stored = replace(order, id=uuid.uuid4(), created_at=utcnow())
            self._orders[str(stored.id)] = stored
            self._seq[str(stored.id)] = len(self._seq)
            return replace(stored)

    def get(self, order_id) -> Order | None:
        with self._lock:
            found = self._orders.get(str(order_id))
            return replace(found) if found else None

    def _newest_first(self, orders: List[Order]) -> List[Order]:
        return sorted(orders, key=lambda o: self._seq[str(o.id)], reverse=True)

    def list_for_user(self, user_id: str) -> List[Order]:
        with self._lock:
            return self._newest_first([replace(o) for o in self._orders.values() if o.user_id == user_id])

    def list_all(self) -> List[Order]:
        with self._lock:
            return self._newest_first([replace(o) for o in self._orders.values()])

    def transition_status(self, order_id, status: OrderStatus) -> Order | None:
        with self._lock:
            found = self._orders.get(str(order_id))
            if found is None or found.status.is_terminal:
                return None
            found.status = status
            return replace(found)

    def delete(self, order_id) -> bool:
        with self._lock:
            self._seq.pop(str(order_id), None)
            return self._orders.pop(str(order_id), None) is not None


class InMemoryCouponStore(CouponStorePort):
    """Stub implementation of ``CouponStorePort``.

    ``consume`` is a compare-and-swap on ``is_used`` performed under a
    lock: of several concurrent orders exactly one gets True, and that
    order keeps getting True if it asks again.
    """

    def __init__(self, coupons: List[Coupon] | None = None):
        self._lock = threading.Lock()
        self._by_id: Dict[str, Coupon] = {}
        self._consumed_by: Dict[str, str] = {}
        for c in coupons or []:
            self.add(c)

    def add(self, coupon: Coupon) -> Coupon:
        with self._lock:
            self._by_id[str(coupon.id)] = coupon
        return coupon

    def get(self, coupon_id: str) -> Coupon | None:
        with self._lock:
            return self._by_id.get(str(coupon_id))

    def get_by_code(self, code: str) -> Coupon | None:
        with self._lock:
            return next((c for c in self._by_id.values() if c.code == code), None)

    def consume(self, coupon_id: str, order_id: str) -> bool:
        with self._lock:
            found = self._by_id.get(str(coupon_id))
            if found is None:
                return False
            if found.is_used:
                return self._consumed_by.get(str(coupon_id)) == str(order_id)
            self._by_id[str(coupon_id)] = replace(found, is_used=True)
            self._consumed_by[str(coupon_id)] = str(order_id)
            return True


class RecordingPublisher(NotificationPublisherPort):
    """Stub publisher that records every published event.

    Returns ``subscribers`` as the delivery count so tests can emulate a
    number of connected admins.
    """

    def __init__(self, subscribers: int = 1):
        self.subscribers = subscribers
        self.published: List[Tuple[str, NewOrderNotification]] = []

    def publish(self, group: str, event: NewOrderNotification) -> int:
        self.published.append((group, event))
        return self.subscribers
