"""Service provider helpers for wiring the order services with ports.

This module exposes small factory functions returning configured domain
services. Orders are always stored with the Django ORM repository and
published through the process-wide broadcast registry. The coupon store
is the HTTP client for the coupon service when
``settings.USE_HTTP_ADAPTERS`` is truthy, otherwise the storefront's own
ORM-backed store (tests and local development).
"""

from decimal import Decimal

from django.conf import settings

from .domain import ADMIN_GROUP, FREE_ITEM_VALUE, CouponService, CouponStorePort, OrderService
from .http_adapters import HttpCouponStore
from .notifications import REGISTRY, GroupPublisher
from .repository import CouponStore, OrderRepository


def get_coupon_store() -> CouponStorePort:
    """Return the coupon store selected by settings."""
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpCouponStore()
    return CouponStore()


def get_order_service() -> OrderService:
    """Return a configured OrderService instance.

    Returns:
        OrderService: A service wired to the ORM repository, the selected
        coupon store and the admin broadcast group.
    """
    return OrderService(
        orders=OrderRepository(),
        coupons=get_coupon_store(),
        publisher=GroupPublisher(REGISTRY),
        admin_group=getattr(settings, "ADMIN_GROUP", ADMIN_GROUP),
    )


def get_coupon_service() -> CouponService:
    free_item = Decimal(str(getattr(settings, "COUPON_FREE_ITEM_VALUE", FREE_ITEM_VALUE)))
    return CouponService(get_coupon_store(), free_item_value=free_item)
