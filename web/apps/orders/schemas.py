"""Pydantic schemas for orders.

This module exposes lightweight request/validation schemas used by the
orders API and the read models returned to clients. Request schemas
validate shape and ranges only; whether required fields are present is a
domain rule checked by ``OrderService`` so that every missing-field case
reports the same ``INVALID_INPUT`` error.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import Order, OrderItem, PaymentMethod, money


class OrderItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        name: Product name (1-200 chars, surrounding whitespace stripped).
        price: Unit price, zero or more.
        quantity: Positive integer indicating units requested.
    """

    name: str = Field(min_length=1, max_length=200)
    price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("Item name must not be blank")
        return v2

    def to_domain(self) -> OrderItem:
        return OrderItem(name=self.name, price=money(self.price), quantity=self.quantity)


class CreateOrderDTO(BaseModel):
    """Schema for submitting an order.

    Attributes:
        user_id: Owner of the order; defaults to the calling user.
        items: List of `OrderItemIn` items.
        total: Amount payable after discounts (zero or more).
        address: Structured delivery address, stored as given.
        payment_method: One of the supported payment methods.
        coupon_id: Coupon identifier returned by the coupon preview.
    """

    user_id: Optional[str] = None
    items: Optional[list[OrderItemIn]] = None
    total: Optional[Decimal] = Field(default=None, ge=0)
    address: Optional[dict] = None
    payment_method: Optional[PaymentMethod] = None
    coupon_id: Optional[str] = None


class ApplyCouponDTO(BaseModel):
    """Schema for previewing a coupon against a cart total."""

    code: Optional[str] = None
    cart_total: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class StatusUpdateDTO(BaseModel):
    """Schema for an admin status change. The value is checked by the domain."""

    new_status: str = Field(min_length=1, max_length=32)


class PageQueryDTO(BaseModel):
    """Pagination query string of list endpoints."""

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class OrderItemOut(BaseModel):
    name: str
    price: Decimal
    quantity: int


class OrderReadDTO(BaseModel):
    """Read model for an order as returned by the API."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    user_id: str
    items: list[OrderItemOut]
    total_amount: Decimal
    address: dict
    payment_method: str
    status: str
    created_at: Optional[datetime] = None
    coupon_id: Optional[str] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        return cls(
            id=str(order.id),
            user_id=order.user_id,
            items=[OrderItemOut(name=i.name, price=money(i.price), quantity=i.quantity) for i in order.items],
            total_amount=money(order.total_amount),
            address=order.address,
            payment_method=order.payment_method.value,
            status=order.status.value,
            created_at=order.created_at,
            coupon_id=order.coupon_id,
        )


class CouponQuoteDTO(BaseModel):
    success: bool = True
    discount: Decimal
    prize_name: str
    coupon_id: str
