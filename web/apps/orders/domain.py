"""Domain models, ports and services for storefront orders.

This module contains the dataclasses used as DTOs for orders and coupons,
the error taxonomy raised by the domain, protocol definitions (ports) for
the external collaborators (order repository, coupon store, notification
publisher) and the domain services:

- coupon validation and discount computation (``check_coupon``,
  ``compute_discount``, ``CouponService``),
- order submission, the status state machine and admin operations
  (``OrderService``).

Nothing here depends on Django, HTTP or a particular database.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, List, Optional, Protocol

logger = logging.getLogger("orders")

CENTS = Decimal("0.01")

# Value of one complimentary item granted by a ``free_item`` coupon.
FREE_ITEM_VALUE = Decimal("300.00")

ADMIN_GROUP = "admin"


def money(value) -> Decimal:
    """Normalize a numeric value to a Decimal with two decimal places."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    # Stores that drop tz info hand back naive UTC timestamps
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle of an order.

    ``DELIVERED`` is terminal: no transition may leave it.
    """

    PENDING = "pending"
    PREPARING = "preparing"
    ON_THE_WAY = "on-the-way"
    DELIVERED = "delivered"

    @property
    def is_terminal(self) -> bool:
        return self is OrderStatus.DELIVERED


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    CARD = "card"


class DiscountType(str, Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"
    FREE_ITEM = "free_item"


# ---- Errors ----
class DomainError(ValueError):
    """Base class for errors raised by the domain.

    ``str(error)`` is always the stable error code (e.g. ``"NOT_FOUND"``),
    while ``error.message`` carries a human readable explanation.
    """

    code = "DOMAIN_ERROR"
    default_message = "Domain error."

    def __init__(self, message: str | None = None):
        super().__init__(self.code)
        self.message = message or self.default_message


class InvalidInput(DomainError):
    code = "INVALID_INPUT"
    default_message = "Missing required fields."


class NotAuthorized(DomainError):
    code = "NOT_AUTHORIZED"
    default_message = "Access denied."


class NotFound(DomainError):
    code = "NOT_FOUND"
    default_message = "Resource not found."


class AlreadyUsed(DomainError):
    code = "ALREADY_USED"
    default_message = "This coupon has already been used."


class Expired(DomainError):
    code = "EXPIRED"
    default_message = "This coupon has expired."


class OrderFinalized(DomainError):
    code = "ORDER_FINALIZED"
    default_message = "This order has already been delivered and its status cannot be changed."


class IntegrityFault(DomainError):
    """Coupon consumption failed after the order was already created.

    Never returned to the submitting client: their order did succeed. It
    is logged for operator follow-up because the coupon may be reusable.
    """

    code = "INTEGRITY_FAULT"
    default_message = "Coupon could not be consumed for a created order."


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Caller:
    """Already-resolved identity of whoever issued a request.

    Attributes:
        user_id: Opaque user identifier.
        role: Role name; ``"admin"`` grants administrative privilege.
    """

    user_id: str
    role: str = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class OrderItem:
    """A single line item in an order.

    Attributes:
        name: Product name as displayed at checkout.
        price: Unit price, never negative.
        quantity: Number of units, at least one.
    """

    name: str
    price: Decimal
    quantity: int


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Persistent identifier, or None if not yet saved.
        user_id: Owning user.
        items: Line items in checkout order.
        total_amount: Amount payable, fixed at creation. It already
            reflects any discount and is never recomputed from items.
        address: Opaque structured delivery address.
        payment_method: How the customer pays.
        status: Current OrderStatus.
        created_at: Creation timestamp, set by the repository.
        coupon_id: Coupon applied at checkout, if any.
    """

    id: Any
    user_id: str
    items: List[OrderItem]
    total_amount: Decimal
    address: dict
    payment_method: PaymentMethod
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime | None = None
    coupon_id: Optional[str] = None


@dataclass(frozen=True)
class Coupon:
    """Single-use discount token assigned to one user."""

    id: str
    code: str
    assigned_to: str
    discount_type: DiscountType
    value: Decimal
    expiry_date: datetime
    is_used: bool = False
    prize_name: str = ""


@dataclass(frozen=True)
class DiscountQuote:
    """Result of previewing a coupon against a cart subtotal."""

    amount: Decimal
    prize_name: str
    coupon_id: str


@dataclass(frozen=True)
class NewOrderNotification:
    """Ephemeral event announcing a freshly created order to admins."""

    order_id: str
    total_amount: Decimal
    timestamp: datetime
    message: str
    event_name: str = field(default="new_order", init=False)

    @classmethod
    def from_order(cls, order: Order) -> "NewOrderNotification":
        oid = str(order.id)
        return cls(
            order_id=oid,
            total_amount=order.total_amount,
            timestamp=order.created_at or utcnow(),
            message=f"New order #{oid[-6:]} received!",
        )

    def as_payload(self) -> dict:
        return {
            "order_id": self.order_id,
            "total_amount": float(self.total_amount),
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }


@dataclass
class PlacedOrder:
    """Outcome of a successful order submission.

    Attributes:
        order: The persisted order.
        integrity_fault: Set when the referenced coupon could not be
            consumed. The order stands regardless.
        delivered_to: Number of admin subscribers the event was handed to.
    """

    order: Order
    integrity_fault: IntegrityFault | None = None
    delivered_to: int = 0


# ---- Ports (DIP) ----
class OrderRepositoryPort(Protocol):
    """Port describing durable order storage used by the domain."""

    def create(self, order: Order) -> Order:
        """Persist a new order and return it with ``id`` and ``created_at`` set."""
        raise NotImplementedError()

    def get(self, order_id) -> Order | None:
        raise NotImplementedError()

    def list_for_user(self, user_id: str) -> List[Order]:
        """Return the user's orders, newest first."""
        raise NotImplementedError()

    def list_all(self) -> List[Order]:
        """Return every order, newest first."""
        raise NotImplementedError()

    def transition_status(self, order_id, status: OrderStatus) -> Order | None:
        """Write ``status`` unless the stored order is already terminal.

        The terminal check must be part of the write itself (a conditional
        update), not a separate read.

        Returns:
            The updated order, or None when nothing was written because
            the order is missing or already delivered.
        """
        raise NotImplementedError()

    def delete(self, order_id) -> bool:
        """Delete unconditionally. Returns False when the order is absent."""
        raise NotImplementedError()


class CouponStorePort(Protocol):
    """Port describing the coupon store (promotions subsystem)."""

    def get(self, coupon_id: str) -> Coupon | None:
        raise NotImplementedError()

    def get_by_code(self, code: str) -> Coupon | None:
        raise NotImplementedError()

    def consume(self, coupon_id: str, order_id: str) -> bool:
        """Mark the coupon consumed by ``order_id``, conditioned on it being unconsumed.

        Repeating the call for the order that already consumed the coupon
        succeeds again, so a retried request cannot turn a win into a loss.

        Returns:
            True if the coupon is now consumed by ``order_id``, False if
            another order consumed it or it does not exist.
        """
        raise NotImplementedError()


class NotificationPublisherPort(Protocol):
    """Port describing best-effort fan-out to a broadcast group."""

    def publish(self, group: str, event: NewOrderNotification) -> int:
        """Hand ``event`` to every subscriber joined to ``group``.

        Must not block on subscribers. Returns how many accepted it.
        """
        raise NotImplementedError()


# ---- Coupon validation and discounts ----
def check_coupon(coupon: Coupon | None, user_id: str, now: datetime | None = None) -> Coupon:
    """Validate a coupon for a requesting user.

    Checks run in order and stop at the first failure: existence,
    ownership, consumption, expiry. No side effects.

    Args:
        coupon: Coupon looked up by code, or None if no such code.
        user_id: Identity of the requester.
        now: Reference time, defaults to the current UTC time.

    Returns:
        The same coupon when every check passes.

    Raises:
        NotFound: The code does not exist.
        NotAuthorized: The coupon is assigned to someone else.
        AlreadyUsed: The coupon was consumed by an earlier order.
        Expired: The expiry is not strictly after ``now``.
    """
    if coupon is None:
        raise NotFound("Invalid coupon code.")
    if str(coupon.assigned_to) != str(user_id):
        raise NotAuthorized("This coupon is not assigned to your account.")
    if coupon.is_used:
        raise AlreadyUsed()
    now = _aware(now or utcnow())
    if not _aware(coupon.expiry_date) > now:
        raise Expired()
    return coupon


def compute_discount(
    discount_type: DiscountType,
    value,
    subtotal,
    free_item_value: Decimal = FREE_ITEM_VALUE,
) -> Decimal:
    """Compute the discount granted by a coupon on a subtotal.

    - ``flat``: the coupon value itself.
    - ``percentage``: ``subtotal * value`` rounded to cents, value in [0, 1].
    - ``free_item``: the value of one complimentary item.

    The result is clamped to ``[0, subtotal]`` so a coupon can never make
    the payable amount negative.
    """
    subtotal = money(subtotal)
    discount_type = DiscountType(discount_type)
    if discount_type is DiscountType.FLAT:
        amount = money(value)
    elif discount_type is DiscountType.PERCENTAGE:
        amount = money(subtotal * Decimal(str(value)))
    else:
        amount = money(free_item_value)

    if amount > subtotal:
        amount = subtotal
    if amount < 0:
        amount = Decimal("0.00")
    return amount


class CouponService:
    """Read-only coupon preview used at checkout."""

    def __init__(self, coupons: CouponStorePort, free_item_value: Decimal = FREE_ITEM_VALUE):
        self.coupons = coupons
        self.free_item_value = free_item_value

    def validate(self, code: str, user_id: str, now: datetime | None = None) -> Coupon:
        return check_coupon(self.coupons.get_by_code(code), user_id, now)

    def apply(self, code, caller: Caller | None, subtotal, now: datetime | None = None) -> DiscountQuote:
        """Validate ``code`` for ``caller`` and quote the discount on ``subtotal``.

        Raises:
            InvalidInput: If the code or the subtotal is missing.
            NotAuthorized: If there is no resolved caller, or the coupon
                belongs to someone else.
            NotFound, AlreadyUsed, Expired: See ``check_coupon``.
        """
        if not code or subtotal is None:
            raise InvalidInput("Coupon code and cart total are required.")
        if caller is None:
            raise NotAuthorized()
        coupon = self.validate(code, caller.user_id, now)
        amount = compute_discount(coupon.discount_type, coupon.value, subtotal, self.free_item_value)
        return DiscountQuote(amount=amount, prize_name=coupon.prize_name, coupon_id=str(coupon.id))


# ---- Order service ----
class OrderService:
    """Domain service for order submission and the status lifecycle.

    Submission creates the order, consumes the coupon (best effort) and
    announces the order to the admin broadcast group. The status state
    machine allows any move between non-terminal statuses and forbids
    leaving ``delivered``.
    """

    def __init__(
        self,
        orders: OrderRepositoryPort,
        coupons: CouponStorePort,
        publisher: NotificationPublisherPort,
        admin_group: str = ADMIN_GROUP,
    ):
        """Initialize the service with required dependencies.

        Args:
            orders: Durable order storage.
            coupons: Coupon store used to consume coupons.
            publisher: Fan-out to connected admin subscribers.
            admin_group: Broadcast group receiving new-order events.
        """
        self.orders = orders
        self.coupons = coupons
        self.publisher = publisher
        self.admin_group = admin_group

    def place_order(
        self,
        user_id: str | None,
        items: List[OrderItem] | None,
        total,
        address: dict | None,
        payment_method: PaymentMethod | str | None,
        coupon_id: str | None = None,
        caller: Caller | None = None,
        now: datetime | None = None,
    ) -> PlacedOrder:
        """Create an order, consume its coupon and notify admins.

        The order is placed for ``caller`` unless an admin places it on
        behalf of ``user_id``. A presented coupon is validated for that
        user before anything is written. The order counts as placed once
        it is persisted: a coupon that cannot be consumed afterwards (a
        concurrent order won it) yields an ``IntegrityFault`` that is
        logged and attached to the result, never raised. Publishing is
        fire-and-forget; its failure is logged and swallowed.

        Raises:
            NotAuthorized: ``user_id`` names someone other than a
                non-admin caller, a coupon is presented without a caller,
                or the coupon belongs to someone else.
            InvalidInput: When user, items, total, address or payment
                method is missing.
            NotFound, AlreadyUsed, Expired: See ``check_coupon``.
        """
        if caller is not None:
            if user_id and str(user_id) != caller.user_id and not caller.is_admin:
                raise NotAuthorized("Orders can only be placed for your own account.")
            user_id = user_id or caller.user_id

        missing = [
            name
            for name, present in (
                ("user_id", bool(user_id)),
                ("items", bool(items)),
                ("total", total is not None),
                ("address", bool(address)),
                ("payment_method", bool(payment_method)),
            )
            if not present
        ]
        if missing:
            raise InvalidInput(f"Missing required order fields: {', '.join(missing)}.")

        if coupon_id:
            if caller is None:
                raise NotAuthorized("Sign in to redeem a coupon.")
            check_coupon(self.coupons.get(str(coupon_id)), str(user_id), now)

        order = Order(
            id=None,
            user_id=str(user_id),
            items=list(items),
            total_amount=money(total),
            address=address,
            payment_method=PaymentMethod(payment_method),
            status=OrderStatus.PENDING,
            coupon_id=str(coupon_id) if coupon_id else None,
        )
        order = self.orders.create(order)
        logger.info("order created", extra={"order_id": str(order.id), "user_id": order.user_id})

        fault = None
        if order.coupon_id:
            fault = self._consume_coupon(order)

        delivered = self._announce(order)
        return PlacedOrder(order=order, integrity_fault=fault, delivered_to=delivered)

    def _consume_coupon(self, order: Order) -> IntegrityFault | None:
        try:
            consumed = self.coupons.consume(order.coupon_id, str(order.id))
        except Exception:
            logger.exception(
                "coupon store failed while consuming coupon",
                extra={"order_id": str(order.id), "coupon_id": order.coupon_id},
            )
            consumed = False
        if consumed:
            return None

        fault = IntegrityFault(
            f"Coupon {order.coupon_id} was not consumed for order {order.id}; it may be reusable."
        )
        logger.error(
            fault.message,
            extra={"code": fault.code, "order_id": str(order.id), "coupon_id": order.coupon_id},
        )
        return fault

    def _announce(self, order: Order) -> int:
        event = NewOrderNotification.from_order(order)
        try:
            return self.publisher.publish(self.admin_group, event)
        except Exception:
            logger.exception("new order notification failed", extra={"order_id": event.order_id})
            return 0

    def transition(self, caller: Caller | None, order_id, new_status) -> Order:
        """Move an order to ``new_status``.

        Only admins may transition. Any non-terminal status may move to any
        status, skipping intermediate ones. Nothing leaves ``delivered``:
        the guard is checked on read and again by the conditional write,
        so a concurrent transition that reached ``delivered`` first wins.

        Raises:
            NotAuthorized: The caller is not an admin (checked before any read).
            InvalidInput: ``new_status`` is not a known status.
            NotFound: No such order.
            OrderFinalized: The order is already delivered.
        """
        if caller is None or not caller.is_admin:
            raise NotAuthorized("Only administrators can change order status.")
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise InvalidInput(f"Unknown order status: {new_status!r}.")

        current = self.orders.get(order_id)
        if current is None:
            raise NotFound("Order not found.")
        if current.status.is_terminal:
            raise OrderFinalized()

        updated = self.orders.transition_status(order_id, target)
        if updated is None:
            # Lost a race: either deleted or delivered in the meantime
            if self.orders.get(order_id) is None:
                raise NotFound("Order not found.")
            raise OrderFinalized()
        logger.info(
            "order status updated",
            extra={"order_id": str(order_id), "from": current.status.value, "to": target.value},
        )
        return updated

    def delete(self, caller: Caller | None, order_id) -> None:
        """Delete an order unconditionally (admin only).

        Raises:
            NotAuthorized: The caller is not an admin.
            NotFound: No such order.
        """
        if caller is None or not caller.is_admin:
            raise NotAuthorized("Only administrators can delete orders.")
        if not self.orders.delete(order_id):
            raise NotFound("Order not found.")
        logger.info("order deleted", extra={"order_id": str(order_id)})

    def get(self, caller: Caller | None, order_id) -> Order:
        if caller is None:
            raise NotAuthorized()
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found.")
        if not caller.is_admin and order.user_id != caller.user_id:
            raise NotAuthorized()
        return order

    def list_for_user(self, caller: Caller | None, user_id: str) -> List[Order]:
        if caller is None or not (caller.is_admin or caller.user_id == str(user_id)):
            raise NotAuthorized()
        return self.orders.list_for_user(str(user_id))

    def list_all(self, caller: Caller | None) -> List[Order]:
        if caller is None or not caller.is_admin:
            raise NotAuthorized()
        return self.orders.list_all()
