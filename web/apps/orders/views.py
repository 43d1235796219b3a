"""HTTP views for the orders app.

This module contains the DRF API views of the storefront orders service.
Views are kept intentionally small: they validate requests (via Pydantic),
delegate to the domain services obtained from ``providers`` and map the
outcome, or a ``DomainError``, to an HTTP response.

The caller identity is resolved upstream and attached to the request by
``gateway.middleware.CallerMiddleware`` as ``request.caller``.

Idempotency: when an ``Idempotency-Key`` header is provided, order
submission replays the stored response for retries with the same payload
(``Idempotent-Replay: true``) and answers 409 when the key is reused with a
different payload.
"""
import logging

from django.conf import settings
from django.core.paginator import Paginator
from django.http import JsonResponse, StreamingHttpResponse
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import DomainError, NotAuthorized
from .idempotency import IdempotencyConflict, claim, finalize
from .notifications import REGISTRY, EventStream
from .schemas import (
    ApplyCouponDTO,
    CouponQuoteDTO,
    CreateOrderDTO,
    OrderReadDTO,
    PageQueryDTO,
    StatusUpdateDTO,
)

logger = logging.getLogger("orders")

STATUS_BY_CODE = {
    "INVALID_INPUT": status.HTTP_400_BAD_REQUEST,
    "NOT_AUTHORIZED": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ALREADY_USED": status.HTTP_400_BAD_REQUEST,
    "EXPIRED": status.HTTP_400_BAD_REQUEST,
    "ORDER_FINALIZED": status.HTTP_400_BAD_REQUEST,
}


def error_body(exc: DomainError) -> dict:
    return {"detail": exc.code, "message": exc.message}


def error_response(exc: DomainError) -> Response:
    """Map a domain error to its HTTP status and a ``{detail, message}`` body."""
    code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(error_body(exc), status=code)


def validation_response(exc: ValidationError) -> Response:
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


def server_error(message: str) -> Response:
    return Response({"detail": "SERVER_ERROR", "message": message}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


class ScopedAPIView(APIView):
    """APIView with one DRF throttle scope per HTTP method."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scopes: dict = {}

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before the handler runs
        self.throttle_scope = self.throttle_scopes.get(self.request.method, "orders_detail")
        return [throttle() for throttle in self.throttle_classes]


class OrdersPingView(APIView):
    """Simple health-check endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(ScopedAPIView):
    """Submit an order, or list every order for the admin dashboard.

    POST validates the payload with a Pydantic DTO and delegates to
    ``OrderService.place_order`` on behalf of ``request.caller``: a
    presented coupon is validated for the ordering user, the order is
    stored as ``pending``, the coupon is consumed and admins are notified
    before the response is returned. A coupon lost to a concurrent order
    is logged as an integrity fault and does not affect the response.
    """

    throttle_scopes = {"GET": "orders_list", "POST": "orders_create"}

    def get(self, request):
        try:
            orders = providers.get_order_service().list_all(request.caller)
        except DomainError as e:
            return error_response(e)

        try:
            query = PageQueryDTO.model_validate(request.GET.dict())
        except ValidationError as e:
            return validation_response(e)
        page_size = query.page_size
        p = Paginator(orders, page_size)
        page_obj = p.get_page(query.page)

        results = [OrderReadDTO.from_domain(o).model_dump(mode="json") for o in page_obj.object_list]
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=200,
        )

    def post(self, request):
        """Submit a new order.

        Returns:
            Response: One of the following responses.
            - 201 with {message, order_id} when the order is placed.
            - replay of the stored response (``Idempotent-Replay: true``)
              for a retry with the same idempotency key and payload.
            - 409 with {detail: "IDEMPOTENCY_CONFLICT"} when the key is
              reused with a different payload.
            - 400 for DTO validation errors, missing fields or a used or
              expired coupon.
            - 403 when ordering for another user, or with a coupon that
              belongs to someone else or without a signed-in caller.
            - 404 for an unknown coupon.
            - 500 with {detail: "SERVER_ERROR"} for unexpected faults.
        """
        caller = request.caller
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        user_id = dto.user_id or (caller.user_id if caller else None)

        # 2) Idempotency claim
        rec = None
        if idem_key:
            try:
                replay, rec = claim(idem_key, request.data, user_id)
            except IdempotencyConflict:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if replay:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        try:
            placed = providers.get_order_service().place_order(
                user_id=dto.user_id,
                items=[i.to_domain() for i in dto.items] if dto.items else None,
                total=dto.total,
                address=dto.address,
                payment_method=dto.payment_method,
                coupon_id=dto.coupon_id,
                caller=caller,
            )
        except DomainError as e:
            body, code = error_body(e), STATUS_BY_CODE.get(e.code, 400)
            if rec:
                finalize(rec, code, body)
            return Response(body, status=code)
        except Exception:
            logger.exception("order submission failed")
            body = {"detail": "SERVER_ERROR", "message": "Server error placing order."}
            if rec:
                finalize(rec, 500, body)
            return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        # 4) Response
        body = {"message": "Order placed successfully.", "order_id": str(placed.order.id)}
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=placed.order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class OrderDetailView(ScopedAPIView):
    throttle_scopes = {"GET": "orders_detail", "DELETE": "orders_admin"}

    def get(self, request, oid):
        try:
            order = providers.get_order_service().get(request.caller, oid)
        except DomainError as e:
            return error_response(e)
        return Response(OrderReadDTO.from_domain(order).model_dump(mode="json"), status=200)

    def delete(self, request, oid):
        try:
            providers.get_order_service().delete(request.caller, oid)
        except DomainError as e:
            return error_response(e)
        except Exception:
            logger.exception("order delete failed", extra={"order_id": str(oid)})
            return server_error("Server error deleting order.")
        return Response({"message": "Order successfully deleted."}, status=200)


class OrderStatusView(ScopedAPIView):
    """Admin-only status transition. Delivered orders can no longer change."""

    throttle_scopes = {"PATCH": "orders_admin", "PUT": "orders_admin"}

    def patch(self, request, oid):
        # Role check comes first so non-admins learn nothing about the order
        if request.caller is None or not request.caller.is_admin:
            return error_response(NotAuthorized("Only administrators can change order status."))
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        try:
            order = providers.get_order_service().transition(request.caller, oid, dto.new_status)
        except DomainError as e:
            return error_response(e)
        except Exception:
            logger.exception("status update failed", extra={"order_id": str(oid)})
            return server_error("Server error updating order status.")

        return Response(
            {
                "message": f"Order {oid} status updated to {order.status.value}.",
                "order": OrderReadDTO.from_domain(order).model_dump(mode="json"),
            },
            status=200,
        )

    put = patch


class UserOrdersView(ScopedAPIView):
    throttle_scopes = {"GET": "orders_list"}

    def get(self, request, user_id: str):
        try:
            orders = providers.get_order_service().list_for_user(request.caller, user_id)
        except DomainError as e:
            return error_response(e)
        return Response([OrderReadDTO.from_domain(o).model_dump(mode="json") for o in orders], status=200)


class ApplyCouponView(ScopedAPIView):
    """Preview a coupon at checkout. Read-only: nothing is consumed here."""

    throttle_scopes = {"POST": "coupons_apply"}

    def post(self, request):
        try:
            dto = ApplyCouponDTO.model_validate(request.data)
        except ValidationError as e:
            return validation_response(e)

        try:
            quote = providers.get_coupon_service().apply(dto.code, request.caller, dto.cart_total)
        except DomainError as e:
            return error_response(e)
        except Exception:
            logger.exception("coupon application failed")
            return Response(
                {"detail": "UPSTREAM_UNAVAILABLE", "message": "Server error during coupon application."},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        dto_out = CouponQuoteDTO(discount=quote.amount, prize_name=quote.prize_name, coupon_id=quote.coupon_id)
        return Response(dto_out.model_dump(mode="json"), status=200)


def admin_events_view(request):
    """Persistent push channel for admin dashboards (server-sent events).

    The connection joins the admin broadcast group as soon as it is opened
    and leaves it when the response is closed.
    """
    caller = getattr(request, "caller", None)
    if caller is None or not caller.is_admin:
        return JsonResponse(error_body(NotAuthorized("Only administrators can subscribe to order events.")), status=403)

    stream = EventStream(
        getattr(settings, "ADMIN_GROUP", "admin"),
        registry=REGISTRY,
        heartbeat=getattr(settings, "NOTIFY_HEARTBEAT_SECS", 15.0),
        maxsize=getattr(settings, "NOTIFY_OUTBOX_SIZE", 100),
    )
    response = StreamingHttpResponse(stream, content_type="text/event-stream")
    response["Cache-Control"] = "no-cache"
    response["X-Accel-Buffering"] = "no"
    return response
