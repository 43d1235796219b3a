"""Gateway middleware: request ids, payload limits and caller identity.

``RequestIdMiddleware`` ensures every incoming HTTP request carries a
request identifier (UUID). The identifier is read from the incoming
``X-Request-Id`` header when provided by the client, or generated
server-side otherwise. It is stored on the ``request`` object and in a
context variable so logging filters and outgoing HTTP clients can use it
without passing the value explicitly. The response echoes it in the
``X-Request-ID`` header.

``CallerMiddleware`` exposes the identity resolved by the upstream
authentication layer (``X-User-Id`` / ``X-User-Role`` headers) as
``request.caller``; requests without a user id get ``None``.

``ApiSizeLimitMiddleware`` rejects oversized API payloads with 413.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.orders.domain import Caller

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The name of the incoming HTTP header (in Django's
            ``request.META`` casing) that may contain a client-provided id.
        RESPONSE_HEADER (str): The name of the header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER)
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class CallerMiddleware(MiddlewareMixin):
    """Attach the already-resolved caller identity as ``request.caller``."""

    USER_HEADER = "HTTP_X_USER_ID"
    ROLE_HEADER = "HTTP_X_USER_ROLE"

    def process_request(self, request):
        user_id = (request.META.get(self.USER_HEADER) or "").strip()
        role = (request.META.get(self.ROLE_HEADER) or "customer").strip().lower()
        request.caller = Caller(user_id=user_id, role=role) if user_id else None


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
