"""Idempotent order submission.

A checkout retried by the browser (double click, flaky network) must not
create a second order nor try to consume the same coupon a second time.
When the client sends an ``Idempotency-Key`` header, the first request
claims the key and stores its final response; retries with the same key
and payload replay that response, and reuse of the key with a different
payload is a conflict.
"""

import hashlib
import json

from django.core.serializers.json import DjangoJSONEncoder
from django.db import IntegrityError, transaction

from .models import IdempotencyKey


class IdempotencyConflict(ValueError):
    def __init__(self):
        super().__init__("IDEMPOTENCY_CONFLICT")


def request_hash(payload: dict, user_id: str | None = None) -> str:
    """Stable SHA-256 of the payload plus the submitting user.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(
        {"user": user_id, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        cls=DjangoJSONEncoder,
    )
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def claim(key: str, payload: dict, user_id: str | None = None):
    """Claim ``key`` for this request, or find the earlier claim.

    Returns:
        tuple[bool, IdempotencyKey]: ``(replay, rec)``. ``replay`` is True
        when the key was already claimed by an identical request, in which
        case ``rec`` holds the response to send back.

    Raises:
        IdempotencyConflict: The key was claimed with a different payload.
    """
    h = request_hash(payload, user_id)

    try:
        # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, request_hash=h, response_status=0, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise IdempotencyConflict()
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Store the final response of a claimed request so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])
