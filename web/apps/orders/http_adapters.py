"""HTTP ``CouponStorePort`` backed by the standalone coupon service.

Every call to ``services/coupons`` goes through ``HttpCouponStore._send``,
which:

- forwards the gateway's request id as ``X-Request-ID``;
- is guarded by a process-wide circuit breaker (``_coupons_cb``);
- retries transport errors and 5xx answers with capped exponential backoff.

Business answers (404 unknown coupon, 409 consumed by another order) are
returned to the caller as values and count as healthy responses for the
breaker. ``consume`` carries the order id as ``Idempotency-Key``, which makes
it safe to retry.
"""

import os
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import quote

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import Coupon, CouponStorePort, DiscountType

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")


def _is_test_mode() -> bool:
    if "pytest" in sys.modules:
        return True
    return bool(os.environ.get("PYTEST_CURRENT_TEST")) or os.environ.get("PYTEST_RUNNING") == "1"


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """Thread-safe breaker in front of one upstream service.

    After ``fail_threshold`` consecutive failures the circuit opens and calls
    are refused. Once ``reset_timeout`` seconds have passed it lets exactly
    one probe through (HALF_OPEN); the probe's outcome closes or reopens it.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._probing = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            expired = time.monotonic() - self._opened_at >= self.reset_timeout
            if self._state is CircuitState.OPEN and expired:
                self._state = CircuitState.HALF_OPEN
                self._probing = False
            return self._state

    def before_call(self) -> CircuitState:
        """Admit a call or refuse it.

        Raises:
            RuntimeError: ``CIRCUIT_OPEN`` while open, ``CIRCUIT_HALF_OPEN_BUSY``
                while another probe is running.
        """
        with self._lock:
            current = self.state
            if current is CircuitState.OPEN:
                raise RuntimeError("CIRCUIT_OPEN")
            if current is CircuitState.HALF_OPEN:
                if self._probing:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._probing = True
            return current

    def on_success(self):
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._probing = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state is not CircuitState.OPEN and self._failures >= self.fail_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = time.monotonic()
                self._probing = False

    def on_finish(self):
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._probing = False


_coupons_cb = CircuitBreaker(
    "coupons",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    backoff_base: float
    max_sleep: float

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        policy = cls(
            attempts=getattr(settings, "HTTP_RETRY_MAX", 3),
            backoff_base=getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
            max_sleep=getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
        )
        if _is_test_mode():
            # at least one attempt, never sleep under pytest
            return cls(attempts=max(policy.attempts, 1), backoff_base=0.0, max_sleep=0.0)
        return policy

    def delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** (attempt - 1)), self.max_sleep)


def _outgoing_headers(circuit_state: CircuitState, extra: Optional[dict] = None) -> dict:
    headers = {"X-Circuit-State": circuit_state.value, "X-Retry-Count": "0", **(extra or {})}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    return headers


def _is_retriable(resp: Optional[httpx.Response]) -> bool:
    """Transport errors (no response) and 5xx are worth another attempt."""
    return resp is None or resp.status_code >= 500


def coupon_from_json(data: dict) -> Coupon:
    """Build a domain ``Coupon`` from the coupon service's JSON body."""
    return Coupon(
        id=str(data["id"]),
        code=data["code"],
        assigned_to=str(data["assigned_to"]),
        discount_type=DiscountType(data["discount_type"]),
        value=Decimal(str(data["value"])),
        expiry_date=datetime.fromisoformat(data["expiry_date"].replace("Z", "+00:00")),
        is_used=bool(data["is_used"]),
        prize_name=data.get("prize_name") or "",
    )


class HttpCouponStore(CouponStorePort):
    """Coupon lookups and conditional consumption over HTTP."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.COUPONS_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _send(
        self,
        method: str,
        path: str,
        business: Iterable[int] = (),
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Perform one logical call to the coupon service.

        A 200 or any status listed in ``business`` is returned as is.

        Raises:
            RuntimeError: The circuit refused the call.
            httpx.RequestError: Transport failure on the last attempt.
            httpx.HTTPStatusError: Any other non-2xx answer.
        """
        accepted = {200, *business}
        policy = RetryPolicy.from_settings()
        headers = _outgoing_headers(_coupons_cb.before_call(), headers)
        url = f"{self.base_url}{path}"
        attempt = 0

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp, error = None, None
                    try:
                        resp = client.request(method, url, headers=headers)
                    except httpx.RequestError as e:
                        error = e

                    if resp is not None and resp.status_code in accepted:
                        _coupons_cb.on_success()
                        return resp
                    if resp is not None and not _is_retriable(resp):
                        resp.raise_for_status()

                    attempt += 1
                    headers["X-Retry-Count"] = str(attempt)
                    if attempt >= policy.attempts:
                        _coupons_cb.on_failure()
                        if error is not None:
                            raise error
                        resp.raise_for_status()
                    if policy.max_sleep:
                        time.sleep(policy.delay(attempt))
        finally:
            _coupons_cb.on_finish()

    def get(self, coupon_id: str) -> Coupon | None:
        # 422: the service rejected the id as malformed, so no such coupon
        resp = self._send("GET", f"/coupons/{quote(str(coupon_id), safe='')}", business=(404, 422))
        if resp.status_code != 200:
            return None
        return coupon_from_json(resp.json())

    def get_by_code(self, code: str) -> Coupon | None:
        resp = self._send("GET", f"/coupons/by-code/{quote(code, safe='')}", business=(404,))
        if resp.status_code == 404:
            return None
        return coupon_from_json(resp.json())

    def consume(self, coupon_id: str, order_id: str) -> bool:
        """True when ``order_id`` consumed the coupon; False on 409 or 404.

        The order id travels as ``Idempotency-Key`` so a retry after a lost
        response is answered 200 by the service instead of 409.
        """
        resp = self._send(
            "POST",
            f"/coupons/{coupon_id}/consume",
            business=(404, 409),
            headers={"Idempotency-Key": str(order_id)},
        )
        return resp.status_code == 200
