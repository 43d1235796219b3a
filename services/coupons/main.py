"""Coupon service API built with FastAPI.

This module exposes the coupon store used by the storefront checkout:
lookup by code or id, creation by the promotions subsystem, and the
conditional ``consume`` operation. Validation is performed with Pydantic
models, while persistence is delegated to the SQLAlchemy-backed
repository in ``repo.CouponsRepo``.
"""

import logging
import time
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field, model_validator
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CouponsRepo, DuplicateCode, engine

app = FastAPI(title="Coupons Service")


@app.on_event("startup")
def _startup_db():
    # espera activa breve hasta que la DB acepte conexiones
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)


logger = logging.getLogger("coupons")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


class DiscountType(str, Enum):
    flat = "flat"
    percentage = "percentage"
    free_item = "free_item"


class CouponIn(BaseModel):
    """Request body for creating a coupon.

    Attributes:
        code: Unique human-presentable code.
        assigned_to: User allowed to redeem the coupon.
        discount_type: How ``value`` is interpreted.
        value: Non-negative amount; a fraction in [0, 1] for percentages.
        expiry_date: Instant after which the coupon is no longer valid.
        prize_name: Display name shown at checkout.
    """

    code: str = Field(min_length=1, max_length=64)
    assigned_to: str = Field(min_length=1, max_length=64)
    discount_type: DiscountType
    value: Decimal = Field(ge=0)
    expiry_date: datetime
    prize_name: str = Field(default="", max_length=128)

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == DiscountType.percentage and self.value > 1:
            raise ValueError("percentage value must be a fraction in [0, 1]")
        return self


class CouponOut(BaseModel):
    id: uuid.UUID
    code: str
    assigned_to: str
    discount_type: DiscountType
    value: Decimal
    expiry_date: datetime
    is_used: bool
    prize_name: str

    @classmethod
    def from_row(cls, row) -> "CouponOut":
        return cls(
            id=row.id,
            code=row.code,
            assigned_to=row.assigned_to,
            discount_type=row.discount_type,
            value=row.value,
            expiry_date=row.expiry_date,
            is_used=row.is_used,
            prize_name=row.prize_name or "",
        )


class ConsumeResponse(BaseModel):
    consumed: bool
    coupon_id: uuid.UUID
    replayed: bool = False


@app.get("/health")
def health():
    """Liveness/health probe endpoint."""
    return {"ok": True}


@app.post("/coupons", response_model=CouponOut, status_code=201)
def create_coupon(req: CouponIn):
    """Create a coupon for a user (promotions subsystem).

    Raises:
        HTTPException: 409 when the code already exists.
    """
    try:
        row = CouponsRepo().create(
            code=req.code,
            assigned_to=req.assigned_to,
            discount_type=req.discount_type.value,
            value=req.value,
            expiry_date=req.expiry_date,
            prize_name=req.prize_name,
        )
    except DuplicateCode:
        raise HTTPException(status_code=409, detail="DUPLICATE_CODE")
    logger.info("coupon created", extra={"coupon_id": str(row.id), "assigned_to": row.assigned_to})
    return CouponOut.from_row(row)


@app.get("/coupons/by-code/{code}", response_model=CouponOut)
def get_coupon_by_code(code: str):
    row = CouponsRepo().get_by_code(code)
    if row is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return CouponOut.from_row(row)


@app.get("/coupons/{coupon_id}", response_model=CouponOut)
def get_coupon(coupon_id: uuid.UUID):
    row = CouponsRepo().get(coupon_id)
    if row is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return CouponOut.from_row(row)


@app.post("/coupons/{coupon_id}/consume", response_model=ConsumeResponse)
def consume_coupon(
    coupon_id: uuid.UUID,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Consume a coupon, conditioned on it not being consumed yet.

    With an ``Idempotency-Key`` header (the storefront sends the order id),
    repeating the request that consumed the coupon answers 200 again with
    ``replayed=True``, so a client retrying after a lost response keeps
    its win.

    Returns:
        ConsumeResponse: ``consumed=True`` when this key holds the coupon.

    Raises:
        HTTPException: 404 when the coupon does not exist; 409
            ``ALREADY_USED`` when another request consumed it first.
    """
    repo = CouponsRepo()
    if repo.consume(coupon_id, idempotency_key):
        logger.info("coupon consumed", extra={"coupon_id": str(coupon_id), "consumed_by": idempotency_key})
        return ConsumeResponse(consumed=True, coupon_id=coupon_id)
    row = repo.get(coupon_id)
    if row is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    if idempotency_key and row.consumed_by == idempotency_key:
        return ConsumeResponse(consumed=True, coupon_id=coupon_id, replayed=True)
    logger.warning("coupon already used", extra={"coupon_id": str(coupon_id)})
    raise HTTPException(status_code=409, detail="ALREADY_USED")


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
