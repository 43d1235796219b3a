"""API tests for the coupon service.

They run the FastAPI app in-process with ``TestClient`` against a SQLite
database configured by the service conftest.
"""
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from main import app
from repo import CouponsRepo


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


def _create(client, **overrides):
    body = {
        "code": f"SAVE-{uuid.uuid4().hex[:8]}",
        "assigned_to": "U1",
        "discount_type": "percentage",
        "value": "0.10",
        "expiry_date": (datetime.now(timezone.utc) + timedelta(days=7)).isoformat(),
        "prize_name": "10% off",
    }
    body.update(overrides)
    r = client.post("/coupons", json=body)
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_get_by_code_returns_coupon(client):
    created = _create(client)
    r = client.get(f"/coupons/by-code/{created['code']}")
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == created["id"]
    assert body["is_used"] is False
    assert body["assigned_to"] == "U1"


def test_unknown_code_is_404(client):
    r = client.get("/coupons/by-code/NOPE-NOT-HERE")
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


def test_duplicate_code_is_409(client):
    created = _create(client)
    r = client.post(
        "/coupons",
        json={
            "code": created["code"],
            "assigned_to": "U2",
            "discount_type": "flat",
            "value": "50",
            "expiry_date": created["expiry_date"],
        },
    )
    assert r.status_code == 409


def test_percentage_above_one_is_rejected(client):
    r = client.post(
        "/coupons",
        json={
            "code": "TOO-MUCH",
            "assigned_to": "U1",
            "discount_type": "percentage",
            "value": "1.5",
            "expiry_date": datetime.now(timezone.utc).isoformat(),
        },
    )
    assert r.status_code == 422


def test_consume_once_then_conflict(client):
    created = _create(client)
    first = client.post(f"/coupons/{created['id']}/consume")
    assert first.status_code == 200
    assert first.json()["consumed"] is True

    second = client.post(f"/coupons/{created['id']}/consume")
    assert second.status_code == 409
    assert second.json()["detail"] == "ALREADY_USED"

    assert client.get(f"/coupons/{created['id']}").json()["is_used"] is True


def test_consume_repeated_with_same_key_is_replayed(client):
    created = _create(client)
    url = f"/coupons/{created['id']}/consume"

    first = client.post(url, headers={"Idempotency-Key": "order-1"})
    assert first.status_code == 200
    assert first.json()["replayed"] is False

    retry = client.post(url, headers={"Idempotency-Key": "order-1"})
    assert retry.status_code == 200
    assert retry.json() == {"consumed": True, "coupon_id": created["id"], "replayed": True}

    other = client.post(url, headers={"Idempotency-Key": "order-2"})
    assert other.status_code == 409
    assert client.post(url).status_code == 409


def test_consume_unknown_coupon_is_404(client):
    r = client.post(f"/coupons/{uuid.uuid4()}/consume")
    assert r.status_code == 404


def test_concurrent_consume_has_single_winner(client):
    created = _create(client, discount_type="free_item", value="0", code="FREEBURGER-RACE")
    coupon_id = uuid.UUID(created["id"])
    repo = CouponsRepo()

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: repo.consume(coupon_id), range(4)))

    assert results.count(True) == 1
    assert repo.get(coupon_id).is_used is True
