import pytest

from apps.orders.notifications import REGISTRY, SubscriberConnection


@pytest.mark.django_db
def test_health_reports_db_and_admin_subscribers(client):
    REGISTRY.join("admin", SubscriberConnection())
    r = client.get("/api/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["db"]["ok"] is True
    assert body["components"]["notifications"] == {"group": "admin", "subscribers": 1}
    assert r["X-Request-ID"]
