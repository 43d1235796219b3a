from django.conf import settings
from django.db import connection
from django.http import JsonResponse

from apps.orders.notifications import REGISTRY


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except Exception:
        db_ok = False

    group = getattr(settings, "ADMIN_GROUP", "admin")
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "notifications": {"group": group, "subscribers": REGISTRY.count(group)},
            },
        },
        status=code,
    )
