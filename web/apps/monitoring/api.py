"""Health endpoint: database connectivity and upstream circuit states."""

import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import circuit_states

logger = logging.getLogger("monitoring.health")


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        logger.error("health check: database unreachable", exc_info=True)

    circuits = circuit_states()
    ok = db_ok and all(st != "OPEN" for st in circuits.values())
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": ok,
            "components": {
                "db": {"ok": db_ok},
                "circuits": circuits,
            },
        },
        status=code,
    )
