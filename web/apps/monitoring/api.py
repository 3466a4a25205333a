import logging

from django.core.cache import cache
from django.db import connection
from django.db.utils import DatabaseError
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _db_ok() -> bool:
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        return True
    except DatabaseError:
        logger.exception("health: database check failed")
        return False


def _cache_ok() -> bool:
    try:
        cache.set("health:probe", "1", timeout=5)
        return cache.get("health:probe") == "1"
    except Exception:
        logger.exception("health: cache check failed")
        return False


def health_view(_request):
    db_ok = _db_ok()
    cache_ok = _cache_ok()

    # The cache only speeds up reads; losing it degrades but does not fail.
    ok = db_ok
    code = 200 if ok else 503
    return JsonResponse(
        {"ok": ok, "components": {"db": {"ok": db_ok}, "cache": {"ok": cache_ok}}},
        status=code,
    )
