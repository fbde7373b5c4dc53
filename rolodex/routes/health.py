"""
Health check endpoints with database pool and model client status.
"""

import time

from fastapi import APIRouter, Request

from rolodex.config import settings
from rolodex.db.pool import db_health_check
from rolodex.db.postgres import check_db

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "rolodex"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check covering the store, the model client and configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Postgres round-trip
    t0 = time.time()
    db_result = await check_db()
    postgres_ok = db_result is True
    checks["postgres"] = {"ok": postgres_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
    if not postgres_ok:
        checks["postgres"]["error"] = db_result
    overall_ok = overall_ok and postgres_ok

    # 2) Pool statistics
    try:
        pool_health = await db_health_check()
        checks["database_pool"] = {
            "ok": pool_health.get("healthy", False),
            "pool_stats": pool_health.get("pool_stats"),
        }
        if not pool_health.get("healthy", False):
            checks["database_pool"]["error"] = pool_health.get("error", "Pool unhealthy")
    except Exception as e:
        checks["database_pool"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
    overall_ok = overall_ok and checks["database_pool"]["ok"]

    # 3) Language model client; extraction still works through the local fallback
    openai_service = getattr(request.app.state, "openai_service", None)
    if openai_service is None:
        checks["openai"] = {"ok": False, "error": "OPENAI_API_KEY not set"}
        overall_ok = False
    else:
        checks["openai"] = {"ok": True, **openai_service.health_check()["configuration"]}

    # 4) Configuration
    config_issues = []
    if not settings.SUPABASE_DB_URL:
        config_issues.append("SUPABASE_DB_URL not set")
    if not settings.SUPABASE_URL:
        config_issues.append("SUPABASE_URL not set")

    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
        "project_ref": settings.project_ref(),
    }
    overall_ok = overall_ok and not config_issues

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
