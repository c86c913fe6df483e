from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException

from worklog_auth.api.errors import ApiError, api_error_handler
from worklog_auth.api.routers import access, auth
from worklog_auth.infra.audit import AuditMiddleware
from worklog_auth.infra.db import check_db_ready
from worklog_auth.infra.redis_state import check_redis_ready

logger = logging.getLogger(__name__)

app = FastAPI(
    title="worklog-auth",
    description="Authentication, role-based authorization and audited bypass for the work-log app.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)
app.add_exception_handler(ApiError, api_error_handler)

app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(access.router, prefix="/api/access", tags=["access"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        logger.warning("readiness check failed: %s", checks)
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
