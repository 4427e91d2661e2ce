from __future__ import annotations

from fastapi import FastAPI, HTTPException

from portal.api.routers import access, applications, auth, catalog, me, roster
from portal.infra.db import check_db_ready
from portal.infra.logging_config import configure_logging
from portal.infra.redis_state import check_redis_ready

configure_logging()

app = FastAPI(
    title="roleplay-portal",
    description="Role sync, department access and whitelist applications for a roleplay community.",
    version="0.1.0",
)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(me.router, prefix="/api/me", tags=["me"])
app.include_router(access.router, prefix="/api/access", tags=["access"])
app.include_router(applications.router, prefix="/api/applications", tags=["applications"])
app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])
app.include_router(roster.router, prefix="/api/roster", tags=["roster"])


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
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
