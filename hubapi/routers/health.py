"""
Health Check Endpoints

- /health/live     - Liveness check (is process running)
- /health/ready    - Readiness check (database reachable, workers up)
- /health/features - Brand modes, designated writers and feature flags
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from datetime import datetime, timezone

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("/live")
def liveness():
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/ready")
def readiness(request: Request):
    state = request.app.state
    db_ok = state.db.ping()
    pool = getattr(state, "worker_pool", None)
    poller = getattr(state, "retry_poller", None)

    body = {
        "status": "ready" if db_ok else "not_ready",
        "checks": {
            "database": "up" if db_ok else "down",
            "worker_pool": "running" if pool is not None and pool.running else "external",
            "retry_poller": poller.status() if poller is not None else {"running": False},
        },
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)


@router.get("/features")
def features(request: Request):
    state = request.app.state
    return state.registry.summary(state.settings.feature_flags())
