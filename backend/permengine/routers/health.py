"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Lightweight health check (no principal store / Redis round trip).

    Also reports the size of the loaded route-permission table, so a
    deploy with an empty table is visible at a glance.
    """
    engine = request.app.state.engine
    return {
        "status": "ok",
        "service": "permengine",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": engine.settings.environment,
        "routeRules": len(engine.registry),
    }
