import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/health",
    summary="Liveness check",
    description="Basic liveness probe that returns HTTP 200 if the application process is running.",
)
async def liveness():
    """Liveness probe: returns 200 if the process is running."""
    return {"status": "healthy"}


@router.get(
    "/health/ready",
    summary="Readiness check",
    description="Verifies database connectivity and reports the refresh scheduler state. Returns HTTP 503 if the database is unavailable.",
)
async def readiness(request: Request):
    checks = {}

    try:
        from gist.core.database import engine
        from sqlalchemy import text

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    scheduler = getattr(request.app.state, "scheduler", None)
    checks["scheduler"] = scheduler.state.value if scheduler is not None else "disabled"

    if checks["database"] != "ok":
        return JSONResponse(status_code=503, content={"status": "not ready", "checks": checks})
    return {"status": "ready", "checks": checks}
