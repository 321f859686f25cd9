# filevault/routers/health.py
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..models.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def database_status(request: Request) -> str:
    try:
        await request.app.state.database.ping()
        return "healthy"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database health check failed: %s", e)
        return f"unhealthy: {e}"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Service health with a database check"""
    settings = request.app.state.settings
    database = await database_status(request)
    return HealthResponse(
        status="healthy" if database == "healthy" else "degraded",
        service=request.app.title,
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        checks={"database": database},
    )


@router.get("/ready")
async def ready_check(request: Request):
    """Readiness probe endpoint"""
    database = await database_status(request)
    if database != "healthy":
        return JSONResponse(status_code=503, content={"ready": False, "error": database})
    return {"ready": True}
