"""Health routes - Service health and readiness checks."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response
from sqlalchemy.exc import SQLAlchemyError

from lifesync.api.deps import get_ingestion_service
from lifesync.core.config import settings
from lifesync.schemas.api import HealthResponse
from lifesync.services.ingestion_service import IngestionService

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(response: Response, service: IngestionService = Depends(get_ingestion_service)):
    """
    Health check endpoint for load balancer and Docker health checks.

    Checks storage reachability and the status of the latest sync run.
    Returns 503 if storage is unreachable.
    """
    try:
        runs = service.list_runs(limit=1)
        storage = "ok"
    except SQLAlchemyError as e:
        runs = []
        storage = f"down: {e}"
        response.status_code = 503

    return HealthResponse(
        status="ok" if storage == "ok" else "degraded",
        storage=f"{settings.STORAGE_BACKEND}: {storage}",
        scheduler_running=service.scheduler.running,
        last_sync_status=runs[0].status if runs else None,
    )


@router.get("/ready")
def readiness(response: Response, service: IngestionService = Depends(get_ingestion_service)):
    """Readiness probe - 200 when storage answers, 503 otherwise."""
    try:
        service.list_runs(limit=1)
        return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
    except SQLAlchemyError as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e), "timestamp": datetime.now(timezone.utc).isoformat()}
