"""
Health check endpoints for service monitoring.

/healthz answers as long as the process is up; /healthz/ready also checks
the database and reports the job queue backlog.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from ..config import Settings, get_settings
from ..db.database import ping
from ..utils.logging import get_logger

# Create router for health endpoints
router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/healthz",
    response_model=Dict[str, str],
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Returns service health status and version information",
    response_description="Service is healthy",
)
async def health_check(
    settings: Settings = Depends(get_settings),  # noqa: B008
) -> Dict[str, str]:
    """
    Health check endpoint for monitoring and load balancer probes.

    Example response:
        {"status": "ok", "version": "0.1.0", "environment": "development"}
    """
    # Log health check (at debug level to avoid noise)
    logger.debug("Health check requested")

    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.app_env,
    }


@router.get(
    "/healthz/ready",
    status_code=status.HTTP_200_OK,
    summary="Readiness probe",
    description="Checks database connectivity before reporting ready",
    include_in_schema=False,  # Hide from docs as it's for k8s
)
async def readiness_probe(request: Request) -> Any:
    """
    Readiness probe for Kubernetes deployments.

    Returns 503 when the database cannot be reached.
    """
    try:
        db_latency_ms = await ping()
    except Exception as e:
        logger.warning("Readiness check failed", error=str(e), error_type=type(e).__name__)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ready": False, "database": "unreachable"},
        )

    services = getattr(request.app.state, "services", None)
    body: Dict[str, Any] = {
        "ready": True,
        "database": "ok",
        "databaseLatencyMs": round(db_latency_ms, 2),
    }
    if services is not None:
        body["pendingJobs"] = services.queue.pending()
    return body
