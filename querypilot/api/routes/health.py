"""
Health Check Routes

FastAPI endpoint for service liveness.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, status

from querypilot.models.api import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health() -> HealthResponse:
    """
    Basic liveness check.

    Returns 200 OK whenever the process is serving requests. The target
    database is supplied per request, so there is nothing else to probe.
    """
    return HealthResponse(
        status="healthy",
        version="0.1.0",
        timestamp=datetime.now(UTC).isoformat(),
    )
