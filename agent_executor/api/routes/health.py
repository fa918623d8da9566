"""Health check endpoints."""

from fastapi import APIRouter, Depends

from ... import __version__
from ...tools import ToolRegistry
from ..dependencies import get_registry
from ..schemas import HealthResponse

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check if the API server is running and healthy.",
)
def health_check(registry: ToolRegistry = Depends(get_registry)) -> HealthResponse:
    """Return health status of the API server."""
    return HealthResponse(status="healthy", version=__version__, tools=len(registry))
