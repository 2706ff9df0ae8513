"""
Liveness probe.
"""

from fastapi import APIRouter, Depends, Request, Response

from .common import REQUEST_ID_HEADER, get_request_id
from .models import HealthResponse, StatsResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    response: Response,
    request_id: str = Depends(get_request_id),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns:
        Status indicator plus current admission pool counts
    """
    response.headers[REQUEST_ID_HEADER] = request_id
    stats = request.app.state.admission.stats()
    return HealthResponse(
        status="ok",
        request_id=request_id,
        pool=StatsResponse(**stats.as_dict()),
    )
