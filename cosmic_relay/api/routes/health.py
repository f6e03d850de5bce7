"""
Health check endpoint.
"""

import time

import structlog
from fastapi import APIRouter, Depends

from cosmic_relay.api.dependencies import get_relay_service
from cosmic_relay.api.models import HealthResponse
from cosmic_relay.services.relay_service import RelayService

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health",
)
async def health(service: RelayService = Depends(get_relay_service)) -> HealthResponse:
    start = time.perf_counter()
    report = await service.health()
    logger.debug(
        "Health checked",
        status=report["status"],
        latency_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return HealthResponse.model_validate(report)
