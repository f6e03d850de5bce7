"""Source endpoints: catalog, latest value, history and resolved configs."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from cosmic_relay.api.dependencies import get_relay_service
from cosmic_relay.api.models import (
    DataPointItem,
    ErrorResponse,
    HistoryResponse,
    SourceDetailResponse,
    SourcesListResponse,
)
from cosmic_relay.errors import DataNotFoundError, InvalidRangeError, SourceNotFoundError
from cosmic_relay.services.relay_service import RelayService

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get(
    "/api/sources",
    response_model=SourcesListResponse,
    responses={500: {"model": ErrorResponse}},
    summary="List configured sources",
)
async def list_sources(
    service: RelayService = Depends(get_relay_service),
) -> SourcesListResponse:
    try:
        sources = await service.list_sources()
        return SourcesListResponse.model_validate({"sources": sources})
    except Exception as e:
        logger.error("list_sources_failed", error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list sources")


@router.get(
    "/api/sources/{source_id}",
    response_model=SourceDetailResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Source detail with recent status history",
)
async def get_source(
    source_id: str,
    service: RelayService = Depends(get_relay_service),
) -> SourceDetailResponse:
    try:
        return SourceDetailResponse.model_validate(await service.get_source(source_id))
    except SourceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error("get_source_failed", source_id=source_id, error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get source")


@router.get(
    "/api/sources/{source_id}/latest",
    response_model=DataPointItem,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Most recent data point inside the retention window",
)
async def get_latest(
    source_id: str,
    service: RelayService = Depends(get_relay_service),
) -> DataPointItem:
    try:
        point = await service.latest(source_id)
        return DataPointItem.model_validate(point.to_dict())
    except (SourceNotFoundError, DataNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error("get_latest_failed", source_id=source_id, error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get latest data")


@router.get(
    "/api/sources/{source_id}/history",
    response_model=HistoryResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Data points in a time range, clamped to the retention window",
)
async def get_history(
    source_id: str,
    start: str | None = Query(default=None, alias="from", description="ISO-8601 or epoch ms"),
    end: str | None = Query(default=None, alias="to", description="ISO-8601 or epoch ms"),
    service: RelayService = Depends(get_relay_service),
) -> HistoryResponse:
    try:
        result = await service.history(source_id, start, end)
        return HistoryResponse.model_validate(result.to_dict())
    except InvalidRangeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (SourceNotFoundError, DataNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error("get_history_failed", source_id=source_id, error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get history")


@router.get(
    "/api/config/sources",
    summary="Resolved source configs loaded at boot",
)
async def list_configs(
    service: RelayService = Depends(get_relay_service),
) -> list[dict]:
    return service.list_resolved_configs()
