"""Selector preview for candidate source definitions (development only)."""

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, status

from cosmic_relay.api.dependencies import get_relay_service
from cosmic_relay.api.models import ErrorResponse, PreviewResponse
from cosmic_relay.errors import ConfigError, ExtractionError, PreviewNotAllowedError
from cosmic_relay.services.relay_service import RelayService

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/api/preview",
    response_model=PreviewResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
    summary="Probe a definition's selectors against the live page",
)
async def preview(
    body: Any = Body(..., description="Source definition, same shape as a YAML file"),
    service: RelayService = Depends(get_relay_service),
) -> PreviewResponse:
    try:
        result = await service.preview(body)
        return PreviewResponse.model_validate(result.to_dict())
    except PreviewNotAllowedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ExtractionError as e:
        logger.warning("Preview failed", error=str(e))
        raise HTTPException(status_code=500, detail="Preview failed")
    except Exception as e:
        logger.error("preview_failed", error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Preview failed")
