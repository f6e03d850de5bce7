"""
Pydantic models for API request/response validation.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        default="error",
        description="Error category",
    )


class StatusItem(BaseModel):
    """One status history entry."""

    source_id: str
    state: str = Field(..., description="running, success, error or idle")
    message: str = ""
    attempts: int = Field(default=0, description="Consecutive failures at the time of the entry")
    next_run_at: str | None = None
    created_at: str | None = None


class SourceItem(BaseModel):
    """Catalog entry for one configured source."""

    id: str
    name: str
    description: str | None = None
    url: str
    enabled: bool = Field(..., description="Explicitly enabled and permitted")
    last_run_at: str | None = None
    last_status: str | None = None
    failure_count: int = 0


class SourcesListResponse(BaseModel):
    sources: list[SourceItem]


class SourceDetailResponse(SourceItem):
    """Catalog entry plus recent history and the resolved config."""

    statuses: list[StatusItem] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)


class DataPointItem(BaseModel):
    """One stored extraction result."""

    id: int | None = None
    source_id: str
    raw: dict[str, Any]
    parsed: dict[str, Any]
    collected_at: str | None = None
    source_timestamp: str | None = None


class HistoryResponse(BaseModel):
    """Data points in the clamped range, oldest first."""

    model_config = ConfigDict(populate_by_name=True)

    start: str = Field(..., alias="from", description="Effective lower bound after clamping")
    end: str = Field(..., alias="to", description="Effective upper bound after clamping")
    data: list[DataPointItem]


class SelectorProbeItem(BaseModel):
    field: str
    matches: int
    value: str | None = None
    error: str | None = None


class PreviewResponse(BaseModel):
    """Selector preview results for a candidate source definition."""

    url: str
    results: list[SelectorProbeItem]
    warnings: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy or unhealthy",
    )
    store: bool = Field(default=False, description="Whether the store answered")
    scheduler_running: bool = False
    sources: int = 0
    enabled_sources: int = 0
    in_flight: int = Field(default=0, description="Crawl runs currently executing")
    subscribers: int = Field(default=0, description="Live WebSocket subscriptions")
