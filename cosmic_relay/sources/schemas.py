"""Source definition models.

A source definition is one YAML file describing what to poll, how often,
which fields to pull off the page, and the shape the normalized fields
must take. Definitions are validated with pydantic and resolved once at
boot into an immutable ``ResolvedSource``.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

OutputFieldType = Literal["string", "number", "boolean", "date", "json"]

_FIELD_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_SOURCE_ID = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class Viewport(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    width: int = Field(default=1280, ge=200, le=7680)
    height: int = Field(default=800, ge=200, le=4320)


class BrowserConfig(BaseModel):
    """Per-run browser context options and the timeouts that bound a crawl."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    navigation_timeout_ms: int = Field(default=30_000, gt=0, le=300_000)
    action_timeout_ms: int = Field(default=10_000, gt=0, le=120_000)
    user_agent: str | None = None
    viewport: Viewport = Field(default_factory=Viewport)


class ScheduleConfig(BaseModel):
    """Per-source schedule parameters (all durations in milliseconds)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    interval_ms: int = Field(gt=0)
    jitter_ms: int = Field(default=0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_backoff_ms: int = Field(default=3_600_000, gt=0)
    failure_limit: int = Field(default=5, ge=1)


class SelectorConfig(BaseModel):
    """One field to extract. Exactly one of ``css`` / ``xpath`` is set."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    css: str | None = None
    xpath: str | None = None
    attribute: str | None = None

    @field_validator("field")
    @classmethod
    def _check_field(cls, value: str) -> str:
        if not _FIELD_NAME.match(value):
            raise ValueError(f"invalid field name {value!r}")
        return value

    @model_validator(mode="after")
    def _one_locator(self) -> "SelectorConfig":
        if bool(self.css) == bool(self.xpath):
            raise ValueError(f"selector {self.field!r} needs exactly one of css or xpath")
        return self

    @property
    def locator(self) -> str:
        """Playwright locator string for this selector."""
        return self.css if self.css else f"xpath={self.xpath}"


class ParseRule(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    type: OutputFieldType = "string"
    regex: str | None = None

    @field_validator("regex")
    @classmethod
    def _compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regex: {e}") from e
        return value


class SourceDefinition(BaseModel):
    """Raw, validated contents of one source definition file."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    name: str = Field(min_length=1)
    url: str
    description: str | None = None
    enabled: bool = True
    permitted: bool = False
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    schedule: ScheduleConfig
    selectors: list[SelectorConfig] = Field(min_length=1)
    parse: list[ParseRule] = Field(default_factory=list)
    output_schema: dict[str, OutputFieldType] = Field(min_length=1)
    timestamp_field: str | None = None

    @field_validator("id")
    @classmethod
    def _check_id(cls, value: str) -> str:
        if not _SOURCE_ID.match(value):
            raise ValueError("id must match [a-z0-9][a-z0-9_-]*")
        return value

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @model_validator(mode="after")
    def _cross_references(self) -> "SourceDefinition":
        for name in self.output_schema:
            if not _FIELD_NAME.match(name):
                raise ValueError(f"invalid output field name {name!r}")
        fields = [s.field for s in self.selectors]
        if len(set(fields)) != len(fields):
            raise ValueError("selector fields must be unique")
        for rule in self.parse:
            if rule.field not in self.output_schema:
                raise ValueError(f"parse rule for unknown output field {rule.field!r}")
        if self.timestamp_field is not None:
            if self.output_schema.get(self.timestamp_field) != "date":
                raise ValueError("timestamp_field must name an output field of type date")
        return self


@dataclass(frozen=True)
class ResolvedSource:
    """An immutable, boot-time resolved source.

    ``effective_interval_ms`` is the configured interval raised to the
    global rate floor; ``enabled`` is the conjunction of the definition's
    ``enabled`` and ``permitted`` flags. Neither changes at runtime.
    """

    definition: SourceDefinition
    effective_interval_ms: int
    enabled: bool
    output_model: type[BaseModel] = field(repr=False, compare=False)

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def url(self) -> str:
        return self.definition.url

    @property
    def description(self) -> str | None:
        return self.definition.description

    @property
    def schedule(self) -> ScheduleConfig:
        return self.definition.schedule

    @property
    def browser(self) -> BrowserConfig:
        return self.definition.browser

    @property
    def selectors(self) -> list[SelectorConfig]:
        return self.definition.selectors

    def to_public_dict(self) -> dict[str, Any]:
        """Serializable view without internal-only fields."""
        data = self.definition.model_dump(mode="json")
        data["enabled"] = self.enabled
        data["configured_enabled"] = self.definition.enabled
        data["effective_interval_ms"] = self.effective_interval_ms
        return data
