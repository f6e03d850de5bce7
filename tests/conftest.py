"""Pytest fixtures for cosmic-relay tests."""

import asyncio
from collections import defaultdict, deque
from typing import Any

import pytest

from cosmic_relay.clock import HOUR_MS
from cosmic_relay.config.settings import Settings
from cosmic_relay.errors import ExtractionError
from cosmic_relay.extraction.base import Extractor, PreviewResult, RawFields, SelectorProbe
from cosmic_relay.sources.loader import parse_source_definition
from cosmic_relay.sources.schemas import BrowserConfig, ResolvedSource, SelectorConfig
from cosmic_relay.storage.memory import MemoryStore

# 2026-02-07T10:00:00Z
T0 = 1_770_458_400_000


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now

    def set(self, ms: int) -> None:
        self.now = ms


class FakeExtractor(Extractor):
    """Extractor returning scripted outcomes per URL.

    Outcomes are dicts (returned as raw fields) or exceptions (raised).
    Without a scripted outcome the URL yields ``{"value": "42"}``. Close
    ``gate`` to hold every extraction until it is set again.
    """

    def __init__(self) -> None:
        self.outcomes: dict[str, deque] = defaultdict(deque)
        self.calls: list[str] = []
        self.gate = asyncio.Event()
        self.gate.set()
        self.active = 0
        self.max_active = 0
        self.closed = False
        self.preview: PreviewResult | None = None

    def script(self, url: str, *outcomes: Any) -> None:
        self.outcomes[url].extend(outcomes)

    def fail(self, url: str, times: int, message: str = "selector #value not found") -> None:
        self.script(url, *[ExtractionError(message) for _ in range(times)])

    async def extract(
        self,
        url: str,
        selectors: list[SelectorConfig],
        browser: BrowserConfig,
    ) -> RawFields:
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.wait()
            queue = self.outcomes.get(url)
            outcome = queue.popleft() if queue else {"value": "42"}
            if isinstance(outcome, BaseException):
                raise outcome
            return dict(outcome)
        finally:
            self.active -= 1

    async def inspect(
        self,
        url: str,
        selectors: list[SelectorConfig],
        browser: BrowserConfig,
    ) -> PreviewResult:
        if self.preview is not None:
            return self.preview
        return PreviewResult(
            url=url,
            results=[SelectorProbe(field=s.field, matches=1, value="42") for s in selectors],
        )

    async def close(self) -> None:
        self.closed = True


def source_definition(source_id: str = "alpha", **overrides: Any) -> dict[str, Any]:
    """A valid source definition mapping, as decoded from YAML."""
    schedule = {
        "interval_ms": 30_000,
        "jitter_ms": 0,
        "backoff_multiplier": 2,
        "max_backoff_ms": 3_600_000,
        "failure_limit": 5,
    }
    schedule.update(overrides.pop("schedule", {}))
    data: dict[str, Any] = {
        "id": source_id,
        "name": f"Source {source_id}",
        "description": "Test source",
        "url": f"https://example.org/{source_id}",
        "enabled": True,
        "permitted": True,
        "schedule": schedule,
        "selectors": [{"field": "value", "css": "#value"}],
        "parse": [{"field": "value", "type": "number"}],
        "output_schema": {"value": "number"},
    }
    data.update(overrides)
    return data


def make_source(source_id: str = "alpha", rate_floor_ms: int = 20_000, **overrides: Any) -> ResolvedSource:
    return parse_source_definition(source_definition(source_id, **overrides), rate_floor_ms)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing: in-memory store, 4h window, no .env."""
    return Settings(
        _env_file=None,
        environment="development",
        log_level="DEBUG",
        storage_backend="memory",
        rate_floor_ms=20_000,
        retention_window_seconds=4 * HOUR_MS // 1000,
        max_concurrency=2,
        tick_interval_seconds=0.01,
        sweep_interval_seconds=0.01,
        preview_enabled=True,
        ws_max_connections=5,
        ws_queue_size=10,
    )
