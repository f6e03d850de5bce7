"""
Extractor interface.

The relay core hands an extractor a URL, the selectors to read and the
browser options (including timeouts) for one run. Extractors return raw
field values or raise ``ExtractionError``; nothing else escapes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from cosmic_relay.sources.schemas import BrowserConfig, SelectorConfig

RawFields = dict[str, str | None]


@dataclass
class SelectorProbe:
    """Outcome of one selector during a preview."""

    field: str
    matches: int
    value: str | None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "field": self.field,
            "matches": self.matches,
            "value": self.value,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class PreviewResult:
    url: str
    results: list[SelectorProbe] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "results": [r.to_dict() for r in self.results],
            "warnings": list(self.warnings),
        }


class Extractor(ABC):
    """Field extraction from a rendered page."""

    @abstractmethod
    async def extract(
        self,
        url: str,
        selectors: list[SelectorConfig],
        browser: BrowserConfig,
    ) -> RawFields:
        """
        Read every selector's value from ``url``.

        Raises:
            ExtractionError: navigation failed, a selector matched nothing
                within the action timeout, or the browser failed
        """
        ...

    @abstractmethod
    async def inspect(
        self,
        url: str,
        selectors: list[SelectorConfig],
        browser: BrowserConfig,
    ) -> PreviewResult:
        """Probe selectors without failing on individual misses.

        Raises:
            ExtractionError: the page itself could not be loaded
        """
        ...

    async def close(self) -> None:
        """Release browser resources."""
        return None
