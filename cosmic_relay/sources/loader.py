"""Boot-time loading of source definition files.

Every ``*.yaml`` / ``*.yml`` file in the sources directory holds one
definition. Loading is all-or-nothing: the first invalid file raises
``ConfigError`` and startup aborts; nothing is silently skipped.
"""

from pathlib import Path
from typing import Any

import pydantic
import structlog
import yaml

from cosmic_relay.errors import ConfigError
from cosmic_relay.sources.parsers import build_output_model, format_validation_error
from cosmic_relay.sources.schemas import ResolvedSource, SourceDefinition

logger = structlog.get_logger(__name__)

_EXTENSIONS = (".yaml", ".yml")


def resolve_source(definition: SourceDefinition, rate_floor_ms: int) -> ResolvedSource:
    """Derive the immutable runtime view of a definition."""
    return ResolvedSource(
        definition=definition,
        effective_interval_ms=max(rate_floor_ms, definition.schedule.interval_ms),
        enabled=definition.enabled and definition.permitted,
        output_model=build_output_model(definition.id, definition.output_schema),
    )


def parse_source_definition(data: Any, rate_floor_ms: int, origin: str = "<input>") -> ResolvedSource:
    """Validate a decoded definition and resolve it.

    Raises:
        ConfigError: the definition does not satisfy the schema.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"{origin}: expected a mapping at the top level")
    try:
        definition = SourceDefinition.model_validate(data)
    except pydantic.ValidationError as e:
        raise ConfigError(f"{origin}: {format_validation_error(e)}") from e
    return resolve_source(definition, rate_floor_ms)


def load_source_configs(directory: str | Path, rate_floor_ms: int) -> list[ResolvedSource]:
    """
    Load and resolve every source definition in ``directory``.

    Args:
        directory: Folder containing one YAML file per source
        rate_floor_ms: Global minimum poll interval

    Returns:
        Resolved sources ordered by file name

    Raises:
        ConfigError: directory missing or empty, unreadable YAML, invalid
            definition, or duplicate source id
    """
    path = Path(directory)
    if not path.is_dir():
        raise ConfigError(f"sources directory not found: {path}")

    files = sorted(p for p in path.iterdir() if p.is_file() and p.suffix in _EXTENSIONS)
    if not files:
        raise ConfigError(f"no source definitions found in {path}")

    resolved: list[ResolvedSource] = []
    seen: dict[str, str] = {}
    for file in files:
        try:
            data = yaml.safe_load(file.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"{file.name}: cannot read definition: {e}") from e

        source = parse_source_definition(data, rate_floor_ms, origin=file.name)
        if source.id in seen:
            raise ConfigError(
                f"{file.name}: duplicate source id {source.id!r} (also in {seen[source.id]})"
            )
        seen[source.id] = file.name
        resolved.append(source)

    logger.info(
        "Source definitions loaded",
        directory=str(path),
        total=len(resolved),
        enabled=sum(1 for s in resolved if s.enabled),
    )
    return resolved
