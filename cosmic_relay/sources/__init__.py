"""Sources: definition files resolved into immutable runtime sources."""

from cosmic_relay.sources.loader import load_source_configs, parse_source_definition
from cosmic_relay.sources.schemas import ResolvedSource, SourceDefinition

__all__ = [
    "ResolvedSource",
    "SourceDefinition",
    "load_source_configs",
    "parse_source_definition",
]
