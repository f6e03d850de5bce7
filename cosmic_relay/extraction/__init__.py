"""Extraction: headless-browser field extraction invoked by the relay core."""

from cosmic_relay.extraction.base import Extractor, PreviewResult, RawFields, SelectorProbe

__all__ = ["Extractor", "PreviewResult", "RawFields", "SelectorProbe"]
