"""Normalization and output validation for extracted fields.

Raw values come off the page as strings (or None). Parse rules trim,
optionally narrow with a regex, and coerce to the declared type; the
output model then validates the whole record against ``output_schema``.
"""

import json
import re
from datetime import datetime, timezone
from typing import Annotated, Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field, create_model

from cosmic_relay.errors import ValidationError
from cosmic_relay.sources.schemas import OutputFieldType, ParseRule

_TRUTHY = frozenset({"true", "1", "yes"})

_FIELD_TYPES: dict[str, Any] = {
    "string": str,
    "number": Annotated[float, Field(allow_inf_nan=False)],
    "boolean": bool,
    "date": datetime,
    "json": Any,
}


def build_output_model(source_id: str, output_schema: dict[str, OutputFieldType]) -> type[BaseModel]:
    """Build a pydantic model for a source's output schema.

    Output field names are carried as aliases so that names clashing with
    ``BaseModel`` attributes (``json``, ``copy``, ``model_*``) stay usable.
    """
    fields: dict[str, Any] = {}
    for index, (name, type_name) in enumerate(output_schema.items()):
        fields[f"f{index}"] = (_FIELD_TYPES[type_name], Field(alias=name))
    model_name = "Output_" + re.sub(r"\W", "_", source_id)
    return create_model(
        model_name,
        __config__=ConfigDict(extra="ignore", populate_by_name=False),
        **fields,
    )


def apply_parse_rule(value: Any, rule: ParseRule) -> Any:
    """Apply a single parse rule to one raw value."""
    if value is None:
        return None

    parsed: Any = value
    if isinstance(parsed, str):
        parsed = parsed.strip()
        if rule.regex:
            match = re.search(rule.regex, parsed)
            if match:
                group = match.group(1) if match.re.groups else None
                parsed = group if group is not None else match.group(0)

    if rule.type == "number":
        if isinstance(parsed, bool):
            return parsed
        try:
            return float(parsed)
        except (TypeError, ValueError):
            return parsed
    if rule.type == "boolean":
        if isinstance(parsed, str):
            return parsed.lower() in _TRUTHY
        return bool(parsed)
    if rule.type == "date":
        if isinstance(parsed, str):
            try:
                return datetime.fromisoformat(parsed)
            except ValueError:
                return parsed
        return parsed
    if rule.type == "json":
        if isinstance(parsed, str):
            try:
                return json.loads(parsed)
            except json.JSONDecodeError:
                return parsed
        return parsed
    return parsed


def apply_parsers(raw: dict[str, Any], rules: list[ParseRule]) -> dict[str, Any]:
    """Return a copy of ``raw`` with every parse rule applied in order."""
    parsed = dict(raw)
    for rule in rules:
        parsed[rule.field] = apply_parse_rule(parsed.get(rule.field), rule)
    return parsed


def validate_output(model: type[BaseModel], values: dict[str, Any]) -> dict[str, Any]:
    """Validate normalized values and return them, JSON-ready, keyed by output field name.

    Raises:
        ValidationError: a field is missing or has the wrong shape.
    """
    try:
        instance = model.model_validate(values)
    except pydantic.ValidationError as e:
        raise ValidationError(format_validation_error(e)) from e
    return instance.model_dump(mode="json", by_alias=True)


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_validation_error(error: pydantic.ValidationError) -> str:
    """Flatten a pydantic error into ``path: message; path: message``."""
    parts = []
    for item in error.errors():
        path = ".".join(str(p) for p in item.get("loc", ())) or "(root)"
        parts.append(f"{path}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)
