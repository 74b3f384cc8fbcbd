"""Structural validation of parsed documents against the schemas in
:mod:`reprovision.schema.documents`.

Only the subset of JSON Schema the document schemas use is implemented:
``type``, ``enum``, ``pattern``, ``minLength``, ``minimum``, ``required``,
``properties``, ``items`` (plain or ``oneOf``) and ``minItems``. Properties
not named in a schema are tolerated; the loaders decide whether to log them.
"""

from __future__ import annotations

import re
from typing import Any


def validate_schema(data: Any, schema: dict) -> list[str]:
    """Validate a parsed YAML/JSON document against a schema.

    Returns:
        List of error messages. Empty list means valid.
    """
    issues: list[str] = []
    _validate_node(data, schema, "", issues)
    return issues


def unknown_keys(data: dict, schema: dict) -> list[str]:
    """Top-level keys of ``data`` that the schema does not declare."""
    props = schema.get("properties", {})
    return sorted(k for k in data if k not in props)


def _validate_node(data: Any, schema: dict, path: str, issues: list[str]) -> None:
    if "oneOf" in schema:
        for option in schema["oneOf"]:
            trial: list[str] = []
            _validate_node(data, option, path, trial)
            if not trial:
                return
        issues.append(f"{path or '/'}: value does not match any of the allowed shapes")
        return

    schema_type = schema.get("type")

    if schema_type and not _type_matches(data, schema_type):
        issues.append(f"{path or '/'}: expected type '{schema_type}', got {type(data).__name__}")
        return  # Don't recurse into wrong types

    if "enum" in schema and data not in schema["enum"]:
        issues.append(f"{path or '/'}: value '{data}' not in allowed values {schema['enum']}")

    if schema_type == "string" and isinstance(data, str):
        min_len = schema.get("minLength", 0)
        if len(data) < min_len:
            issues.append(f"{path or '/'}: string too short (min {min_len}, got {len(data)})")
        if "pattern" in schema and not re.match(schema["pattern"], data):
            issues.append(
                f"{path or '/'}: string '{data}' does not match pattern '{schema['pattern']}'"
            )

    if schema_type == "integer" and isinstance(data, int) and "minimum" in schema:
        if data < schema["minimum"]:
            issues.append(f"{path or '/'}: value {data} below minimum {schema['minimum']}")

    if schema_type == "object" and isinstance(data, dict):
        for req in schema.get("required", []):
            if req not in data:
                issues.append(f"{path or '/'}: missing required property '{req}'")

        props = schema.get("properties", {})
        for key, value in data.items():
            if key in props:
                _validate_node(value, props[key], f"{path}.{key}", issues)

    if schema_type == "array" and isinstance(data, list):
        min_items = schema.get("minItems", 0)
        if len(data) < min_items:
            issues.append(f"{path or '/'}: array too short (min {min_items}, got {len(data)})")

        items_schema = schema.get("items")
        if items_schema:
            for i, item in enumerate(data):
                _validate_node(item, items_schema, f"{path}[{i}]", issues)


def _type_matches(data: Any, schema_type: str) -> bool:
    type_map = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
        "null": type(None),
    }
    expected = type_map.get(schema_type)
    if expected is None:
        return True
    # YAML booleans are ints in Python; keep them apart.
    if schema_type in ("integer", "number") and isinstance(data, bool):
        return False
    return isinstance(data, expected)
