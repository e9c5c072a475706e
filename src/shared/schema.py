"""JSON Schema utilities."""

import copy
from typing import Any, Optional

from jsonschema import Draft7Validator


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = list(validator.iter_errors(data))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def with_description(schema: dict[str, Any], description: Optional[str]) -> dict[str, Any]:
    """
    Return a copy of ``schema`` carrying ``description``.

    Only the ``description`` key is written; every other field of the
    schema is kept as declared. The input is never mutated.
    """
    merged = copy.deepcopy(schema)
    if description:
        merged["description"] = description
    return merged


def build_object_schema(
    properties: dict[str, dict[str, Any]],
    required: Optional[list[str]] = None
) -> dict[str, Any]:
    """
    Create an object JSON Schema from per-property schemas.

    Args:
        properties: Property name to schema, in declaration order
        required: Names of required properties

    Returns:
        JSON Schema dictionary. ``required`` is omitted when empty.
    """
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
    }

    if required:
        schema["required"] = list(required)

    return schema
