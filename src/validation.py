"""
Attribute Validation - JSON Schema checks for desired attributes.

Adapters may declare a JSON Schema for the attributes they accept; desired
attributes are checked against it before any remote call is issued.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from errors import PermanentInvalidInputError

logger = logging.getLogger(__name__)


def check_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Check that an adapter schema is itself a valid JSON Schema.

    Args:
        schema: The schema to check

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except SchemaError as e:
        return False, f"Invalid schema: {e.message}"


def validate_attributes(
    attributes: Mapping[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate desired attributes against a JSON Schema.

    Args:
        attributes: Desired attributes of a resource
        schema: Draft 7 JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    validator = Draft7Validator(schema, format_checker=Draft7Validator.FORMAT_CHECKER)
    errors = list(validator.iter_errors(dict(attributes)))

    if not errors:
        return True, None

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)


def ensure_valid(kind: str, attributes: Mapping[str, Any], schema: Optional[Dict[str, Any]]) -> None:
    """
    Raise PermanentInvalidInputError if ``attributes`` violate ``schema``.

    A missing schema accepts everything. An invalid schema is an adapter bug
    and is reported the same way, since retrying cannot fix it.
    """
    if schema is None:
        return

    ok, error = check_schema(schema)
    if ok:
        ok, error = validate_attributes(attributes, schema)

    if not ok:
        logger.error(f"Rejected {kind} attributes: {error}")
        raise PermanentInvalidInputError(f"Invalid {kind} attributes: {error}")
