"""Input validation helpers shared by tools, retrieval and the API."""

import math
import re
from typing import Any, Dict, List

import jsonschema


class ValidationError(Exception):
    """Custom validation error for better error handling."""
    pass


def validate_embedding_vector(embedding: List[float], dimension: int) -> List[float]:
    """Validate embedding vector format and values."""
    if not isinstance(embedding, list):
        raise ValidationError("Embedding must be a list of floats")

    if len(embedding) != dimension:
        raise ValidationError(
            f"Embedding dimension {len(embedding)} doesn't match "
            f"configured dimension {dimension}"
        )

    validated_embedding = []
    for i, value in enumerate(embedding):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Embedding element at index {i} is not a number")

        if math.isnan(value) or math.isinf(value):
            raise ValidationError(f"Embedding element at index {i} is not finite")

        validated_embedding.append(float(value))

    return validated_embedding


def validate_search_query(query: str) -> str:
    """Validate search query format."""
    if not isinstance(query, str):
        raise ValidationError("Search query must be a string")

    query = query.strip()

    if not query:
        raise ValidationError("Search query cannot be empty")

    # Remove excessive whitespace
    return re.sub(r'\s+', ' ', query)


def validate_weight(weight: Any) -> float:
    """Validate a retrieval weight (non-negative, finite)."""
    if isinstance(weight, bool) or not isinstance(weight, (int, float)):
        raise ValidationError("Weight must be a number")

    weight = float(weight)
    if math.isnan(weight) or math.isinf(weight):
        raise ValidationError("Weight must be finite")
    if weight < 0:
        raise ValidationError("Weight must be greater than or equal to 0")

    return weight


def validate_json_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a tool's published parameter schema."""
    if not isinstance(schema, dict):
        raise ValidationError("Schema must be a dictionary")

    if schema.get("type") != "object":
        raise ValidationError("Tool schema must describe an object")

    try:
        jsonschema.Draft7Validator.check_schema(schema)
    except jsonschema.SchemaError as e:
        raise ValidationError(f"Invalid JSON Schema: {e.message}")

    return schema


def validate_tool_arguments(arguments: Dict[str, Any], input_schema: Dict[str, Any]) -> Dict[str, Any]:
    """Validate tool arguments against input schema."""
    if not isinstance(arguments, dict):
        raise ValidationError("Arguments must be a dictionary")

    if not isinstance(input_schema, dict):
        raise ValidationError("Input schema must be a dictionary")

    try:
        jsonschema.validate(
            instance=arguments,
            schema=input_schema,
            format_checker=jsonschema.Draft7Validator.FORMAT_CHECKER
        )
    except jsonschema.ValidationError as e:
        raise ValidationError(f"Argument validation failed: {e.message}")

    return arguments
