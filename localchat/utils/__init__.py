"""Utility package for the localchat runtime."""

from .validation import (
    ValidationError,
    validate_embedding_vector,
    validate_search_query,
    validate_weight,
    validate_json_schema,
    validate_tool_arguments,
)
from .http import (
    get_ssl_verify,
    bearer_headers,
    create_http_client,
    DEFAULT_CUSTOM_CERT_PATH,
)

__all__ = [
    # Validation utilities
    "ValidationError",
    "validate_embedding_vector",
    "validate_search_query",
    "validate_weight",
    "validate_json_schema",
    "validate_tool_arguments",
    # HTTP utilities
    "get_ssl_verify",
    "bearer_headers",
    "create_http_client",
    "DEFAULT_CUSTOM_CERT_PATH",
]
