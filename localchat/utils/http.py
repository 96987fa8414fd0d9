"""HTTP utility functions for talking to local and remote services."""

import os
from functools import lru_cache
from typing import Dict, Optional, Union

import httpx

# Default custom certificate path for corporate/enterprise environments
DEFAULT_CUSTOM_CERT_PATH = "/etc/ssl/certs/ca-custom.pem"


@lru_cache(maxsize=1)
def get_ssl_verify() -> Union[str, bool]:
    """
    Get SSL verification setting for HTTP clients.

    Returns the path to a custom CA certificate if it exists at the default location,
    otherwise returns True for default SSL verification.
    """
    if os.path.exists(DEFAULT_CUSTOM_CERT_PATH):
        return DEFAULT_CUSTOM_CERT_PATH
    return True


def bearer_headers(token: Optional[str]) -> Dict[str, str]:
    """Build an Authorization header for an optional bearer token."""
    if token:
        return {"Authorization": f"Bearer {token}"}
    return {}


def create_http_client(
    timeout: float = 30.0,
    **kwargs
) -> httpx.AsyncClient:
    """
    Create an httpx AsyncClient with standard configuration.

    Every outbound call in the runtime (model service, embeddings, vector
    store, web search) goes through this factory so timeouts and TLS
    verification are applied the same way.

    Args:
        timeout: Request timeout in seconds (default: 30.0)
        **kwargs: Additional arguments passed to AsyncClient

    Usage:
        async with create_http_client(timeout=2.0) as client:
            response = await client.get("http://127.0.0.1:6333/")
    """
    return httpx.AsyncClient(
        verify=get_ssl_verify(),
        timeout=httpx.Timeout(timeout),
        **kwargs
    )
