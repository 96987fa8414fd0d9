"""Bearer API-key check for the chat and admin endpoints."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from localchat.config import settings

security = HTTPBearer(auto_error=False)


def _configured_key(request: Request) -> Optional[str]:
    """API key of the running app's settings, falling back to the process settings."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None:
        return runtime.settings.API_KEY
    return settings.API_KEY


async def verify_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Security(security),
) -> Optional[str]:
    """Verify the bearer token when an API key is configured.

    Returns:
        The presented key, or None when no key is configured

    Raises:
        HTTPException: 401 when the key is missing, 403 when it is wrong
    """
    expected = _configured_key(request)
    if not expected:
        return None

    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials != expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def require_auth(credentials: Optional[str] = Depends(verify_api_key)) -> Optional[str]:
    """Dependency for endpoints that need authentication when API_KEY is set."""
    return credentials
