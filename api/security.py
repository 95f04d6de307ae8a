from typing import Optional

from fastapi import Security, HTTPException, Header, status
from fastapi.security import APIKeyHeader
from gemstudio.config.settings import settings

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)

ANONYMOUS_USER = "anonymous"


def verify_api_key(api_key: str = Security(api_key_header)):
    """
    Dependency to verify the API key presence and validity.
    """
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API Key",
        )

    if api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API Key",
        )
    return api_key


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity for profile lookups. Missing header means the shared anonymous profile."""
    return x_user_id.strip() if x_user_id and x_user_id.strip() else ANONYMOUS_USER
