"""
API token authentication for read endpoints.

When API_TOKEN is configured, requests must send
`Authorization: Bearer <API_TOKEN>`; otherwise the endpoints are open.
The subscription webhook has its own shared-secret check in the reconciler.
"""

import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from utils.logger import logger

# Security scheme for Swagger UI
security_scheme = HTTPBearer(auto_error=False)


async def require_api_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> None:
    """
    FastAPI dependency enforcing the configured API token.

    Raises HTTPException 401 if the token is missing or wrong.
    """
    expected = request.app.state.settings.API_TOKEN
    if not expected:
        return

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not hmac.compare_digest(credentials.credentials, expected):
        logger.warning(f"Rejected request to {request.url.path}: invalid API token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
            headers={"WWW-Authenticate": "Bearer"},
        )
