"""
Request dependencies shared by the API routers.

The registry and account service are built once by the app lifespan and
stored on app.state; routes reach them through these helpers.
"""

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..accounts.service import AccountService
from ..errors import AuthenticationError
from ..registry import EntityRegistry

security = HTTPBearer(auto_error=False)


def get_registry(request: Request) -> EntityRegistry:
    """Get entity registry from app state."""
    return request.app.state.registry


def get_accounts(request: Request) -> AccountService:
    """Get account service from app state."""
    return request.app.state.accounts


def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    accounts: AccountService = Depends(get_accounts),
) -> dict[str, Any]:
    """Decode the bearer token into its {"id", "tenant_id"} claim."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No token, authorization denied",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return accounts.authenticate_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
