"""
Account routes.

    POST /api/auth/register        create workspace + owner, returns token
    POST /api/auth/login           returns token
    GET  /api/auth/me              current account
    PUT  /api/auth/updatedetails   update profile (never the password)
    POST /api/auth/accept-invite   join an existing workspace
"""

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from ..accounts.service import AccountService
from .dependencies import get_accounts, get_current_claims

router = APIRouter(prefix="/auth", tags=["Authentication"])


class RegisterRequest(BaseModel):
    """Request to register a workspace owner."""

    email: str = Field(..., description="Login email")
    password: str = Field(..., description="Plain-text password")
    full_name: str | None = Field(None, description="Display name")
    company_name: str | None = Field(None, description="Workspace name")


class LoginRequest(BaseModel):
    """Request to log in."""

    email: str
    password: str


class AcceptInviteRequest(BaseModel):
    """Request to join an existing workspace."""

    email: str
    password: str
    full_name: str | None = None
    tenant_id: str | None = None
    role: str | None = None


class SessionResponse(BaseModel):
    """Token and the account it belongs to."""

    token: str
    user: dict[str, Any]


@router.post("/register", response_model=SessionResponse)
async def register(
    request: RegisterRequest,
    accounts: AccountService = Depends(get_accounts),
) -> dict[str, Any]:
    """Register user & create tenant."""
    return await accounts.register(
        request.email, request.password, request.full_name, request.company_name
    )


@router.post("/login", response_model=SessionResponse)
async def login(
    request: LoginRequest,
    accounts: AccountService = Depends(get_accounts),
) -> dict[str, Any]:
    """Authenticate user & get token."""
    return await accounts.login(request.email, request.password)


@router.get("/me")
async def me(
    claims: dict[str, Any] = Depends(get_current_claims),
    accounts: AccountService = Depends(get_accounts),
) -> dict[str, Any]:
    """Get logged in user."""
    return await accounts.me(claims["id"])


@router.put("/updatedetails")
async def update_details(
    data: dict[str, Any] = Body(...),
    claims: dict[str, Any] = Depends(get_current_claims),
    accounts: AccountService = Depends(get_accounts),
) -> dict[str, Any]:
    """Update authenticated user details."""
    return await accounts.update_details(claims["id"], data)


@router.post("/accept-invite")
async def accept_invite(
    request: AcceptInviteRequest,
    accounts: AccountService = Depends(get_accounts),
) -> dict[str, str]:
    await accounts.accept_invite(
        request.email,
        request.password,
        full_name=request.full_name,
        tenant_id=request.tenant_id,
        role=request.role,
    )
    return {"msg": "User registered successfully"}
