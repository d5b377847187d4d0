"""
Account registration and login over the registry's User kind.

The service never owns a table of its own: accounts are ordinary User
records and workspaces are Tenant records, both reached through
EntityRegistry.resolve(). User is always registered, Tenant is optional.

Invariants:
    - Emails are unique among User records
    - Stored passwords are always Argon2 hashes
    - Records returned to callers never carry the password field
    - A failed registration leaves no Tenant behind
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from ..errors import (
    AccountExistsError,
    AuthenticationError,
    DuplicateRecordError,
    RecordNotFoundError,
    ValidationError,
)
from ..registry import ACCOUNT_KIND, EntityRegistry
from ..storage.collection import Collection
from ..storage.record_store import new_record_id
from .security import (
    DEFAULT_TOKEN_TTL,
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)

TENANT_KIND = "Tenant"
SECRET_FIELDS = ("password",)


def public_user(record: Mapping[str, Any]) -> Dict[str, Any]:
    """A User record without its secret fields."""
    return {k: v for k, v in record.items() if k not in SECRET_FIELDS}


class AccountService:
    """Register, authenticate and update accounts.

    Example:
        >>> accounts = AccountService(registry, jwt_secret="change-me")
        >>> session = await accounts.register("ada@example.com", "pw", "Ada")
        >>> claims = accounts.authenticate_token(session["token"])
    """

    def __init__(
        self,
        registry: EntityRegistry,
        jwt_secret: str,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ) -> None:
        self.registry = registry
        self.jwt_secret = jwt_secret
        self.token_ttl = token_ttl

    @property
    def users(self) -> Collection:
        users = self.registry.resolve(ACCOUNT_KIND)
        if users is None:
            raise RuntimeError(f"Registry has no {ACCOUNT_KIND} kind")
        return users

    def _issue_token(self, user: Mapping[str, Any]) -> str:
        return create_access_token(
            user["id"], user.get("tenant_id"), self.jwt_secret, self.token_ttl
        )

    @staticmethod
    def _require_credentials(email: Optional[str], password: Optional[str]) -> None:
        errors = []
        if not email:
            errors.append("Field 'email' is required")
        if not password:
            errors.append("Field 'password' is required")
        if errors:
            raise ValidationError("; ".join(errors), errors=errors, kind=ACCOUNT_KIND)

    async def _create_user(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        if await self.users.find_one({"email": fields["email"]}) is not None:
            raise AccountExistsError(fields["email"])
        fields["password"] = hash_password(fields["password"])
        try:
            return await self.users.insert(fields)
        except DuplicateRecordError as e:
            if e.field_name == "email":
                raise AccountExistsError(fields["email"])
            raise

    async def register(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        company_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a workspace and its owner account.

        Returns:
            {"token": <jwt>, "user": <public user>}

        Raises:
            AccountExistsError: If the email is already registered
            ValidationError: If email or password is missing
        """
        self._require_credentials(email, password)
        if await self.users.find_one({"email": email}) is not None:
            raise AccountExistsError(email)

        tenants = self.registry.resolve(TENANT_KIND)
        if tenants is not None:
            tenant = await tenants.insert(
                {
                    "name": company_name or f"{full_name}'s Workspace",
                    "owner_email": email,
                    "status": "active",
                    "subscription_plan": "free",
                }
            )
            tenant_id = tenant["id"]
        else:
            tenant_id = new_record_id()

        try:
            user = await self._create_user(
                {
                    "email": email,
                    "password": password,
                    "full_name": full_name,
                    "role": "owner",
                    "tenant_id": tenant_id,
                    "is_super_admin": False,
                }
            )
        except Exception:
            if tenants is not None:
                logger.warning(f"Removing tenant {tenant_id} after failed registration")
                await tenants.delete_by_id(tenant_id)
            raise

        if tenants is not None:
            await tenants.update_by_id(tenant_id, {"owner_user_id": user["id"]})

        logger.info(f"Registered account {user['id']} for tenant {tenant_id}")
        return {"token": self._issue_token(user), "user": public_user(user)}

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        """Check credentials and issue a token.

        Raises:
            AuthenticationError: If the email is unknown or the password is wrong
        """
        user = await self.users.find_one({"email": email}) if email else None
        if user is None or not verify_password(password or "", user.get("password")):
            raise AuthenticationError("Invalid Credentials")
        return {"token": self._issue_token(user), "user": public_user(user)}

    async def me(self, user_id: str) -> Dict[str, Any]:
        user = await self.users.get(user_id)
        if user is None:
            raise RecordNotFoundError(ACCOUNT_KIND, user_id)
        return public_user(user)

    async def update_details(self, user_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Update profile fields. The password is never changed here."""
        changes = {k: v for k, v in data.items() if k not in SECRET_FIELDS}
        user = await self.users.update_by_id(user_id, changes)
        return public_user(user)

    async def accept_invite(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        tenant_id: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create an account inside an existing workspace."""
        self._require_credentials(email, password)
        user = await self._create_user(
            {
                "email": email,
                "password": password,
                "full_name": full_name,
                "tenant_id": tenant_id,
                "role": role or "user",
                "is_super_admin": False,
                "status": "active",
            }
        )
        logger.info(f"Invited account {user['id']} joined tenant {tenant_id}")
        return public_user(user)

    def authenticate_token(self, token: str) -> Dict[str, Any]:
        """Return the token's user claim ({"id", "tenant_id"})."""
        return decode_access_token(token, self.jwt_secret)
