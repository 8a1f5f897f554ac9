"""Authentication for the webhook management API.

Provides:
- HMAC-signed bearer tokens carrying the caller's company and role
- FastAPI dependencies resolving the calling company member
- Role checks for webhook administration (OWNER and ADMIN only)
"""

from __future__ import annotations

import hashlib
import hmac
import time
from functools import lru_cache
from typing import Annotated, Literal

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from agilepm.config import Settings
from agilepm.config import settings as default_settings
from agilepm.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    ValidationError,
)
from agilepm.logging import bind_context, get_logger

logger = get_logger(__name__)

# Security scheme for OpenAPI docs
security = HTTPBearer(auto_error=False)

CompanyRole = Literal["OWNER", "ADMIN", "MEMBER", "VIEWER"]
WEBHOOK_ADMIN_ROLES: frozenset[str] = frozenset({"OWNER", "ADMIN"})


class CompanyMember(BaseModel):
    """The authenticated caller within the company they are acting for.

    Attributes:
        user_id: Unique identifier for the user.
        company_id: Company selected for this request.
        role: The user's role in that company.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(description="Unique identifier for the user")
    company_id: str = Field(description="Company the request acts on")
    role: CompanyRole = Field(default="MEMBER", description="Role within the company")

    @property
    def can_manage_webhooks(self) -> bool:
        return self.role in WEBHOOK_ADMIN_ROLES


class TokenValidator:
    """Validates Bearer tokens using HMAC-SHA256.

    Token format: user_id:company_id:role:expires_at:signature
    where signature = HMAC(secret, user_id:company_id:role:expires_at)
    """

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ConfigurationError("Token secret key must not be empty")
        self.secret_key = secret_key.encode()

    def _sign(self, payload: str) -> str:
        return hmac.new(self.secret_key, payload.encode(), hashlib.sha256).hexdigest()

    def create_token(
        self,
        user_id: str,
        company_id: str,
        role: CompanyRole = "MEMBER",
        expire_minutes: int = 60,
    ) -> str:
        """Create a signed token for a company member."""
        expires_at = int(time.time()) + (expire_minutes * 60)
        payload = f"{user_id}:{company_id}:{role}:{expires_at}"
        return f"{payload}:{self._sign(payload)}"

    def validate_token(self, token: str) -> CompanyMember:
        """Validate a token and return the company member it identifies.

        Raises:
            AuthenticationError: If token is malformed, forged or expired.
        """
        try:
            parts = token.split(":")
            if len(parts) != 5:
                raise AuthenticationError("Invalid token format")

            user_id, company_id, role, expires_at_str, signature = parts
            payload = f"{user_id}:{company_id}:{role}:{expires_at_str}"

            if not hmac.compare_digest(signature, self._sign(payload)):
                raise AuthenticationError("Invalid token signature")

            if time.time() > int(expires_at_str):
                raise AuthenticationError("Token has expired")

            return CompanyMember.model_validate(
                {"user_id": user_id, "company_id": company_id, "role": role}
            )
        except (ValueError, IndexError) as e:
            raise AuthenticationError(f"Invalid token: {e}") from e


@lru_cache(maxsize=1)
def get_token_validator(secret_key: str) -> TokenValidator:
    """Get or create the token validator singleton for ``secret_key``."""
    return TokenValidator(secret_key)


_settings: Settings | None = None


def set_settings(settings: Settings | None) -> None:
    """Override the settings used by API dependencies (app startup, tests)."""
    global _settings
    _settings = settings
    get_token_validator.cache_clear()


def get_settings() -> Settings:
    return _settings or default_settings


async def get_current_member(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> CompanyMember:
    """Resolve the calling company member.

    With auth enabled the bearer token is authoritative. With auth
    disabled (development, tests) the company and role come from the
    X-Company-Id and X-Company-Role headers.
    """
    if settings.is_auth_enabled:
        if credentials is None:
            raise AuthenticationError("Missing authentication credentials")
        member = get_token_validator(settings.effective_auth_secret_key).validate_token(
            credentials.credentials
        )
    else:
        company_id = request.headers.get("x-company-id")
        if not company_id:
            raise ValidationError("company_id", "No company selected")
        try:
            member = CompanyMember.model_validate(
                {
                    "user_id": request.headers.get("x-user-id", "anonymous"),
                    "company_id": company_id,
                    "role": request.headers.get("x-company-role", "MEMBER").upper(),
                }
            )
        except ValueError as e:
            raise ValidationError("role", "Unknown company role") from e

    bind_context(company_id=member.company_id, user_id=member.user_id)
    logger.debug("Company member authenticated", role=member.role)
    return member


async def require_webhook_admin(
    member: Annotated[CompanyMember, Depends(get_current_member)],
) -> CompanyMember:
    """Allow only company OWNERs and ADMINs through."""
    if not member.can_manage_webhooks:
        raise AuthorizationError("Only company owners and admins can manage webhooks")
    return member


MemberDep = Annotated[CompanyMember, Depends(get_current_member)]
AdminDep = Annotated[CompanyMember, Depends(require_webhook_admin)]
