"""Authentication schemas (DTOs)."""

from datetime import datetime
from typing import Self

from pydantic import BaseModel, EmailStr, Field, model_validator


# Request schemas
class UserLoginRequest(BaseModel):
    """Login request with separated username/email for validation purposes.

    Note: Uses email-validator library via Pydantic's EmailStr for RFC 5322 compliant email validation.
    """

    username: str | None = Field(
        None,
        min_length=3,
        max_length=30,
        pattern=r"^[a-zA-Z0-9._-]+$",
        description="Username (alphanumeric, hyphens, underscores, dots only)",
    )

    email: EmailStr | None = Field(None, description="Email address (validated via email-validator)")

    password: str = Field(..., min_length=1, max_length=128)

    @model_validator(mode="after")
    def at_least_one_credential(self) -> Self:
        """Ensure at least username or email is provided."""
        if not self.username and not self.email:
            raise ValueError("Either username or email must be provided")
        return self

    @property
    def credential(self) -> str:
        """Return the credential (username or email) for service layer."""
        if self.username:
            return self.username
        if self.email:
            return self.email
        raise ValueError("No credential available")


class RefreshTokenRequest(BaseModel):
    """Refresh token supplied in the body (the refresh cookie is used otherwise)."""

    refresh_token: str | None = None


# Response schemas
class TokenResponse(BaseModel):
    """JWT token response (the same tokens are also set as cookies)."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # access token lifetime, seconds
    refresh_expires_in: int  # seconds


class SessionResponse(BaseModel):
    """One active login session."""

    id: int
    created_at: datetime
    expires_at: int  # epoch seconds
    ip_address: str | None = None
    user_agent: str | None = None
    current: bool = False

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    message: str
