"""User schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import UserStatus


# Request schemas
class UserRegisterRequest(BaseModel):
    """User registration request."""

    email: EmailStr = Field(..., max_length=100)
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9._-]+$")
    full_name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8, max_length=128, description="Password must be at least 8 characters")
    confirm_password: str = Field(..., min_length=8, max_length=128)

    @field_validator("full_name")
    @classmethod
    def strip_full_name(cls, value: str) -> str:
        """Reject names made only of whitespace."""
        value = value.strip()
        if not value:
            raise ValueError("Full name must not be blank")
        return value

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value, info):
        """Validate that password and confirm_password match."""
        if "password" in info.data and value != info.data["password"]:
            raise ValueError("Passwords do not match")
        return value


# Response schemas
class UserResponse(BaseModel):
    """User response."""

    id: int
    email: EmailStr
    username: str
    full_name: str
    status: UserStatus
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}
