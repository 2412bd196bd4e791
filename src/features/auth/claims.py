"""Typed JWT claim sets.

Each token type has its own model, validated once when the token is decoded.
"""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict


class TokenType(StrEnum):
    """Discriminator carried in the ``token_type`` claim."""

    ACCESS = "access"
    REFRESH = "refresh"


class BaseClaims(BaseModel):
    """Claims shared by every token."""

    user_id: int
    exp: int
    iat: int
    jti: str

    model_config = ConfigDict(frozen=True, extra="ignore")


class AccessClaims(BaseClaims):
    """Claims of a short-lived access token."""

    token_type: Literal["access"] = "access"
    session_id: int
    email: str | None = None
    username: str | None = None
    full_name: str | None = None


class RefreshClaims(BaseClaims):
    """Claims of a long-lived refresh token."""

    token_type: Literal["refresh"] = "refresh"
    refresh_token_id: str
