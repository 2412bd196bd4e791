"""JWT utilities for authentication.

Tokens are signed with RS256: the private key signs, the public key verifies.
"""

import hashlib
from datetime import UTC, datetime, timedelta
from typing import cast
from uuid import uuid4

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidAlgorithmError, InvalidSignatureError, InvalidTokenError
from pydantic import ValidationError

from .claims import AccessClaims, BaseClaims, RefreshClaims, TokenType
from .exceptions import (
    InvalidTokenSignatureException,
    InvalidTokenTypeException,
    MalformedTokenException,
    TokenExpiredException,
)
from .keys import KeyProvider

_CLAIM_MODELS: dict[TokenType, type[BaseClaims]] = {
    TokenType.ACCESS: AccessClaims,
    TokenType.REFRESH: RefreshClaims,
}


def hash_refresh_token(token: str) -> str:
    """One-way hash of a raw refresh token (SHA-256 hex), as stored in the session ledger."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """Signs and verifies access and refresh tokens."""

    def __init__(
        self,
        keys: KeyProvider,
        access_ttl: timedelta = timedelta(minutes=20),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "RS256",
    ):
        self._keys = keys
        self._algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())

    @property
    def refresh_ttl_seconds(self) -> int:
        return int(self.refresh_ttl.total_seconds())

    def sign(self, claims: BaseClaims) -> str:
        """Sign a claim set.

        Args:
            claims: Access or refresh claims

        Returns:
            Encoded JWT token string

        """
        return jwt.encode(claims.model_dump(mode="json"), self._keys.private_key, algorithm=self._algorithm)

    def encode_access(
        self,
        user_id: int,
        session_id: int,
        email: str | None = None,
        username: str | None = None,
        full_name: str | None = None,
    ) -> str:
        """Create an access token bound to a session."""
        issued_at = _epoch_now()
        claims = AccessClaims(
            user_id=user_id,
            session_id=session_id,
            email=email,
            username=username,
            full_name=full_name,
            iat=issued_at,
            exp=issued_at + self.access_ttl_seconds,
            jti=uuid4().hex,
        )
        return self.sign(claims)

    def encode_refresh(self, user_id: int, refresh_token_id: str) -> str:
        """Create a refresh token identified by ``refresh_token_id``."""
        issued_at = _epoch_now()
        claims = RefreshClaims(
            user_id=user_id,
            refresh_token_id=refresh_token_id,
            iat=issued_at,
            exp=issued_at + self.refresh_ttl_seconds,
            jti=uuid4().hex,
        )
        return self.sign(claims)

    def verify(self, token: str, expected_type: TokenType) -> BaseClaims:
        """Decode and verify a token of the expected type.

        Args:
            token: JWT token string
            expected_type: Token type the caller requires

        Returns:
            AccessClaims or RefreshClaims, matching ``expected_type``

        Raises:
            TokenExpiredException: If ``exp`` has passed
            InvalidTokenSignatureException: If the signature (or algorithm) is not ours
            MalformedTokenException: If the token or its claims are structurally invalid
            InvalidTokenTypeException: If ``token_type`` does not match ``expected_type``

        """
        try:
            payload = jwt.decode(
                token,
                self._keys.public_key,
                algorithms=[self._algorithm],
                options={"require": ["exp", "iat"]},
            )
        except ExpiredSignatureError as err:
            raise TokenExpiredException() from err
        except (InvalidSignatureError, InvalidAlgorithmError) as err:
            raise InvalidTokenSignatureException() from err
        except InvalidTokenError as err:
            raise MalformedTokenException() from err

        if payload.get("token_type") != expected_type.value:
            raise InvalidTokenTypeException(expected=expected_type.value)

        try:
            return _CLAIM_MODELS[expected_type].model_validate(payload)
        except ValidationError as err:
            raise MalformedTokenException() from err

    def decode_access(self, token: str) -> AccessClaims:
        return cast(AccessClaims, self.verify(token, TokenType.ACCESS))

    def decode_refresh(self, token: str) -> RefreshClaims:
        return cast(RefreshClaims, self.verify(token, TokenType.REFRESH))


def _epoch_now() -> int:
    return int(datetime.now(UTC).timestamp())
