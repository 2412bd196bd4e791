"""Authentication exceptions."""

from typing import TYPE_CHECKING

from fastapi import HTTPException, status

if TYPE_CHECKING:
    from .models import UserSession


class KeyLoadError(RuntimeError):
    """Raised when the token signing keypair cannot be loaded.

    Not an HTTP error: there is no degraded mode without signing keys, so
    startup aborts.
    """


class AuthenticationException(HTTPException):
    """Base authentication exception."""

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsException(AuthenticationException):
    """Raised when username or password is incorrect."""

    def __init__(self):
        super().__init__(detail="Incorrect username or password")


# Token errors: the client should re-authenticate


class InvalidTokenException(AuthenticationException):
    """Raised when a JWT token cannot be accepted."""

    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(detail=detail)


class MissingTokenException(InvalidTokenException):
    """Raised when no bearer token is present in the header or cookie."""

    def __init__(self):
        super().__init__(detail="Not authenticated")


class MalformedTokenException(InvalidTokenException):
    """Raised when a token is structurally invalid or its claims are incomplete."""

    def __init__(self):
        super().__init__(detail="Malformed token")


class InvalidTokenSignatureException(InvalidTokenException):
    """Raised when the token signature does not verify."""

    def __init__(self):
        super().__init__(detail="Invalid token signature")


class TokenExpiredException(InvalidTokenException):
    """Raised when JWT token has expired."""

    def __init__(self):
        super().__init__(detail="Token has expired")


class InvalidTokenTypeException(InvalidTokenException):
    """Raised when token type is invalid."""

    def __init__(self, expected: str = "access"):
        super().__init__(detail=f"Invalid token type, expected {expected}")


class InvalidRefreshTokenException(InvalidTokenException):
    """Raised when a presented refresh token fails decoding."""

    def __init__(self, detail: str = "Invalid or expired refresh token"):
        super().__init__(detail=detail)


# Session errors: the token decoded but the session behind it is unusable


class SessionException(AuthenticationException):
    """Base session exception."""

    def __init__(self, detail: str = "Session is not valid"):
        super().__init__(detail=detail)


class SessionNotFoundException(SessionException):
    """Raised when neither the cache nor the database knows the session."""

    def __init__(self):
        super().__init__(detail="Session not found")


class SessionInactiveException(SessionException):
    """Raised when the session was revoked or has expired."""

    def __init__(self):
        super().__init__(detail="Session is no longer active")


class RefreshTokenMismatchException(SessionException):
    """Raised when a refresh token does not match the session's stored hash.

    This is the signature of a replayed (already rotated) refresh token.
    The offending session is attached so the caller can revoke it.
    """

    def __init__(self, session: "UserSession | None" = None):
        super().__init__(detail="Refresh token has already been used")
        self.session = session


class ConcurrentRotationException(SessionException):
    """Raised when another request rotated the same refresh token first."""

    def __init__(self):
        super().__init__(detail="Refresh token was rotated by a concurrent request")


# Account state


class UserInactiveException(HTTPException):
    """Raised when user account is inactive."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")


class UserLockedException(HTTPException):
    """Raised when user account is locked."""

    def __init__(self):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail="User account is locked")


class InfrastructureException(HTTPException):
    """Raised when the database or cache cannot serve a request."""

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
