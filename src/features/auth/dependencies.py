"""Authentication dependencies for FastAPI.

The request gate has already verified the access token and its session by the
time a route runs; these dependencies expose what it resolved.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.dependencies import get_db_session
from src.features.user.models import User

from .claims import AccessClaims
from .exceptions import InvalidTokenException, MissingTokenException, UserInactiveException, UserLockedException


async def get_current_claims(request: Request) -> AccessClaims:
    """Access token claims verified by the request gate.

    Raises:
        MissingTokenException: If the route was reached without authentication
            (public paths do not carry claims)

    """
    claims = getattr(request.state, "claims", None)
    if claims is None:
        raise MissingTokenException()
    return claims


async def get_current_user(
    claims: AccessClaims = Depends(get_current_claims),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the current authenticated user.

    Args:
        claims: Verified access token claims
        session: Database session

    Returns:
        User object

    Raises:
        InvalidTokenException: If the user no longer exists
        UserInactiveException: If the account is inactive
        UserLockedException: If the account is locked

    """
    user = await session.get(User, claims.user_id)

    if user is None:
        raise InvalidTokenException(detail="User not found")

    if user.is_locked():
        raise UserLockedException()

    if not user.is_active:
        raise UserInactiveException()

    return user
