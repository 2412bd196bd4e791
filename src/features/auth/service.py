"""Authentication service layer (credential checks)."""

import logging
from datetime import timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.base import utc_now
from src.features.user.models import User, UserStatus

logger = logging.getLogger(__name__)

MAX_FAILED_LOGIN_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=30)


class AuthService:
    """Service for credential authentication.

    Token issuance and rotation live in ``RefreshCoordinator``.
    """

    @staticmethod
    async def authenticate_user(session: AsyncSession, credential: str, password: str) -> User | None:
        """Authenticate a user with either username or email and password.

        After ``MAX_FAILED_LOGIN_ATTEMPTS`` consecutive failures the account is
        locked for ``LOCKOUT_DURATION``. An expired lock is lifted on the next
        attempt.

        Args:
            session: Database session (caller commits)
            credential: Username or email address
            password: Plain text password

        Returns:
            User object if authentication successful, None otherwise

        """
        stmt = select(User).where(or_(User.username == credential, func.lower(User.email) == credential.lower()))
        user = await session.scalar(stmt)

        if not user:
            return None

        if user.status == UserStatus.LOCKED.value and not user.is_locked():
            logger.info(f"Lock expired, reactivating account: {credential}")
            user.status = UserStatus.ACTIVE.value
            user.locked_until = None
            user.failed_login_attempts = 0

        if user.is_locked():
            logger.warning(f"Login attempt for locked account: {credential}")
            return None

        if not user.is_active:
            logger.warning(f"Login attempt for inactive account: {credential}")
            return None

        if not user.verify_password(password):
            user.failed_login_attempts += 1

            if user.failed_login_attempts >= MAX_FAILED_LOGIN_ATTEMPTS:
                user.locked_until = utc_now() + LOCKOUT_DURATION
                user.status = UserStatus.LOCKED.value
                logger.warning(f"Account locked due to failed attempts: {credential}")

            return None

        user.failed_login_attempts = 0
        user.last_login_at = utc_now()
        user.locked_until = None
        user.is_logged_in = True

        return user
