"""User service layer."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import EmailAlreadyExists, UsernameAlreadyExists
from .models import User, UserStatus
from .schemas import UserRegisterRequest

logger = logging.getLogger(__name__)


class UserService:
    """Service for user operations."""

    @staticmethod
    async def register_user(session: AsyncSession, data: UserRegisterRequest) -> User:
        """Register a new user.

        Usernames and emails are compared case-insensitively.

        Args:
            session: Database session
            data: User registration data

        Returns:
            Created User object (flushed, so ``id`` is set)

        Raises:
            UsernameAlreadyExists: If username already exists
            EmailAlreadyExists: If email already exists

        """
        stmt = select(User.id).where(func.lower(User.username) == data.username.lower())
        if await session.scalar(stmt) is not None:
            raise UsernameAlreadyExists()

        stmt = select(User.id).where(func.lower(User.email) == data.email.lower())
        if await session.scalar(stmt) is not None:
            raise EmailAlreadyExists()

        user = User(
            email=data.email.lower(),
            username=data.username,
            full_name=data.full_name,
            hashed_password=User.hash_password(data.password),
            status=UserStatus.ACTIVE.value,
            is_logged_in=False,
        )

        session.add(user)
        await session.flush()
        logger.info(f"New user registered: {user.username} ({user.email})")

        return user
