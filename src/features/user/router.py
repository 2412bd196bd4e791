"""User management router (API endpoints)."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.dependencies import get_db_session
from src.features.auth.dependencies import get_current_user
from src.shared.rate_limit.dependencies import REGISTER_POLICY, rate_limit

from .models import User
from .schemas import UserRegisterRequest, UserResponse
from .service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["User Management"])


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(REGISTER_POLICY))],
)
async def register(data: UserRegisterRequest, session: AsyncSession = Depends(get_db_session)):
    """Register a new account.

    - **email**, **username**: must not be taken (409 otherwise)
    - **password** / **confirm_password**: at least 8 characters, must match
    """
    user = await UserService.register_user(session, data)
    await session.commit()
    return UserResponse.model_validate(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get current user information."""
    return UserResponse.model_validate(current_user)
