"""Refresh token rotation.

Every successful refresh replaces the session's refresh token, so a stolen
refresh token is good for at most one use. Presenting a token that has
already been rotated out is treated as theft and (by default) revokes the
session.
"""

import logging
import time
from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.features.user.models import User

from .exceptions import (
    InvalidRefreshTokenException,
    InvalidTokenException,
    RefreshTokenMismatchException,
    SessionNotFoundException,
)
from .jwt_utils import TokenCodec, hash_refresh_token
from .ledger import SessionLedger
from .models import UserSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh token issued together for one session."""

    access_token: str
    refresh_token: str
    session_id: int
    access_expires_in: int  # seconds
    refresh_expires_in: int  # seconds


class RefreshCoordinator:
    """Issues token pairs at login and rotates them on refresh."""

    def __init__(
        self,
        codec: TokenCodec,
        ledger: SessionLedger,
        session_factory: async_sessionmaker[AsyncSession],
        revoke_on_reuse: bool = True,
    ):
        self._codec = codec
        self._ledger = ledger
        self._session_factory = session_factory
        self._revoke_on_reuse = revoke_on_reuse

    async def issue(self, user: User, ip_address: str | None = None, user_agent: str | None = None) -> TokenPair:
        """Open a new session for an authenticated user and mint its token pair.

        Args:
            user: Authenticated user
            ip_address: Client IP address (optional)
            user_agent: Client User-Agent header (optional)

        Returns:
            TokenPair bound to the new session

        """
        refresh_token_id = str(uuid4())
        refresh_token = self._codec.encode_refresh(user.id, refresh_token_id)

        record = await self._ledger.create_session(
            user_id=user.id,
            refresh_token_id=refresh_token_id,
            hashed_refresh_token=hash_refresh_token(refresh_token),
            expires_at=int(time.time()) + self._codec.refresh_ttl_seconds,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return self._pair(user, record, refresh_token)

    async def refresh(
        self,
        raw_refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """Exchange a refresh token for a new pair, rotating the session.

        Args:
            raw_refresh_token: Refresh token presented by the client
            ip_address: Client IP address, replaces the stored one when given
            user_agent: Client User-Agent, replaces the stored one when given

        Returns:
            New TokenPair for the same session

        Raises:
            InvalidRefreshTokenException: If the token does not decode as a refresh token
            SessionNotFoundException: If the session is unknown (or was already rotated)
            SessionInactiveException: If the session was revoked or expired
            RefreshTokenMismatchException: If the token was already used (session revoked)
            ConcurrentRotationException: If a concurrent refresh won the rotation
            InvalidTokenException: If the user no longer exists or is inactive

        """
        try:
            claims = self._codec.decode_refresh(raw_refresh_token)
        except InvalidTokenException as err:
            raise InvalidRefreshTokenException() from err

        presented_hash = hash_refresh_token(raw_refresh_token)

        try:
            record = await self._ledger.validate_and_fetch(claims.refresh_token_id, presented_hash)
        except RefreshTokenMismatchException as err:
            if err.session is not None and self._revoke_on_reuse:
                logger.warning(
                    f"Refresh token reuse detected for session {err.session.id} "
                    f"(user {err.session.user_id}), revoking session"
                )
                await self._ledger.revoke(err.session)
            raise

        if record.user_id != claims.user_id:
            logger.warning(f"Refresh token user {claims.user_id} does not own session {record.id}")
            raise SessionNotFoundException()

        user = await self._get_active_user(record.user_id)

        new_refresh_token_id = str(uuid4())
        new_refresh_token = self._codec.encode_refresh(user.id, new_refresh_token_id)
        record = await self._ledger.rotate(
            record,
            new_refresh_token_id=new_refresh_token_id,
            new_hashed_refresh_token=hash_refresh_token(new_refresh_token),
            new_expires_at=int(time.time()) + self._codec.refresh_ttl_seconds,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return self._pair(user, record, new_refresh_token)

    async def logout(self, raw_refresh_token: str) -> bool:
        """Revoke the session behind a refresh token.

        Returns:
            True if an active session was revoked, False if there was nothing to revoke

        """
        try:
            claims = self._codec.decode_refresh(raw_refresh_token)
        except InvalidTokenException:
            return False

        record = await self._ledger.find_by_refresh_token_id(claims.refresh_token_id)
        if record is None or record.user_id != claims.user_id:
            return False

        was_active = record.is_active
        await self._ledger.revoke(record)
        return was_active

    async def _get_active_user(self, user_id: int) -> User:
        async with self._session_factory() as db:
            user = await db.get(User, user_id)
        if user is None or not user.is_active:
            raise InvalidTokenException(detail="User not found or inactive")
        return user

    def _pair(self, user: User, record: UserSession, refresh_token: str) -> TokenPair:
        access_token = self._codec.encode_access(
            user_id=user.id,
            session_id=record.id,
            email=user.email,
            username=user.username,
            full_name=user.full_name,
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            session_id=record.id,
            access_expires_in=self._codec.access_ttl_seconds,
            refresh_expires_in=self._codec.refresh_ttl_seconds,
        )
