"""Session ledger: durable session rows mirrored into Redis.

The database row is authoritative. Redis holds two advisory structures:

- ``refresh_token:{refresh_token_id}`` -> hashed refresh token (TTL = remaining lifetime)
- ``user_session:{user_id}`` -> set of active session ids (checked on every request)

Cache failure policy:

=====================  ==========================================
Operation              When Redis fails
=====================  ==========================================
create/rotate/revoke   logged, the durable write stands
validate_and_fetch     treated as a miss, read the database
is_member              fail closed (not a member)
=====================  ==========================================
"""

import hmac
import logging
import time

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database.base import utc_now
from src.database.client import session_scope

from .exceptions import (
    ConcurrentRotationException,
    RefreshTokenMismatchException,
    SessionInactiveException,
    SessionNotFoundException,
)
from .models import UserSession

logger = logging.getLogger(__name__)


def refresh_token_key(refresh_token_id: str) -> str:
    return f"refresh_token:{refresh_token_id}"


def user_sessions_key(user_id: int) -> str:
    return f"user_session:{user_id}"


def _epoch_now() -> int:
    return int(time.time())


def _hashes_match(stored: str, presented: str) -> bool:
    return hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))


class SessionLedger:
    """Creates, validates, rotates and revokes login sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Redis,
        membership_ttl_seconds: int,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._membership_ttl = membership_ttl_seconds

    async def create_session(
        self,
        user_id: int,
        refresh_token_id: str,
        hashed_refresh_token: str,
        expires_at: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> UserSession:
        """Persist a new session, then mirror it into the cache.

        Args:
            user_id: Owner of the session
            refresh_token_id: Identifier embedded in the refresh token
            hashed_refresh_token: Hash of the raw refresh token
            expires_at: Expiry as epoch seconds
            ip_address: Client IP address (optional)
            user_agent: Client User-Agent header (optional)

        Returns:
            The committed UserSession

        Raises:
            SQLAlchemyError: If the durable insert fails (nothing is mirrored)

        """
        record = UserSession(
            user_id=user_id,
            refresh_token_id=refresh_token_id,
            hashed_refresh_token=hashed_refresh_token,
            expires_at=expires_at,
            is_active=True,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        async with session_scope(self._session_factory) as db:
            db.add(record)

        logger.info(f"Session {record.id} created for user {user_id}")
        await self._mirror_if_active(record)
        return record

    async def validate_and_fetch(self, refresh_token_id: str, presented_hash: str) -> UserSession:
        """Look up a session by refresh token id and check the presented token hash.

        Reads through the cache: a cache miss (or cache outage) falls back to
        the database and re-populates the cache entry.

        Args:
            refresh_token_id: Identifier from the refresh token claims
            presented_hash: Hash of the raw refresh token the client sent

        Returns:
            The matching, active UserSession

        Raises:
            SessionNotFoundException: If no session has this refresh token id
            SessionInactiveException: If the session was revoked or expired
            RefreshTokenMismatchException: If the hash differs from the stored one

        """
        cached_hash = await self._get_cached_hash(refresh_token_id)

        if cached_hash is not None and not _hashes_match(cached_hash, presented_hash):
            raise RefreshTokenMismatchException(session=await self.find_by_refresh_token_id(refresh_token_id))

        record = await self.find_by_refresh_token_id(refresh_token_id)
        if record is None:
            raise SessionNotFoundException()

        now = _epoch_now()
        if not record.is_usable(now):
            raise SessionInactiveException()

        if not _hashes_match(record.hashed_refresh_token, presented_hash):
            raise RefreshTokenMismatchException(session=record)

        if cached_hash is None:
            await self._mirror_refresh_token(record, now)

        return record

    async def rotate(
        self,
        record: UserSession,
        new_refresh_token_id: str,
        new_hashed_refresh_token: str,
        new_expires_at: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> UserSession:
        """Swap in a new refresh token, guarded by the current id and hash.

        The UPDATE only matches while the row still carries the values the
        caller validated, so of several requests rotating the same token
        exactly one succeeds. Membership in the user's session set is left
        alone: it was granted at login and only revocation removes it.

        Args:
            record: Session as returned by ``validate_and_fetch``
            new_refresh_token_id: Identifier embedded in the new refresh token
            new_hashed_refresh_token: Hash of the new raw refresh token
            new_expires_at: New expiry as epoch seconds
            ip_address: Client IP address of the refreshing request (optional)
            user_agent: Client User-Agent of the refreshing request (optional)

        Raises:
            ConcurrentRotationException: If the row was rotated or revoked meanwhile

        """
        old_refresh_token_id = record.refresh_token_id
        values = {
            "refresh_token_id": new_refresh_token_id,
            "hashed_refresh_token": new_hashed_refresh_token,
            "expires_at": new_expires_at,
        }
        if ip_address is not None:
            values["ip_address"] = ip_address
        if user_agent is not None:
            values["user_agent"] = user_agent[:500]

        stmt = (
            update(UserSession)
            .where(
                UserSession.id == record.id,
                UserSession.refresh_token_id == old_refresh_token_id,
                UserSession.hashed_refresh_token == record.hashed_refresh_token,
                UserSession.is_active.is_(True),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        async with session_scope(self._session_factory) as db:
            result = await db.execute(stmt)
            if result.rowcount != 1:
                logger.warning(f"Lost rotation race for session {record.id}")
                raise ConcurrentRotationException()

        for name, value in values.items():
            setattr(record, name, value)
        logger.info(f"Session {record.id} rotated for user {record.user_id}")

        try:
            await self._cache.delete(refresh_token_key(old_refresh_token_id))
        except RedisError:
            logger.warning(f"Failed to drop cached refresh token for session {record.id}", exc_info=True)
        await self._mirror_refresh_token(record, _epoch_now())
        return record

    async def revoke(self, record: UserSession) -> None:
        """Deactivate a session in the database and remove it from the cache.

        Idempotent: revoking an inactive session succeeds and does nothing
        beyond clearing any cache leftovers.
        """
        async with session_scope(self._session_factory) as db:
            current = await db.get(UserSession, record.id, with_for_update=True)
            if current is not None and current.is_active:
                current.is_active = False
                current.revoked_at = utc_now()
                logger.info(f"Session {record.id} revoked for user {record.user_id}")
            refresh_token_id = current.refresh_token_id if current is not None else record.refresh_token_id

        record.is_active = False
        await self._forget(record.user_id, record.id, [refresh_token_id])

    async def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every active session of a user.

        Returns:
            Number of sessions that were active

        """
        async with session_scope(self._session_factory) as db:
            stmt = (
                select(UserSession)
                .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .with_for_update()
            )
            records = list((await db.scalars(stmt)).all())
            revoked_at = utc_now()
            for current in records:
                current.is_active = False
                current.revoked_at = revoked_at

        try:
            async with self._cache.pipeline(transaction=True) as pipe:
                pipe.delete(user_sessions_key(user_id))
                if records:
                    pipe.delete(*(refresh_token_key(r.refresh_token_id) for r in records))
                await pipe.execute()
        except RedisError:
            logger.error(f"Failed to clear cached sessions for user {user_id}", exc_info=True)

        logger.info(f"Revoked {len(records)} session(s) for user {user_id}")
        return len(records)

    async def list_active_sessions(self, user_id: int) -> list[UserSession]:
        """Active, unexpired sessions of a user, newest first."""
        stmt = (
            select(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
                UserSession.expires_at > _epoch_now(),
            )
            .order_by(UserSession.created_at.desc(), UserSession.id.desc())
        )
        async with self._session_factory() as db:
            return list((await db.scalars(stmt)).all())

    async def find_by_refresh_token_id(self, refresh_token_id: str) -> UserSession | None:
        async with self._session_factory() as db:
            stmt = select(UserSession).where(UserSession.refresh_token_id == refresh_token_id)
            return await db.scalar(stmt)

    async def is_member(self, user_id: int, session_id: int) -> bool:
        """Check whether a session is one of the user's active sessions.

        The cache set answers in O(1). A miss is confirmed against the
        database (the set may have been evicted) and the set is repaired.
        If Redis is unreachable the session is treated as not a member.
        """
        try:
            if await self._cache.sismember(user_sessions_key(user_id), str(session_id)):
                return True
        except RedisError:
            logger.warning(f"Session membership check failed for user {user_id}, denying", exc_info=True)
            return False

        async with self._session_factory() as db:
            record = await db.get(UserSession, session_id)

        if record is None or record.user_id != user_id or not record.is_usable(_epoch_now()):
            return False

        logger.info(f"Restoring evicted session {session_id} to cache for user {user_id}")
        return await self._mirror_if_active(record)

    async def _get_cached_hash(self, refresh_token_id: str) -> str | None:
        try:
            return await self._cache.get(refresh_token_key(refresh_token_id))
        except RedisError:
            logger.warning("Refresh token cache lookup failed, falling back to database", exc_info=True)
            return None

    async def _mirror(self, record: UserSession) -> None:
        """Write the refresh token entry and add the session to the user's set."""
        ttl = record.remaining_ttl(_epoch_now())
        if ttl <= 0:
            return
        members_key = user_sessions_key(record.user_id)
        try:
            async with self._cache.pipeline(transaction=True) as pipe:
                pipe.set(refresh_token_key(record.refresh_token_id), record.hashed_refresh_token, ex=ttl)
                pipe.sadd(members_key, str(record.id))
                pipe.expire(members_key, self._membership_ttl)
                await pipe.execute()
        except RedisError:
            logger.warning(f"Failed to mirror session {record.id} to cache", exc_info=True)

    async def _mirror_if_active(self, record: UserSession) -> bool:
        """Mirror a session, then undo it if the row was revoked in the meantime.

        A revoke commits before it removes the id from the set, so re-reading
        the row after the SADD either sees it inactive or the revoke's SREM
        lands after ours.
        """
        await self._mirror(record)
        async with self._session_factory() as db:
            still_active = await db.scalar(select(UserSession.is_active).where(UserSession.id == record.id))
        if still_active:
            return True

        logger.info(f"Session {record.id} was revoked while being cached, removing it again")
        record.is_active = False
        await self._forget(record.user_id, record.id, [record.refresh_token_id])
        return False

    async def _mirror_refresh_token(self, record: UserSession, now: int) -> None:
        ttl = record.remaining_ttl(now)
        if ttl <= 0:
            return
        try:
            await self._cache.set(refresh_token_key(record.refresh_token_id), record.hashed_refresh_token, ex=ttl)
        except RedisError:
            logger.warning(f"Failed to re-populate cache for session {record.id}", exc_info=True)

    async def _forget(self, user_id: int, session_id: int, refresh_token_ids: list[str]) -> None:
        try:
            async with self._cache.pipeline(transaction=True) as pipe:
                pipe.srem(user_sessions_key(user_id), str(session_id))
                pipe.delete(*(refresh_token_key(rid) for rid in refresh_token_ids))
                await pipe.execute()
        except RedisError:
            logger.error(f"Failed to remove session {session_id} from cache", exc_info=True)
