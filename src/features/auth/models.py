"""Authentication models (login sessions backing refresh token rotation)."""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.database.base import Base, utc_now


class UserSession(Base):
    """Durable record of a login session.

    One row per login. Every refresh rotates ``refresh_token_id`` and
    ``hashed_refresh_token`` in place; logout flips ``is_active`` to False,
    which is terminal. Rows are never deleted here.
    """

    __tablename__ = "user_sessions"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Current refresh token (only its hash is stored)
    refresh_token_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    hashed_refresh_token: Mapped[str] = mapped_column(String(128), nullable=False)

    # Lifetime
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)  # epoch seconds
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true", index=True)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Client info
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv6 max length is 45
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def remaining_ttl(self, now: int) -> int:
        """Seconds until the session expires (zero or negative once expired)."""
        return self.expires_at - now

    def is_usable(self, now: int) -> bool:
        """Active and not yet expired."""
        return self.is_active and self.expires_at > now
