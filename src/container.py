"""Service container: builds and owns every long-lived dependency.

Built once in the application lifespan and stored on ``app.state.container``;
request handlers reach it through ``get_container``.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Self

from fastapi import Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.cache.client import close_cache, init_cache
from src.config.settings import Settings
from src.database.client import close_db, init_db
from src.features.auth.coordinator import RefreshCoordinator
from src.features.auth.jwt_utils import TokenCodec
from src.features.auth.keys import KeyProvider
from src.features.auth.ledger import SessionLedger
from src.shared.middlewares.request_gate import RequestGate
from src.shared.rate_limit.limiter import RateLimiter, RateLimitPolicy

logger = logging.getLogger(__name__)


def public_paths(config: Settings) -> set[str]:
    """Paths admitted without an access token (still rate limited by client IP)."""
    prefix = config.api_prefix.rstrip("/")
    return {
        "/",
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
        f"{prefix}/auth/login",
        f"{prefix}/auth/refresh",
        f"{prefix}/auth/logout",
        f"{prefix}/users/register",
    }


def global_rate_limit_policy(config: Settings) -> RateLimitPolicy:
    return RateLimitPolicy(
        max_requests=config.rate_limit_max_requests,
        window_seconds=config.rate_limit_window_seconds,
        key_prefix=config.rate_limit_key_prefix,
        expiry_slack_seconds=config.rate_limit_expiry_slack_seconds,
    )


@dataclass
class ServiceContainer:
    """Long-lived services shared by all requests."""

    session_factory: async_sessionmaker[AsyncSession]
    redis: Redis
    keys: KeyProvider
    codec: TokenCodec
    ledger: SessionLedger
    coordinator: RefreshCoordinator
    gate: RequestGate
    engine: AsyncEngine | None = None

    @classmethod
    def from_resources(
        cls,
        config: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Redis,
        keys: KeyProvider,
        engine: AsyncEngine | None = None,
        rate_limit_policy: RateLimitPolicy | None = None,
    ) -> Self:
        """Wire the services on top of already-open connections.

        Args:
            config: Application settings
            session_factory: SQLAlchemy session factory
            redis: Redis client
            keys: Loaded signing keypair
            engine: Engine to dispose on shutdown (optional)
            rate_limit_policy: Override for the global rate limit policy

        Returns:
            Ready-to-use ServiceContainer

        """
        codec = TokenCodec(
            keys,
            access_ttl=timedelta(minutes=config.access_token_expire_minutes),
            refresh_ttl=timedelta(days=config.refresh_token_expire_days),
            algorithm=config.jwt_algorithm,
        )
        ledger = SessionLedger(session_factory, redis, membership_ttl_seconds=config.refresh_token_ttl_seconds)
        coordinator = RefreshCoordinator(
            codec,
            ledger,
            session_factory,
            revoke_on_reuse=config.revoke_on_refresh_reuse,
        )

        limiter = None
        if config.rate_limit_enabled:
            limiter = RateLimiter(redis, rate_limit_policy or global_rate_limit_policy(config))

        gate = RequestGate(
            codec,
            ledger,
            limiter,
            access_cookie_name=config.access_cookie_name,
            public_paths=public_paths(config),
        )
        return cls(
            session_factory=session_factory,
            redis=redis,
            keys=keys,
            codec=codec,
            ledger=ledger,
            coordinator=coordinator,
            gate=gate,
            engine=engine,
        )


async def build_container(config: Settings) -> ServiceContainer:
    """Load keys and open database and Redis connections.

    Keys are loaded before any connection is opened.

    Raises:
        KeyLoadError: If the signing keypair cannot be loaded

    """
    keys = KeyProvider.from_files(config.jwt_private_key_path, config.jwt_public_key_path)
    engine, session_factory = await init_db(config)
    try:
        redis = await init_cache(config)
    except Exception:
        await close_db(engine)
        raise
    return ServiceContainer.from_resources(config, session_factory, redis, keys, engine=engine)


async def close_container(container: ServiceContainer) -> None:
    """Release connections in reverse order of acquisition."""
    await close_cache(container.redis)
    if container.engine is not None:
        await close_db(container.engine)


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's service container."""
    return request.app.state.container
