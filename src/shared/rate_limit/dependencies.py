"""Per-route rate limit dependencies.

These run on top of the global limit enforced by the request gate, with
tighter policies for sensitive endpoints such as login.
"""

from fastapi import Depends, Request

from src.container import ServiceContainer, get_container
from src.shared.client_info import get_client_ip

from .exceptions import RateLimitExceededException
from .limiter import RateLimiter, RateLimitPolicy

LOGIN_POLICY = RateLimitPolicy(max_requests=6, window_seconds=600, key_prefix="rate_limit:login")
REGISTER_POLICY = RateLimitPolicy(max_requests=6, window_seconds=600, key_prefix="rate_limit:register")
LOGOUT_POLICY = RateLimitPolicy(max_requests=5, window_seconds=600, key_prefix="rate_limit:logout")
REFRESH_POLICY = RateLimitPolicy(max_requests=20, window_seconds=60, key_prefix="rate_limit:refresh")


def rate_limit(policy: RateLimitPolicy):
    """Dependency factory enforcing ``policy`` for the decorated route.

    The identity is the authenticated user when the gate resolved one,
    otherwise the client IP.

    Usage:
        @router.post("/login", dependencies=[Depends(rate_limit(LOGIN_POLICY))])
    """

    async def limiter_dependency(request: Request, container: ServiceContainer = Depends(get_container)) -> None:
        claims = getattr(request.state, "claims", None)
        identity = f"user:{claims.user_id}" if claims is not None else f"ip:{get_client_ip(request)}"

        limiter = RateLimiter(container.redis, policy)
        allowed, count = await limiter.allow(identity)
        if not allowed:
            raise RateLimitExceededException(retry_after=limiter.retry_after(), headers=limiter.headers(count))

    return limiter_dependency
