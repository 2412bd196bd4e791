"""Request gate: authenticate and rate limit every inbound request.

Order per request: bearer token (header or cookie) -> signature and claims ->
session membership -> sliding-window limit. The first failure short-circuits
with a JSON error and the route handler is never called.
"""

import logging
from collections.abc import Iterable

from fastapi import HTTPException, Request
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from src.features.auth.claims import AccessClaims
from src.features.auth.exceptions import InfrastructureException, MissingTokenException, SessionInactiveException
from src.features.auth.jwt_utils import TokenCodec
from src.features.auth.ledger import SessionLedger
from src.shared.client_info import get_client_ip
from src.shared.rate_limit.exceptions import RateLimitExceededException
from src.shared.rate_limit.limiter import RateLimiter

logger = logging.getLogger(__name__)


def error_response(exc: HTTPException) -> JSONResponse:
    """Render an HTTPException the way FastAPI's default handler does."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


class RequestGate:
    """Admission checks shared by every request."""

    def __init__(
        self,
        codec: TokenCodec,
        ledger: SessionLedger,
        limiter: RateLimiter | None,
        access_cookie_name: str = "access_token",
        public_paths: Iterable[str] = (),
    ):
        self._codec = codec
        self._ledger = ledger
        self.limiter = limiter
        self._access_cookie_name = access_cookie_name
        self._public_paths = frozenset(public_paths)

    def is_public(self, path: str) -> bool:
        return path.rstrip("/") in self._public_paths or path in self._public_paths

    def extract_token(self, request: Request) -> str | None:
        """Bearer token from the Authorization header, else the access cookie."""
        authorization = request.headers.get("authorization")
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer" and credentials.strip():
                return credentials.strip()
        return request.cookies.get(self._access_cookie_name) or None

    async def authenticate(self, request: Request) -> AccessClaims:
        """Verify the access token and that its session is still active.

        Raises:
            MissingTokenException: If no token was sent
            InvalidTokenException: If the token fails verification
            SessionInactiveException: If the session was revoked

        """
        token = self.extract_token(request)
        if token is None:
            raise MissingTokenException()

        claims = self._codec.decode_access(token)

        if not await self._ledger.is_member(claims.user_id, claims.session_id):
            logger.info(f"Rejected token for inactive session {claims.session_id} (user {claims.user_id})")
            raise SessionInactiveException()

        return claims


class RequestGateMiddleware(BaseHTTPMiddleware):
    """Runs the RequestGate from ``app.state.container`` in front of every route."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        container = getattr(request.app.state, "container", None)
        if container is None:
            logger.error("Request received before the service container was initialized")
            return error_response(InfrastructureException(detail="Service unavailable"))

        gate: RequestGate = container.gate
        claims = None
        count = 0

        try:
            if gate.is_public(request.url.path):
                identity = f"ip:{get_client_ip(request)}"
            else:
                claims = await gate.authenticate(request)
                identity = f"user:{claims.user_id}"

            allowed = True
            if gate.limiter is not None:
                allowed, count = await gate.limiter.allow(identity)
        except HTTPException as exc:
            return error_response(exc)
        except (SQLAlchemyError, RedisError):
            logger.exception(f"Request gate failed for {request.method} {request.url.path}")
            return error_response(InfrastructureException())

        rate_headers = gate.limiter.headers(count) if gate.limiter is not None else {}
        if not allowed:
            return error_response(RateLimitExceededException(retry_after=gate.limiter.retry_after(), headers=rate_headers))

        request.state.claims = claims
        response = await call_next(request)
        # Per-route limit headers take precedence
        for name, value in rate_headers.items():
            response.headers.setdefault(name, value)
        return response
