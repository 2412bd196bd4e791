"""Request timeout middleware."""

import asyncio
import logging

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests (gate checks included) that run longer than ``timeout`` seconds."""

    def __init__(self, app: ASGIApp, timeout: float):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            async with asyncio.timeout(self.timeout):
                return await call_next(request)
        except TimeoutError:
            logger.warning(f"Request timed out after {self.timeout}s: {request.method} {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_408_REQUEST_TIMEOUT,
                content={"detail": "Request timeout exceeded"},
            )
