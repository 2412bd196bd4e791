"""Request id propagation and access logging."""

import logging
import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from src.config.logging_config import request_id_ctx
from src.shared.client_info import get_client_ip

logger = logging.getLogger("pingspot.requests")

REQUEST_ID_HEADER = "X-Request-ID"

# Noisy endpoints logged at DEBUG
QUIET_PATHS = {"/", "/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, expose it to log records and log one line per request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = str(uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        try:
            return await self._handle(request, call_next, request_id)
        finally:
            request_id_ctx.reset(token)

    async def _handle(self, request: Request, call_next: RequestResponseEndpoint, request_id: str) -> Response:
        start = time.perf_counter()
        desc = f"{request.method} {request.url.path} client={get_client_ip(request)}"
        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(f"{desc} - ERROR ({duration_ms:.1f}ms): {e}")
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        status_class = response.status_code // 100
        if status_class == 5:
            log_func = logger.error
        elif status_class == 4:
            log_func = logger.warning
        elif request.url.path in QUIET_PATHS:
            log_func = logger.debug
        else:
            log_func = logger.info
        log_func(f"{desc} - {response.status_code} ({duration_ms:.1f}ms)")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
