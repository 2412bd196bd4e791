import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from src.config.logging_config import configure_logging
from src.config.settings import settings
from src.container import build_container, close_container
from src.features.auth.router import router as auth_router
from src.features.user.router import router as user_router
from src.shared.middlewares.request_context import RequestContextMiddleware
from src.shared.middlewares.request_gate import RequestGateMiddleware
from src.shared.middlewares.timeout import RequestTimeoutMiddleware

configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)


async def infrastructure_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Turn database and cache failures that escape a route into a 500."""
    logger.exception(f"Infrastructure error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup (fails fast if signing keys, database or Redis are unavailable)
    app.state.container = await build_container(settings)
    logger.info(f"{settings.app_name} started ({settings.environment})")
    yield
    # Shutdown
    await close_container(app.state.container)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_exception_handler(SQLAlchemyError, infrastructure_error_handler)
app.add_exception_handler(RedisError, infrastructure_error_handler)

# Last added is outermost: request context -> timeout -> gate -> route
app.add_middleware(RequestGateMiddleware)
app.add_middleware(RequestTimeoutMiddleware, timeout=settings.request_timeout_seconds)
app.add_middleware(RequestContextMiddleware)

# Router Registration
routers: list[APIRouter] = [
    auth_router,
    user_router,
]

for router in routers:
    app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": "Pingspot API", "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
