"""Authentication router (login, token rotation and logout endpoints)."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.container import ServiceContainer, get_container
from src.database.dependencies import get_db_session
from src.features.user.models import User
from src.shared.client_info import get_client_ip, get_user_agent
from src.shared.rate_limit.dependencies import LOGIN_POLICY, LOGOUT_POLICY, REFRESH_POLICY, rate_limit

from .claims import AccessClaims
from .coordinator import TokenPair
from .dependencies import get_current_claims, get_current_user
from .exceptions import InvalidCredentialsException, InvalidRefreshTokenException
from .schemas import MessageResponse, RefreshTokenRequest, SessionResponse, TokenResponse, UserLoginRequest
from .service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def _refresh_cookie_path() -> str:
    return f"{settings.api_prefix.rstrip('/')}{router.prefix}"


def _set_auth_cookies(response: Response, tokens: TokenPair) -> None:
    """Deliver both tokens as HttpOnly cookies that live exactly as long as the tokens."""
    response.set_cookie(
        key=settings.access_cookie_name,
        value=tokens.access_token,
        max_age=tokens.access_expires_in,
        path="/",
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite=settings.cookie_samesite,
    )
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=tokens.refresh_token,
        max_age=tokens.refresh_expires_in,
        path=_refresh_cookie_path(),
        domain=settings.cookie_domain,
        secure=settings.cookie_secure,
        httponly=True,
        samesite=settings.cookie_samesite,
    )


def _clear_auth_cookies(response: Response) -> None:
    for key, path in (
        (settings.access_cookie_name, "/"),
        (settings.refresh_cookie_name, _refresh_cookie_path()),
    ):
        response.delete_cookie(
            key=key,
            path=path,
            domain=settings.cookie_domain,
            secure=settings.cookie_secure,
            httponly=True,
            samesite=settings.cookie_samesite,
        )


def _presented_refresh_token(request: Request, data: RefreshTokenRequest | None) -> str | None:
    """Refresh token from the request body, else from the refresh cookie."""
    if data is not None and data.refresh_token:
        return data.refresh_token
    return request.cookies.get(settings.refresh_cookie_name) or None


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.access_expires_in,
        refresh_expires_in=tokens.refresh_expires_in,
    )


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(rate_limit(LOGIN_POLICY))])
async def login(
    data: UserLoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
):
    """Login and get JWT tokens.

    - **username**: Username (optional, either username or email required)
    - **email**: Email address (optional, either username or email required)
    - **password**: Password

    Returns access_token and refresh_token, also set as HttpOnly cookies.
    """
    user = await AuthService.authenticate_user(session, data.credential, data.password)
    # Persist failed-attempt counters before rejecting
    await session.commit()

    if not user:
        raise InvalidCredentialsException()

    tokens = await container.coordinator.issue(user, get_client_ip(request), get_user_agent(request))
    _set_auth_cookies(response, tokens)

    logger.info(f"User logged in: {user.username} (session {tokens.session_id})")
    return _token_response(tokens)


@router.post("/refresh", response_model=TokenResponse, dependencies=[Depends(rate_limit(REFRESH_POLICY))])
async def refresh_token(
    request: Request,
    response: Response,
    data: RefreshTokenRequest | None = None,
    container: ServiceContainer = Depends(get_container),
):
    """Rotate the refresh token and get a new token pair.

    - **refresh_token**: Refresh token (optional when the refresh cookie is present)

    The presented refresh token stops working immediately.
    """
    raw_token = _presented_refresh_token(request, data)
    if raw_token is None:
        raise InvalidRefreshTokenException(detail="Refresh token missing")

    tokens = await container.coordinator.refresh(raw_token, get_client_ip(request), get_user_agent(request))
    _set_auth_cookies(response, tokens)
    return _token_response(tokens)


@router.post("/logout", response_model=MessageResponse, dependencies=[Depends(rate_limit(LOGOUT_POLICY))])
async def logout(
    request: Request,
    response: Response,
    data: RefreshTokenRequest | None = None,
    container: ServiceContainer = Depends(get_container),
):
    """Logout and revoke the session behind the refresh token.

    - **refresh_token**: Refresh token (optional when the refresh cookie is present)

    Safe to call repeatedly.
    """
    raw_token = _presented_refresh_token(request, data)
    revoked = await container.coordinator.logout(raw_token) if raw_token else False
    _clear_auth_cookies(response)

    if revoked:
        return MessageResponse(message="Successfully logged out")
    return MessageResponse(message="Session already ended")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_db_session),
    container: ServiceContainer = Depends(get_container),
):
    """Revoke every session of the current user, on all devices."""
    count = await container.ledger.revoke_all_for_user(current_user.id)
    current_user.is_logged_in = False
    await session.commit()
    _clear_auth_cookies(response)

    logger.info(f"User logged out everywhere: {current_user.username} ({count} sessions)")
    return MessageResponse(message=f"Revoked {count} session(s)")


@router.get("/sessions", response_model=list[SessionResponse])
async def list_sessions(
    claims: AccessClaims = Depends(get_current_claims),
    container: ServiceContainer = Depends(get_container),
):
    """List the current user's active sessions; the one making this request is marked ``current``."""
    records = await container.ledger.list_active_sessions(claims.user_id)
    sessions = []
    for record in records:
        item = SessionResponse.model_validate(record)
        item.current = record.id == claims.session_id
        sessions.append(item)
    return sessions
