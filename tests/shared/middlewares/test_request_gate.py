"""Tests for the request gate: authentication and global rate limiting."""

from datetime import timedelta

import pytest_asyncio
from fastapi import status
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from src.config.settings import settings
from src.container import ServiceContainer, public_paths
from src.features.auth.jwt_utils import TokenCodec
from src.main import app
from src.shared.rate_limit.limiter import RateLimitPolicy

ME = f"{settings.api_prefix}/users/me"


def _request(headers: dict[str, str] | None = None, path: str = "/") -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": path, "headers": raw_headers, "query_string": b""})


@pytest_asyncio.fixture
async def limited_client(session_factory, redis, keys):
    """Client whose global limit is 3 requests per minute."""
    container = ServiceContainer.from_resources(
        settings,
        session_factory,
        redis,
        keys,
        rate_limit_policy=RateLimitPolicy(max_requests=3, window_seconds=60, key_prefix="rate_limit:global"),
    )
    app.state.container = container
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as ac:
        yield ac
    del app.state.container


class TestRequestGateUnit:
    def test_public_paths(self, container):
        gate = container.gate
        assert gate.is_public("/health")
        assert gate.is_public(f"{settings.api_prefix}/auth/login")
        assert gate.is_public(f"{settings.api_prefix}/auth/login/")
        assert not gate.is_public(ME)
        assert not gate.is_public(f"{settings.api_prefix}/auth/logout-all")

    def test_public_paths_follow_api_prefix(self):
        paths = public_paths(settings.model_copy(update={"api_prefix": "/v2/"}))
        assert "/v2/auth/refresh" in paths

    def test_extract_token_prefers_header(self, container):
        request = _request({"Authorization": "Bearer header-token", "Cookie": "access_token=cookie-token"})
        assert container.gate.extract_token(request) == "header-token"

    def test_extract_token_falls_back_to_cookie(self, container):
        request = _request({"Cookie": "access_token=cookie-token"})
        assert container.gate.extract_token(request) == "cookie-token"

    def test_extract_token_ignores_other_schemes(self, container):
        assert container.gate.extract_token(_request({"Authorization": "Basic abc"})) is None

    def test_extract_token_none(self, container):
        assert container.gate.extract_token(_request()) is None


class TestAuthentication:
    async def test_public_path_needs_no_token(self, client):
        response = await client.get("/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_missing_token(self, client):
        response = await client.get(ME)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"detail": "Not authenticated"}
        assert response.headers["www-authenticate"] == "Bearer"
        assert "x-ratelimit-limit" not in response.headers

    async def test_malformed_token(self, client):
        response = await client.get(ME, headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Malformed token"

    async def test_refresh_token_is_not_an_access_token(self, auth_client):
        client, _, tokens = auth_client
        client.cookies.clear()

        response = await client.get(ME, headers={"Authorization": f"Bearer {tokens['refresh_token']}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Invalid token type, expected access"

    async def test_expired_token(self, client, make_user, keys, coordinator):
        user = await make_user()
        pair = await coordinator.issue(user)
        expired = TokenCodec(keys, access_ttl=timedelta(seconds=-5)).encode_access(user.id, pair.session_id)

        response = await client.get(ME, headers={"Authorization": f"Bearer {expired}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Token has expired"

    async def test_header_wins_over_cookie(self, auth_client):
        client, _, _ = auth_client
        response = await client.get(ME, headers={"Authorization": "Bearer not.a.jwt"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_cookie_authenticates(self, auth_client):
        client, user, _ = auth_client
        response = await client.get(ME)
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["id"] == user.id

    async def test_revoked_session_is_rejected(self, auth_client):
        client, _, tokens = auth_client
        await client.post(f"{settings.api_prefix}/auth/logout")

        response = await client.get(ME, headers={"Authorization": f"Bearer {tokens['access_token']}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Session is no longer active"

    async def test_membership_fails_closed_when_cache_is_down(self, auth_client, redis_server):
        client, _, _ = auth_client
        redis_server.connected = False

        response = await client.get(ME)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_public_paths_stay_up_when_cache_is_down(self, client, redis_server):
        redis_server.connected = False

        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK

    async def test_no_container(self):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as ac:
            response = await ac.get("/health")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"detail": "Service unavailable"}


class TestGlobalRateLimit:
    async def test_headers_on_admitted_response(self, limited_client):
        response = await limited_client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["x-ratelimit-limit"] == "3"
        assert response.headers["x-ratelimit-remaining"] == "2"
        assert int(response.headers["x-ratelimit-reset"]) > 0

    async def test_rejects_over_limit(self, limited_client):
        for _ in range(3):
            assert (await limited_client.get("/health")).status_code == status.HTTP_200_OK

        response = await limited_client.get("/health")

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json() == {"detail": "Too many requests, retry after 60 seconds"}
        assert response.headers["retry-after"] == "60"
        assert response.headers["x-ratelimit-remaining"] == "0"

    async def test_authenticated_requests_are_limited_per_user(self, limited_client, make_user, coordinator):
        alice = await make_user()
        bob = await make_user()
        alice_token = (await coordinator.issue(alice)).access_token
        bob_token = (await coordinator.issue(bob)).access_token

        for _ in range(3):
            response = await limited_client.get(ME, headers={"Authorization": f"Bearer {alice_token}"})
            assert response.status_code == status.HTTP_200_OK

        blocked = await limited_client.get(ME, headers={"Authorization": f"Bearer {alice_token}"})
        other = await limited_client.get(ME, headers={"Authorization": f"Bearer {bob_token}"})

        assert blocked.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert other.status_code == status.HTTP_200_OK

    async def test_unauthenticated_rejections_are_not_counted(self, limited_client):
        for _ in range(5):
            assert (await limited_client.get(ME)).status_code == status.HTTP_401_UNAUTHORIZED

        assert (await limited_client.get("/health")).status_code == status.HTTP_200_OK

    async def test_limiter_outage_fails_open(self, limited_client, redis_server):
        redis_server.connected = False

        for _ in range(5):
            assert (await limited_client.get("/health")).status_code == status.HTTP_200_OK
