"""Tests for RequestTimeoutMiddleware."""

import asyncio

import pytest
from fastapi import FastAPI, status
from httpx import ASGITransport, AsyncClient

from src.shared.middlewares.timeout import RequestTimeoutMiddleware


@pytest.fixture
def slow_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestTimeoutMiddleware, timeout=0.1)

    @app.get("/slow")
    async def slow():
        await asyncio.sleep(2)
        return {"done": True}

    @app.get("/fast")
    async def fast():
        return {"done": True}

    return app


async def test_slow_request_returns_408(slow_app):
    async with AsyncClient(transport=ASGITransport(app=slow_app), base_url="https://test") as client:
        response = await client.get("/slow")

    assert response.status_code == status.HTTP_408_REQUEST_TIMEOUT
    assert response.json() == {"detail": "Request timeout exceeded"}


async def test_fast_request_passes_through(slow_app):
    async with AsyncClient(transport=ASGITransport(app=slow_app), base_url="https://test") as client:
        response = await client.get("/fast")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"done": True}
