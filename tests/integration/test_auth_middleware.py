"""Integration tests for AuthMiddleware."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient

PROTECTED = "/api/v1/sessions"


class TestAuthMiddleware:
    """Bearer token verification in front of every non-public route."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/", "/health", "/api/v1/chat/health"])
    async def test_public_paths(self, async_client: AsyncClient, path: str) -> None:
        response = await async_client.get(path)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_header(self, async_client: AsyncClient) -> None:
        response = await async_client.get(PROTECTED)

        assert response.status_code == 401
        assert response.json() == {
            "status": 401,
            "message": "Authorization header required",
            "code": "NOT_AUTHENTICATED",
        }

    @pytest.mark.asyncio
    async def test_expired_token(
        self, async_client: AsyncClient, auth_headers: Callable[..., dict[str, str]]
    ) -> None:
        headers = auth_headers(exp=datetime.now(UTC) - timedelta(minutes=1))

        response = await async_client.get(PROTECTED, headers=headers)

        assert response.status_code == 401
        assert response.json()["code"] == "TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_garbage_token(self, async_client: AsyncClient) -> None:
        response = await async_client.get(
            PROTECTED, headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_refresh_token_rejected(
        self, async_client: AsyncClient, auth_headers: Callable[..., dict[str, str]]
    ) -> None:
        response = await async_client.get(PROTECTED, headers=auth_headers(type="refresh"))

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_missing_subject(
        self, async_client: AsyncClient, auth_headers: Callable[..., dict[str, str]]
    ) -> None:
        response = await async_client.get(PROTECTED, headers=auth_headers(sub=""))

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_valid_token(
        self, async_client: AsyncClient, auth_headers: Callable[..., dict[str, str]]
    ) -> None:
        response = await async_client.get(PROTECTED, headers=auth_headers())
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_preflight_passes(self, async_client: AsyncClient) -> None:
        response = await async_client.options(
            PROTECTED,
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["x-request-id"] == "req-123"

    @pytest.mark.asyncio
    async def test_request_id_generated_on_rejection(self, async_client: AsyncClient) -> None:
        response = await async_client.get(PROTECTED)

        assert response.status_code == 401
        assert response.headers["x-request-id"]
