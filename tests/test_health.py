"""
tests/test_health.py
Health, root and error envelope plumbing.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_reports_database(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"


@pytest.mark.asyncio
async def test_root_and_request_headers(client: AsyncClient):
    response = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Process-Time"].endswith("ms")


@pytest.mark.asyncio
async def test_invalid_token_rejected(client: AsyncClient):
    response = await client.get("/bookings", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_revoked_token_rejected(client: AsyncClient, fake_redis, user):
    from shared.utils.security import create_access_token

    token, jti = create_access_token(str(user.id), user.role.value, user.email)
    fake_redis.store[f"jwt_revoked:{jti}"] = "1"
    response = await client.get("/bookings", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has been revoked"


@pytest.mark.asyncio
async def test_openapi_documents_error_envelope(client: AsyncClient):
    schema = (await client.get("/openapi.json")).json()

    envelope = schema["components"]["schemas"]["ErrorResponse"]
    assert {"detail", "code", "context", "retryable", "request_id"} <= set(envelope["properties"])

    responses = schema["paths"]["/bookings/{booking_id}"]["put"]["responses"]
    for status_code in ("403", "404", "409"):
        ref = responses[status_code]["content"]["application/json"]["schema"]["$ref"]
        assert ref == "#/components/schemas/ErrorResponse"
    assert "/reviews/{review_id}" in schema["paths"]
