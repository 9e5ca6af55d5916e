import pytest

from tests.conftest import TEST_PASSWORD


@pytest.fixture
async def tokens(client):
    resp = await client.post(
        "/auth/login", json={"email": "editor@example.com", "password": TEST_PASSWORD}
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_login_and_me(client, tokens):
    assert tokens["token_type"] == "Bearer"
    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "editor@example.com"
    assert me.json()["role"] == "EDITOR"
    assert me.json()["last_login_at"]


@pytest.mark.asyncio
async def test_login_with_wrong_password(client):
    resp = await client.post("/auth/login", json={"email": "editor@example.com", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_refresh_token(client, tokens):
    resp = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 200
    assert resp.json()["access_token"]

    # An access token is not accepted as a refresh token
    resp = await client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_change_password(client, tokens):
    auth = {"Authorization": f"Bearer {tokens['access_token']}"}

    resp = await client.patch(
        "/api/v1/account/password",
        json={"current_password": "wrong-password", "new_password": "NewPassword123"},
        headers=auth,
    )
    assert resp.status_code == 400

    resp = await client.patch(
        "/api/v1/account/password",
        json={"current_password": TEST_PASSWORD, "new_password": "NewPassword123"},
        headers=auth,
    )
    assert resp.status_code == 200

    resp = await client.post(
        "/auth/login", json={"email": "editor@example.com", "password": "NewPassword123"}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_user_management_is_admin_only(client, admin_headers, editor_headers, users):
    payload = {"email": "new.viewer@example.com", "password": "Password123", "role": "VIEWER"}

    resp = await client.post("/api/v1/users", json=payload, headers=editor_headers)
    assert resp.status_code == 403

    resp = await client.post("/api/v1/users", json=payload, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.json()["role"] == "VIEWER"

    resp = await client.post("/api/v1/users", json=payload, headers=admin_headers)
    assert resp.status_code == 409

    resp = await client.delete(f"/api/v1/users/{users['ADMIN'].id}", headers=admin_headers)
    assert resp.status_code == 400
