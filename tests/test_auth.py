import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from feedesk.auth.models import User

TEST_PASSWORD = "StrongPass123"


def _register_body(**overrides) -> dict:
    body = {
        "full_name": "Jane Doe",
        "email": "Jane@School.edu",
        "role": "accountant",
        "password": "StrongPass123",
        "confirm_password": "StrongPass123",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_register_success(client: AsyncClient, db_session: AsyncSession, admin_headers) -> None:
    response = await client.post("/api/v1/auth/register", json=_register_body(), headers=admin_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "jane@school.edu"
    assert data["role"] == "accountant"
    assert data["is_active"] is True

    user = (await db_session.execute(select(User).where(User.email == "jane@school.edu"))).scalar_one()
    assert user.password_hash != "StrongPass123"


@pytest.mark.asyncio
async def test_register_requires_admin(client: AsyncClient, accountant_headers) -> None:
    response = await client.post("/api/v1/auth/register", json=_register_body(), headers=accountant_headers)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_register_without_token_is_401(client: AsyncClient) -> None:
    response = await client.post("/api/v1/auth/register", json=_register_body())

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, admin_headers) -> None:
    first = await client.post("/api/v1/auth/register", json=_register_body(), headers=admin_headers)
    second = await client.post("/api/v1/auth/register", json=_register_body(), headers=admin_headers)

    assert first.status_code == 201
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_register_password_mismatch(client: AsyncClient, admin_headers) -> None:
    response = await client.post(
        "/api/v1/auth/register",
        json=_register_body(confirm_password="Different123"),
        headers=admin_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_and_me(client: AsyncClient, admin_user: User) -> None:
    login = await client.post(
        "/api/v1/auth/login", json={"email": "ADMIN@school.edu", "password": TEST_PASSWORD}
    )

    assert login.status_code == 200
    data = login.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["role"] == "admin"
    assert data["user"]["last_login"] is not None

    me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == str(admin_user.id)


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, admin_user: User) -> None:
    response = await client.post(
        "/api/v1/auth/login", json={"email": "admin@school.edu", "password": "WrongPass123"}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_inactive_user_cannot_login(client: AsyncClient, db_session: AsyncSession, admin_user: User) -> None:
    admin_user.is_active = False
    await db_session.commit()

    response = await client.post(
        "/api/v1/auth/login", json={"email": "admin@school.edu", "password": TEST_PASSWORD}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "Account is deactivated"


@pytest.mark.asyncio
async def test_oauth_form_login(client: AsyncClient, accountant_user: User) -> None:
    response = await client.post(
        "/api/v1/auth/login-oauth",
        data={"username": "accounts@school.edu", "password": TEST_PASSWORD},
    )

    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_garbage_token_rejected(client: AsyncClient) -> None:
    response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_update_profile(client: AsyncClient, accountant_user: User, accountant_headers, admin_user) -> None:
    response = await client.put(
        "/api/v1/auth/profile",
        json={"full_name": "Arun K", "email": "Arun.K@School.edu"},
        headers=accountant_headers,
    )

    assert response.status_code == 200
    assert response.json()["full_name"] == "Arun K"
    assert response.json()["email"] == "arun.k@school.edu"

    taken = await client.put(
        "/api/v1/auth/profile", json={"email": "admin@school.edu"}, headers=accountant_headers
    )
    assert taken.status_code == 409


@pytest.mark.asyncio
async def test_change_password(client: AsyncClient, accountant_user: User, accountant_headers) -> None:
    wrong = await client.put(
        "/api/v1/auth/change-password",
        json={"current_password": "Nope12345", "new_password": "NewPass456", "confirm_password": "NewPass456"},
        headers=accountant_headers,
    )
    assert wrong.status_code == 400
    assert wrong.json()["detail"] == "Current password is incorrect"

    changed = await client.put(
        "/api/v1/auth/change-password",
        json={"current_password": TEST_PASSWORD, "new_password": "NewPass456", "confirm_password": "NewPass456"},
        headers=accountant_headers,
    )
    assert changed.status_code == 204

    old = await client.post("/api/v1/auth/login", json={"email": "accounts@school.edu", "password": TEST_PASSWORD})
    new = await client.post("/api/v1/auth/login", json={"email": "accounts@school.edu", "password": "NewPass456"})
    assert old.status_code == 401
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_change_password_mismatch(client: AsyncClient, accountant_headers) -> None:
    response = await client.put(
        "/api/v1/auth/change-password",
        json={"current_password": TEST_PASSWORD, "new_password": "NewPass456", "confirm_password": "Other4567"},
        headers=accountant_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_admin_deactivates_user(
    client: AsyncClient, admin_user: User, admin_headers, accountant_user: User, accountant_headers
) -> None:
    forbidden = await client.put(f"/api/v1/auth/deactivate/{admin_user.id}", headers=accountant_headers)
    assert forbidden.status_code == 403

    self_off = await client.put(f"/api/v1/auth/deactivate/{admin_user.id}", headers=admin_headers)
    assert self_off.status_code == 400

    response = await client.put(f"/api/v1/auth/deactivate/{accountant_user.id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    me = await client.get("/api/v1/auth/me", headers=accountant_headers)
    assert me.status_code == 401

    login = await client.post(
        "/api/v1/auth/login", json={"email": "accounts@school.edu", "password": TEST_PASSWORD}
    )
    assert login.status_code == 401
