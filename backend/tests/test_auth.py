# tests/test_auth.py - Authentication & authorization tests
import pytest
from httpx import AsyncClient

from auth import AuthService
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_success(self, client: AsyncClient, db_engine):
        res = await client.post("/api/v1/auth/register", json={
            "email": "newuser@test.com",
            "password": "SecurePass123",
            "name": "New User",
        })
        assert res.status_code == 200
        data = res.json()
        assert "access_token" in data
        assert "refresh_token" in data
        assert data["user"]["email"] == "newuser@test.com"
        assert data["user"]["global_role"] == "member"

    async def test_register_weak_password(self, client: AsyncClient, db_engine):
        res = await client.post("/api/v1/auth/register", json={
            "email": "weak@test.com",
            "password": "short",
        })
        assert res.status_code == 422

    async def test_register_password_needs_digit(self, client: AsyncClient, db_engine):
        res = await client.post("/api/v1/auth/register", json={
            "email": "nodigit@test.com",
            "password": "longenoughpassword",
        })
        assert res.status_code == 422

    async def test_register_duplicate_email(self, client: AsyncClient, db_engine):
        await client.post("/api/v1/auth/register", json={
            "email": "dupe@test.com",
            "password": "SecurePass123",
        })
        res = await client.post("/api/v1/auth/register", json={
            "email": "dupe@test.com",
            "password": "SecurePass123",
        })
        assert res.status_code == 409
        assert res.json()["code"] == "email_taken"

    async def test_register_invalid_email(self, client: AsyncClient, db_engine):
        res = await client.post("/api/v1/auth/register", json={
            "email": "not-an-email",
            "password": "SecurePass123",
        })
        assert res.status_code == 422


@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, client: AsyncClient, member_user):
        res = await client.post("/api/v1/auth/login", json={
            "email": member_user.email,
            "password": "Password123",
        })
        assert res.status_code == 200
        data = res.json()
        assert "access_token" in data
        assert data["user"]["id"] == member_user.id

    async def test_login_wrong_password(self, client: AsyncClient, leader_user):
        res = await client.post("/api/v1/auth/login", json={
            "email": leader_user.email,
            "password": "WrongPassword1",
        })
        assert res.status_code == 401

    async def test_login_unknown_user(self, client: AsyncClient, db_engine):
        res = await client.post("/api/v1/auth/login", json={
            "email": "ghost@test.com",
            "password": "Password123",
        })
        assert res.status_code == 401


@pytest.mark.asyncio
class TestTokens:
    async def test_me(self, client: AsyncClient, admin_user):
        res = await client.get("/api/v1/auth/me", headers=get_auth_headers(admin_user))
        assert res.status_code == 200
        assert res.json()["global_role"] == "admin"

    async def test_refresh_issues_new_pair(self, client: AsyncClient, member_user):
        refresh = AuthService.create_refresh_token({"sub": member_user.id})
        res = await client.post("/api/v1/auth/refresh", json={"refresh_token": refresh})
        assert res.status_code == 200
        assert res.json()["user"]["id"] == member_user.id

    async def test_refresh_rejects_access_token(self, client: AsyncClient, member_user):
        access = AuthService.create_access_token({"sub": member_user.id})
        res = await client.post("/api/v1/auth/refresh", json={"refresh_token": access})
        assert res.status_code == 401

    async def test_refresh_token_cannot_call_api(self, client: AsyncClient, member_user):
        refresh = AuthService.create_refresh_token({"sub": member_user.id})
        res = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {refresh}"})
        assert res.status_code == 401

    async def test_invalid_token_rejected(self, client: AsyncClient, db_engine):
        res = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    async def test_inactive_user_rejected(self, client: AsyncClient, db_session, member_user):
        member_user.is_active = False
        await db_session.commit()
        res = await client.get("/api/v1/auth/me", headers=get_auth_headers(member_user))
        assert res.status_code == 401


@pytest.mark.asyncio
class TestPasswordChange:
    URL = "/api/v1/auth/change-password"

    async def test_change_and_login_with_new_password(self, client: AsyncClient, member_user):
        res = await client.post(self.URL, json={
            "current_password": "Password123",
            "new_password": "Fresh4Password",
            "confirm_password": "Fresh4Password",
        }, headers=get_auth_headers(member_user))
        assert res.status_code == 200

        old = await client.post("/api/v1/auth/login", json={"email": member_user.email, "password": "Password123"})
        assert old.status_code == 401
        new = await client.post("/api/v1/auth/login", json={"email": member_user.email, "password": "Fresh4Password"})
        assert new.status_code == 200

    async def test_wrong_current_password(self, client: AsyncClient, member_user):
        res = await client.post(self.URL, json={
            "current_password": "NotMine123",
            "new_password": "Fresh4Password",
            "confirm_password": "Fresh4Password",
        }, headers=get_auth_headers(member_user))
        assert res.status_code == 400
        assert res.json()["detail"] == "Current password is incorrect"

    async def test_confirmation_mismatch(self, client: AsyncClient, member_user):
        res = await client.post(self.URL, json={
            "current_password": "Password123",
            "new_password": "Fresh4Password",
            "confirm_password": "Fresh5Password",
        }, headers=get_auth_headers(member_user))
        assert res.status_code == 400
        assert res.json()["code"] == "validation_error"

    async def test_weak_new_password(self, client: AsyncClient, member_user):
        res = await client.post(self.URL, json={
            "current_password": "Password123",
            "new_password": "short1",
            "confirm_password": "short1",
        }, headers=get_auth_headers(member_user))
        assert res.status_code == 422

    async def test_requires_authentication(self, client: AsyncClient, db_engine):
        res = await client.post(self.URL, json={
            "current_password": "Password123",
            "new_password": "Fresh4Password",
            "confirm_password": "Fresh4Password",
        })
        assert res.status_code in (401, 403)


def test_password_hash_roundtrip():
    hashed = AuthService.hash_password("Password123")
    assert AuthService.verify_password("Password123", hashed)
    assert not AuthService.verify_password("Password124", hashed)
