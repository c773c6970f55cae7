# tests/test_settings.py - Work-hour settings
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


@pytest.mark.asyncio
async def test_defaults_visible_to_everyone(client: AsyncClient, member_user):
    resp = await client.get("/api/v1/settings", headers=get_auth_headers(member_user))
    assert resp.status_code == 200
    assert set(resp.json()) == {"min_work_hours_per_day", "max_work_hours_per_day", "enable_work_hours_limit"}


@pytest.mark.asyncio
async def test_admin_updates_setting(client: AsyncClient, admin_user, member_user):
    resp = await client.put(
        "/api/v1/settings/max_work_hours_per_day", json={"value": "8"}, headers=get_auth_headers(admin_user),
    )
    assert resp.status_code == 200
    assert resp.json() == {"key": "max_work_hours_per_day", "value": "8"}

    settings = await client.get("/api/v1/settings", headers=get_auth_headers(member_user))
    assert settings.json()["max_work_hours_per_day"] == "8"


@pytest.mark.asyncio
async def test_boolean_is_normalised(client: AsyncClient, admin_user):
    resp = await client.put(
        "/api/v1/settings/enable_work_hours_limit", json={"value": "TRUE"}, headers=get_auth_headers(admin_user),
    )
    assert resp.json()["value"] == "true"


@pytest.mark.asyncio
async def test_member_cannot_update(client: AsyncClient, member_user):
    resp = await client.put(
        "/api/v1/settings/max_work_hours_per_day", json={"value": "20"}, headers=get_auth_headers(member_user),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize("key,value", [
    ("max_work_hours_per_day", "lots"),
    ("max_work_hours_per_day", "25"),
    ("enable_work_hours_limit", "maybe"),
    ("coffee_breaks", "3"),
])
async def test_invalid_values_rejected(client: AsyncClient, admin_user, key, value):
    resp = await client.put(f"/api/v1/settings/{key}", json={"value": value}, headers=get_auth_headers(admin_user))
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"
