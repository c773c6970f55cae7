# tests/test_timers.py - Time tracking tests
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from models import AppSetting, TimeLog, utcnow
from services.timers import elapsed_minutes
from tests.conftest import get_auth_headers, create_card


async def _start(client, card_id, user, notes=None):
    body = {"notes": notes} if notes else None
    return await client.post(f"/api/v1/cards/{card_id}/time", json=body, headers=get_auth_headers(user))


@pytest.mark.asyncio
class TestStartTimer:
    async def test_start_moves_card_in_progress(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        resp = await _start(client, card["id"], member_user, notes="Kickoff")
        assert resp.status_code == 201
        log = resp.json()
        assert log["is_running"] is True
        assert log["notes"] == "Kickoff"

        card_resp = await client.get(f"/api/v1/cards/{card['id']}", headers=get_auth_headers(member_user))
        assert card_resp.json()["status"] == "in_progress"

    async def test_second_timer_rejected(self, client: AsyncClient, db_session, todo_board, member_user):
        first = await create_card(client, todo_board, member_user, title="First")
        second = await create_card(client, todo_board, member_user, title="Second")
        started = await _start(client, first["id"], member_user)

        resp = await _start(client, second["id"], member_user)
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "active_timer_exists"
        assert body["active_time_log_id"] == started.json()["id"]
        assert body["card_id"] == first["id"]

        count = await db_session.execute(select(func.count(TimeLog.id)).where(TimeLog.user_id == member_user.id))
        assert count.scalar() == 1

    async def test_open_timer_index(self, client: AsyncClient, db_session, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        await _start(client, card["id"], member_user)

        db_session.add(TimeLog(card_id=card["id"], user_id=member_user.id, start_time=utcnow()))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    async def test_observer_cannot_track(self, client: AsyncClient, todo_board, leader_user, observer_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await _start(client, card["id"], observer_user)
        assert resp.status_code == 403

    async def test_done_card_rejected(self, client: AsyncClient, db_session, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        db_session.add(TimeLog(card_id=card["id"], user_id=member_user.id, start_time=utcnow(), end_time=utcnow(), duration_minutes=3))
        await db_session.commit()
        await client.patch(f"/api/v1/cards/{card['id']}", json={"status": "done"}, headers=get_auth_headers(member_user))

        resp = await _start(client, card["id"], member_user)
        assert resp.status_code == 400

    async def test_daily_limit(self, client: AsyncClient, db_session, todo_board, member_user):
        db_session.add_all([
            AppSetting(key="enable_work_hours_limit", value="true"),
            AppSetting(key="max_work_hours_per_day", value="1"),
        ])
        card = await create_card(client, todo_board, member_user)
        now = utcnow()
        start = max(now - timedelta(minutes=90), now.replace(hour=0, minute=0, second=0, microsecond=0))
        db_session.add(TimeLog(
            card_id=card["id"], user_id=member_user.id,
            start_time=start, end_time=start, duration_minutes=90,
        ))
        await db_session.commit()

        resp = await _start(client, card["id"], member_user)
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "limit_exceeded"
        assert body["max_hours"] == 1.0

        status = await client.get("/api/v1/time-logs/work-hours-status", headers=get_auth_headers(member_user))
        assert status.json()["can_start_timer"] is False
        assert status.json()["hours_today"] == 1.5


@pytest.mark.asyncio
class TestStopTimer:
    async def test_stop_records_duration(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        log = (await _start(client, card["id"], member_user)).json()

        resp = await client.patch(
            f"/api/v1/cards/{card['id']}/time/{log['id']}",
            json={"notes": "Done for today"},
            headers=get_auth_headers(member_user),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["is_running"] is False
        assert data["duration_minutes"] == 0
        assert data["notes"] == "Done for today"

    async def test_stop_twice(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        log = (await _start(client, card["id"], member_user)).json()
        url = f"/api/v1/cards/{card['id']}/time/{log['id']}"
        headers = get_auth_headers(member_user)

        await client.patch(url, headers=headers)
        resp = await client.patch(url, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "already_stopped"

    async def test_only_owner_stops(self, client: AsyncClient, todo_board, member_user, leader_user):
        card = await create_card(client, todo_board, member_user)
        log = (await _start(client, card["id"], member_user)).json()
        resp = await client.patch(
            f"/api/v1/cards/{card['id']}/time/{log['id']}", headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 403

    async def test_wrong_card_path(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        other = await create_card(client, todo_board, member_user, title="Other")
        log = (await _start(client, card["id"], member_user)).json()
        resp = await client.patch(
            f"/api/v1/cards/{other['id']}/time/{log['id']}", headers=get_auth_headers(member_user),
        )
        assert resp.status_code == 404

    async def test_new_timer_after_stop(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        log = (await _start(client, card["id"], member_user)).json()
        await client.patch(f"/api/v1/cards/{card['id']}/time/{log['id']}", headers=get_auth_headers(member_user))

        assert (await _start(client, card["id"], member_user)).status_code == 201
        listed = await client.get(f"/api/v1/cards/{card['id']}/time", headers=get_auth_headers(member_user))
        assert len(listed.json()) == 2


def test_elapsed_minutes_floors():
    start = utcnow()
    assert elapsed_minutes(start, start + timedelta(seconds=119)) == 1
    assert elapsed_minutes(start, start - timedelta(minutes=5)) == 0
