# tests/test_cards.py - Card lifecycle tests
import pytest
from httpx import AsyncClient

from models import TimeLog, utcnow
from tests.conftest import get_auth_headers, create_card


@pytest.mark.asyncio
class TestCreateCard:
    async def test_member_creates_card(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user, title="Write docs", priority="high")
        assert card["status"] == "todo"
        assert card["priority"] == "high"
        assert card["created_by"] == member_user.id
        assert card["assignee_id"] is None

    async def test_positions_increase(self, client: AsyncClient, todo_board, member_user):
        first = await create_card(client, todo_board, member_user, title="One")
        second = await create_card(client, todo_board, member_user, title="Two")
        assert second["position"] == first["position"] + 1

    async def test_observer_cannot_create(self, client: AsyncClient, todo_board, observer_user):
        resp = await client.post(
            "/api/v1/cards",
            json={"board_id": todo_board, "title": "Nope"},
            headers=get_auth_headers(observer_user),
        )
        assert resp.status_code == 403

    async def test_create_with_assignee_writes_ledger(self, client: AsyncClient, todo_board, leader_user, member_user):
        card = await create_card(client, todo_board, leader_user, assignee_id=member_user.id)
        assert card["assignee_id"] == member_user.id

        history = await client.get(
            f"/api/v1/cards/{card['id']}/assignment-history", headers=get_auth_headers(leader_user),
        )
        rows = history.json()["rows"]
        assert len(rows) == 1
        assert rows[0]["reason"] == "Assigned at creation"

    async def test_developer_cannot_create_with_assignee(
        self, client: AsyncClient, todo_board, member_user, designer_user,
    ):
        resp = await client.post(
            "/api/v1/cards",
            json={"board_id": todo_board, "title": "Mine", "assignee_id": designer_user.id},
            headers=get_auth_headers(member_user),
        )
        assert resp.status_code == 403

    async def test_create_with_busy_assignee_rejected(
        self, client: AsyncClient, todo_board, leader_user, member_user,
    ):
        await create_card(client, todo_board, leader_user, assignee_id=member_user.id)
        resp = await client.post(
            "/api/v1/cards",
            json={"board_id": todo_board, "title": "Second", "assignee_id": member_user.id},
            headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 409

    async def test_unknown_board(self, client: AsyncClient, todo_board, leader_user):
        resp = await client.post(
            "/api/v1/cards",
            json={"board_id": "missing", "title": "Lost"},
            headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 404

    async def test_blank_title_rejected(self, client: AsyncClient, todo_board, leader_user):
        resp = await client.post(
            "/api/v1/cards",
            json={"board_id": todo_board, "title": "   "},
            headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"


@pytest.mark.asyncio
class TestUpdateCard:
    async def test_update_fields(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        resp = await client.patch(
            f"/api/v1/cards/{card['id']}",
            json={"title": "Renamed", "priority": "critical", "status": "review"},
            headers=get_auth_headers(member_user),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert (data["title"], data["priority"], data["status"]) == ("Renamed", "critical", "review")

    async def test_done_requires_time_log(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        resp = await client.patch(
            f"/api/v1/cards/{card['id']}", json={"status": "done"}, headers=get_auth_headers(member_user),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_state"

    async def test_done_with_time_log_notifies_members(
        self, client: AsyncClient, db_session, todo_board, member_user, designer_user,
    ):
        card = await create_card(client, todo_board, member_user)
        db_session.add(TimeLog(card_id=card["id"], user_id=member_user.id, start_time=utcnow(), end_time=utcnow(), duration_minutes=1))
        await db_session.commit()

        resp = await client.patch(
            f"/api/v1/cards/{card['id']}", json={"status": "done"}, headers=get_auth_headers(member_user),
        )
        assert resp.status_code == 200
        notes = await client.get("/api/v1/notifications", headers=get_auth_headers(designer_user))
        assert notes.json()[0]["type"] == "card_completed"

    async def test_reopening_done_card_checks_assignee_workload(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user,
    ):
        first = await create_card(client, todo_board, leader_user, title="First", assignee_id=member_user.id)
        db_session.add(TimeLog(card_id=first["id"], user_id=member_user.id, start_time=utcnow(), end_time=utcnow(), duration_minutes=1))
        await db_session.commit()
        headers = get_auth_headers(member_user)
        await client.patch(f"/api/v1/cards/{first['id']}", json={"status": "done"}, headers=headers)
        await create_card(client, todo_board, leader_user, title="Second", assignee_id=member_user.id)

        resp = await client.patch(f"/api/v1/cards/{first['id']}", json={"status": "in_progress"}, headers=headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "unfinished_tasks"

    async def test_assignee_not_writable_directly(self, client: AsyncClient, todo_board, leader_user, member_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await client.patch(
            f"/api/v1/cards/{card['id']}",
            json={"assignee_id": member_user.id},
            headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 200
        assert resp.json()["assignee_id"] is None

    async def test_move_to_foreign_board_rejected(
        self, client: AsyncClient, todo_board, admin_user, leader_user, second_leader,
    ):
        card = await create_card(client, todo_board, leader_user)
        other = await client.post(
            "/api/v1/projects",
            json={"name": "Other", "members": [{"user_id": second_leader.id, "project_role": "leader"}]},
            headers=get_auth_headers(admin_user),
        )
        foreign_board = other.json()["boards"][0]["id"]

        resp = await client.patch(
            f"/api/v1/cards/{card['id']}", json={"board_id": foreign_board}, headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 400

    async def test_observer_cannot_edit(self, client: AsyncClient, todo_board, leader_user, observer_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await client.patch(
            f"/api/v1/cards/{card['id']}", json={"title": "Hijack"}, headers=get_auth_headers(observer_user),
        )
        assert resp.status_code == 403


@pytest.mark.asyncio
class TestDeleteAndList:
    async def test_soft_delete_hides_card_and_closes_ledger(
        self, client: AsyncClient, project, todo_board, leader_user, member_user,
    ):
        card = await create_card(client, todo_board, leader_user, assignee_id=member_user.id)
        headers = get_auth_headers(leader_user)

        resp = await client.delete(f"/api/v1/cards/{card['id']}", headers=headers)
        assert resp.status_code == 200
        assert (await client.get(f"/api/v1/cards/{card['id']}", headers=headers)).status_code == 404

        listed = await client.get(f"/api/v1/projects/{project.id}/cards", headers=headers)
        assert listed.json() == []

        history = await client.get(f"/api/v1/projects/{project.id}/assignment-history", headers=headers)
        assert history.json()["summary"]["unassigned"] == 1

    async def test_developer_cannot_delete(self, client: AsyncClient, todo_board, member_user):
        card = await create_card(client, todo_board, member_user)
        resp = await client.delete(f"/api/v1/cards/{card['id']}", headers=get_auth_headers(member_user))
        assert resp.status_code == 403

    async def test_list_filters(self, client: AsyncClient, project, todo_board, leader_user, member_user):
        await create_card(client, todo_board, leader_user, title="Mine", assignee_id=member_user.id)
        await create_card(client, todo_board, leader_user, title="Free")
        headers = get_auth_headers(member_user)

        resp = await client.get(
            f"/api/v1/projects/{project.id}/cards", params={"assignee_id": member_user.id}, headers=headers,
        )
        assert [c["title"] for c in resp.json()] == ["Mine"]

        resp = await client.get(f"/api/v1/projects/{project.id}/cards", params={"status": "todo"}, headers=headers)
        assert len(resp.json()) == 2

    async def test_outsider_cannot_read_card(self, client: AsyncClient, todo_board, leader_user, outsider_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await client.get(f"/api/v1/cards/{card['id']}", headers=get_auth_headers(outsider_user))
        assert resp.status_code == 403
