# tests/test_assignments.py - Assignment ledger, one-active-task rule and history
import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from models import CardAssignment, TimeLog, utcnow
from tests.conftest import get_auth_headers, create_card
from services.events import set_event_sink


async def _assign(client, card_id, user, assignee_id, reason=None):
    return await client.patch(
        f"/api/v1/cards/{card_id}/assign",
        json={"assignee_id": assignee_id, "reason": reason},
        headers=get_auth_headers(user),
    )


async def _ledger(db_session, card_id):
    result = await db_session.execute(
        select(CardAssignment)
        .where(CardAssignment.card_id == card_id)
        .order_by(CardAssignment.assigned_at)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def _finish(client, db_session, card_id, user):
    db_session.add(TimeLog(card_id=card_id, user_id=user.id, start_time=utcnow(), end_time=utcnow(), duration_minutes=5))
    await db_session.commit()
    resp = await client.patch(f"/api/v1/cards/{card_id}", json={"status": "done"}, headers=get_auth_headers(user))
    assert resp.status_code == 200, resp.text


@pytest.mark.asyncio
class TestAssign:
    async def test_assign_writes_ledger_and_pointer(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        resp = await _assign(client, card["id"], leader_user, member_user.id, reason="Owns the API")
        assert resp.status_code == 200
        row = resp.json()
        assert row["assigned_to"] == member_user.id
        assert row["assigned_by"] == leader_user.id
        assert row["is_active"] is True
        assert row["reason"] == "Owns the API"

        card_resp = await client.get(f"/api/v1/cards/{card['id']}", headers=get_auth_headers(leader_user))
        assert card_resp.json()["assignee_id"] == member_user.id

    async def test_busy_member_is_blocked(self, client: AsyncClient, todo_board, leader_user, member_user):
        first = await create_card(client, todo_board, leader_user, title="First")
        second = await create_card(client, todo_board, leader_user, title="Second")
        await _assign(client, first["id"], leader_user, member_user.id)

        resp = await _assign(client, second["id"], leader_user, member_user.id)
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "unfinished_tasks"
        assert [c["card_id"] for c in body["unfinished_cards"]] == [first["id"]]

    async def test_busy_rule_is_per_project(
        self, client: AsyncClient, todo_board, admin_user, leader_user, second_leader, member_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)

        headers = get_auth_headers(admin_user)
        other = await client.post(
            "/api/v1/projects",
            json={"name": "Side project", "members": [
                {"user_id": second_leader.id, "project_role": "leader"},
                {"user_id": member_user.id},
            ]},
            headers=headers,
        )
        other_board = other.json()["boards"][0]["id"]
        other_card = await create_card(client, other_board, admin_user)
        resp = await _assign(client, other_card["id"], admin_user, member_user.id)
        assert resp.status_code == 200

    async def test_completed_project_skips_busy_rule(
        self, client: AsyncClient, project, todo_board, leader_user, member_user,
    ):
        first = await create_card(client, todo_board, leader_user, title="First")
        second = await create_card(client, todo_board, leader_user, title="Second")
        await _assign(client, first["id"], leader_user, member_user.id)
        resp = await client.patch(
            f"/api/v1/projects/{project.id}/complete",
            json={"is_completed": True},
            headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 200

        resp = await _assign(client, second["id"], leader_user, member_user.id)
        assert resp.status_code == 200

    async def test_observer_cannot_be_assigned(self, client: AsyncClient, todo_board, leader_user, observer_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await _assign(client, card["id"], leader_user, observer_user.id)
        assert resp.status_code == 403

    async def test_admin_may_assign_observer(self, client: AsyncClient, todo_board, admin_user, leader_user, observer_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await _assign(client, card["id"], admin_user, observer_user.id)
        assert resp.status_code == 200

    async def test_non_member_cannot_be_assigned(self, client: AsyncClient, todo_board, leader_user, outsider_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await _assign(client, card["id"], leader_user, outsider_user.id)
        assert resp.status_code == 404

    async def test_deactivated_member_cannot_be_assigned(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user,
    ):
        member_user.is_active = False
        await db_session.commit()

        card = await create_card(client, todo_board, leader_user)
        resp = await _assign(client, card["id"], leader_user, member_user.id)
        assert resp.status_code == 404
        assert "not active" in resp.json()["detail"]

        resp = await client.post(
            "/api/v1/cards",
            json={"board_id": todo_board, "title": "Later", "assignee_id": member_user.id},
            headers=get_auth_headers(leader_user),
        )
        assert resp.status_code == 404
        rows = await db_session.execute(select(CardAssignment).where(CardAssignment.assigned_to == member_user.id))
        assert rows.scalars().all() == []

    async def test_developer_cannot_assign(self, client: AsyncClient, todo_board, leader_user, member_user, designer_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await _assign(client, card["id"], member_user, designer_user.id)
        assert resp.status_code == 403

    async def test_reassigning_same_user_is_noop(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        first = await _assign(client, card["id"], leader_user, member_user.id)
        again = await _assign(client, card["id"], leader_user, member_user.id)
        assert again.status_code == 200
        assert again.json()["id"] == first.json()["id"]
        assert len(await _ledger(db_session, card["id"])) == 1

    async def test_sequential_reassignment_keeps_one_live_row(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user, designer_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)
        resp = await _assign(client, card["id"], leader_user, designer_user.id)
        assert resp.status_code == 200

        rows = await _ledger(db_session, card["id"])
        assert len(rows) == 2
        assert [r.is_active for r in rows] == [False, True]
        assert rows[0].unassigned_at is not None
        assert rows[0].unassigned_by == leader_user.id
        assert rows[1].assigned_to == designer_user.id

    async def test_assignee_is_notified(self, client: AsyncClient, todo_board, leader_user, member_user):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)
        resp = await client.get("/api/v1/notifications", headers=get_auth_headers(member_user))
        assert resp.json()[0]["type"] == "card_assigned"

    async def test_event_sink_failure_keeps_assignment(
        self, client: AsyncClient, todo_board, leader_user, member_user,
    ):
        async def broken_sink(channel, event, payload):
            raise RuntimeError("broker down")

        card = await create_card(client, todo_board, leader_user)
        set_event_sink(broken_sink)
        try:
            resp = await _assign(client, card["id"], leader_user, member_user.id)
        finally:
            set_event_sink(None)
        assert resp.status_code == 200

        card_resp = await client.get(f"/api/v1/cards/{card['id']}", headers=get_auth_headers(leader_user))
        assert card_resp.json()["assignee_id"] == member_user.id

    async def test_events_published_on_card_and_project(
        self, client: AsyncClient, project, todo_board, leader_user, member_user, captured_events,
    ):
        card = await create_card(client, todo_board, leader_user)
        captured_events.clear()
        await _assign(client, card["id"], leader_user, member_user.id)

        assigned = [(ch, p) for ch, ev, p in captured_events if ev == "card:assigned"]
        assert {ch for ch, _ in assigned} == {f"card-{card['id']}", f"project-{project.id}"}
        assert all(p["assignee_id"] == member_user.id and p["user_id"] == leader_user.id for _, p in assigned)
        assert any(ev == "notification:new" and ch == f"user-{member_user.id}" for ch, ev, _ in captured_events)


@pytest.mark.asyncio
class TestUnassignAndReset:
    async def test_unassign_closes_live_row(self, client: AsyncClient, db_session, todo_board, leader_user, member_user):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)

        resp = await client.delete(f"/api/v1/cards/{card['id']}/assign", headers=get_auth_headers(leader_user))
        assert resp.status_code == 200

        rows = await _ledger(db_session, card["id"])
        assert len(rows) == 1
        assert rows[0].is_active is False
        assert rows[0].unassigned_at is not None

    async def test_unassign_is_idempotent(self, client: AsyncClient, db_session, todo_board, leader_user):
        card = await create_card(client, todo_board, leader_user)
        headers = get_auth_headers(leader_user)
        assert (await client.delete(f"/api/v1/cards/{card['id']}/assign", headers=headers)).status_code == 200
        assert (await client.delete(f"/api/v1/cards/{card['id']}/assign", headers=headers)).status_code == 200
        assert await _ledger(db_session, card["id"]) == []

    async def test_reset_frees_member_for_new_work(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user,
    ):
        first = await create_card(client, todo_board, leader_user, title="First")
        second = await create_card(client, todo_board, leader_user, title="Second")
        await _assign(client, first["id"], leader_user, member_user.id)
        await _finish(client, db_session, first["id"], member_user)

        resp = await client.post(f"/api/v1/cards/{first['id']}/reset", headers=get_auth_headers(member_user))
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "todo"
        assert data["assignee_id"] is None

        rows = await _ledger(db_session, first["id"])
        assert rows[-1].is_active is False
        assert rows[-1].unassigned_at is not None

        assert (await _assign(client, second["id"], leader_user, member_user.id)).status_code == 200

    async def test_reset_requires_done(self, client: AsyncClient, todo_board, leader_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await client.post(f"/api/v1/cards/{card['id']}/reset", headers=get_auth_headers(leader_user))
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_state"

    async def test_reassigning_done_card_reopens_it(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user, designer_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)
        await _finish(client, db_session, card["id"], member_user)

        await _assign(client, card["id"], leader_user, designer_user.id)
        resp = await client.get(f"/api/v1/cards/{card['id']}", headers=get_auth_headers(leader_user))
        assert resp.json()["status"] == "todo"
        assert resp.json()["assignee_id"] == designer_user.id


@pytest.mark.asyncio
class TestLedgerConstraint:
    async def test_second_live_row_rejected_by_index(self, db_session, client, todo_board, leader_user, member_user, designer_user):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)

        db_session.add(CardAssignment(card_id=card["id"], assigned_to=designer_user.id, is_active=True, assigned_at=utcnow()))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    async def test_simultaneous_assigns_to_one_card_leave_one_live_row(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user, designer_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        responses = await asyncio.gather(
            _assign(client, card["id"], leader_user, member_user.id),
            _assign(client, card["id"], leader_user, designer_user.id),
        )
        assert all(r.status_code in (200, 409) for r in responses)
        assert any(r.status_code == 200 for r in responses)

        live = [r for r in await _ledger(db_session, card["id"]) if r.is_active]
        assert len(live) == 1
        resp = await client.get(f"/api/v1/cards/{card['id']}", headers=get_auth_headers(leader_user))
        assert resp.json()["assignee_id"] == live[0].assigned_to

    async def test_simultaneous_assigns_of_two_cards_to_one_member(
        self, client: AsyncClient, db_session, project, todo_board, leader_user, member_user,
    ):
        first = await create_card(client, todo_board, leader_user, title="First")
        second = await create_card(client, todo_board, leader_user, title="Second")
        responses = await asyncio.gather(
            _assign(client, first["id"], leader_user, member_user.id),
            _assign(client, second["id"], leader_user, member_user.id),
        )
        assert sorted(r.status_code for r in responses) == [200, 409]

        cards = await client.get(
            f"/api/v1/projects/{project.id}/cards",
            params={"assignee_id": member_user.id},
            headers=get_auth_headers(leader_user),
        )
        assert len(cards.json()) == 1

    async def test_simultaneous_create_with_same_assignee(
        self, client: AsyncClient, todo_board, leader_user, member_user,
    ):
        responses = await asyncio.gather(*[
            client.post(
                "/api/v1/cards",
                json={"board_id": todo_board, "title": title, "assignee_id": member_user.id},
                headers=get_auth_headers(leader_user),
            )
            for title in ("One", "Two")
        ])
        assert sorted(r.status_code for r in responses) == [201, 409]


@pytest.mark.asyncio
class TestHistory:
    async def test_card_history_and_summary(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user, designer_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)
        await _assign(client, card["id"], leader_user, designer_user.id)

        resp = await client.get(f"/api/v1/cards/{card['id']}/assignment-history", headers=get_auth_headers(member_user))
        assert resp.status_code == 200
        data = resp.json()
        assert [r["assigned_to"] for r in data["rows"]] == [designer_user.id, member_user.id]
        assert [r["status"] for r in data["rows"]] == ["active", "unassigned"]
        assert data["rows"][0]["assigned_by_name"] == leader_user.name
        assert data["summary"]["total"] == 2
        assert data["summary"]["active"] == 1
        assert data["summary"]["unassigned"] == 1

    async def test_project_history_filters(
        self, client: AsyncClient, project, todo_board, leader_user, member_user, designer_user,
    ):
        a = await create_card(client, todo_board, leader_user, title="A")
        b = await create_card(client, todo_board, leader_user, title="B")
        await _assign(client, a["id"], leader_user, member_user.id)
        await _assign(client, b["id"], leader_user, designer_user.id)
        headers = get_auth_headers(leader_user)

        resp = await client.get(f"/api/v1/projects/{project.id}/assignment-history", headers=headers)
        assert resp.json()["summary"]["total"] == 2

        resp = await client.get(
            f"/api/v1/projects/{project.id}/assignment-history",
            params={"assignee_id": designer_user.id},
            headers=headers,
        )
        rows = resp.json()["rows"]
        assert len(rows) == 1 and rows[0]["card_title"] == "B"

        resp = await client.get(
            f"/api/v1/projects/{project.id}/assignment-history",
            params={"is_active": "false"},
            headers=headers,
        )
        assert resp.json()["rows"] == []

    async def test_completed_status_in_history(
        self, client: AsyncClient, db_session, todo_board, leader_user, member_user,
    ):
        card = await create_card(client, todo_board, leader_user)
        await _assign(client, card["id"], leader_user, member_user.id)
        await _finish(client, db_session, card["id"], member_user)

        resp = await client.get(f"/api/v1/cards/{card['id']}/assignment-history", headers=get_auth_headers(leader_user))
        assert resp.json()["rows"][0]["status"] == "completed"
        assert resp.json()["summary"]["completed"] == 1

    async def test_outsider_cannot_read_history(self, client: AsyncClient, todo_board, leader_user, outsider_user):
        card = await create_card(client, todo_board, leader_user)
        resp = await client.get(f"/api/v1/cards/{card['id']}/assignment-history", headers=get_auth_headers(outsider_user))
        assert resp.status_code == 403
