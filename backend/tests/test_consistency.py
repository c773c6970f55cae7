# tests/test_consistency.py - Assignment ledger drift detection and repair
import pytest
from httpx import AsyncClient
from sqlalchemy import update, select

from database import async_session_maker
from models import Card, CardAssignment
from services.assignments import check_consistency, repair_consistency
from tests.conftest import create_card


async def _set_pointer(db_session, card_id, assignee_id):
    await db_session.execute(update(Card).where(Card.id == card_id).values(assignee_id=assignee_id))
    await db_session.commit()


@pytest.mark.asyncio
async def test_clean_board_reports_nothing(client: AsyncClient, todo_board, leader_user, member_user):
    await create_card(client, todo_board, leader_user, assignee_id=member_user.id)
    async with async_session_maker() as db:
        report = await check_consistency(db)
    assert report.is_clean


@pytest.mark.asyncio
async def test_cleared_pointer_is_synced_from_ledger(
    client: AsyncClient, db_session, todo_board, leader_user, member_user,
):
    card = await create_card(client, todo_board, leader_user, assignee_id=member_user.id)
    await _set_pointer(db_session, card["id"], None)

    async with async_session_maker() as db:
        report = await check_consistency(db)
        assert report.pointer_mismatches == [
            {"card_id": card["id"], "assignee_id": None, "ledger_assignee_id": member_user.id}
        ]
        result = await repair_consistency(db)
        assert result.pointers_synced == 1

    async with async_session_maker() as db:
        assert (await db.get(Card, card["id"])).assignee_id == member_user.id
        assert (await check_consistency(db)).is_clean


@pytest.mark.asyncio
async def test_pointer_without_ledger_row_is_backfilled(
    client: AsyncClient, db_session, todo_board, leader_user, member_user,
):
    card = await create_card(client, todo_board, leader_user)
    await _set_pointer(db_session, card["id"], member_user.id)

    async with async_session_maker() as db:
        result = await repair_consistency(db)
    assert result.backfilled == 1

    async with async_session_maker() as db:
        rows = (await db.execute(select(CardAssignment).where(CardAssignment.card_id == card["id"]))).scalars().all()
        assert len(rows) == 1
        assert rows[0].is_active is True
        assert rows[0].assigned_by is None


@pytest.mark.asyncio
async def test_pointer_to_non_member_is_cleared(
    client: AsyncClient, db_session, todo_board, leader_user, outsider_user,
):
    card = await create_card(client, todo_board, leader_user)
    await _set_pointer(db_session, card["id"], outsider_user.id)

    async with async_session_maker() as db:
        result = await repair_consistency(db)
    assert result.pointers_cleared == 1
    assert result.backfilled == 0


@pytest.mark.asyncio
async def test_overloaded_members_are_reported_not_fixed(
    client: AsyncClient, db_session, todo_board, leader_user, member_user,
):
    await create_card(client, todo_board, leader_user, title="One", assignee_id=member_user.id)
    second = await create_card(client, todo_board, leader_user, title="Two")
    await _set_pointer(db_session, second["id"], member_user.id)

    async with async_session_maker() as db:
        result = await repair_consistency(db)
    assert result.backfilled == 1
    assert [m["user_id"] for m in result.overloaded_members] == [member_user.id]
