"""One-active-task rule.

Inside a project that is not completed, a member holds at most one card whose
status is not DONE. The rule is per project: the same user may carry one
unfinished card in each of several projects.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError
from models import Board, Card, CardStatus, Project

logger = logging.getLogger("teamboard.workload")


def _unfinished_in_project(project_id: str):
    return (
        select(Card)
        .join(Board, Board.id == Card.board_id)
        .where(
            Board.project_id == project_id,
            Card.status != CardStatus.DONE,
            Card.deleted_at.is_(None),
        )
    )


async def find_unfinished_cards(
    db: AsyncSession,
    project_id: str,
    user_id: str,
    exclude_card_id: Optional[str] = None,
) -> List[Card]:
    stmt = _unfinished_in_project(project_id).where(Card.assignee_id == user_id)
    if exclude_card_id:
        stmt = stmt.where(Card.id != exclude_card_id)
    result = await db.execute(stmt.order_by(Card.created_at))
    return list(result.scalars().all())


def describe_cards(cards: List[Card]) -> List[Dict[str, str]]:
    return [
        {"card_id": c.id, "title": c.title, "status": c.status.value}
        for c in cards
    ]


async def ensure_can_take_card(
    db: AsyncSession,
    project: Project,
    user_id: str,
    exclude_card_id: Optional[str] = None,
) -> None:
    """Raise Conflict listing the blocking cards if ``user_id`` is already busy in ``project``."""
    if project.is_completed:
        return
    blocking = await find_unfinished_cards(db, project.id, user_id, exclude_card_id)
    if blocking:
        logger.info(
            f"User {user_id} blocked in project {project.id}: "
            f"{len(blocking)} unfinished card(s)"
        )
        raise ConflictError(
            "User already has an unfinished task in this project",
            code="unfinished_tasks",
            unfinished_cards=describe_cards(blocking),
        )


async def find_overloaded_members(
    db: AsyncSession,
    project_id: Optional[str] = None,
    include_completed: bool = False,
) -> List[Dict]:
    """Members holding more than one unfinished card in a project.

    Completed projects are skipped unless ``include_completed`` is set, which
    is how a reopen is vetted.
    """
    stmt = (
        select(Board.project_id, Card.assignee_id, func.count(Card.id))
        .join(Board, Board.id == Card.board_id)
        .join(Project, Project.id == Board.project_id)
        .where(
            Card.assignee_id.is_not(None),
            Card.status != CardStatus.DONE,
            Card.deleted_at.is_(None),
        )
        .group_by(Board.project_id, Card.assignee_id)
        .having(func.count(Card.id) > 1)
    )
    if project_id:
        stmt = stmt.where(Board.project_id == project_id)
    if not include_completed:
        stmt = stmt.where(Project.is_completed.is_(False))

    rows = (await db.execute(stmt)).all()
    return [
        {"project_id": pid, "user_id": uid, "unfinished_count": count}
        for pid, uid, count in rows
    ]
