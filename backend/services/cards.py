"""Card lifecycle.

TODO -> IN_PROGRESS -> REVIEW -> DONE, plus the reset edge DONE -> TODO that
clears the assignee. Assignee changes always go through the assignment
ledger, including the initial assignee given at creation time.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ForbiddenError, InputValidationError, InvalidStateError, NotFoundError
from models import (
    Board, Card, CardPriority, CardStatus, NotificationType, ProjectMember,
    TimeLog, utcnow,
)
from services.assignments import commit_ledger, record_assignment, release_card, validate_assignee
from services.events import SideEffects
from services.lookups import claim_write_lock, get_card_context, get_project_or_404
from services.roles import load_project_access
from services.workload import ensure_can_take_card

logger = logging.getLogger("teamboard.cards")

UPDATABLE_FIELDS = {"title", "description", "priority", "due_date", "status", "board_id"}


def card_payload(card: Card) -> Dict[str, Any]:
    return {
        "card_id": card.id,
        "board_id": card.board_id,
        "title": card.title,
        "status": card.status.value,
        "priority": card.priority.value,
        "assignee_id": card.assignee_id,
    }


def _card_link(project_id: str, card_id: str) -> str:
    return f"/projects/{project_id}/cards/{card_id}"


async def _member_user_ids(db: AsyncSession, project_id: str) -> List[str]:
    result = await db.execute(select(ProjectMember.user_id).where(ProjectMember.project_id == project_id))
    return list(result.scalars().all())


# ============================================================
# READS
# ============================================================

async def get_card(db: AsyncSession, card_id: str, actor: Any) -> Card:
    card, project = await get_card_context(db, card_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")
    return card


async def list_project_cards(
    db: AsyncSession,
    project_id: str,
    actor: Any,
    status: Optional[CardStatus] = None,
    assignee_id: Optional[str] = None,
) -> List[Card]:
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")

    stmt = (
        select(Card)
        .join(Board, Board.id == Card.board_id)
        .where(Board.project_id == project.id, Card.deleted_at.is_(None))
    )
    if status:
        stmt = stmt.where(Card.status == status)
    if assignee_id:
        stmt = stmt.where(Card.assignee_id == assignee_id)
    result = await db.execute(stmt.order_by(Board.position, Card.position))
    return list(result.scalars().all())


# ============================================================
# WRITES
# ============================================================

async def create_card(
    db: AsyncSession,
    board_id: str,
    title: str,
    actor: Any,
    description: Optional[str] = None,
    priority: CardPriority = CardPriority.MEDIUM,
    due_date=None,
    assignee_id: Optional[str] = None,
) -> Card:
    if not title or not title.strip():
        raise InputValidationError("Card title is required")
    if assignee_id:
        await claim_write_lock(db, board_id=board_id)

    board = await db.get(Board, board_id)
    if not board:
        raise NotFoundError("Board not found")
    project = await get_project_or_404(db, board.project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_contribute:
        raise ForbiddenError("You cannot create cards in this project")

    membership = None
    if assignee_id:
        if not access.can_manage:
            raise ForbiddenError("Only the project leader, creator or an admin can assign cards")
        membership = await validate_assignee(db, project, None, assignee_id, access)

    max_pos = await db.execute(select(func.max(Card.position)).where(Card.board_id == board.id))
    card = Card(
        board_id=board.id,
        title=title.strip(),
        description=description,
        priority=priority,
        status=CardStatus.TODO,
        position=(max_pos.scalar() or 0) + 1,
        created_by=actor.id,
        due_date=due_date,
    )
    db.add(card)
    await db.flush()
    if membership:
        await record_assignment(db, card, membership, actor.id, reason="Assigned at creation")
    await commit_ledger(db)
    logger.info(f"Card {card.id} created in project {project.id} by {actor.id}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "card:created", card_payload(card))
    if membership:
        effects.notify(
            assignee_id,
            NotificationType.CARD_ASSIGNED,
            "New task assigned",
            f'You have been assigned to "{card.title}" in {project.name}',
            link=_card_link(project.id, card.id),
        )
    await effects.dispatch()
    return card


async def update_card(db: AsyncSession, card_id: str, actor: Any, changes: Dict[str, Any]) -> Card:
    """Apply field changes. The assignee is not writable here; use the ledger."""
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InputValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")

    card, project = await get_card_context(db, card_id, for_update=True)
    access = await load_project_access(db, project, actor)
    if not access.can_contribute:
        raise ForbiddenError("You cannot edit cards in this project")

    old_status = card.status
    new_status = changes.get("status", old_status)
    if new_status != old_status:
        if new_status == CardStatus.DONE:
            logged = await db.execute(select(func.count(TimeLog.id)).where(TimeLog.card_id == card.id))
            if not logged.scalar():
                raise InvalidStateError("Cannot mark a task as done without time tracking")
        elif old_status == CardStatus.DONE and card.assignee_id:
            await ensure_can_take_card(db, project, card.assignee_id, exclude_card_id=card.id)

    if "board_id" in changes and changes["board_id"] != card.board_id:
        target = await db.get(Board, changes["board_id"])
        if not target or target.project_id != project.id:
            raise InputValidationError("Target board does not belong to this project")

    if "title" in changes and not (changes["title"] or "").strip():
        raise InputValidationError("Card title is required")

    notify_assignee = (
        ("priority" in changes and changes["priority"] != card.priority)
        or ("due_date" in changes and changes["due_date"] != card.due_date)
    )
    for key, value in changes.items():
        setattr(card, key, value)
    card.updated_at = utcnow()
    await db.commit()

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "card:updated", card_payload(card))
    if new_status == CardStatus.DONE and old_status != CardStatus.DONE:
        for user_id in await _member_user_ids(db, project.id):
            effects.notify(
                user_id,
                NotificationType.CARD_COMPLETED,
                "Task completed",
                f'"{card.title}" has been completed',
                link=_card_link(project.id, card.id),
            )
    elif notify_assignee and card.assignee_id:
        effects.notify(
            card.assignee_id,
            NotificationType.CARD_UPDATED,
            "Task updated",
            f'"{card.title}" was updated',
            link=_card_link(project.id, card.id),
        )
    await effects.dispatch()
    return card


async def reset_card(db: AsyncSession, card_id: str, actor: Any) -> Card:
    """Return a DONE card to TODO and free its assignee for new work."""
    card, project = await get_card_context(db, card_id, for_update=True)
    access = await load_project_access(db, project, actor)
    if not access.can_contribute:
        raise ForbiddenError("You cannot reset cards in this project")
    if card.status != CardStatus.DONE:
        raise InvalidStateError("Only completed cards can be reset")

    previous = await release_card(db, card, actor.id)
    card.status = CardStatus.TODO
    card.updated_at = utcnow()
    await commit_ledger(db)
    logger.info(f"Card {card.id} reset by {actor.id}; released {previous}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "card:reset", {
        **card_payload(card),
        "previous_assignee_id": previous,
    })
    await effects.dispatch()
    return card


async def delete_card(db: AsyncSession, card_id: str, actor: Any) -> None:
    """Soft delete; the ledger keeps its rows, the live one is closed."""
    card, project = await get_card_context(db, card_id, for_update=True)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project leader, creator or an admin can delete cards")

    await release_card(db, card, actor.id)
    card.deleted_at = utcnow()
    await commit_ledger(db)

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "card:deleted", {"card_id": card.id})
    await effects.dispatch()
