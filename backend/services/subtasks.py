"""Subtasks - binary TODO/DONE checklist items under a card."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ForbiddenError, InputValidationError, NotFoundError
from models import Card, NotificationType, Project, Subtask, SubtaskStatus, utcnow
from services.events import SideEffects
from services.lookups import get_card_context, get_membership
from services.roles import ProjectAccess, is_assignable, load_project_access

logger = logging.getLogger("teamboard.subtasks")


def subtask_payload(subtask: Subtask) -> dict:
    return {
        "subtask_id": subtask.id,
        "card_id": subtask.card_id,
        "title": subtask.title,
        "status": subtask.status.value,
        "assignee_id": subtask.assignee_id,
    }


async def _load(db: AsyncSession, card_id: str, subtask_id: str, actor: Any) -> Tuple[Subtask, Card, Project, ProjectAccess]:
    card, project = await get_card_context(db, card_id)
    subtask = await db.get(Subtask, subtask_id)
    if not subtask or subtask.card_id != card.id:
        raise NotFoundError("Subtask not found")
    access = await load_project_access(db, project, actor)
    return subtask, card, project, access


async def _check_assignee(db: AsyncSession, project: Project, assignee_id: str, access: ProjectAccess) -> None:
    membership = await get_membership(db, project.id, assignee_id)
    if not membership:
        raise InputValidationError("Subtask assignee must be a project member")
    if not is_assignable(membership.project_role, access.global_role):
        raise ForbiddenError("Cannot assign subtasks to observers")


async def list_subtasks(db: AsyncSession, card_id: str, actor: Any) -> List[Subtask]:
    card, project = await get_card_context(db, card_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")
    result = await db.execute(
        select(Subtask).where(Subtask.card_id == card.id).order_by(Subtask.position)
    )
    return list(result.scalars().all())


async def create_subtask(
    db: AsyncSession,
    card_id: str,
    title: str,
    actor: Any,
    assignee_id: Optional[str] = None,
) -> Subtask:
    if not title or not title.strip():
        raise InputValidationError("Subtask title is required")

    card, project = await get_card_context(db, card_id)
    access = await load_project_access(db, project, actor)
    if not access.can_contribute:
        raise ForbiddenError("Observers and non-members cannot create subtasks")
    if assignee_id:
        await _check_assignee(db, project, assignee_id, access)

    max_pos = await db.execute(select(func.max(Subtask.position)).where(Subtask.card_id == card.id))
    subtask = Subtask(
        card_id=card.id,
        title=title.strip(),
        status=SubtaskStatus.TODO,
        assignee_id=assignee_id,
        position=(max_pos.scalar() or 0) + 1,
    )
    db.add(subtask)
    await db.commit()

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "subtask:created", subtask_payload(subtask))
    await effects.dispatch()
    return subtask


SUBTASK_FIELDS = {"title", "status", "assignee_id"}


async def update_subtask(
    db: AsyncSession,
    card_id: str,
    subtask_id: str,
    actor: Any,
    changes: Dict[str, Any],
) -> Subtask:
    """Apply ``changes``; an ``assignee_id`` of None clears the assignee."""
    unknown = set(changes) - SUBTASK_FIELDS
    if unknown:
        raise InputValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")

    subtask, card, project, access = await _load(db, card_id, subtask_id, actor)
    if not access.can_update_subtask(is_card_assignee=card.assignee_id == actor.id):
        raise ForbiddenError("You cannot edit this subtask")

    if "title" in changes:
        title = changes["title"]
        if not title or not title.strip():
            raise InputValidationError("Subtask title is required")
        subtask.title = title.strip()
    if "assignee_id" in changes:
        assignee_id = changes["assignee_id"]
        if assignee_id and assignee_id != subtask.assignee_id:
            await _check_assignee(db, project, assignee_id, access)
        subtask.assignee_id = assignee_id or None

    status = changes.get("status")
    completed = status == SubtaskStatus.DONE and subtask.status != SubtaskStatus.DONE
    if status is not None:
        subtask.status = status
    subtask.updated_at = utcnow()
    await db.commit()

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "subtask:updated", subtask_payload(subtask))
    if completed and card.assignee_id:
        effects.notify(
            card.assignee_id,
            NotificationType.SUBTASK_COMPLETED,
            "Subtask completed",
            f'"{subtask.title}" on "{card.title}" is done',
            link=f"/projects/{project.id}/cards/{card.id}",
        )
    await effects.dispatch()
    return subtask


async def toggle_subtask(db: AsyncSession, card_id: str, subtask_id: str, actor: Any) -> Subtask:
    subtask = await db.get(Subtask, subtask_id)
    if not subtask or subtask.card_id != card_id:
        raise NotFoundError("Subtask not found")
    target = SubtaskStatus.TODO if subtask.status == SubtaskStatus.DONE else SubtaskStatus.DONE
    return await update_subtask(db, card_id, subtask_id, actor, {"status": target})


async def delete_subtask(db: AsyncSession, card_id: str, subtask_id: str, actor: Any) -> None:
    subtask, card, project, access = await _load(db, card_id, subtask_id, actor)
    if not access.can_delete_subtask:
        raise ForbiddenError("Only the project leader, creator or an admin can delete subtasks")

    await db.delete(subtask)
    await db.commit()
    logger.info(f"Subtask {subtask_id} deleted from card {card.id} by {actor.id}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "subtask:deleted", {"subtask_id": subtask_id, "card_id": card.id})
    await effects.dispatch()
