"""Membership service - project membership with leader uniqueness.

A project has at most one LEADER, a user leads at most one project, and only
global LEADERs can be made project LEADER. The checks below give readable
errors; the partial unique indexes on ``project_members`` are the backstop
for concurrent writers.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from errors import ConflictError, ForbiddenError, InputValidationError, InvalidRoleError, NotFoundError
from models import (
    Board, Card, CardStatus, NotificationType, Project, ProjectMember, ProjectRole, User,
)
from services.assignments import release_card
from services.events import SideEffects, project_channel
from services.lookups import get_project_or_404, get_user_or_404
from services.roles import can_hold_project_leadership, load_project_access
from services.workload import describe_cards, find_unfinished_cards

logger = logging.getLogger("teamboard.membership")


@dataclass
class LeaderStatus:
    is_leader: bool
    project_id: Optional[str] = None
    project_name: Optional[str] = None


async def find_leadership(db: AsyncSession, user_id: str) -> Optional[ProjectMember]:
    result = await db.execute(
        select(ProjectMember)
        .options(selectinload(ProjectMember.project))
        .where(
            ProjectMember.user_id == user_id,
            ProjectMember.project_role == ProjectRole.LEADER,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_leader_status(db: AsyncSession, user_id: str) -> LeaderStatus:
    """Advisory lookup of the single project ``user_id`` leads, if any."""
    leadership = await find_leadership(db, user_id)
    if not leadership:
        return LeaderStatus(is_leader=False)
    return LeaderStatus(
        is_leader=True,
        project_id=leadership.project_id,
        project_name=leadership.project.name,
    )


async def ensure_leader_allowed(
    db: AsyncSession,
    project_id: str,
    user: User,
    exclude_member_id: Optional[str] = None,
) -> None:
    """Raise unless ``user`` may become LEADER of ``project_id``."""
    if not can_hold_project_leadership(user.global_role):
        raise InvalidRoleError("Only users with the global LEADER role can lead a project")

    stmt = select(ProjectMember).where(
        ProjectMember.project_id == project_id,
        ProjectMember.project_role == ProjectRole.LEADER,
    )
    if exclude_member_id:
        stmt = stmt.where(ProjectMember.id != exclude_member_id)
    if (await db.execute(stmt)).scalars().first():
        raise ConflictError("This project already has a leader", code="project_has_leader")

    leadership = await find_leadership(db, user.id)
    if leadership and leadership.project_id != project_id:
        raise ConflictError(
            f'{user.name} already leads "{leadership.project.name}"',
            code="user_already_leads",
            project_id=leadership.project_id,
            project_name=leadership.project.name,
        )


async def _commit_membership(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Membership write rejected by constraint: {e.orig}")
        raise ConflictError("Membership changed concurrently, please retry", code="membership_conflict")


# ============================================================
# OPERATIONS
# ============================================================

async def list_members(db: AsyncSession, project_id: str, actor: Any) -> List[ProjectMember]:
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")

    result = await db.execute(
        select(ProjectMember)
        .options(selectinload(ProjectMember.user))
        .where(ProjectMember.project_id == project.id)
        .order_by(ProjectMember.joined_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def add_member(
    db: AsyncSession,
    project_id: str,
    user_id: str,
    project_role: ProjectRole,
    actor: Any,
) -> ProjectMember:
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project leader, creator or an admin can add members")

    user = await get_user_or_404(db, user_id)
    existing = await db.execute(
        select(ProjectMember).where(
            ProjectMember.project_id == project.id,
            ProjectMember.user_id == user.id,
        )
    )
    if existing.scalar_one_or_none():
        raise ConflictError("User is already a member of this project", code="already_member")

    if project_role == ProjectRole.LEADER:
        await ensure_leader_allowed(db, project.id, user)

    member = ProjectMember(project_id=project.id, user_id=user.id, project_role=project_role)
    db.add(member)
    await _commit_membership(db)
    member = await _get_member(db, project.id, member.id)
    logger.info(f"User {user.id} joined project {project.id} as {project_role.value}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit(project_channel(project.id), "member:added", {
        "member_id": member.id,
        "member_user_id": user.id,
        "project_role": project_role.value,
    })
    effects.notify(
        user.id,
        NotificationType.PROJECT_INVITE,
        "Added to project",
        f'You have been added to "{project.name}" as {project_role.value}',
        link=f"/projects/{project.id}",
    )
    await effects.dispatch()
    return member


async def _get_member(db: AsyncSession, project_id: str, member_id: str) -> ProjectMember:
    result = await db.execute(
        select(ProjectMember)
        .options(selectinload(ProjectMember.user))
        .where(ProjectMember.id == member_id, ProjectMember.project_id == project_id)
        .execution_options(populate_existing=True)
    )
    member = result.scalar_one_or_none()
    if not member:
        raise NotFoundError("Member not found")
    return member


async def update_member_role(
    db: AsyncSession,
    project_id: str,
    member_id: str,
    project_role: ProjectRole,
    actor: Any,
) -> ProjectMember:
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project leader, creator or an admin can change member roles")

    member = await _get_member(db, project.id, member_id)
    if member.project_role == project_role:
        return member

    if project_role == ProjectRole.LEADER:
        await ensure_leader_allowed(db, project.id, member.user, exclude_member_id=member.id)
    elif project_role == ProjectRole.OBSERVER and not project.is_completed:
        blocking = await find_unfinished_cards(db, project.id, member.user_id)
        if blocking:
            raise ConflictError(
                "Member still has unfinished tasks and cannot become an observer",
                code="unfinished_tasks",
                unfinished_cards=describe_cards(blocking),
            )

    member.project_role = project_role
    await _commit_membership(db)
    logger.info(f"Member {member.id} of project {project.id} is now {project_role.value}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit(project_channel(project.id), "member:updated", {
        "member_id": member.id,
        "member_user_id": member.user_id,
        "project_role": project_role.value,
    })
    await effects.dispatch()
    return member


async def remove_member(db: AsyncSession, project_id: str, member_id: str, actor: Any) -> None:
    """Delete the membership and release every card the member still holds in the project"""
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_remove_member:
        raise ForbiddenError("Only the project creator or an admin can remove members")

    member = await _get_member(db, project.id, member_id)
    if member.user_id == actor.id:
        raise InputValidationError("You cannot remove yourself from the project")

    held = await db.execute(
        select(Card)
        .join(Board, Board.id == Card.board_id)
        .where(
            Board.project_id == project.id,
            Card.assignee_id == member.user_id,
            Card.deleted_at.is_(None),
        )
        .with_for_update()
    )
    released = []
    for card in held.scalars().all():
        await release_card(db, card, actor.id)
        if card.status == CardStatus.DONE:
            continue
        released.append(card.id)

    removed_user_id = member.user_id
    await db.delete(member)
    await _commit_membership(db)
    logger.info(f"User {removed_user_id} removed from project {project.id}; released {len(released)} card(s)")

    effects = SideEffects(actor_id=actor.id)
    effects.emit(project_channel(project.id), "member:removed", {
        "member_id": member_id,
        "member_user_id": removed_user_id,
        "released_card_ids": released,
    })
    await effects.dispatch()
