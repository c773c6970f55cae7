"""Projects - creation with leader bootstrap, completion toggle, listing."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, ForbiddenError, InputValidationError
from models import (
    DEFAULT_BOARDS, Board, Card, CardAssignment, Comment, NotificationType, OvertimeRequest, Project,
    ProjectMember, ProjectRole, Subtask, TimeLog, utcnow,
)
from services.events import SideEffects, project_channel
from services.lookups import get_project_or_404, get_user_or_404
from services.membership import ensure_leader_allowed
from services.roles import (
    can_create_project, can_hold_project_leadership, is_admin, load_project_access,
)
from services.workload import find_overloaded_members

logger = logging.getLogger("teamboard.projects")

UPDATABLE_FIELDS = {"name", "description", "deadline"}


@dataclass
class MemberSpec:
    user_id: str
    project_role: ProjectRole = ProjectRole.DEVELOPER


async def list_projects(db: AsyncSession, actor: Any) -> List[Project]:
    stmt = select(Project).order_by(Project.created_at.desc())
    if not is_admin(actor.global_role):
        member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == actor.id)
        stmt = stmt.where(or_(Project.created_by == actor.id, Project.id.in_(member_of)))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_project(db: AsyncSession, project_id: str, actor: Any) -> Project:
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")
    return project


async def list_boards(db: AsyncSession, project_id: str) -> List[Board]:
    result = await db.execute(
        select(Board).where(Board.project_id == project_id).order_by(Board.position)
    )
    return list(result.scalars().all())


async def create_project(
    db: AsyncSession,
    name: str,
    actor: Any,
    description: Optional[str] = None,
    deadline: Optional[datetime] = None,
    members: Optional[List[MemberSpec]] = None,
) -> Project:
    """Create a project with its default boards.

    A LEADER creator leads the new project. Member entries follow the same
    leader rules as ``add_member``, and at most one LEADER may be named.
    """
    if not can_create_project(actor.global_role):
        raise ForbiddenError("Only admins and leaders can create projects")
    if not name or not name.strip():
        raise InputValidationError("Project name is required")

    members = members or []
    creator_leads = can_hold_project_leadership(actor.global_role)
    leader_entries = [m for m in members if m.project_role == ProjectRole.LEADER]
    if len(leader_entries) + (1 if creator_leads else 0) > 1:
        raise ConflictError("A project can only have one leader", code="project_has_leader")
    if not creator_leads and not leader_entries:
        raise InputValidationError("A project created by an admin must name exactly one leader")
    seen = set()
    for entry in members:
        if entry.user_id in seen or (creator_leads and entry.user_id == actor.id):
            raise InputValidationError("Each user can only be listed once")
        seen.add(entry.user_id)

    project = Project(name=name.strip(), description=description, deadline=deadline, created_by=actor.id)
    db.add(project)
    await db.flush()

    for position, board_name in enumerate(DEFAULT_BOARDS):
        db.add(Board(project_id=project.id, name=board_name, position=position))

    if creator_leads:
        creator = await get_user_or_404(db, actor.id)
        await ensure_leader_allowed(db, project.id, creator)
        db.add(ProjectMember(project_id=project.id, user_id=actor.id, project_role=ProjectRole.LEADER))

    for entry in members:
        user = await get_user_or_404(db, entry.user_id)
        if entry.project_role == ProjectRole.LEADER:
            await ensure_leader_allowed(db, project.id, user)
        db.add(ProjectMember(project_id=project.id, user_id=user.id, project_role=entry.project_role))

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Project creation rejected by constraint: {e.orig}")
        raise ConflictError("Project leadership changed concurrently, please retry", code="membership_conflict")
    logger.info(f"Project {project.id} created by {actor.id} with {len(members)} member(s)")

    effects = SideEffects(actor_id=actor.id)
    for entry in members:
        effects.notify(
            entry.user_id,
            NotificationType.PROJECT_INVITE,
            "Added to project",
            f'You have been added to "{project.name}" as {entry.project_role.value}',
            link=f"/projects/{project.id}",
        )
    await effects.dispatch()
    return project


async def update_project(db: AsyncSession, project_id: str, actor: Any, changes: Dict[str, Any]) -> Project:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise InputValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")

    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project leader, creator or an admin can edit this project")
    if "name" in changes and not (changes["name"] or "").strip():
        raise InputValidationError("Project name is required")

    for key, value in changes.items():
        setattr(project, key, value)
    project.updated_at = utcnow()
    await db.commit()

    effects = SideEffects(actor_id=actor.id)
    effects.emit(project_channel(project.id), "project:updated", {"project_id": project.id, "name": project.name})
    await effects.dispatch()
    return project


async def set_completion(db: AsyncSession, project_id: str, actor: Any, is_completed: bool) -> Project:
    """Toggle completion. Reopening is refused while members hold several unfinished cards."""
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_toggle_completion:
        raise ForbiddenError("Only the project creator or an admin can change completion")

    if project.is_completed and not is_completed:
        overloaded = await find_overloaded_members(db, project.id, include_completed=True)
        if overloaded:
            raise ConflictError(
                "Members hold more than one unfinished task; reassign before reopening",
                code="overloaded_members",
                overloaded_members=overloaded,
            )

    project.is_completed = is_completed
    project.completed_at = utcnow() if is_completed else None
    await db.commit()
    logger.info(f"Project {project.id} completion set to {is_completed} by {actor.id}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit(project_channel(project.id), "project:completion", {
        "project_id": project.id,
        "is_completed": project.is_completed,
    })
    await effects.dispatch()
    return project


async def delete_project(db: AsyncSession, project_id: str, actor: Any) -> None:
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project leader, creator or an admin can delete this project")

    card_ids = select(Card.id).join(Board, Board.id == Card.board_id).where(Board.project_id == project.id)
    for model in (CardAssignment, TimeLog, Subtask, Comment, OvertimeRequest):
        await db.execute(delete(model).where(model.card_id.in_(card_ids)))
    await db.execute(delete(Card).where(Card.id.in_(card_ids)))
    await db.execute(delete(Board).where(Board.project_id == project.id))
    await db.execute(delete(ProjectMember).where(ProjectMember.project_id == project.id))
    await db.execute(delete(Project).where(Project.id == project.id))
    await db.commit()
    logger.info(f"Project {project_id} deleted by {actor.id}")
