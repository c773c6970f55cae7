"""Overtime requests - asking to keep working on a card past its due date.

The card's assignee files a request once the card is overdue; the project
creator, the project LEADER or an admin approves or rejects it. A user holds
at most one PENDING request per card.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, ForbiddenError, InputValidationError, InvalidStateError, NotFoundError
from models import (
    Board, Card, NotificationType, OvertimeRequest, OvertimeStatus, Project,
    ProjectMember, ProjectRole, User, as_utc, utcnow,
)
from services.events import SideEffects
from services.lookups import get_card_context
from services.roles import is_admin, is_leader_or_admin, load_project_access

logger = logging.getLogger("teamboard.overtime")

VIEWS = ("my-requests", "pending-approvals", "all")
ACTIONS = {"approve": OvertimeStatus.APPROVED, "reject": OvertimeStatus.REJECTED}


@dataclass
class OvertimeEntry:
    request: OvertimeRequest
    card_title: str
    project_id: str
    project_name: str
    requester_name: Optional[str]


def days_overdue(due_date: datetime, now: Optional[datetime] = None) -> int:
    """Whole days past the due date, rounded up; zero or less when not overdue."""
    now = now or utcnow()
    return math.ceil((now - as_utc(due_date)) / timedelta(days=1))


def overtime_payload(req: OvertimeRequest) -> dict:
    return {
        "request_id": req.id,
        "card_id": req.card_id,
        "requested_by": req.requested_by,
        "status": req.status.value,
        "days_overdue": req.days_overdue,
    }


async def _approver_ids(db: AsyncSession, project: Project) -> List[str]:
    result = await db.execute(
        select(ProjectMember.user_id).where(
            ProjectMember.project_id == project.id,
            ProjectMember.project_role == ProjectRole.LEADER,
        )
    )
    ids = [project.created_by]
    ids.extend(uid for uid in result.scalars().all() if uid not in ids)
    return ids


async def request_overtime(db: AsyncSession, card_id: str, reason: str, actor: Any) -> OvertimeRequest:
    if not reason or not reason.strip():
        raise InputValidationError("A reason is required")

    card, project = await get_card_context(db, card_id, for_update=True)
    if card.assignee_id != actor.id:
        raise ForbiddenError("Only the card's assignee can request overtime")
    if card.due_date is None:
        raise InvalidStateError("Card has no due date")
    overdue = days_overdue(card.due_date)
    if overdue <= 0:
        raise InvalidStateError("Card is not overdue yet")

    pending = await db.execute(
        select(OvertimeRequest.id).where(
            OvertimeRequest.card_id == card.id,
            OvertimeRequest.requested_by == actor.id,
            OvertimeRequest.status == OvertimeStatus.PENDING,
        )
    )
    if pending.first():
        raise ConflictError("You already have a pending request for this card", code="overtime_pending")

    req = OvertimeRequest(
        card_id=card.id,
        requested_by=actor.id,
        reason=reason.strip(),
        days_overdue=overdue,
        status=OvertimeStatus.PENDING,
    )
    db.add(req)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Overtime request on card {card_id} rejected by constraint: {e.orig}")
        raise ConflictError("You already have a pending request for this card", code="overtime_pending")
    logger.info(f"Overtime requested on card {card.id} by {actor.id} ({overdue} day(s) overdue)")

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "overtime:requested", overtime_payload(req))
    for approver_id in await _approver_ids(db, project):
        effects.notify(
            approver_id,
            NotificationType.OVERTIME_REQUEST,
            "Overtime requested",
            f'{actor.name} asks for overtime on "{card.title}" ({overdue} day(s) overdue)',
            link="/overtime-approvals",
        )
    await effects.dispatch()
    return req


async def respond_overtime(
    db: AsyncSession,
    request_id: str,
    action: str,
    actor: Any,
    notes: Optional[str] = None,
) -> OvertimeRequest:
    status = ACTIONS.get(action)
    if status is None:
        raise InputValidationError("Action must be 'approve' or 'reject'")

    req = await db.get(OvertimeRequest, request_id)
    if not req:
        raise NotFoundError("Overtime request not found")
    card, project = await get_card_context(db, req.card_id, for_update=True)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project creator, its leader or an admin can respond")

    await db.refresh(req)
    if req.status != OvertimeStatus.PENDING:
        raise InvalidStateError(f"Request was already {req.status.value}")

    req.status = status
    req.approver_id = actor.id
    req.approver_notes = notes
    req.responded_at = utcnow()
    await db.commit()
    logger.info(f"Overtime request {req.id} {status.value} by {actor.id}")

    approved = status == OvertimeStatus.APPROVED
    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "overtime:responded", overtime_payload(req))
    effects.notify(
        req.requested_by,
        NotificationType.OVERTIME_APPROVED if approved else NotificationType.OVERTIME_REJECTED,
        "Overtime approved" if approved else "Overtime rejected",
        f'Your overtime request for "{card.title}" was {status.value} by {actor.name}',
        link=f"/projects/{project.id}/cards/{card.id}",
    )
    await effects.dispatch()
    return req


async def list_overtime(
    db: AsyncSession,
    actor: Any,
    view: str = "my-requests",
    card_id: Optional[str] = None,
) -> List[OvertimeEntry]:
    """List requests for one of three views.

    ``my-requests``: the actor's own requests.
    ``pending-approvals``: PENDING requests the actor may decide.
    ``all``: every request on ``card_id``.
    """
    if view not in VIEWS:
        raise InputValidationError(f"Unknown view, expected one of: {', '.join(VIEWS)}")

    stmt = (
        select(OvertimeRequest, Card.title, Project.id, Project.name, User.name)
        .join(Card, Card.id == OvertimeRequest.card_id)
        .join(Board, Board.id == Card.board_id)
        .join(Project, Project.id == Board.project_id)
        .outerjoin(User, User.id == OvertimeRequest.requested_by)
        .order_by(OvertimeRequest.requested_at.desc())
    )

    if view == "my-requests":
        stmt = stmt.where(OvertimeRequest.requested_by == actor.id)
    elif view == "pending-approvals":
        if not is_leader_or_admin(actor.global_role):
            raise ForbiddenError("Only leaders and admins review overtime requests")
        stmt = stmt.where(
            OvertimeRequest.status == OvertimeStatus.PENDING,
            Card.deleted_at.is_(None),
        )
        if not is_admin(actor.global_role):
            leads = exists().where(and_(
                ProjectMember.project_id == Project.id,
                ProjectMember.user_id == actor.id,
                ProjectMember.project_role == ProjectRole.LEADER,
            ))
            stmt = stmt.where(or_(Project.created_by == actor.id, leads))
    else:
        if not card_id:
            raise InputValidationError("card_id is required for this view")
        card, project = await get_card_context(db, card_id)
        access = await load_project_access(db, project, actor)
        if not access.can_view:
            raise ForbiddenError("You do not have access to this project")
        stmt = stmt.where(OvertimeRequest.card_id == card.id)

    result = await db.execute(stmt)
    return [
        OvertimeEntry(request=req, card_title=title, project_id=pid, project_name=pname, requester_name=rname)
        for req, title, pid, pname, rname in result.all()
    ]
