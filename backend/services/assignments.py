"""Assignment ledger.

Every (re)assignment of a card appends a CardAssignment row and deactivates
the previous live row in the same transaction. The partial unique index
``uq_card_single_active_assignment`` makes a second live row impossible, and
``Card.assignee_id`` is only ever written here, next to the ledger row it
mirrors.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from errors import ConflictError, ForbiddenError, NotFoundError
from models import (
    Board, Card, CardAssignment, CardStatus, NotificationType, Project,
    ProjectMember, User, as_utc, utcnow,
)
from services.events import SideEffects
from services.lookups import get_card_context, get_membership, get_project_or_404
from services.roles import ProjectAccess, is_assignable, load_project_access
from services.workload import ensure_can_take_card, find_overloaded_members

logger = logging.getLogger("teamboard.assignments")


# ============================================================
# LEDGER WRITES (caller owns the transaction)
# ============================================================

async def get_active_assignment(db: AsyncSession, card_id: str) -> Optional[CardAssignment]:
    result = await db.execute(
        select(CardAssignment).where(
            CardAssignment.card_id == card_id,
            CardAssignment.is_active.is_(True),
        )
    )
    return result.scalars().first()


async def _deactivate_active(db: AsyncSession, card_id: str, actor_id: Optional[str], now: datetime) -> int:
    result = await db.execute(
        update(CardAssignment)
        .where(CardAssignment.card_id == card_id, CardAssignment.is_active.is_(True))
        .values(is_active=False, unassigned_at=now, unassigned_by=actor_id)
    )
    return result.rowcount or 0


async def validate_assignee(
    db: AsyncSession,
    project: Project,
    card_id: Optional[str],
    assignee_id: str,
    access: ProjectAccess,
) -> ProjectMember:
    """Check that ``assignee_id`` may take ``card_id``. Locks the membership row."""
    membership = await get_membership(db, project.id, assignee_id, for_update=True)
    if not membership:
        raise NotFoundError("Assignee is not a member of this project")
    assignee = await db.get(User, assignee_id)
    if assignee is None or not assignee.is_active:
        raise NotFoundError("Assignee account is not active")
    if not is_assignable(membership.project_role, access.global_role):
        raise ForbiddenError("Cannot assign tasks to observers")
    await ensure_can_take_card(db, project, assignee_id, exclude_card_id=card_id)
    return membership


async def record_assignment(
    db: AsyncSession,
    card: Card,
    membership: ProjectMember,
    actor_id: str,
    reason: Optional[str] = None,
) -> CardAssignment:
    """Close the live row, open a new one and move the card pointer."""
    now = utcnow()
    await _deactivate_active(db, card.id, actor_id, now)

    row = CardAssignment(
        card_id=card.id,
        assigned_to=membership.user_id,
        assigned_by=actor_id,
        project_member_id=membership.id,
        reason=reason,
        is_active=True,
        assigned_at=now,
    )
    db.add(row)
    card.assignee_id = membership.user_id
    if card.status == CardStatus.DONE:
        card.status = CardStatus.TODO
    await db.flush()
    return row


async def release_card(db: AsyncSession, card: Card, actor_id: Optional[str]) -> Optional[str]:
    """Deactivate the live row and clear the pointer. Returns the previous assignee."""
    previous = card.assignee_id
    await _deactivate_active(db, card.id, actor_id, utcnow())
    card.assignee_id = None
    return previous


async def commit_ledger(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Ledger write rejected by constraint: {e.orig}")
        raise ConflictError(
            "The card was assigned concurrently, please retry",
            code="concurrent_assignment",
        )


# ============================================================
# ASSIGN / UNASSIGN
# ============================================================

async def assign_card(
    db: AsyncSession,
    card_id: str,
    assignee_id: str,
    actor: Any,
    reason: Optional[str] = None,
) -> CardAssignment:
    card, project = await get_card_context(db, card_id, for_update=True)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project leader, creator or an admin can assign cards")

    current = await get_active_assignment(db, card.id)
    if current and current.assigned_to == assignee_id and card.assignee_id == assignee_id:
        await db.commit()
        return current

    membership = await validate_assignee(db, project, card.id, assignee_id, access)
    row = await record_assignment(db, card, membership, actor.id, reason)
    await commit_ledger(db)
    logger.info(f"Card {card.id} assigned to {assignee_id} by {actor.id}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "card:assigned", {
        "card_id": card.id,
        "assignee_id": assignee_id,
        "status": card.status.value,
    })
    effects.notify(
        assignee_id,
        NotificationType.CARD_ASSIGNED,
        "New task assigned",
        f'You have been assigned to "{card.title}" in {project.name}',
        link=f"/projects/{project.id}/cards/{card.id}",
    )
    await effects.dispatch()
    return row


async def unassign_card(db: AsyncSession, card_id: str, actor: Any) -> None:
    """Idempotent: a card with no live assignment is left untouched."""
    card, project = await get_card_context(db, card_id, for_update=True)
    access = await load_project_access(db, project, actor)
    if not access.can_manage:
        raise ForbiddenError("Only the project leader, creator or an admin can unassign cards")

    active = await get_active_assignment(db, card.id)
    if active is None and card.assignee_id is None:
        await db.commit()
        return

    previous = await release_card(db, card, actor.id)
    await commit_ledger(db)
    logger.info(f"Card {card.id} unassigned from {previous} by {actor.id}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "card:unassigned", {
        "card_id": card.id,
        "previous_assignee_id": previous,
        "status": card.status.value,
    })
    await effects.dispatch()


# ============================================================
# HISTORY
# ============================================================

@dataclass
class HistoryFilters:
    assignee_id: Optional[str] = None
    card_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


@dataclass
class HistoryEntry:
    id: str
    card_id: str
    card_title: str
    card_status: str
    assigned_to: str
    assignee_name: Optional[str]
    assigned_by: Optional[str]
    assigned_by_name: Optional[str]
    assigned_at: datetime
    unassigned_at: Optional[datetime]
    is_active: bool
    reason: Optional[str]
    duration_days: int
    status: str


@dataclass
class HistorySummary:
    total: int = 0
    active: int = 0
    completed: int = 0
    unassigned: int = 0
    average_duration: float = 0.0


@dataclass
class AssignmentHistory:
    rows: List[HistoryEntry] = field(default_factory=list)
    summary: HistorySummary = field(default_factory=HistorySummary)


def derive_status(row: CardAssignment, card_status: CardStatus) -> str:
    if row.unassigned_at is not None:
        return "unassigned"
    if card_status == CardStatus.DONE:
        return "completed"
    return "active"


def duration_days(row: CardAssignment, now: Optional[datetime] = None) -> int:
    end = as_utc(row.unassigned_at) or now or utcnow()
    return max((end - as_utc(row.assigned_at)).days, 0)


def _summarise(rows: List[HistoryEntry]) -> HistorySummary:
    summary = HistorySummary(total=len(rows))
    for row in rows:
        if row.status == "active":
            summary.active += 1
        elif row.status == "completed":
            summary.completed += 1
        else:
            summary.unassigned += 1
    if rows:
        summary.average_duration = round(sum(r.duration_days for r in rows) / len(rows), 1)
    return summary


async def _query_history(db: AsyncSession, stmt, filters: HistoryFilters) -> AssignmentHistory:
    if filters.assignee_id:
        stmt = stmt.where(CardAssignment.assigned_to == filters.assignee_id)
    if filters.card_id:
        stmt = stmt.where(CardAssignment.card_id == filters.card_id)
    if filters.start_date:
        stmt = stmt.where(CardAssignment.assigned_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(CardAssignment.assigned_at <= filters.end_date)
    if filters.is_active is not None:
        stmt = stmt.where(CardAssignment.is_active.is_(filters.is_active))

    now = utcnow()
    entries = []
    for row, card, assignee, assigner in (await db.execute(stmt.order_by(CardAssignment.assigned_at.desc()))).all():
        entries.append(HistoryEntry(
            id=row.id,
            card_id=card.id,
            card_title=card.title,
            card_status=card.status.value,
            assigned_to=row.assigned_to,
            assignee_name=assignee.name if assignee else None,
            assigned_by=row.assigned_by,
            assigned_by_name=assigner.name if assigner else None,
            assigned_at=as_utc(row.assigned_at),
            unassigned_at=as_utc(row.unassigned_at),
            is_active=row.is_active,
            reason=row.reason,
            duration_days=duration_days(row, now),
            status=derive_status(row, card.status),
        ))
    return AssignmentHistory(rows=entries, summary=_summarise(entries))


def _history_select():
    assignee = aliased(User)
    assigner = aliased(User)
    return (
        select(CardAssignment, Card, assignee, assigner)
        .join(Card, Card.id == CardAssignment.card_id)
        .outerjoin(assignee, assignee.id == CardAssignment.assigned_to)
        .outerjoin(assigner, assigner.id == CardAssignment.assigned_by)
    )


async def get_card_history(
    db: AsyncSession, card_id: str, actor: Any, filters: Optional[HistoryFilters] = None,
) -> AssignmentHistory:
    card, project = await get_card_context(db, card_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")

    filters = filters or HistoryFilters()
    stmt = _history_select().where(CardAssignment.card_id == card.id)
    return await _query_history(db, stmt, filters)


async def get_project_history(
    db: AsyncSession, project_id: str, actor: Any, filters: Optional[HistoryFilters] = None,
) -> AssignmentHistory:
    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")

    filters = filters or HistoryFilters()
    stmt = (
        _history_select()
        .join(Board, Board.id == Card.board_id)
        .where(Board.project_id == project.id)
    )
    return await _query_history(db, stmt, filters)


# ============================================================
# CONSISTENCY CHECK & REPAIR
# ============================================================

@dataclass
class ConsistencyReport:
    duplicate_active: List[Dict[str, Any]] = field(default_factory=list)
    pointer_mismatches: List[Dict[str, Any]] = field(default_factory=list)
    orphaned_active: List[str] = field(default_factory=list)
    overloaded_members: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (
            self.duplicate_active or self.pointer_mismatches
            or self.orphaned_active or self.overloaded_members
        )


@dataclass
class RepairResult:
    deactivated: int = 0
    pointers_synced: int = 0
    backfilled: int = 0
    pointers_cleared: int = 0
    overloaded_members: List[Dict[str, Any]] = field(default_factory=list)


async def _active_rows_by_card(db: AsyncSession) -> Dict[str, List[CardAssignment]]:
    result = await db.execute(
        select(CardAssignment)
        .where(CardAssignment.is_active.is_(True))
        .order_by(CardAssignment.assigned_at.desc())
    )
    by_card: Dict[str, List[CardAssignment]] = {}
    for row in result.scalars().all():
        by_card.setdefault(row.card_id, []).append(row)
    return by_card


async def check_consistency(db: AsyncSession) -> ConsistencyReport:
    """Read-only scan for ledger/pointer drift and overloaded members"""
    report = ConsistencyReport()

    dup_rows = await db.execute(
        select(CardAssignment.card_id, func.count(CardAssignment.id))
        .where(CardAssignment.is_active.is_(True))
        .group_by(CardAssignment.card_id)
        .having(func.count(CardAssignment.id) > 1)
    )
    report.duplicate_active = [
        {"card_id": card_id, "active_count": count} for card_id, count in dup_rows.all()
    ]

    by_card = await _active_rows_by_card(db)
    cards = (await db.execute(select(Card))).scalars().all()
    for card in cards:
        active = by_card.get(card.id, [])
        if card.deleted_at is not None:
            if active:
                report.orphaned_active.append(card.id)
            continue
        ledger_assignee = active[0].assigned_to if active else None
        if card.assignee_id != ledger_assignee:
            report.pointer_mismatches.append({
                "card_id": card.id,
                "assignee_id": card.assignee_id,
                "ledger_assignee_id": ledger_assignee,
            })

    report.overloaded_members = await find_overloaded_members(db)
    return report


async def repair_consistency(db: AsyncSession) -> RepairResult:
    """Keep the newest live row per card, then realign every card pointer with the ledger.

    Overloaded members are reported, not fixed; that needs a human decision.
    """
    result = RepairResult()
    now = utcnow()
    by_card = await _active_rows_by_card(db)
    cards = {c.id: c for c in (await db.execute(select(Card))).scalars().all()}

    for card_id, rows in by_card.items():
        card = cards.get(card_id)
        keep = rows[0] if card is not None and card.deleted_at is None else None
        for row in rows:
            if row is keep:
                continue
            row.is_active = False
            row.unassigned_at = now
            result.deactivated += 1

    for card in cards.values():
        if card.deleted_at is not None:
            continue
        rows = by_card.get(card.id)
        if rows:
            if card.assignee_id != rows[0].assigned_to:
                card.assignee_id = rows[0].assigned_to
                result.pointers_synced += 1
            continue
        if card.assignee_id is None:
            continue

        project = (
            await db.execute(
                select(Project).join(Board, Board.project_id == Project.id).where(Board.id == card.board_id)
            )
        ).scalar_one()
        membership = await get_membership(db, project.id, card.assignee_id)
        if membership:
            db.add(CardAssignment(
                card_id=card.id,
                assigned_to=card.assignee_id,
                assigned_by=None,
                project_member_id=membership.id,
                reason="Backfilled by consistency repair",
                is_active=True,
                assigned_at=now,
            ))
            result.backfilled += 1
        else:
            card.assignee_id = None
            result.pointers_cleared += 1

    await db.commit()
    result.overloaded_members = await find_overloaded_members(db)
    logger.info(
        f"Ledger repair: {result.deactivated} deactivated, {result.pointers_synced} synced, "
        f"{result.backfilled} backfilled, {result.pointers_cleared} cleared"
    )
    return result
