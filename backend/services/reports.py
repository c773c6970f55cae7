"""Project reports and the personal dashboard.

- assignment_report: ledger rows plus per-member and per-status breakdowns
- top_performers: per-member activity scores within a timeframe
- dashboard_stats: the caller's projects and open cards
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ForbiddenError, InputValidationError
from models import (
    Board, Card, CardAssignment, CardStatus, Comment, Project, ProjectMember,
    Subtask, TimeLog, User, as_utc, utcnow,
)
from services.assignments import AssignmentHistory, HistoryFilters, get_project_history
from services.lookups import get_project_or_404
from services.roles import load_project_access

logger = logging.getLogger("teamboard.reports")

TIMEFRAMES = {"week": timedelta(days=7), "month": timedelta(days=30), "all": None}
IN_FLIGHT = (CardStatus.IN_PROGRESS, CardStatus.REVIEW)
DASHBOARD_CARD_LIMIT = 20


# ============================================================
# ASSIGNMENT REPORT
# ============================================================

@dataclass
class AssignmentReport:
    history: AssignmentHistory
    by_member: Dict[str, int]
    by_status: Dict[str, int]


async def assignment_report(
    db: AsyncSession, project_id: str, actor: Any, filters: Optional[HistoryFilters] = None,
) -> AssignmentReport:
    history = await get_project_history(db, project_id, actor, filters)
    by_member = Counter(row.assignee_name or row.assigned_to for row in history.rows)
    by_status = Counter(row.card_status for row in history.rows)
    return AssignmentReport(history=history, by_member=dict(by_member), by_status=dict(by_status))


# ============================================================
# TOP PERFORMERS
# ============================================================

@dataclass
class PerformerStats:
    user_id: str
    name: str
    email: str
    cards_assigned: int = 0
    cards_completed: int = 0
    cards_in_progress: int = 0
    total_time_minutes: int = 0
    comments_count: int = 0
    completion_days: List[int] = field(default_factory=list)

    @property
    def completion_rate(self) -> float:
        if not self.cards_assigned:
            return 0.0
        return self.cards_completed / self.cards_assigned * 100

    @property
    def average_completion_days(self) -> float:
        if not self.completion_days:
            return 0.0
        return sum(self.completion_days) / len(self.completion_days)

    @property
    def score(self) -> float:
        """Completed work weighs most; slow completions cost a little."""
        return (
            self.cards_completed * 10
            + self.cards_in_progress * 5
            + self.completion_rate * 2
            + (5 if self.total_time_minutes > 0 else 0)
            + self.comments_count * 0.5
            - self.average_completion_days * 0.1
        )


@dataclass
class ProjectStats:
    total_cards: int
    completed_cards: int
    in_progress_cards: int
    todo_cards: int
    total_members: int
    active_members: int


@dataclass
class PerformanceReport:
    timeframe: str
    performers: List[PerformerStats]
    project_stats: ProjectStats


async def top_performers(
    db: AsyncSession, project_id: str, actor: Any, timeframe: str = "all", limit: int = 10,
) -> PerformanceReport:
    """Rank project members by activity on cards touched within ``timeframe``."""
    if timeframe not in TIMEFRAMES:
        raise InputValidationError(f"Unknown timeframe, expected one of: {', '.join(TIMEFRAMES)}")
    if limit < 1:
        raise InputValidationError("limit must be positive")

    project = await get_project_or_404(db, project_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")

    window = TIMEFRAMES[timeframe]
    since: Optional[datetime] = utcnow() - window if window else None

    members = await db.execute(
        select(User)
        .join(ProjectMember, ProjectMember.user_id == User.id)
        .where(ProjectMember.project_id == project.id)
        .order_by(User.name)
    )
    stats = {u.id: PerformerStats(user_id=u.id, name=u.name, email=u.email) for u in members.scalars().all()}

    card_stmt = (
        select(Card)
        .join(Board, Board.id == Card.board_id)
        .where(Board.project_id == project.id, Card.deleted_at.is_(None))
    )
    if since:
        card_stmt = card_stmt.where(Card.updated_at >= since)
    cards = {c.id: c for c in (await db.execute(card_stmt)).scalars().all()}
    card_ids = list(cards)

    if card_ids:
        active_rows = await db.execute(
            select(CardAssignment).where(
                CardAssignment.card_id.in_(card_ids),
                CardAssignment.is_active.is_(True),
            )
        )
        for row in active_rows.scalars().all():
            member = stats.get(row.assigned_to)
            if member is None:
                continue
            card = cards[row.card_id]
            member.cards_assigned += 1
            if card.status == CardStatus.DONE:
                member.cards_completed += 1
                elapsed = as_utc(card.updated_at) - as_utc(row.assigned_at)
                member.completion_days.append(max(elapsed.days, 0))
            elif card.status in IN_FLIGHT:
                member.cards_in_progress += 1

        time_stmt = (
            select(TimeLog.user_id, func.coalesce(func.sum(TimeLog.duration_minutes), 0))
            .where(TimeLog.card_id.in_(card_ids))
            .group_by(TimeLog.user_id)
        )
        comment_stmt = (
            select(Comment.user_id, func.count(Comment.id))
            .where(Comment.card_id.in_(card_ids))
            .group_by(Comment.user_id)
        )
        if since:
            time_stmt = time_stmt.where(TimeLog.start_time >= since)
            comment_stmt = comment_stmt.where(Comment.created_at >= since)
        for user_id, minutes in (await db.execute(time_stmt)).all():
            if user_id in stats:
                stats[user_id].total_time_minutes = int(minutes)
        for user_id, count in (await db.execute(comment_stmt)).all():
            if user_id in stats:
                stats[user_id].comments_count = count

    ranked = sorted(stats.values(), key=lambda s: s.score, reverse=True)
    statuses = Counter(c.status for c in cards.values())
    project_stats = ProjectStats(
        total_cards=len(cards),
        completed_cards=statuses[CardStatus.DONE],
        in_progress_cards=sum(statuses[s] for s in IN_FLIGHT),
        todo_cards=statuses[CardStatus.TODO],
        total_members=len(stats),
        active_members=sum(1 for s in stats.values() if s.cards_assigned > 0),
    )
    return PerformanceReport(timeframe=timeframe, performers=ranked[:limit], project_stats=project_stats)


# ============================================================
# DASHBOARD
# ============================================================

@dataclass
class ProjectTaskCount:
    project_id: str
    project_name: str
    is_completed: bool
    task_count: int


@dataclass
class DashboardStats:
    projects: List[ProjectTaskCount]
    my_cards: List[Card]


async def dashboard_stats(db: AsyncSession, actor: Any) -> DashboardStats:
    """The actor's projects with their task counts, and their open cards.

    A task is a live card assigned to the actor or carrying a subtask
    assigned to them.
    """
    projects = await db.execute(
        select(Project)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .where(ProjectMember.user_id == actor.id)
        .order_by(Project.created_at.desc())
    )
    projects = list(projects.scalars().all())

    subtask_cards = select(Subtask.card_id).where(Subtask.assignee_id == actor.id)
    counts = await db.execute(
        select(Board.project_id, func.count(func.distinct(Card.id)))
        .join(Board, Board.id == Card.board_id)
        .where(
            Card.deleted_at.is_(None),
            or_(Card.assignee_id == actor.id, Card.id.in_(subtask_cards)),
        )
        .group_by(Board.project_id)
    )
    by_project = dict(counts.all())

    my_cards = await db.execute(
        select(Card)
        .where(
            Card.assignee_id == actor.id,
            Card.status != CardStatus.DONE,
            Card.deleted_at.is_(None),
        )
        .order_by(Card.updated_at.desc())
        .limit(DASHBOARD_CARD_LIMIT)
    )
    return DashboardStats(
        projects=[
            ProjectTaskCount(
                project_id=p.id,
                project_name=p.name,
                is_completed=bool(p.is_completed),
                task_count=by_project.get(p.id, 0),
            )
            for p in projects
        ],
        my_cards=list(my_cards.scalars().all()),
    )
