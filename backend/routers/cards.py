# routers/cards.py - Cards, assignment ledger, subtasks, comments and time tracking
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import (
    Card, CardAssignment, CardPriority, CardStatus, Comment, Subtask, SubtaskStatus, TimeLog, as_utc,
)
from services import assignments, cards, comments, subtasks, timers
from services.assignments import AssignmentHistory, HistoryFilters

router = APIRouter(prefix="/api/v1/cards", tags=["Cards"])

NULLABLE_FIELDS = {"description", "due_date"}


# ============================================================
# SCHEMAS
# ============================================================

class CardCreate(BaseModel):
    board_id: str
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    priority: CardPriority = CardPriority.MEDIUM
    due_date: Optional[datetime] = None
    assignee_id: Optional[str] = None


class CardUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    priority: Optional[CardPriority] = None
    status: Optional[CardStatus] = None
    due_date: Optional[datetime] = None
    board_id: Optional[str] = None


class AssignRequest(BaseModel):
    assignee_id: str
    reason: Optional[str] = Field(None, max_length=1000)


class CardOut(BaseModel):
    id: str
    board_id: str
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    position: int
    assignee_id: Optional[str] = None
    created_by: str
    due_date: Optional[str] = None
    created_at: str
    updated_at: str


class AssignmentOut(BaseModel):
    id: str
    card_id: str
    assigned_to: str
    assigned_by: Optional[str] = None
    project_member_id: Optional[str] = None
    reason: Optional[str] = None
    is_active: bool
    assigned_at: str
    unassigned_at: Optional[str] = None


class HistoryRowOut(BaseModel):
    id: str
    card_id: str
    card_title: str
    card_status: str
    assigned_to: str
    assignee_name: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_by_name: Optional[str] = None
    assigned_at: str
    unassigned_at: Optional[str] = None
    is_active: bool
    reason: Optional[str] = None
    duration_days: int
    status: str


class SubtaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    assignee_id: Optional[str] = None


class SubtaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    status: Optional[SubtaskStatus] = None
    assignee_id: Optional[str] = None


class SubtaskOut(BaseModel):
    id: str
    card_id: str
    title: str
    status: str
    assignee_id: Optional[str] = None
    position: int


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class CommentOut(BaseModel):
    id: str
    card_id: str
    user_id: str
    author_name: Optional[str] = None
    content: str
    created_at: str


class TimerStart(BaseModel):
    notes: Optional[str] = None


class TimerStop(BaseModel):
    notes: Optional[str] = None


class TimeLogOut(BaseModel):
    id: str
    card_id: str
    user_id: str
    start_time: str
    end_time: Optional[str] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    is_running: bool


# --- Helpers ---

def _ts(dt) -> Optional[str]:
    return as_utc(dt).isoformat() if dt else None


def card_out(c: Card) -> dict:
    return CardOut(
        id=c.id,
        board_id=c.board_id,
        title=c.title,
        description=c.description,
        status=c.status.value,
        priority=c.priority.value,
        position=c.position or 0,
        assignee_id=c.assignee_id,
        created_by=c.created_by,
        due_date=_ts(c.due_date),
        created_at=_ts(c.created_at) or "",
        updated_at=_ts(c.updated_at) or "",
    ).model_dump()


def _assignment_out(a: CardAssignment) -> dict:
    return AssignmentOut(
        id=a.id,
        card_id=a.card_id,
        assigned_to=a.assigned_to,
        assigned_by=a.assigned_by,
        project_member_id=a.project_member_id,
        reason=a.reason,
        is_active=a.is_active,
        assigned_at=_ts(a.assigned_at),
        unassigned_at=_ts(a.unassigned_at),
    ).model_dump()


def history_out(history: AssignmentHistory) -> dict:
    rows = [
        HistoryRowOut(
            id=r.id,
            card_id=r.card_id,
            card_title=r.card_title,
            card_status=r.card_status,
            assigned_to=r.assigned_to,
            assignee_name=r.assignee_name,
            assigned_by=r.assigned_by,
            assigned_by_name=r.assigned_by_name,
            assigned_at=_ts(r.assigned_at),
            unassigned_at=_ts(r.unassigned_at),
            is_active=r.is_active,
            reason=r.reason,
            duration_days=r.duration_days,
            status=r.status,
        ).model_dump()
        for r in history.rows
    ]
    s = history.summary
    return {
        "rows": rows,
        "summary": {
            "total": s.total,
            "active": s.active,
            "completed": s.completed,
            "unassigned": s.unassigned,
            "average_duration": s.average_duration,
        },
    }


def _subtask_out(s: Subtask) -> dict:
    return SubtaskOut(
        id=s.id, card_id=s.card_id, title=s.title, status=s.status.value,
        assignee_id=s.assignee_id, position=s.position or 0,
    ).model_dump()


def _comment_out(c: Comment, author_name: Optional[str] = None) -> dict:
    return CommentOut(
        id=c.id,
        card_id=c.card_id,
        user_id=c.user_id,
        author_name=author_name or (c.user.name if c.user else None),
        content=c.content,
        created_at=_ts(c.created_at) or "",
    ).model_dump()


def _timelog_out(t: TimeLog) -> dict:
    return TimeLogOut(
        id=t.id,
        card_id=t.card_id,
        user_id=t.user_id,
        start_time=_ts(t.start_time),
        end_time=_ts(t.end_time),
        duration_minutes=t.duration_minutes,
        notes=t.notes,
        is_running=t.end_time is None,
    ).model_dump()


# ============================================================
# CARDS
# ============================================================

@router.post("", status_code=201)
async def create_card(
    data: CardCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    card = await cards.create_card(
        db, data.board_id, data.title, user,
        description=data.description,
        priority=data.priority,
        due_date=data.due_date,
        assignee_id=data.assignee_id,
    )
    return card_out(card)


@router.get("/{card_id}")
async def get_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return card_out(await cards.get_card(db, card_id, user))


@router.patch("/{card_id}")
async def update_card(
    card_id: str,
    data: CardUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    changes = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_FIELDS
    }
    card = await cards.update_card(db, card_id, user, changes)
    return card_out(card)


@router.delete("/{card_id}")
async def delete_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await cards.delete_card(db, card_id, user)
    return {"status": "deleted"}


@router.post("/{card_id}/reset")
async def reset_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Return a finished card to TODO and release its assignee"""
    return card_out(await cards.reset_card(db, card_id, user))


# ============================================================
# ASSIGNMENT
# ============================================================

@router.patch("/{card_id}/assign")
async def assign_card(
    card_id: str,
    data: AssignRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    row = await assignments.assign_card(db, card_id, data.assignee_id, user, reason=data.reason)
    return _assignment_out(row)


@router.delete("/{card_id}/assign")
async def unassign_card(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await assignments.unassign_card(db, card_id, user)
    return {"status": "unassigned"}


@router.get("/{card_id}/assignment-history")
async def card_assignment_history(
    card_id: str,
    assignee_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    is_active: Optional[bool] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    filters = HistoryFilters(
        assignee_id=assignee_id, start_date=start_date, end_date=end_date, is_active=is_active,
    )
    return history_out(await assignments.get_card_history(db, card_id, user, filters))


# ============================================================
# SUBTASKS
# ============================================================

@router.get("/{card_id}/subtasks", response_model=List[SubtaskOut])
async def list_subtasks(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_subtask_out(s) for s in await subtasks.list_subtasks(db, card_id, user)]


@router.post("/{card_id}/subtasks", status_code=201)
async def create_subtask(
    card_id: str,
    data: SubtaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    subtask = await subtasks.create_subtask(db, card_id, data.title, user, assignee_id=data.assignee_id)
    return _subtask_out(subtask)


@router.patch("/{card_id}/subtasks/{subtask_id}")
async def update_subtask(
    card_id: str,
    subtask_id: str,
    data: SubtaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    changes = {
        k: v for k, v in data.model_dump(exclude_unset=True).items()
        if v is not None or k == "assignee_id"
    }
    subtask = await subtasks.update_subtask(db, card_id, subtask_id, user, changes)
    return _subtask_out(subtask)


@router.post("/{card_id}/subtasks/{subtask_id}/toggle")
async def toggle_subtask(
    card_id: str,
    subtask_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _subtask_out(await subtasks.toggle_subtask(db, card_id, subtask_id, user))


@router.delete("/{card_id}/subtasks/{subtask_id}")
async def delete_subtask(
    card_id: str,
    subtask_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await subtasks.delete_subtask(db, card_id, subtask_id, user)
    return {"status": "deleted"}


# ============================================================
# COMMENTS
# ============================================================

@router.get("/{card_id}/comments", response_model=List[CommentOut])
async def list_comments(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Comments on a card, newest first"""
    return [_comment_out(c) for c in await comments.list_comments(db, card_id, user)]


@router.post("/{card_id}/comments", status_code=201)
async def add_comment(
    card_id: str,
    data: CommentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    comment = await comments.add_comment(db, card_id, data.content, user)
    return _comment_out(comment, author_name=user.name)


# ============================================================
# TIME TRACKING
# ============================================================

@router.get("/{card_id}/time")
async def list_time_logs(
    card_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_timelog_out(t) for t in await timers.list_card_time_logs(db, card_id, user)]


@router.post("/{card_id}/time", status_code=201)
async def start_timer(
    card_id: str,
    data: Optional[TimerStart] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    log = await timers.start_timer(db, card_id, user, notes=data.notes if data else None)
    return _timelog_out(log)


@router.patch("/{card_id}/time/{time_log_id}")
async def stop_timer(
    card_id: str,
    time_log_id: str,
    data: Optional[TimerStop] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    log = await timers.stop_timer(
        db, time_log_id, user, notes=data.notes if data else None, card_id=card_id,
    )
    return _timelog_out(log)
