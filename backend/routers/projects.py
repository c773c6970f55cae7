# routers/projects.py - Projects, boards, project membership and reports
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Board, CardStatus, Project, ProjectMember, ProjectRole, as_utc
from routers.cards import card_out, history_out
from services import assignments, cards, membership, projects, reports
from services.assignments import HistoryFilters
from services.projects import MemberSpec

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# ============================================================
# SCHEMAS
# ============================================================

class MemberIn(BaseModel):
    user_id: str
    project_role: ProjectRole = ProjectRole.DEVELOPER


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    members: List[MemberIn] = []


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    deadline: Optional[datetime] = None


class CompletionUpdate(BaseModel):
    is_completed: bool


class MemberRoleUpdate(BaseModel):
    project_role: ProjectRole


class BoardOut(BaseModel):
    id: str
    name: str
    position: int


class ProjectOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    deadline: Optional[str] = None
    created_by: str
    is_completed: bool
    completed_at: Optional[str] = None
    created_at: str


class MemberOut(BaseModel):
    id: str
    project_id: str
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    project_role: str
    joined_at: str


def _ts(dt) -> Optional[str]:
    return as_utc(dt).isoformat() if dt else None


def _project_out(p: Project, boards: Optional[List[Board]] = None) -> dict:
    out = ProjectOut(
        id=p.id,
        name=p.name,
        description=p.description,
        deadline=_ts(p.deadline),
        created_by=p.created_by,
        is_completed=bool(p.is_completed),
        completed_at=_ts(p.completed_at),
        created_at=_ts(p.created_at) or "",
    ).model_dump()
    if boards is not None:
        out["boards"] = [BoardOut(id=b.id, name=b.name, position=b.position).model_dump() for b in boards]
    return out


def _member_out(m: ProjectMember) -> dict:
    return MemberOut(
        id=m.id,
        project_id=m.project_id,
        user_id=m.user_id,
        name=m.user.name if m.user else None,
        email=m.user.email if m.user else None,
        project_role=m.project_role.value,
        joined_at=_ts(m.joined_at) or "",
    ).model_dump()


# ============================================================
# PROJECTS
# ============================================================

@router.get("")
async def list_projects(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_project_out(p) for p in await projects.list_projects(db, user)]


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await projects.create_project(
        db, data.name, user,
        description=data.description,
        deadline=data.deadline,
        members=[MemberSpec(user_id=m.user_id, project_role=m.project_role) for m in data.members],
    )
    return _project_out(project, await projects.list_boards(db, project.id))


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await projects.get_project(db, project_id, user)
    return _project_out(project, await projects.list_boards(db, project.id))


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await projects.update_project(db, project_id, user, data.model_dump(exclude_unset=True))
    return _project_out(project)


@router.patch("/{project_id}/complete")
async def set_project_completion(
    project_id: str,
    data: CompletionUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Mark a project completed, or reopen it"""
    project = await projects.set_completion(db, project_id, user, data.is_completed)
    return _project_out(project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await projects.delete_project(db, project_id, user)
    return {"status": "deleted"}


# ============================================================
# MEMBERS
# ============================================================

@router.get("/{project_id}/members")
async def list_members(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return [_member_out(m) for m in await membership.list_members(db, project_id, user)]


@router.post("/{project_id}/members", status_code=201)
async def add_member(
    project_id: str,
    data: MemberIn,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    member = await membership.add_member(db, project_id, data.user_id, data.project_role, user)
    return _member_out(member)


@router.patch("/{project_id}/members/{member_id}")
async def update_member_role(
    project_id: str,
    member_id: str,
    data: MemberRoleUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    member = await membership.update_member_role(db, project_id, member_id, data.project_role, user)
    return _member_out(member)


@router.delete("/{project_id}/members/{member_id}")
async def remove_member(
    project_id: str,
    member_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await membership.remove_member(db, project_id, member_id, user)
    return {"status": "removed"}


# ============================================================
# CARDS & HISTORY
# ============================================================

@router.get("/{project_id}/cards")
async def list_project_cards(
    project_id: str,
    status: Optional[CardStatus] = Query(None),
    assignee_id: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    rows = await cards.list_project_cards(db, project_id, user, status=status, assignee_id=assignee_id)
    return [card_out(c) for c in rows]


@router.get("/{project_id}/assignment-history")
async def project_assignment_history(
    project_id: str,
    assignee_id: Optional[str] = Query(None),
    card_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    is_active: Optional[bool] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    filters = HistoryFilters(
        assignee_id=assignee_id,
        card_id=card_id,
        start_date=start_date,
        end_date=end_date,
        is_active=is_active,
    )
    return history_out(await assignments.get_project_history(db, project_id, user, filters))


# ============================================================
# REPORTS
# ============================================================

@router.get("/{project_id}/assignment-report")
async def project_assignment_report(
    project_id: str,
    user_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Assignment history with per-member and per-status breakdowns"""
    filters = HistoryFilters(assignee_id=user_id, start_date=start_date, end_date=end_date)
    report = await reports.assignment_report(db, project_id, user, filters)
    out = history_out(report.history)
    out["summary"]["by_member"] = report.by_member
    out["summary"]["by_status"] = report.by_status
    return out


@router.get("/{project_id}/top-performers")
async def project_top_performers(
    project_id: str,
    timeframe: str = Query("all"),
    limit: int = Query(default=10, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    report = await reports.top_performers(db, project_id, user, timeframe=timeframe, limit=limit)
    s = report.project_stats
    return {
        "timeframe": report.timeframe,
        "performers": [
            {
                "user_id": p.user_id,
                "name": p.name,
                "email": p.email,
                "cards_assigned": p.cards_assigned,
                "cards_completed": p.cards_completed,
                "cards_in_progress": p.cards_in_progress,
                "total_time_minutes": p.total_time_minutes,
                "comments_count": p.comments_count,
                "completion_rate": round(p.completion_rate, 1),
                "average_completion_days": round(p.average_completion_days, 1),
                "score": round(p.score, 1),
            }
            for p in report.performers
        ],
        "project_stats": {
            "total_cards": s.total_cards,
            "completed_cards": s.completed_cards,
            "in_progress_cards": s.in_progress_cards,
            "todo_cards": s.todo_cards,
            "total_members": s.total_members,
            "active_members": s.active_members,
        },
    }
