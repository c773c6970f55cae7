# routers/overtime.py - Overtime requests on overdue cards
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import OvertimeRequest, as_utc
from services import overtime
from services.overtime import OvertimeEntry

router = APIRouter(prefix="/api/v1/overtime-requests", tags=["Overtime"])


# --- Schemas ---

class OvertimeCreate(BaseModel):
    card_id: str
    reason: str = Field(..., min_length=1, max_length=2000)


class OvertimeResponse(BaseModel):
    action: str
    approver_notes: Optional[str] = Field(None, max_length=2000)


class OvertimeOut(BaseModel):
    id: str
    card_id: str
    requested_by: str
    approver_id: Optional[str] = None
    reason: str
    days_overdue: int
    status: str
    approver_notes: Optional[str] = None
    requested_at: str
    responded_at: Optional[str] = None
    card_title: Optional[str] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    requester_name: Optional[str] = None


# --- Helpers ---

def _ts(dt) -> Optional[str]:
    return as_utc(dt).isoformat() if dt else None


def _overtime_out(r: OvertimeRequest, entry: Optional[OvertimeEntry] = None) -> dict:
    return OvertimeOut(
        id=r.id,
        card_id=r.card_id,
        requested_by=r.requested_by,
        approver_id=r.approver_id,
        reason=r.reason,
        days_overdue=r.days_overdue,
        status=r.status.value,
        approver_notes=r.approver_notes,
        requested_at=_ts(r.requested_at) or "",
        responded_at=_ts(r.responded_at),
        card_title=entry.card_title if entry else None,
        project_id=entry.project_id if entry else None,
        project_name=entry.project_name if entry else None,
        requester_name=entry.requester_name if entry else None,
    ).model_dump()


# --- Endpoints ---

@router.get("", response_model=List[OvertimeOut])
async def list_overtime_requests(
    view: str = Query("my-requests"),
    card_id: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """my-requests, pending-approvals (leaders and admins) or all requests on a card"""
    entries = await overtime.list_overtime(db, user, view=view, card_id=card_id)
    return [_overtime_out(e.request, e) for e in entries]


@router.post("", status_code=201)
async def request_overtime(
    data: OvertimeCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    req = await overtime.request_overtime(db, data.card_id, data.reason, user)
    return _overtime_out(req)


@router.patch("/{request_id}")
async def respond_to_overtime_request(
    request_id: str,
    data: OvertimeResponse,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Approve or reject a pending request"""
    req = await overtime.respond_overtime(db, request_id, data.action, user, notes=data.approver_notes)
    return _overtime_out(req)
