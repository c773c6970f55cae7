# routers/time_logs.py - Per-user time tracking status
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from services import timers

router = APIRouter(prefix="/api/v1/time-logs", tags=["Time Tracking"])


@router.get("/work-hours-status")
async def work_hours_status(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Hours logged today against the configured daily limits"""
    status = await timers.work_hours_status(db, user.id)
    return {
        "hours_today": status.hours_today,
        "min_hours": status.min_hours,
        "max_hours": status.max_hours,
        "limit_enabled": status.limit_enabled,
        "can_start_timer": status.can_start_timer,
        "active_time_log_id": status.active_time_log_id,
    }
