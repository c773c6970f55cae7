# routers/dashboard.py - Personal dashboard
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from routers.cards import card_out
from services import reports

router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])


@router.get("/stats")
async def dashboard_stats(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """The caller's projects with task counts, and their open cards"""
    stats = await reports.dashboard_stats(db, user)
    return {
        "projects": [
            {
                "project_id": p.project_id,
                "project_name": p.project_name,
                "is_completed": p.is_completed,
                "task_count": p.task_count,
            }
            for p in stats.projects
        ],
        "my_cards": [card_out(c) for c in stats.my_cards],
    }
