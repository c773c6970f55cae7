# routers/settings.py - Work-hour settings (read for everyone, write for admins)
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_role, CurrentUser
from database import get_db_session
from models import GlobalRole
from services import settings

router = APIRouter(prefix="/api/v1/settings", tags=["Settings"])


class SettingUpdate(BaseModel):
    value: str = Field(..., min_length=1, max_length=50)


@router.get("")
async def get_settings(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await settings.get_settings(db)


@router.put("/{key}")
async def update_setting(
    key: str,
    data: SettingUpdate,
    user: CurrentUser = Depends(require_role(GlobalRole.ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    row = await settings.set_setting(db, key, data.value)
    return {"key": row.key, "value": row.value}
