# routers/users.py - User directory and global role administration
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import User, GlobalRole, as_utc
from services import membership, users
from services.lookups import get_user_or_404

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class UserOut(BaseModel):
    id: str
    email: str
    name: str
    global_role: str
    is_active: bool
    last_login_at: Optional[str] = None
    created_at: str


class RoleUpdate(BaseModel):
    global_role: GlobalRole


# --- Helpers ---

def _user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        email=u.email,
        name=u.name,
        global_role=u.global_role.value,
        is_active=bool(u.is_active),
        last_login_at=as_utc(u.last_login_at).isoformat() if u.last_login_at else None,
        created_at=as_utc(u.created_at).isoformat() if u.created_at else "",
    )


# --- Endpoints ---

@router.get("", response_model=List[UserOut])
async def list_users(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
    role: Optional[GlobalRole] = None,
    search: Optional[str] = None,
    active_only: bool = True,
):
    """List users, e.g. to pick project members"""
    stmt = select(User).order_by(User.name).offset(offset).limit(limit)
    if active_only:
        stmt = stmt.where(User.is_active == True)
    if role:
        stmt = stmt.where(User.global_role == role)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    result = await db.execute(stmt)
    return [_user_to_out(u) for u in result.scalars().all()]


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _user_to_out(await get_user_or_404(db, user_id))


@router.patch("/{user_id}/role", response_model=UserOut)
async def change_user_role(
    user_id: str,
    data: RoleUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change a user's global role (admin only)"""
    target = await users.change_user_role(db, user_id, data.global_role, current_user)
    return _user_to_out(target)


@router.get("/{user_id}/leader-status")
async def leader_status(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Report whether the user already leads a project"""
    await get_user_or_404(db, user_id)
    status = await membership.get_leader_status(db, user_id)
    return {
        "user_id": user_id,
        "is_leader": status.is_leader,
        "project_id": status.project_id,
        "project_name": status.project_name,
    }
