"""User administration - global role changes."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, ForbiddenError
from models import GlobalRole, User, utcnow
from services.lookups import get_user_or_404
from services.membership import find_leadership
from services.roles import can_change_user_role, is_admin

logger = logging.getLogger("teamboard.users")


async def change_user_role(db: AsyncSession, user_id: str, role: GlobalRole, actor: Any) -> User:
    """Set a user's global role.

    A user who still leads a project keeps the global LEADER role; demote
    them inside the project first.
    """
    if not is_admin(actor.global_role):
        raise ForbiddenError("Only admins can change user roles")
    if not can_change_user_role(actor.global_role, actor.id, user_id):
        raise ForbiddenError("You cannot change your own role")

    user = await get_user_or_404(db, user_id)
    if user.global_role == role:
        return user

    if user.global_role == GlobalRole.LEADER:
        leadership = await find_leadership(db, user.id)
        if leadership:
            raise ConflictError(
                f'{user.name} still leads "{leadership.project.name}"',
                code="user_still_leads",
                project_id=leadership.project_id,
                project_name=leadership.project.name,
            )

    previous = user.global_role
    user.global_role = role
    user.updated_at = utcnow()
    await db.commit()
    logger.info(f"User {user.id} role changed {previous.value} -> {role.value} by {actor.id}")
    return user
