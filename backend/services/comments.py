"""Card comments with @mention notifications."""

import logging
import re
from typing import Any, List, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from errors import ForbiddenError, InputValidationError
from models import Comment, NotificationType, ProjectMember, User
from services.events import SideEffects
from services.lookups import get_card_context
from services.roles import load_project_access

logger = logging.getLogger("teamboard.comments")

MENTION_RE = re.compile(r"@(\w+)")
MAX_COMMENT_LENGTH = 5000


def comment_payload(comment: Comment, author_name: str) -> dict:
    return {
        "comment_id": comment.id,
        "card_id": comment.card_id,
        "author_id": comment.user_id,
        "author_name": author_name,
        "content": comment.content,
    }


def mention_handles(name: str) -> Set[str]:
    """Handles that address a user: first name or full name without spaces."""
    parts = name.lower().split()
    if not parts:
        return set()
    return {parts[0], "".join(parts)}


async def list_comments(db: AsyncSession, card_id: str, actor: Any) -> List[Comment]:
    """Comments on a card, newest first."""
    card, project = await get_card_context(db, card_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")
    result = await db.execute(
        select(Comment)
        .options(selectinload(Comment.user))
        .where(Comment.card_id == card.id)
        .order_by(Comment.created_at.desc())
    )
    return list(result.scalars().all())


async def add_comment(db: AsyncSession, card_id: str, content: str, actor: Any) -> Comment:
    if not content or not content.strip():
        raise InputValidationError("Comment text is required")
    if len(content) > MAX_COMMENT_LENGTH:
        raise InputValidationError(f"Comments are limited to {MAX_COMMENT_LENGTH} characters")

    card, project = await get_card_context(db, card_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")

    comment = Comment(card_id=card.id, user_id=actor.id, content=content.strip())
    db.add(comment)
    await db.commit()
    logger.info(f"Comment {comment.id} added to card {card.id} by {actor.id}")

    link = f"/projects/{project.id}/cards/{card.id}"
    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "comment:created", comment_payload(comment, actor.name))

    notified = {actor.id}
    for recipient in (card.assignee_id, card.created_by):
        if recipient and recipient not in notified:
            notified.add(recipient)
            effects.notify(
                recipient,
                NotificationType.COMMENT_ADDED,
                "New comment",
                f'{actor.name} commented on "{card.title}"',
                link=link,
            )

    handles = {h.lower() for h in MENTION_RE.findall(comment.content)}
    if handles:
        members = await db.execute(
            select(User)
            .join(ProjectMember, ProjectMember.user_id == User.id)
            .where(ProjectMember.project_id == project.id)
        )
        for user in members.scalars().all():
            if user.id == actor.id or not handles & mention_handles(user.name):
                continue
            effects.notify(
                user.id,
                NotificationType.COMMENT_MENTION,
                "You were mentioned",
                f'{actor.name} mentioned you on "{card.title}"',
                link=link,
            )

    await effects.dispatch()
    return comment
