"""Shared row loaders that raise NotFound instead of returning None."""

from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError
from models import Board, Card, Project, ProjectMember, User


async def get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


async def get_project_or_404(db: AsyncSession, project_id: str) -> Project:
    project = await db.get(Project, project_id)
    if not project:
        raise NotFoundError("Project not found")
    return project


async def claim_write_lock(db: AsyncSession, card_id: Optional[str] = None, board_id: Optional[str] = None) -> None:
    """Open the write transaction with a no-op UPDATE before any read.

    SQLite ignores FOR UPDATE and only takes its database lock at the first
    write, so reads that decide a write must come after this statement.
    On PostgreSQL it row-locks the card or board.
    """
    if card_id:
        stmt = update(Card).where(Card.id == card_id).values(updated_at=Card.updated_at)
    else:
        stmt = update(Board).where(Board.id == board_id).values(position=Board.position)
    await db.execute(stmt.execution_options(synchronize_session=False))


async def get_card_context(
    db: AsyncSession, card_id: str, for_update: bool = False,
) -> Tuple[Card, Project]:
    """Load a live card and its project. ``for_update`` locks the card row."""
    stmt = select(Card).where(Card.id == card_id, Card.deleted_at.is_(None))
    if for_update:
        await claim_write_lock(db, card_id=card_id)
        stmt = stmt.with_for_update()
    card = (await db.execute(stmt)).scalar_one_or_none()
    if not card:
        raise NotFoundError("Card not found")

    project = (
        await db.execute(
            select(Project).join(Board, Board.project_id == Project.id).where(Board.id == card.board_id)
        )
    ).scalar_one()
    return card, project


async def get_membership(
    db: AsyncSession, project_id: str, user_id: str, for_update: bool = False,
) -> Optional[ProjectMember]:
    stmt = select(ProjectMember).where(
        ProjectMember.project_id == project_id,
        ProjectMember.user_id == user_id,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()
