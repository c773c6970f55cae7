"""Time tracking.

A user runs at most one timer at a time across all cards; the partial unique
index ``uq_user_single_open_timer`` holds that even for concurrent starts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import (
    AlreadyStoppedError, ConflictError, ForbiddenError, InvalidStateError,
    LimitExceededError, NotFoundError,
)
from models import Board, Card, CardStatus, TimeLog, as_utc, utcnow
from services import settings
from services.events import SideEffects
from services.lookups import get_card_context
from services.roles import load_project_access

logger = logging.getLogger("teamboard.timers")


@dataclass
class WorkHoursStatus:
    hours_today: float
    min_hours: float
    max_hours: float
    limit_enabled: bool
    can_start_timer: bool
    active_time_log_id: Optional[str] = None


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def elapsed_minutes(start: datetime, end: datetime) -> int:
    return max(int((as_utc(end) - as_utc(start)).total_seconds() // 60), 0)


async def get_open_timer(db: AsyncSession, user_id: str) -> Optional[TimeLog]:
    result = await db.execute(
        select(TimeLog).where(TimeLog.user_id == user_id, TimeLog.end_time.is_(None))
    )
    return result.scalars().first()


async def hours_worked_today(db: AsyncSession, user_id: str, now: Optional[datetime] = None) -> float:
    """Closed logs started today plus the running timer, in hours"""
    now = now or utcnow()
    result = await db.execute(
        select(TimeLog).where(TimeLog.user_id == user_id, TimeLog.start_time >= _start_of_day(now))
    )
    minutes = 0
    for log in result.scalars().all():
        if log.end_time is None:
            minutes += elapsed_minutes(log.start_time, now)
        else:
            minutes += log.duration_minutes or elapsed_minutes(log.start_time, log.end_time)
    return round(minutes / 60, 2)


async def work_hours_status(db: AsyncSession, user_id: str) -> WorkHoursStatus:
    hours = await hours_worked_today(db, user_id)
    max_hours = await settings.get_float(db, "max_work_hours_per_day")
    enabled = await settings.get_bool(db, "enable_work_hours_limit")
    open_timer = await get_open_timer(db, user_id)
    return WorkHoursStatus(
        hours_today=hours,
        min_hours=await settings.get_float(db, "min_work_hours_per_day"),
        max_hours=max_hours,
        limit_enabled=enabled,
        can_start_timer=not enabled or hours < max_hours,
        active_time_log_id=open_timer.id if open_timer else None,
    )


async def list_card_time_logs(db: AsyncSession, card_id: str, actor: Any) -> List[TimeLog]:
    card, project = await get_card_context(db, card_id)
    access = await load_project_access(db, project, actor)
    if not access.can_view:
        raise ForbiddenError("You do not have access to this project")
    result = await db.execute(
        select(TimeLog).where(TimeLog.card_id == card.id).order_by(TimeLog.start_time.desc())
    )
    return list(result.scalars().all())


async def start_timer(db: AsyncSession, card_id: str, actor: Any, notes: Optional[str] = None) -> TimeLog:
    open_timer = await get_open_timer(db, actor.id)
    if open_timer:
        raise ConflictError(
            "You already have an active timer. Stop it before starting a new one.",
            code="active_timer_exists",
            active_time_log_id=open_timer.id,
            card_id=open_timer.card_id,
        )

    card, project = await get_card_context(db, card_id, for_update=True)
    access = await load_project_access(db, project, actor)
    if not access.can_contribute:
        raise ForbiddenError("You cannot track time in this project")
    if card.status == CardStatus.DONE:
        raise InvalidStateError("Cannot start a timer on a completed card")

    status = await work_hours_status(db, actor.id)
    if not status.can_start_timer:
        raise LimitExceededError(
            f"Daily limit of {status.max_hours:g} hours reached",
            max_hours=status.max_hours,
            hours_today=status.hours_today,
        )

    log = TimeLog(card_id=card.id, user_id=actor.id, start_time=utcnow(), notes=notes)
    db.add(log)
    advanced = card.status == CardStatus.TODO
    if advanced:
        card.status = CardStatus.IN_PROGRESS
        card.updated_at = utcnow()
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "You already have an active timer. Stop it before starting a new one.",
            code="active_timer_exists",
        )
    logger.info(f"Timer {log.id} started by {actor.id} on card {card.id}")

    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(card.id, project.id, "timelog:started", {
        "time_log_id": log.id,
        "card_id": card.id,
    })
    if advanced:
        effects.emit_card(card.id, project.id, "card:updated", {
            "card_id": card.id,
            "status": card.status.value,
        })
    await effects.dispatch()
    return log


async def stop_timer(
    db: AsyncSession,
    time_log_id: str,
    actor: Any,
    notes: Optional[str] = None,
    card_id: Optional[str] = None,
) -> TimeLog:
    log = await db.get(TimeLog, time_log_id, with_for_update=True)
    if not log or (card_id and log.card_id != card_id):
        raise NotFoundError("Time log not found")
    if log.user_id != actor.id:
        raise ForbiddenError("You can only stop your own timer")
    if log.end_time is not None:
        raise AlreadyStoppedError("Timer already stopped")

    now = utcnow()
    log.end_time = now
    log.duration_minutes = elapsed_minutes(log.start_time, now)
    if notes is not None:
        log.notes = notes
    await db.commit()
    logger.info(f"Timer {log.id} stopped after {log.duration_minutes} min")

    project_id = (
        await db.execute(
            select(Board.project_id).join(Card, Card.board_id == Board.id).where(Card.id == log.card_id)
        )
    ).scalar_one()
    effects = SideEffects(actor_id=actor.id)
    effects.emit_card(log.card_id, project_id, "timelog:stopped", {
        "time_log_id": log.id,
        "card_id": log.card_id,
        "duration_minutes": log.duration_minutes,
    })
    await effects.dispatch()
    return log

