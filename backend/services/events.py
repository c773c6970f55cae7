"""Post-commit side effects: real-time events and in-app notifications.

Services queue effects on a ``SideEffects`` outbox while their transaction is
open and call ``dispatch`` once it has committed. Every effect is best-effort:
a failure is logged under ``teamboard.events`` and never reaches the caller.
Notifications are written through their own session so a failed insert cannot
disturb the request's unit of work.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from database import get_db_context
from models import Notification, NotificationType, utcnow

logger = logging.getLogger("teamboard.events")

EventSink = Callable[[str, str, Dict[str, Any]], Awaitable[None]]

_event_sink: Optional[EventSink] = None


def set_event_sink(sink: Optional[EventSink]) -> None:
    """Replace the real-time sink. ``None`` restores the WebSocket manager."""
    global _event_sink
    _event_sink = sink


def get_event_sink() -> EventSink:
    if _event_sink is not None:
        return _event_sink
    from routers.websocket_router import manager
    return manager.emit


def card_channel(card_id: str) -> str:
    return f"card-{card_id}"


def project_channel(project_id: str) -> str:
    return f"project-{project_id}"


def user_channel(user_id: str) -> str:
    return f"user-{user_id}"


@dataclass
class PendingNotification:
    user_id: str
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None


@dataclass
class SideEffects:
    """Outbox of effects to run after the primary transaction commits"""

    actor_id: Optional[str] = None
    events: List[Tuple[str, str, Dict[str, Any]]] = field(default_factory=list)
    notifications: List[PendingNotification] = field(default_factory=list)

    def emit(self, channel: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((channel, event, payload))

    def emit_card(self, card_id: str, project_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.emit(card_channel(card_id), event, payload)
        self.emit(project_channel(project_id), event, payload)

    def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
    ) -> None:
        # Nobody is notified about their own action
        if self.actor_id and user_id == self.actor_id:
            return
        self.notifications.append(PendingNotification(user_id, type, title, message, link))

    async def dispatch(self) -> None:
        for pending in self.notifications:
            try:
                await create_notification(pending)
            except Exception as e:
                logger.warning(f"Notification for user {pending.user_id} failed: {e}")

        sink = get_event_sink()
        for channel, event, payload in self.events:
            message = {**payload, "user_id": self.actor_id, "timestamp": utcnow().isoformat()}
            try:
                await sink(channel, event, message)
            except Exception as e:
                logger.warning(f"Event {event} on {channel} failed: {e}")

        self.events.clear()
        self.notifications.clear()


async def create_notification(pending: PendingNotification) -> Notification:
    """Persist one notification and push it to the recipient's channel"""
    async with get_db_context() as session:
        notif = Notification(
            user_id=pending.user_id,
            type=pending.type,
            title=pending.title,
            message=pending.message,
            link=pending.link,
        )
        session.add(notif)

    sink = get_event_sink()
    try:
        await sink(user_channel(pending.user_id), "notification:new", {
            "id": notif.id,
            "type": notif.type.value,
            "title": notif.title,
            "message": notif.message,
            "link": notif.link,
        })
    except Exception as e:
        logger.warning(f"Push for notification {notif.id} failed: {e}")
    return notif
