# routers/websocket_router.py - Real-time event delivery over WebSocket
# Channels: project-{id}, card-{id}, user-{id}. Every connection is implicitly
# subscribed to its own user channel.
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, Query

from auth import AuthService, CurrentUser
from database import get_db_context
from errors import AppError
from models import User
from services.lookups import get_card_context, get_project_or_404
from services.roles import load_project_access

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("teamboard.ws")


class ConnectionManager:
    """Tracks one socket per user and channel subscriptions"""

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}  # user_id -> ws
        self._subscriptions: Dict[str, Set[str]] = {}  # channel -> {user_ids}

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        self._connections[user_id] = websocket
        logger.info(f"WS connected: user={user_id[:8]}")

    def disconnect(self, user_id: str):
        self._connections.pop(user_id, None)
        for channel in list(self._subscriptions.keys()):
            self._subscriptions[channel].discard(user_id)
            if not self._subscriptions[channel]:
                del self._subscriptions[channel]
        logger.info(f"WS disconnected: user={user_id[:8]}")

    def subscribe(self, user_id: str, channel: str):
        self._subscriptions.setdefault(channel, set()).add(user_id)

    def unsubscribe(self, user_id: str, channel: str):
        if channel in self._subscriptions:
            self._subscriptions[channel].discard(user_id)

    def subscribers(self, channel: str) -> Set[str]:
        recipients = set(self._subscriptions.get(channel, set()))
        if channel.startswith("user-"):
            recipients.add(channel[len("user-"):])
        return recipients

    async def send_to_user(self, user_id: str, message: dict):
        ws = self._connections.get(user_id)
        if ws is None:
            return
        try:
            await ws.send_json(message)
        except Exception:
            self.disconnect(user_id)

    async def emit(self, channel: str, event: str, payload: Dict[str, Any]):
        """Event sink: fan an event out to everyone listening on ``channel``"""
        message = {"type": event, "channel": channel, "payload": payload}
        for user_id in self.subscribers(channel):
            await self.send_to_user(user_id, message)

    def get_stats(self) -> dict:
        return {
            "total_connections": len(self._connections),
            "channels": len(self._subscriptions),
        }


# Global connection manager
manager = ConnectionManager()


def _verify_ws_token(token: str) -> Optional[dict]:
    """Verify an access token for WebSocket authentication"""
    try:
        payload = AuthService.verify_token(token)
    except HTTPException:
        return None
    if payload.get("type") != "access":
        return None
    return payload


async def can_subscribe(actor: CurrentUser, channel: str) -> bool:
    """Users may follow their own channel and any project or card they can view"""
    if channel.startswith("user-"):
        return channel == f"user-{actor.id}"
    async with get_db_context() as db:
        try:
            if channel.startswith("project-"):
                project = await get_project_or_404(db, channel[len("project-"):])
            elif channel.startswith("card-"):
                _, project = await get_card_context(db, channel[len("card-"):])
            else:
                return False
            access = await load_project_access(db, project, actor)
        except AppError:
            return False
        return access.can_view


async def _load_actor(user_id: str) -> Optional[CurrentUser]:
    async with get_db_context() as db:
        user = await db.get(User, user_id)
        if not user or not user.is_active:
            return None
        return CurrentUser.from_user(user)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
):
    """Main WebSocket endpoint for real-time events"""
    payload = _verify_ws_token(token)
    if not payload or not payload.get("sub"):
        await websocket.close(code=4001, reason="Authentication failed")
        return

    actor = await _load_actor(payload["sub"])
    if actor is None:
        await websocket.close(code=4001, reason="User not found or inactive")
        return

    await manager.connect(websocket, actor.id)
    await websocket.send_json({"type": "connected", "user_id": actor.id, "timestamp": _now()})

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type", "")

            if msg_type == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})

            elif msg_type == "subscribe":
                channel = data.get("channel", "")
                if channel and await can_subscribe(actor, channel):
                    manager.subscribe(actor.id, channel)
                    await websocket.send_json({"type": "subscribed", "channel": channel})
                else:
                    await websocket.send_json({"type": "error", "channel": channel, "detail": "Subscription denied"})

            elif msg_type == "unsubscribe":
                channel = data.get("channel", "")
                if channel:
                    manager.unsubscribe(actor.id, channel)
                    await websocket.send_json({"type": "unsubscribed", "channel": channel})

    except WebSocketDisconnect:
        manager.disconnect(actor.id)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        manager.disconnect(actor.id)


@router.get("/ws/stats")
async def websocket_stats():
    """Get WebSocket connection statistics"""
    return manager.get_stats()
