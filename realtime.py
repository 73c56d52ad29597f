import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from jose import JWTError
from pydantic import ValidationError

import models
from authentication import TokenIdentity, decode_access_token

logger = logging.getLogger(__name__)

EVENT_NEW_ORDER = "newOrder"
EVENT_ORDER_STATUS = "orderStatusUpdate"
EVENT_NEW_PROBLEM = "newProblem"

ADMIN_ROOM = "admin"


def supplier_room(user_id: int) -> str:
    return f"supplier_{user_id}"


def client_room(user_id: int) -> str:
    return f"client_{user_id}"


def room_for(identity: TokenIdentity) -> str:
    if identity.role == models.ROLE_ADMIN:
        return ADMIN_ROOM
    if identity.role == models.ROLE_SUPPLIER:
        return supplier_room(identity.id)
    return client_room(identity.id)


class EventPublisher(Protocol):
    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        ...


class RoomHub:
    """
    Keeps the open sockets of this process grouped by room.

    publish() is called from request handlers running in the threadpool, so
    the actual sends are scheduled on the loop that accepted the sockets and
    never awaited by the caller.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self, websocket: WebSocket, room: str):
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        self._rooms.setdefault(room, set()).add(websocket)
        logger.info("Socket joined room %s", room)

    def disconnect(self, websocket: WebSocket, room: str):
        sockets = self._rooms.get(room)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            self._rooms.pop(room, None)

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def publish(self, room: str, event: str, data: Dict[str, Any]) -> None:
        if self._loop is None or self._loop.is_closed() or not self._rooms.get(room):
            return
        message = jsonable_encoder({"event": event, "data": data})
        asyncio.run_coroutine_threadsafe(self.broadcast(room, message), self._loop)

    async def broadcast(self, room: str, message: Dict[str, Any]):
        for websocket in list(self._rooms.get(room, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning("Dropping socket in room %s after failed push: %s", room, e)
                self.disconnect(websocket, room)


def get_publisher(request: Request) -> EventPublisher:
    return request.app.state.room_hub


router = APIRouter(tags=["Realtime"])


@router.websocket("/ws")
async def room_socket(websocket: WebSocket, token: Optional[str] = None):
    try:
        identity = decode_access_token(token or "")
    except (JWTError, ValidationError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub: RoomHub = websocket.app.state.room_hub
    room = room_for(identity)
    await hub.connect(websocket, room)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket, room)
        logger.info("Socket left room %s", room)
