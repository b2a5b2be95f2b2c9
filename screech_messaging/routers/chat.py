import asyncio
import json
import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from redis.exceptions import RedisError

from screech_messaging.core.config import Settings, get_settings
from screech_messaging.core.errors import MessagingError
from screech_messaging.schemas.messaging import SendMessageRequest, SentMessage, UnreadCount
from screech_messaging.services.messaging_service import MESSAGE_READ, MESSAGE_TYPING, MessagingService
from screech_messaging.utils.dependencies import get_coordinator, get_current_user_id, get_messaging_service
from screech_messaging.utils.realtime_bus import PRESENCE_HEARTBEAT_SECONDS, PRESENCE_TTL_SECONDS, get_bus
from screech_messaging.utils.security import user_id_from_token
from screech_messaging.utils.websocket_manager import DeliveryCoordinator


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SentMessage)
async def send_message(body: SendMessageRequest, current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    message = await service.send(current_user, body.recipient_id, body.content)
    return SentMessage(message=message, conversation_id=message.conversation_id)


@router.get("/unread/count", response_model=UnreadCount)
async def unread_count(current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    return UnreadCount(unread_count=await service.unread_count(current_user))


@router.delete("/{message_id}")
async def delete_message(message_id: str, current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    await service.delete_message(current_user, message_id)
    return {"msg": "Message deleted"}


async def _presence_heartbeat(bus, user_id: str) -> None:
    while True:
        try:
            await bus.set_presence(user_id, ttl_seconds=PRESENCE_TTL_SECONDS)
        except RedisError as exc:
            logger.warning("Presence update for %s failed: %s", user_id, exc)
        await asyncio.sleep(PRESENCE_HEARTBEAT_SECONDS)


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await websocket.send_json({"event": "error", "data": {"detail": detail}})


async def _handle_frame(websocket: WebSocket, service: MessagingService, user_id: str, username: Optional[str], frame: Dict[str, Any]) -> None:
    event = frame.get("event")
    data = frame.get("data") or {}
    if event == MESSAGE_TYPING:
        # {event: "message:typing", data: {conversation_id, recipient_id?, is_typing}}
        conversation_id = data.get("conversation_id")
        if not conversation_id:
            await _send_error(websocket, "conversation_id is required")
            return
        recipient_id = data.get("recipient_id")
        await service.typing_indicator(
            user_id, str(recipient_id) if recipient_id else None, str(conversation_id), bool(data.get("is_typing")), username
        )
    elif event == MESSAGE_READ:
        # {event: "message:read", data: {conversation_id}}
        try:
            await service.mark_read(user_id, data.get("conversation_id"))
        except MessagingError as exc:
            await _send_error(websocket, exc.message)
    else:
        await _send_error(websocket, f"Unsupported event: {event}")


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    service: MessagingService = Depends(get_messaging_service),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
):
    # token comes as ?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user_id = user_id_from_token(token, settings)
    except jwt.InvalidTokenError:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    bus = None
    heartbeat_task = None
    try:
        coordinator.register(user_id, websocket)
        bus = await get_bus(settings)
        if bus.enabled:
            heartbeat_task = asyncio.create_task(_presence_heartbeat(bus, user_id))
        me = await service.display_info(user_id)
        username = me.username if me else None
        await websocket.send_json({"event": "connected", "data": {"userId": user_id}})

        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                await _send_error(websocket, "Invalid JSON frame")
                continue
            if not isinstance(frame, dict):
                await _send_error(websocket, "Invalid frame")
                continue
            await _handle_frame(websocket, service, user_id, username, frame)
    except WebSocketDisconnect:
        pass
    finally:
        coordinator.unregister(user_id, websocket)
        if heartbeat_task:
            heartbeat_task.cancel()
        if bus is not None and bus.enabled and not coordinator.is_reachable(user_id):
            try:
                await bus.clear_presence(user_id)
            except RedisError as exc:
                logger.warning("Presence clear for %s failed: %s", user_id, exc)
