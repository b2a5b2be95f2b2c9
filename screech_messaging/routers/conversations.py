from typing import Optional

from fastapi import APIRouter, Depends, Query

from screech_messaging.schemas.messaging import ConversationPage, ConversationSummary, OpenedConversation
from screech_messaging.services.messaging_service import MessagingService
from screech_messaging.utils.dependencies import get_current_user_id, get_messaging_service


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=ConversationPage)
async def list_conversations(page: int = Query(1, ge=1), limit: Optional[int] = Query(None, ge=1, le=100), current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    return await service.list_conversations(current_user, page=page, page_size=limit)


@router.post("/with/{user_id}", response_model=ConversationSummary)
async def get_or_create_conversation(user_id: str, current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    return await service.get_or_create_conversation(current_user, user_id)


@router.get("/{conversation_id}", response_model=OpenedConversation)
async def open_conversation(conversation_id: str, page: int = Query(1, ge=1), limit: Optional[int] = Query(None, ge=1, le=100), current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    return await service.open_conversation(current_user, conversation_id, page=page, page_size=limit)


@router.put("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    await service.mark_read(current_user, conversation_id)
    return {"msg": "Conversation marked as read"}


@router.delete("/{conversation_id}")
async def delete_conversation(conversation_id: str, current_user: str = Depends(get_current_user_id), service: MessagingService = Depends(get_messaging_service)):
    await service.delete_conversation(current_user, conversation_id)
    return {"msg": "Conversation deleted"}
