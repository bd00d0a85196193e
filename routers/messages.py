from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from errors import AuthenticationError, ChatError
from identity import Identity, bearer_token
from logging_config import get_logger
from schemas.messages import (
    EditMessageRequest,
    MessageActionResponse,
    MessagePageResponse,
    MessageSearchResponse,
    UserChatsResponse,
)
from services import ChatServices

logger = get_logger(__name__)

messages_router = APIRouter(prefix="/messages", tags=["messages"])


def get_services(request: Request) -> ChatServices:
    return request.app.state.services


async def get_identity(request: Request, services: ChatServices = Depends(get_services)) -> Identity:
    token = bearer_token(request.headers.get("authorization"))
    if not token:
        raise HTTPException(status_code=401, detail="Access token is required")
    try:
        return await services.verifier.verify(token)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=e.message)


def _http_error(e: ChatError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@messages_router.put("/{message_id}", response_model=MessageActionResponse)
async def edit_message(message_id: str, body: EditMessageRequest,
                       identity: Identity = Depends(get_identity),
                       services: ChatServices = Depends(get_services)):
    logger.info(f"Edit request for message {message_id} from {identity.user_id}")
    try:
        message = await services.broadcaster.edit_message(message_id, identity.user_id, body.content)
    except ChatError as e:
        logger.warning(f"Edit of message {message_id} failed: {e.message}")
        raise _http_error(e)
    return MessageActionResponse(
        message="Message edited successfully",
        data={"id": message.id, "content": body.content.strip(), "editedAt": message.edited_at.isoformat()},
    )


@messages_router.delete("/{message_id}", response_model=MessageActionResponse)
async def delete_message(message_id: str, identity: Identity = Depends(get_identity),
                         services: ChatServices = Depends(get_services)):
    logger.info(f"Delete request for message {message_id} from {identity.user_id}")
    try:
        await services.broadcaster.delete_message(message_id, identity.user_id)
    except ChatError as e:
        logger.warning(f"Delete of message {message_id} failed: {e.message}")
        raise _http_error(e)
    return MessageActionResponse(message="Message deleted successfully")


@messages_router.post("/{message_id}/pin", response_model=MessageActionResponse)
async def pin_message(message_id: str, identity: Identity = Depends(get_identity),
                      services: ChatServices = Depends(get_services)):
    logger.info(f"Pin request for message {message_id} from {identity.user_id}")
    try:
        message = await services.broadcaster.pin_message(message_id, identity.user_id)
    except ChatError as e:
        logger.warning(f"Pin of message {message_id} failed: {e.message}")
        raise _http_error(e)
    return MessageActionResponse(
        message="Message pinned successfully",
        data={"id": message.id, "pinnedBy": message.pinned_by, "pinnedAt": message.pinned_at.isoformat()},
    )


@messages_router.get("/private/{recipient_id}", response_model=MessagePageResponse)
async def private_messages(recipient_id: str, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                           identity: Identity = Depends(get_identity),
                           services: ChatServices = Depends(get_services)):
    try:
        data = await services.history.private_history(identity.user_id, recipient_id, page, limit)
    except ChatError as e:
        raise _http_error(e)
    return MessagePageResponse(data=data, page=page, limit=limit)


@messages_router.get("/group/{group_id}", response_model=MessagePageResponse)
async def group_messages(group_id: str, page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                         identity: Identity = Depends(get_identity),
                         services: ChatServices = Depends(get_services)):
    try:
        data = await services.history.group_history(identity.user_id, group_id, page, limit)
    except ChatError as e:
        raise _http_error(e)
    return MessagePageResponse(data=data, page=page, limit=limit)


@messages_router.get("/chats", response_model=UserChatsResponse)
async def user_chats(identity: Identity = Depends(get_identity), services: ChatServices = Depends(get_services)):
    try:
        data = await services.history.user_chats(identity.user_id)
    except ChatError as e:
        raise _http_error(e)
    return UserChatsResponse(data=data)


@messages_router.get("/search", response_model=MessageSearchResponse)
async def search_messages(chat_type: str = Query(..., alias="chatType"), chat_id: str = Query(..., alias="chatId"),
                          query: Optional[str] = Query(None), page: int = Query(1, ge=1),
                          limit: int = Query(20, ge=1, le=100),
                          start_date: Optional[datetime] = Query(None, alias="startDate"),
                          end_date: Optional[datetime] = Query(None, alias="endDate"),
                          file_type: Optional[str] = Query(None, alias="fileType"),
                          identity: Identity = Depends(get_identity),
                          services: ChatServices = Depends(get_services)):
    try:
        result = await services.history.search(identity.user_id, chat_type, chat_id, query, page, limit,
                                               start_date=start_date, end_date=end_date, file_type=file_type)
    except ChatError as e:
        raise _http_error(e)
    return MessageSearchResponse(
        data=result["messages"],
        page=page,
        limit=limit,
        total=result["total"],
        total_pages=result["totalPages"],
    )
