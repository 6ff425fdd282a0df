"""
Chat streaming endpoint.

The assistant reply is streamed as plain text; the chat and user-message
ids travel in response headers so the client can reconcile its state
while the body is still arriving.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from api.dependencies import get_chat_service
from core.chat_service import ChatNotFoundError, ChatService
from utils.schemas import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.post("/chat")
async def chat(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
) -> StreamingResponse:
    try:
        turn = await service.start_turn(request.chat_id, request.message)
    except ChatNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))

    return StreamingResponse(
        turn.stream,
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Chat-Id": turn.chat_id,
            "X-User-Message-Id": turn.user_message_id,
        },
    )
