"""POST /v1/chat - AI assistant for the chat widget"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from bhalchandra_gateway.api.v1.schemas import ChatRequest, ChatResponse
from bhalchandra_gateway.api.dependencies import get_assistant_client, get_current_user_id, get_request_id
from bhalchandra_gateway.domain.exceptions import AssistantError
from bhalchandra_gateway.infrastructure.clients.assistant import AssistantClient, ChatMessage
from bhalchandra_gateway.infrastructure.observability.metrics import assistant_failures_counter

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request_body: ChatRequest,
    user_id: str = Depends(get_current_user_id),
    request_id: str = Depends(get_request_id),
    assistant: AssistantClient = Depends(get_assistant_client),
):
    """
    Answer a chat message with page context and prior turns.

    Requires an authenticated caller; the provider's reply is passed through as text.
    """
    history = [ChatMessage(role=turn.role, content=turn.content) for turn in request_body.conversation_history]

    try:
        reply = await assistant.generate_reply(
            request_body.message,
            current_page=request_body.current_page,
            history=history,
        )
    except AssistantError as e:
        assistant_failures_counter.inc()
        logging.error(f"Assistant error: {e}", extra={"request_id": request_id, "user_id": user_id})
        raise HTTPException(
            status_code=503,
            detail="Our AI assistant is temporarily unavailable. Please try again in a moment.",
        )

    return ChatResponse(response=reply)
