"""
FastAPI route: chat turns against the conversational webhook.

Provides endpoints to:
    POST /api/v1/chat/messages   — deliver one user message, get the reply
    POST /api/v1/chat/sessions   — open a conversation thread (session id + greeting)
    GET  /api/v1/chat/config     — active delivery policy

A webhook failure is not an HTTP error here: the fallback text is returned
with status 200 and `outcome` tells the failure class.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Request

from backend.app.api.schemas import (
    ChatMessageOut,
    ChatMessageRequest,
    ChatTurnResponse,
    DeliveryConfigResponse,
    SessionResponse,
)
from backend.app.chat.chat_service import ChatService

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])


def get_chat_service(request: Request) -> ChatService:
    """Chat service built by the application lifespan."""
    return request.app.state.chat_service


@router.post(
    "/messages",
    response_model=ChatTurnResponse,
    summary="Send a chat message",
    description=(
        "Delivers the message to the conversational webhook with bounded "
        "retries and returns the reply, or a fallback text when the webhook "
        "is unreachable or answers with an unusable body."
    ),
)
async def send_message(
    body: ChatMessageRequest,
    service: ChatService = Depends(get_chat_service),
):
    turn = await service.send_message(body.message, body.session_id)
    return ChatTurnResponse.from_turn(turn)


@router.post(
    "/sessions",
    response_model=SessionResponse,
    summary="Open a conversation thread",
)
async def open_session(service: ChatService = Depends(get_chat_service)):
    session_id, greeting = service.new_session()
    return SessionResponse(
        session_id=session_id,
        welcome_message=ChatMessageOut.from_message(greeting),
    )


@router.get(
    "/config",
    response_model=DeliveryConfigResponse,
    summary="Active webhook delivery policy",
)
async def delivery_config(service: ChatService = Depends(get_chat_service)):
    client = service.delivery_client
    return DeliveryConfigResponse(
        endpoint_host=urlsplit(client.endpoint_url).netloc,
        max_attempts=client.policy.max_attempts,
        retry_delay_seconds=client.policy.delay_seconds,
        timeout_seconds=client.timeout_seconds,
    )
